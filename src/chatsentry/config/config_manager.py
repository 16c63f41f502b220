"""Configuration management for ChatSentry.

This module handles loading, saving, and validating configuration
for the chat monitoring pipeline.
"""

import os
import re
import yaml
from pathlib import Path
from typing import Dict, Any, Optional, List, Tuple
from dataclasses import dataclass, asdict, field, replace
import structlog
from enum import Enum

from chatsentry.core.models import Rect


class AIProviderType(Enum):
    """Available AI provider types."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


@dataclass
class AIProviderConfig:
    """Configuration for a model endpoint."""
    provider: AIProviderType = AIProviderType.OPENAI
    model: str = "allenai/olmocr-2-7b"
    api_key: str = ""
    base_url: Optional[str] = "http://localhost:1234/v1"
    max_tokens: int = 2000
    temperature: float = 0.1
    timeout: float = 60.0


@dataclass(frozen=True)
class EmailConfig:
    """SMTP settings for alert emails."""
    enabled: bool = False
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_pass: str = ""
    sender: str = ""
    to: Tuple[str, ...] = ()
    use_tls: bool = True

    @property
    def is_configured(self) -> bool:
        """True when there is enough to attempt a send (host and recipients)."""
        return bool(self.smtp_host) and len(self.to) > 0


@dataclass(frozen=True)
class MonitorConfig:
    """Settings for one monitoring session. Immutable while a session runs."""
    interval_seconds: int = 30
    area: Optional[Rect] = None
    alert_keywords: Tuple[str, ...] = ()
    email: EmailConfig = field(default_factory=EmailConfig)


@dataclass
class ImageConfig:
    """Image sizing for model requests and UI thumbnails."""
    max_side: int = 1288
    retry_max_side: int = 640
    format: str = "PNG"
    quality: int = 85
    thumbnail_width: int = 320


@dataclass
class StorageConfig:
    """Where snapshots, screenshots and spreadsheets are written."""
    data_dir: str = "data"
    screenshots_dir: str = "screenshots"
    excel_dir: str = "excel"


@dataclass
class SpreadsheetConfig:
    """Hourly workbook settings."""
    locale: str = "en"


@dataclass
class AppConfig:
    """Main application configuration."""
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    vision: AIProviderConfig = field(default_factory=AIProviderConfig)
    text: AIProviderConfig = field(default_factory=lambda: AIProviderConfig(model="qwen2.5-7b-instruct", max_tokens=200))
    image: ImageConfig = field(default_factory=ImageConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    spreadsheet: SpreadsheetConfig = field(default_factory=SpreadsheetConfig)
    log_level: str = "INFO"


VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
VALID_LOCALES = ["en", "zh", "ja"]

# Environment variables that override values loaded from YAML
ENV_OVERRIDES = {
    "CHATSENTRY_VISION_API_KEY": ("vision", "api_key"),
    "CHATSENTRY_VISION_BASE_URL": ("vision", "base_url"),
    "CHATSENTRY_TEXT_API_KEY": ("text", "api_key"),
    "CHATSENTRY_TEXT_BASE_URL": ("text", "base_url"),
    "CHATSENTRY_SMTP_PASS": ("email", "smtp_pass"),
    "CHATSENTRY_LOG_LEVEL": ("app", "log_level"),
}


class ConfigManager:
    """Configuration manager for ChatSentry."""

    def __init__(self, config_path: Optional[Path] = None, logger: Optional[structlog.BoundLogger] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to configuration file
            logger: Structured logger
        """
        self.logger = logger or structlog.get_logger()

        if config_path is None:
            config_dir = Path.cwd() / "config"
            self.config_path = config_dir / "config.yaml"
        else:
            self.config_path = Path(config_path)
        self.default_config_path = self.config_path.parent / "default.yaml"

        self.config = AppConfig()
        self._initialize_config()

        self.logger.info("Configuration manager initialized",
                        config_path=str(self.config_path))

    def _initialize_config(self):
        """Initialize configuration from default template and user config."""
        try:
            data: Dict[str, Any] = {}
            if self.default_config_path.exists():
                self.logger.info("Loading default configuration template",
                               path=str(self.default_config_path))
                with open(self.default_config_path, 'r', encoding='utf-8') as f:
                    data = yaml.safe_load(f) or {}
            else:
                self.logger.debug("Default configuration template not found, using hardcoded defaults",
                                expected_path=str(self.default_config_path))

            if self.config_path.exists():
                self.logger.info("Loading user configuration", path=str(self.config_path))
                with open(self.config_path, 'r', encoding='utf-8') as f:
                    user_data = yaml.safe_load(f) or {}
                data = _deep_merge(data, user_data)
                self.config = self._dict_to_config(self._apply_env_overrides(data))
            else:
                self.config = self._dict_to_config(self._apply_env_overrides(data))
                self.logger.info("User configuration not found, creating from template",
                               path=str(self.config_path))
                self.save_config()

        except Exception as e:
            self.logger.error("Failed to initialize configuration", error=str(e))
            self.config = AppConfig()

    def _apply_env_overrides(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to raw configuration data.

        Args:
            data: Configuration data from YAML

        Returns:
            Configuration data with overrides applied
        """
        for env_var, (section, key) in ENV_OVERRIDES.items():
            value = os.getenv(env_var)
            if value is None:
                continue
            if section == "app":
                data[key] = value
            elif section == "email":
                data.setdefault('monitor', {}).setdefault('email', {})[key] = value
            else:
                data.setdefault(section, {})[key] = value
            self.logger.debug("Applied environment override", env_var=env_var)
        return data

    def _dict_to_config(self, data: Dict[str, Any]) -> AppConfig:
        """Convert dictionary data to configuration objects.

        Args:
            data: Configuration data from YAML

        Returns:
            AppConfig object
        """
        config = AppConfig()

        if 'monitor' in data:
            config.monitor = self._parse_monitor(data['monitor'] or {})

        if 'vision' in data:
            config.vision = self._parse_provider(data['vision'] or {}, config.vision)
        if 'text' in data:
            config.text = self._parse_provider(data['text'] or {}, config.text)

        if 'image' in data:
            image_data = data['image'] or {}
            config.image = ImageConfig(
                max_side=int(image_data.get('max_side', 1288)),
                retry_max_side=int(image_data.get('retry_max_side', 640)),
                format=str(image_data.get('format', 'PNG')).upper(),
                quality=int(image_data.get('quality', 85)),
                thumbnail_width=int(image_data.get('thumbnail_width', 320))
            )

        if 'storage' in data:
            storage_data = data['storage'] or {}
            config.storage = StorageConfig(
                data_dir=storage_data.get('data_dir', 'data'),
                screenshots_dir=storage_data.get('screenshots_dir', 'screenshots'),
                excel_dir=storage_data.get('excel_dir', 'excel')
            )

        if 'spreadsheet' in data:
            config.spreadsheet = SpreadsheetConfig(
                locale=(data['spreadsheet'] or {}).get('locale', 'en')
            )

        config.log_level = str(data.get('log_level', 'INFO')).upper()
        return config

    def _parse_monitor(self, monitor_data: Dict[str, Any]) -> MonitorConfig:
        area = None
        if monitor_data.get('area'):
            area = Rect.from_dict(monitor_data['area'])

        email_data = monitor_data.get('email') or {}
        recipients = email_data.get('to', [])
        if isinstance(recipients, str):
            recipients = [r.strip() for r in recipients.split(',') if r.strip()]

        email = EmailConfig(
            enabled=bool(email_data.get('enabled', False)),
            smtp_host=email_data.get('smtp_host', ''),
            smtp_port=int(email_data.get('smtp_port', 587)),
            smtp_user=email_data.get('smtp_user', ''),
            smtp_pass=email_data.get('smtp_pass', ''),
            sender=email_data.get('from', email_data.get('sender', '')),
            to=tuple(recipients),
            use_tls=bool(email_data.get('use_tls', True))
        )

        return MonitorConfig(
            interval_seconds=int(monitor_data.get('interval_seconds', 30)),
            area=area,
            alert_keywords=tuple(monitor_data.get('alert_keywords') or ()),
            email=email
        )

    def _parse_provider(self, provider_data: Dict[str, Any], defaults: AIProviderConfig) -> AIProviderConfig:
        provider_name = provider_data.get('provider', defaults.provider.value)
        return AIProviderConfig(
            provider=AIProviderType(provider_name),
            model=provider_data.get('model', defaults.model),
            api_key=provider_data.get('api_key', defaults.api_key) or '',
            base_url=provider_data.get('base_url', defaults.base_url),
            max_tokens=int(provider_data.get('max_tokens', defaults.max_tokens)),
            temperature=float(provider_data.get('temperature', defaults.temperature)),
            timeout=float(provider_data.get('timeout', defaults.timeout))
        )

    def _config_to_dict(self, mask_secrets: bool = False) -> Dict[str, Any]:
        monitor = self.config.monitor
        email = monitor.email

        def secret(value: str) -> str:
            if mask_secrets:
                return '***MASKED***' if value else ''
            return value

        def provider(cfg: AIProviderConfig) -> Dict[str, Any]:
            data = asdict(cfg)
            data['provider'] = cfg.provider.value
            data['api_key'] = secret(cfg.api_key)
            return data

        return {
            'log_level': self.config.log_level,
            'monitor': {
                'interval_seconds': monitor.interval_seconds,
                'area': monitor.area.as_dict() if monitor.area else None,
                'alert_keywords': list(monitor.alert_keywords),
                'email': {
                    'enabled': email.enabled,
                    'smtp_host': email.smtp_host,
                    'smtp_port': email.smtp_port,
                    'smtp_user': email.smtp_user,
                    'smtp_pass': secret(email.smtp_pass),
                    'from': email.sender,
                    'to': list(email.to),
                    'use_tls': email.use_tls
                }
            },
            'vision': provider(self.config.vision),
            'text': provider(self.config.text),
            'image': asdict(self.config.image),
            'storage': asdict(self.config.storage),
            'spreadsheet': asdict(self.config.spreadsheet)
        }

    def save_config(self) -> bool:
        """Save current configuration to file.

        Returns:
            True if saved successfully, False otherwise
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, 'w', encoding='utf-8') as f:
                yaml.safe_dump(self._config_to_dict(), f, default_flow_style=False,
                               indent=2, allow_unicode=True, sort_keys=False)

            self.logger.info("Configuration saved successfully")
            return True

        except Exception as e:
            self.logger.error("Failed to save configuration", error=str(e))
            return False

    def validate_config(self) -> List[str]:
        """Validate current configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = validate_monitor_config(self.config.monitor)

        if self.config.log_level not in VALID_LOG_LEVELS:
            errors.append(f"Invalid log level: {self.config.log_level}")

        if not 0 <= self.config.image.quality <= 100:
            errors.append("Image quality must be between 0 and 100")

        if self.config.image.retry_max_side >= self.config.image.max_side:
            errors.append("Retry image size must be smaller than the regular max size")

        if self.config.spreadsheet.locale not in VALID_LOCALES:
            errors.append(f"Unsupported spreadsheet locale: {self.config.spreadsheet.locale}")

        for name, provider in (('vision', self.config.vision), ('text', self.config.text)):
            if not provider.model:
                errors.append(f"A model name is required for the {name} endpoint")
            if provider.provider == AIProviderType.ANTHROPIC and not provider.api_key:
                errors.append(f"Anthropic API key is required for the {name} endpoint")

        return errors

    def is_valid(self) -> bool:
        """Check if current configuration is valid."""
        return len(self.validate_config()) == 0

    def update_monitor_config(self, **changes) -> MonitorConfig:
        """Replace the monitor configuration between sessions.

        Args:
            **changes: MonitorConfig fields to change

        Returns:
            The new MonitorConfig
        """
        self.config.monitor = replace(self.config.monitor, **changes)
        self.logger.info("Monitor configuration updated", fields=sorted(changes))
        return self.config.monitor

    def get_storage_path(self, name: str) -> Path:
        """Get a storage directory path, creating it if necessary.

        Args:
            name: One of data_dir, screenshots_dir, excel_dir

        Returns:
            Directory path, relative entries resolved against the config directory
        """
        path = Path(getattr(self.config.storage, name))
        if not path.is_absolute():
            path = self.config_path.parent / path
        path.mkdir(parents=True, exist_ok=True)
        return path

    def export_config(self) -> Dict[str, Any]:
        """Export configuration as dictionary with secrets masked."""
        return self._config_to_dict(mask_secrets=True)


def validate_monitor_config(monitor: MonitorConfig) -> List[str]:
    """Validate a monitoring session configuration.

    Returns:
        List of validation errors (empty if valid)
    """
    errors = []

    if monitor.interval_seconds < 1:
        errors.append("Capture interval must be at least 1 second")

    if monitor.area is None:
        errors.append("A capture area must be selected before monitoring")
    elif monitor.area.width <= 0 or monitor.area.height <= 0:
        errors.append("Capture area must have a positive width and height")
    elif monitor.area.x < 0 or monitor.area.y < 0:
        errors.append("Capture area must start inside the screen")

    email = monitor.email
    if email.enabled:
        if not email.smtp_host:
            errors.append("SMTP host is required when email alerts are enabled")
        if not email.to:
            errors.append("At least one recipient is required when email alerts are enabled")
        for address in email.to:
            if not re.match(r'^[^@\s]+@[^@\s]+$', address):
                errors.append(f"Invalid recipient address: {address}")

    return errors


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged
