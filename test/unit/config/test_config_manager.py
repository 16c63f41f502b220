"""Unit tests for configuration management functionality."""

import pytest
from unittest.mock import Mock
from pathlib import Path
import yaml

from chatsentry.config.config_manager import (
    AIProviderType, ConfigManager, EmailConfig, MonitorConfig
)
from chatsentry.core.models import Rect


@pytest.fixture
def mock_logger():
    """Create a mock logger for testing."""
    return Mock()


@pytest.fixture
def sample_config_data():
    """Sample configuration data for testing."""
    return {
        'log_level': 'debug',
        'monitor': {
            'interval_seconds': 15,
            'area': {'x': 0, 'y': 600, 'width': 800, 'height': 400},
            'alert_keywords': ['refund', 'crash'],
            'email': {
                'enabled': True,
                'smtp_host': 'smtp.example.com',
                'smtp_port': 465,
                'smtp_user': 'bot',
                'smtp_pass': 'hunter2',
                'from': 'bot@example.com',
                'to': 'ops@example.com, lead@example.com'
            }
        },
        'vision': {
            'provider': 'openai',
            'model': 'allenai/olmocr-2-7b',
            'base_url': 'http://localhost:1234/v1'
        },
        'text': {
            'provider': 'anthropic',
            'model': 'claude-3-5-haiku-20241022',
            'api_key': 'test_anthropic_key'
        },
        'spreadsheet': {'locale': 'zh'}
    }


@pytest.fixture
def config_file_path(tmp_path):
    """Create a temporary config file path."""
    return tmp_path / "config" / "config.yaml"


def write_yaml(path: Path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        yaml.dump(data, f)


class TestConfigManager:
    """Test cases for ConfigManager."""

    @pytest.mark.unit
    def test_missing_config_created_with_defaults(self, config_file_path, mock_logger):
        manager = ConfigManager(config_file_path, mock_logger)

        assert config_file_path.exists()
        assert manager.config.monitor.interval_seconds == 30
        assert manager.config.monitor.area is None
        assert manager.config.vision.model == "allenai/olmocr-2-7b"
        assert manager.config.vision.base_url == "http://localhost:1234/v1"
        assert manager.config.image.max_side == 1288

    @pytest.mark.unit
    def test_load_user_config(self, config_file_path, sample_config_data, mock_logger):
        write_yaml(config_file_path, sample_config_data)

        config = ConfigManager(config_file_path, mock_logger).config

        assert config.log_level == "DEBUG"
        assert config.monitor.interval_seconds == 15
        assert config.monitor.area == Rect(0, 600, 800, 400)
        assert config.monitor.alert_keywords == ("refund", "crash")
        assert config.monitor.email.to == ("ops@example.com", "lead@example.com")
        assert config.monitor.email.sender == "bot@example.com"
        assert config.text.provider == AIProviderType.ANTHROPIC
        assert config.text.max_tokens == 200
        assert config.spreadsheet.locale == "zh"

    @pytest.mark.unit
    def test_default_template_merged(self, config_file_path, mock_logger):
        write_yaml(config_file_path.parent / "default.yaml",
                   {'monitor': {'interval_seconds': 45, 'alert_keywords': ['bug']}})
        write_yaml(config_file_path, {'monitor': {'interval_seconds': 10}})

        config = ConfigManager(config_file_path, mock_logger).config

        assert config.monitor.interval_seconds == 10
        assert config.monitor.alert_keywords == ("bug",)

    @pytest.mark.unit
    def test_env_overrides(self, config_file_path, sample_config_data, mock_logger, monkeypatch):
        write_yaml(config_file_path, sample_config_data)
        monkeypatch.setenv("CHATSENTRY_SMTP_PASS", "from-env")
        monkeypatch.setenv("CHATSENTRY_VISION_BASE_URL", "http://gpu-box:1234/v1")

        config = ConfigManager(config_file_path, mock_logger).config

        assert config.monitor.email.smtp_pass == "from-env"
        assert config.vision.base_url == "http://gpu-box:1234/v1"

    @pytest.mark.unit
    def test_invalid_yaml_falls_back_to_defaults(self, config_file_path, mock_logger):
        config_file_path.parent.mkdir(parents=True)
        config_file_path.write_text("monitor: [unclosed", encoding='utf-8')

        manager = ConfigManager(config_file_path, mock_logger)

        assert manager.config.monitor.interval_seconds == 30
        mock_logger.error.assert_called()

    @pytest.mark.unit
    def test_save_and_reload_roundtrip(self, config_file_path, sample_config_data, mock_logger):
        write_yaml(config_file_path, sample_config_data)
        manager = ConfigManager(config_file_path, mock_logger)
        manager.update_monitor_config(interval_seconds=60)

        assert manager.save_config()

        reloaded = ConfigManager(config_file_path, mock_logger).config
        assert reloaded.monitor.interval_seconds == 60
        assert reloaded.monitor.email.smtp_pass == "hunter2"

    @pytest.mark.unit
    def test_export_masks_secrets(self, config_file_path, sample_config_data, mock_logger):
        write_yaml(config_file_path, sample_config_data)
        exported = ConfigManager(config_file_path, mock_logger).export_config()

        assert exported['monitor']['email']['smtp_pass'] == '***MASKED***'
        assert exported['text']['api_key'] == '***MASKED***'
        assert exported['vision']['api_key'] == ''

    @pytest.mark.unit
    def test_update_monitor_config_replaces_frozen_value(self, config_file_path, mock_logger):
        manager = ConfigManager(config_file_path, mock_logger)
        before = manager.config.monitor

        after = manager.update_monitor_config(area=Rect(1, 2, 3, 4))

        assert before.area is None
        assert after.area == Rect(1, 2, 3, 4)
        assert isinstance(after, MonitorConfig)

    @pytest.mark.unit
    def test_storage_paths_relative_to_config_dir(self, config_file_path, mock_logger):
        manager = ConfigManager(config_file_path, mock_logger)

        path = manager.get_storage_path('excel_dir')

        assert path == config_file_path.parent / "excel"
        assert path.is_dir()

    @pytest.mark.unit
    def test_email_is_configured(self):
        assert not EmailConfig().is_configured
        assert EmailConfig(smtp_host="h", to=("a@b.c",)).is_configured
