"""Unit tests for configuration validation."""

import pytest
from unittest.mock import Mock

from chatsentry.config.config_manager import (
    AIProviderConfig, AIProviderType, ConfigManager, EmailConfig, MonitorConfig,
    validate_monitor_config
)
from chatsentry.core.models import Rect


AREA = Rect(0, 0, 800, 400)


class TestValidateMonitorConfig:
    """Test cases for session configuration checks."""

    @pytest.mark.unit
    def test_valid(self):
        assert validate_monitor_config(MonitorConfig(area=AREA)) == []

    @pytest.mark.unit
    def test_area_required(self):
        errors = validate_monitor_config(MonitorConfig())
        assert any("capture area" in e for e in errors)

    @pytest.mark.unit
    @pytest.mark.parametrize("area", [Rect(0, 0, 0, 10), Rect(-1, 0, 10, 10)])
    def test_bad_area(self, area):
        assert validate_monitor_config(MonitorConfig(area=area))

    @pytest.mark.unit
    def test_interval_minimum(self):
        errors = validate_monitor_config(MonitorConfig(interval_seconds=0, area=AREA))
        assert any("interval" in e for e in errors)

    @pytest.mark.unit
    def test_email_enabled_requires_host_and_recipients(self):
        errors = validate_monitor_config(MonitorConfig(area=AREA, email=EmailConfig(enabled=True)))
        assert len(errors) == 2

    @pytest.mark.unit
    def test_invalid_recipient(self):
        email = EmailConfig(enabled=True, smtp_host="smtp.example.com", to=("not-an-address",))
        errors = validate_monitor_config(MonitorConfig(area=AREA, email=email))
        assert errors == ["Invalid recipient address: not-an-address"]

    @pytest.mark.unit
    def test_disabled_email_not_checked(self):
        email = EmailConfig(enabled=False, to=("not-an-address",))
        assert validate_monitor_config(MonitorConfig(area=AREA, email=email)) == []


class TestValidateConfig:
    """Test cases for whole-application configuration checks."""

    @pytest.fixture
    def manager(self, tmp_path):
        manager = ConfigManager(tmp_path / "config.yaml", Mock())
        manager.update_monitor_config(area=AREA)
        return manager

    @pytest.mark.unit
    def test_defaults_with_area_are_valid(self, manager):
        assert manager.is_valid()

    @pytest.mark.unit
    def test_invalid_log_level(self, manager):
        manager.config.log_level = "VERBOSE"
        assert "Invalid log level: VERBOSE" in manager.validate_config()

    @pytest.mark.unit
    def test_retry_size_must_be_smaller(self, manager):
        manager.config.image.retry_max_side = 2000
        assert not manager.is_valid()

    @pytest.mark.unit
    def test_anthropic_requires_key(self, manager):
        manager.config.text = AIProviderConfig(provider=AIProviderType.ANTHROPIC, model="claude")
        errors = manager.validate_config()
        assert any("Anthropic API key" in e for e in errors)

    @pytest.mark.unit
    def test_unknown_locale(self, manager):
        manager.config.spreadsheet.locale = "fr"
        assert not manager.is_valid()
