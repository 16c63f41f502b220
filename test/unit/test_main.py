"""Unit tests for the command line entry point."""

import argparse
from pathlib import Path
from unittest.mock import patch

import pytest

from chatsentry.core.models import Rect
from chatsentry.main import main, parse_area, parse_arguments


class TestArguments:

    @pytest.mark.unit
    def test_parse_area(self):
        assert parse_area("0,600,800,400") == Rect(0, 600, 800, 400)

    @pytest.mark.unit
    @pytest.mark.parametrize("value", ["1,2,3", "a,b,c,d", ""])
    def test_parse_area_invalid(self, value):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_area(value)

    @pytest.mark.unit
    def test_parse_arguments(self):
        args = parse_arguments(["--config", "my.yaml", "--area", "1,2,3,4", "--interval", "10", "--once"])
        assert args.config == Path("my.yaml")
        assert args.area == Rect(1, 2, 3, 4)
        assert args.interval == 10
        assert args.once is True

    @pytest.mark.unit
    def test_defaults(self):
        args = parse_arguments([])
        assert args.config is None
        assert args.area is None
        assert args.once is False


class TestMain:

    @pytest.mark.unit
    @patch('chatsentry.main.ChatSentryApp')
    def test_invalid_config_exits_nonzero(self, mock_app_class, tmp_path, capsys):
        from chatsentry import ConfigError

        async def failing_run(once=False):
            raise ConfigError("A capture area must be selected before monitoring")
        mock_app_class.return_value.run = failing_run

        assert main(["--config", str(tmp_path / "config.yaml")]) == 1
        assert "capture area" in capsys.readouterr().err

    @pytest.mark.unit
    @patch('chatsentry.main.ChatSentryApp')
    def test_area_override_applied(self, mock_app_class, tmp_path):
        async def run(once=False):
            return None
        app = mock_app_class.return_value
        app.run = run

        assert main(["--area", "1,2,3,4", "--interval", "5", "--once"]) == 0

        app.config_manager.update_monitor_config.assert_called_once_with(
            area=Rect(1, 2, 3, 4), interval_seconds=5
        )
        app.config_manager.save_config.assert_not_called()
