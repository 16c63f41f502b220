"""Main application entry point for ChatSentry."""
import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional
import structlog

from chatsentry import ChatSentryError, ConfigError, __version__
from chatsentry.ai_analysis.backends import create_backend
from chatsentry.ai_analysis.classifier import Classifier
from chatsentry.ai_analysis.vision_client import ExtractionClient
from chatsentry.alerts.notifier import AlertNotifier
from chatsentry.capture.image_processing import ImagePreprocessor
from chatsentry.capture.screen_capture import ScreenCapturer
from chatsentry.config.config_manager import ConfigManager
from chatsentry.core.dedup import Deduplicator
from chatsentry.core.models import Rect
from chatsentry.export.snapshot_store import AlertStore, MessageStore
from chatsentry.export.spreadsheet_sink import SpreadsheetSink
from chatsentry.monitor.events import ConsoleEventSink
from chatsentry.monitor.monitor_manager import MonitorManager
from chatsentry.utils.logging_utils import setup_logging


class ChatSentryApp:
    """Builds the monitoring pipeline from configuration and runs it."""

    def __init__(self, config_path: Optional[Path] = None, log_level: Optional[str] = None):
        """Initialize the application.

        Args:
            config_path: Optional path to configuration file
            log_level: Overrides the configured log level
        """
        self.logger = setup_logging()

        try:
            self.config_manager = ConfigManager(config_path, self.logger)
            self.config = self.config_manager.config

            level = log_level or self.config.log_level
            data_dir = self.config_manager.get_storage_path('data_dir')
            self.logger = setup_logging(level=level, log_file=data_dir / "chatsentry.log")

            self.monitor = self._build_monitor(data_dir)

            self.logger.info("ChatSentry initialized successfully",
                           version=__version__,
                           vision_model=self.config.vision.model,
                           text_model=self.config.text.model)

        except Exception as e:
            self.logger.error("Failed to initialize ChatSentry", error=str(e))
            raise

    def _build_monitor(self, data_dir: Path) -> MonitorManager:
        message_store = MessageStore(data_dir / "messages.json", self.logger)
        alert_store = AlertStore(data_dir / "alerts.json", self.logger)
        message_store.load()
        alert_store.load()

        deduplicator = Deduplicator()
        preprocessor = ImagePreprocessor(self.logger)

        return MonitorManager(
            capturer=ScreenCapturer(self.logger),
            preprocessor=preprocessor,
            extractor=ExtractionClient(create_backend(self.config.vision, self.logger),
                                       preprocessor, self.config.image, self.logger),
            classifier=Classifier(create_backend(self.config.text, self.logger), self.logger),
            message_store=message_store,
            notifier=AlertNotifier(alert_store, deduplicator, logger=self.logger),
            deduplicator=deduplicator,
            sheet_sink=SpreadsheetSink(self.config_manager.get_storage_path('excel_dir'),
                                       self.config.spreadsheet.locale, self.logger),
            screenshots_dir=self.config_manager.get_storage_path('screenshots_dir'),
            image_config=self.config.image,
            event_sink=ConsoleEventSink(),
            logger=self.logger
        )

    async def run(self, once: bool = False) -> None:
        """Monitor until cancelled, or run a single cycle.

        Raises:
            ConfigError: If the configuration cannot start a session
        """
        errors = self.config_manager.validate_config()
        if errors:
            raise ConfigError("Invalid configuration: " + "; ".join(errors))

        if once:
            await self.monitor.run_once(self.config.monitor)
            return

        self.monitor.start(self.config.monitor)
        try:
            await asyncio.Event().wait()
        finally:
            await self.monitor.shutdown()
            self.logger.info("Session finished", **self.monitor.get_stats())


def parse_area(value: str) -> Rect:
    """Parse an 'x,y,width,height' capture area argument."""
    try:
        x, y, width, height = (int(part) for part in value.split(','))
    except ValueError:
        raise argparse.ArgumentTypeError("area must be four integers: x,y,width,height")
    return Rect(x, y, width, height)


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="ChatSentry: AI chat monitoring for a selected screen region",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  chatsentry --area 0,600,800,400           # Monitor a region every 30s
  chatsentry --config my.yaml --interval 10
  python -m chatsentry --once               # Run a single capture cycle
        """
    )
    parser.add_argument("--config", type=Path, help="Path to configuration file")
    parser.add_argument("--area", type=parse_area, help="Capture area as x,y,width,height")
    parser.add_argument("--interval", type=int, help="Seconds between capture cycles")
    parser.add_argument("--log-level", help="Override the configured log level")
    parser.add_argument("--once", action="store_true", help="Run one capture cycle and exit")
    parser.add_argument("--save", action="store_true",
                        help="Persist --area/--interval to the configuration file")
    parser.add_argument("--version", action="version", version=f"ChatSentry {__version__}")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_arguments(argv)

    try:
        app = ChatSentryApp(args.config, args.log_level)

        changes = {}
        if args.area is not None:
            changes['area'] = args.area
        if args.interval is not None:
            changes['interval_seconds'] = args.interval
        if changes:
            app.config_manager.update_monitor_config(**changes)
            if args.save:
                app.config_manager.save_config()

        asyncio.run(app.run(once=args.once))
        return 0

    except ChatSentryError as e:
        print(f"ChatSentry error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nStopped by user", file=sys.stderr)
        return 0
    except Exception as e:
        structlog.get_logger().error("Unexpected error", error=str(e), exc_info=True)
        print(f"Unexpected error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
