"""Monitoring loop: capture, extract, dedupe, classify, persist, alert.

The manager is an explicitly constructed object owned by the host
process. Cycles run on the asyncio event loop, one at a time: the next
cycle is scheduled only after the current one has fully completed, so
slow model calls never pile up.
"""

import asyncio
import base64
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
import structlog

from chatsentry import ChatSentryError, ConfigError
from chatsentry.ai_analysis.classifier import Classifier
from chatsentry.ai_analysis.vision_client import ExtractionClient
from chatsentry.alerts.notifier import ALERT_KEYWORD, ALERT_NEGATIVE, AlertNotifier
from chatsentry.capture.image_processing import ImagePreprocessor
from chatsentry.capture.screen_capture import ScreenCapturer, save_image
from chatsentry.config.config_manager import ImageConfig, MonitorConfig, validate_monitor_config
from chatsentry.core.dedup import Deduplicator
from chatsentry.core.models import Message, MessageDraft, Sentiment, SheetRecord
from chatsentry.export.snapshot_store import MessageStore
from chatsentry.export.spreadsheet_sink import SpreadsheetSink
from chatsentry.monitor.events import EventKind, EventSink, MonitorEvent, null_sink


class MonitorState(Enum):
    """Lifecycle states of the monitor."""
    IDLE = "idle"
    RUNNING = "running"


class MonitorManager:
    """Owns the monitoring session and wires the pipeline components."""

    def __init__(self,
                 capturer: ScreenCapturer,
                 preprocessor: ImagePreprocessor,
                 extractor: ExtractionClient,
                 classifier: Classifier,
                 message_store: MessageStore,
                 notifier: AlertNotifier,
                 deduplicator: Deduplicator,
                 sheet_sink: SpreadsheetSink,
                 screenshots_dir: Path,
                 image_config: Optional[ImageConfig] = None,
                 event_sink: EventSink = null_sink,
                 logger: Optional[structlog.BoundLogger] = None,
                 clock: Callable[[], datetime] = datetime.now):
        """Initialize the monitor manager.

        Args:
            capturer: Full-screen capture
            preprocessor: Crop and thumbnail generation
            extractor: Vision model message extraction
            classifier: Topic and sentiment classification
            message_store: Persistent message log
            notifier: Alert and email raising
            deduplicator: Suppression gates shared with the notifier
            sheet_sink: Hourly spreadsheet export
            screenshots_dir: Where per-cycle crops are written
            image_config: Thumbnail sizing
            event_sink: Receives UI status events
            logger: Structured logger for operation tracking
            clock: Source of the current local time
        """
        self.capturer = capturer
        self.preprocessor = preprocessor
        self.extractor = extractor
        self.classifier = classifier
        self.message_store = message_store
        self.notifier = notifier
        self.deduplicator = deduplicator
        self.sheet_sink = sheet_sink
        self.screenshots_dir = Path(screenshots_dir)
        self.image_config = image_config or ImageConfig()
        self.event_sink = event_sink
        self.logger = logger or structlog.get_logger(__name__)
        self.clock = clock

        self.state = MonitorState.IDLE
        self.config: Optional[MonitorConfig] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._cycle_task: Optional[asyncio.Task] = None
        self._cycle_lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None
        self._session = 0

        self.cycles_run = 0
        self.cycles_failed = 0
        self.messages_stored = 0
        self.duplicates_skipped = 0
        self.alerts_raised = 0
        self.last_capture: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self.state == MonitorState.RUNNING

    def _emit(self, kind: EventKind, **payload: Any) -> None:
        try:
            self.event_sink(MonitorEvent(kind=kind, payload=payload))
        except Exception as e:
            self.logger.warning("Event sink failed", kind=kind.value, error=str(e))

    def start(self, config: MonitorConfig) -> bool:
        """Start monitoring with a session configuration.

        Must be called from inside a running event loop. The first cycle
        runs immediately.

        Returns:
            True if started, False if a session was already running

        Raises:
            ConfigError: If the configuration cannot start a session
        """
        if self.is_running:
            self.logger.info("Monitor already running")
            return False

        errors = validate_monitor_config(config)
        if errors:
            raise ConfigError("; ".join(errors))

        self._loop = asyncio.get_running_loop()
        self.config = config
        self.notifier.configure_email(config.email)
        self.state = MonitorState.RUNNING
        self._session += 1

        self.sheet_sink.ensure_hourly_sheet(self.clock())

        self.logger.info("Monitor started", interval_seconds=config.interval_seconds,
                        area=config.area.as_dict(), email_enabled=config.email.enabled)
        self._emit(EventKind.STARTED, interval_seconds=config.interval_seconds,
                   area=config.area.as_dict())
        self._schedule(0)
        return True

    def stop(self) -> None:
        """Stop scheduling cycles. An in-flight cycle runs to completion."""
        if not self.is_running:
            return

        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.state = MonitorState.IDLE

        self.logger.info("Monitor stopped", cycles_run=self.cycles_run,
                        cycle_in_flight=self._cycle_task is not None)
        self._emit(EventKind.STOPPED)

    async def run_once(self, config: MonitorConfig) -> List[Message]:
        """Run a single capture cycle outside of a scheduled session.

        Raises:
            ConfigError: If a session is running or the configuration is invalid
        """
        if self.is_running:
            raise ConfigError("Cannot run a single cycle while monitoring is running")

        errors = validate_monitor_config(config)
        if errors:
            raise ConfigError("; ".join(errors))

        self.config = config
        self.notifier.configure_email(config.email)
        async with self._lock():
            return await self.capture_and_process()

    async def wait_idle(self) -> None:
        """Wait for an in-flight cycle to finish."""
        task = self._cycle_task
        if task is not None:
            await asyncio.shield(task)

    async def shutdown(self) -> None:
        """Stop and wait for the in-flight cycle, if any."""
        self.stop()
        await self.wait_idle()

    def _lock(self) -> asyncio.Lock:
        # before 3.10 an asyncio.Lock is tied to the loop current at construction
        loop = asyncio.get_running_loop()
        if self._cycle_lock is None or self._lock_loop is not loop:
            self._cycle_lock = asyncio.Lock()
            self._lock_loop = loop
        return self._cycle_lock

    def _schedule(self, delay: float) -> None:
        session = self._session
        self._timer = self._loop.call_later(delay, self._on_timer, session)

    def _on_timer(self, session: int) -> None:
        self._timer = None
        if not self.is_running or session != self._session:
            return
        self._cycle_task = self._loop.create_task(self._run_cycle(session))

    async def _run_cycle(self, session: int) -> None:
        try:
            async with self._lock():
                await self.capture_and_process()
        except Exception as e:
            # capture_and_process reports its own errors
            self.cycles_failed += 1
            self.logger.error("Unhandled cycle error", error=str(e), exc_info=True)
        finally:
            self._cycle_task = None
            if self.is_running and session == self._session:
                self._schedule(self.config.interval_seconds)

    def _alert_type(self, message: Message) -> Optional[str]:
        if message.sentiment == Sentiment.NEGATIVE:
            return ALERT_NEGATIVE
        keywords = self.config.alert_keywords if self.config else ()
        if any(keyword and keyword in message.content for keyword in keywords):
            return ALERT_KEYWORD
        return None

    def _screenshot_path(self, captured_at: datetime) -> Path:
        stamp = captured_at.strftime("%Y-%m-%dT%H-%M-%S-%f")[:-3]
        return self.screenshots_dir / f"monitor_{stamp}.png"

    async def capture_and_process(self) -> List[Message]:
        """Run one capture cycle.

        Once a session is configured, failures are logged and reported as error events
        rather than raised, so the next cycle is still scheduled.

        Returns:
            Messages newly stored during this cycle
        """
        if self.config is None:
            raise ConfigError("No monitoring session configured")

        self.cycles_run += 1
        log = self.logger.bind(cycle=self.cycles_run)
        config = self.config
        captured_at = self.clock()
        stage = "capture"

        try:
            full_screen = await asyncio.to_thread(self.capturer.capture_full_screen)

            stage = "crop"
            crop = self.preprocessor.crop(full_screen, config.area)

            stage = "save_screenshot"
            screenshot_path = save_image(crop, self._screenshot_path(captured_at))
            self.last_capture = captured_at

            self.sheet_sink.ensure_hourly_sheet(captured_at)

            stage = "preview"
            thumbnail = self.preprocessor.make_thumbnail(crop, self.image_config.thumbnail_width)
            self._emit(EventKind.PROGRESS,
                       last_screenshot=captured_at.strftime("%H:%M:%S"),
                       screenshot_path=str(screenshot_path),
                       thumbnail=base64.b64encode(thumbnail).decode('ascii'))

            stage = "extraction"
            raw_messages = await self.extractor.extract(crop)
        except (ChatSentryError, OSError, ValueError) as e:
            self.cycles_failed += 1
            log.error("Capture cycle aborted", stage=stage, error=str(e),
                      error_type=type(e).__name__)
            self._emit(EventKind.ERROR, stage=stage, error=str(e))
            return []
        except Exception as e:
            self.cycles_failed += 1
            log.error("Capture cycle aborted", stage=stage, error=str(e),
                      error_type=type(e).__name__, exc_info=True)
            self._emit(EventKind.ERROR, stage=stage, error=str(e))
            return []

        log.debug("Processing extracted messages", count=len(raw_messages))
        extracted_at = captured_at.isoformat(timespec='seconds')
        stored: List[Message] = []
        records: List[SheetRecord] = []

        failed = 0

        try:
            for raw in raw_messages:
                try:
                    if not self.deduplicator.check_and_mark(raw):
                        self.duplicates_skipped += 1
                        log.debug("Duplicate message skipped", nickname=raw.nickname,
                                  message_time=raw.message_time)
                        continue

                    classification = await self.classifier.classify(raw.content)
                    message = self.message_store.save(MessageDraft(
                        raw=raw,
                        classification=classification,
                        extracted_at=extracted_at,
                        screenshot_path=str(screenshot_path)
                    ))
                    stored.append(message)
                    self.messages_stored += 1

                    # the row is owed as soon as the message is stored
                    alert_type = self._alert_type(message)
                    records.append(SheetRecord(message=message, alerted=alert_type is not None))
                    self._emit(EventKind.MESSAGE, **message.to_dict())

                    if alert_type is not None:
                        alert = await self.notifier.raise_alert(message.id, message, alert_type)
                        if alert is not None:
                            self.alerts_raised += 1
                            self._emit(EventKind.ALERT, **alert.to_dict())
                except Exception as e:
                    failed += 1
                    log.error("Message processing failed", error=str(e), nickname=raw.nickname,
                              message_time=raw.message_time, exc_info=True)
                    self._emit(EventKind.ERROR, stage="processing", error=str(e))
        finally:
            if records:
                self.sheet_sink.append_records(records, captured_at)

        if failed:
            self.cycles_failed += 1

        log.info("Capture cycle completed", extracted=len(raw_messages), stored=len(stored))
        self._emit(EventKind.STATS, **self.get_stats())
        return stored

    def get_stats(self) -> Dict[str, Any]:
        """Get monitoring statistics."""
        return {
            'running': self.is_running,
            'cycles_run': self.cycles_run,
            'cycles_failed': self.cycles_failed,
            'messages_stored': self.messages_stored,
            'duplicates_skipped': self.duplicates_skipped,
            'alerts_raised': self.alerts_raised,
            'emails_sent': self.notifier.emails_sent,
            'last_capture': self.last_capture.isoformat(timespec='seconds') if self.last_capture else None
        }
