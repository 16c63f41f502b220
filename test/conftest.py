"""Pytest configuration and shared fixtures for ChatSentry tests."""

import pytest
import sys
from datetime import datetime
from io import BytesIO
from pathlib import Path
from typing import List, Optional, Union
from unittest.mock import Mock

from PIL import Image

# Add src to path for testing
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from chatsentry import EmailError
from chatsentry.ai_analysis.backends import ModelCallError


def make_png(width: int = 400, height: int = 300, color=(30, 30, 30)) -> bytes:
    """Encode a solid-color PNG."""
    buffer = BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeBackend:
    """Scripted stand-in for a ChatBackend.

    Each call pops the next scripted reply; exceptions are raised instead of returned.
    """

    def __init__(self, replies: Optional[List[Union[str, Exception]]] = None, default: str = "[]"):
        self.replies = list(replies or [])
        self.default = default
        self.calls = []

    async def complete(self, prompt: str, image_base64: Optional[str] = None,
                       media_type: str = "image/png") -> str:
        self.calls.append({"prompt": prompt, "image_base64": image_base64, "media_type": media_type})
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        return reply

    def get_stats(self):
        return {"total_requests": len(self.calls)}


class FakeCapturer:
    """Returns a fixed screenshot, or raises when told to."""

    def __init__(self, image: bytes, error: Optional[Exception] = None):
        self.image = image
        self.error = error
        self.capture_count = 0

    def capture_full_screen(self) -> bytes:
        if self.error is not None:
            raise self.error
        self.capture_count += 1
        return self.image


class FakeEmailSender:
    """Records sends; raises EmailError when fail is set."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def send_async(self, to, subject, text_body, html_body=None):
        if self.fail:
            raise EmailError("SMTP connection refused")
        self.sent.append({"to": list(to), "subject": subject, "text": text_body})


class FakeClock:
    """Settable wall clock returning both datetime and epoch seconds."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def epoch(self) -> float:
        return self.now.timestamp()


NEUTRAL_REPLY = '{"topic": "Other", "sentiment": "Neutral"}'


class MonitorHarness:
    """A MonitorManager wired to fakes at the process edges and real components inside."""

    def __init__(self, tmp_path: Path, clock: FakeClock, logger,
                 vision_replies=None, text_replies=None, screenshot: Optional[bytes] = None,
                 email_fail: bool = False, locale: str = "en"):
        from chatsentry.ai_analysis.classifier import Classifier
        from chatsentry.ai_analysis.vision_client import ExtractionClient
        from chatsentry.alerts.notifier import AlertNotifier
        from chatsentry.capture.image_processing import ImagePreprocessor
        from chatsentry.core.dedup import Deduplicator
        from chatsentry.export.snapshot_store import AlertStore, MessageStore
        from chatsentry.export.spreadsheet_sink import SpreadsheetSink
        from chatsentry.monitor.monitor_manager import MonitorManager

        self.tmp_path = tmp_path
        self.clock = clock
        self.events = []
        self.vision = FakeBackend(vision_replies)
        self.text = FakeBackend(text_replies, default=NEUTRAL_REPLY)
        self.capturer = FakeCapturer(screenshot or make_png(400, 300))
        self.email_sender = FakeEmailSender(fail=email_fail)

        preprocessor = ImagePreprocessor(logger)
        self.deduplicator = Deduplicator(clock=clock.epoch)
        self.message_store = MessageStore(tmp_path / "data" / "messages.json", logger)
        self.alert_store = AlertStore(tmp_path / "data" / "alerts.json", logger)
        self.sheet_sink = SpreadsheetSink(tmp_path / "excel", locale, logger)
        self.notifier = AlertNotifier(self.alert_store, self.deduplicator,
                                      sender_factory=lambda cfg: self.email_sender, logger=logger)

        self.monitor = MonitorManager(
            capturer=self.capturer,
            preprocessor=preprocessor,
            extractor=ExtractionClient(self.vision, preprocessor, logger=logger, clock=clock),
            classifier=Classifier(self.text, logger),
            message_store=self.message_store,
            notifier=self.notifier,
            deduplicator=self.deduplicator,
            sheet_sink=self.sheet_sink,
            screenshots_dir=tmp_path / "screenshots",
            event_sink=self.events.append,
            logger=logger,
            clock=clock
        )

    def event_kinds(self):
        return [event.kind.value for event in self.events]

    def events_of(self, kind: str):
        return [event for event in self.events if event.kind.value == kind]

    def sheet_rows(self, hour: Optional[datetime] = None):
        from openpyxl import load_workbook
        path = self.sheet_sink.path_for(hour or self.clock.now)
        workbook = load_workbook(path)
        return [list(row) for row in workbook.active.iter_rows(values_only=True)][1:]


@pytest.fixture
def harness_factory(tmp_path, fake_clock, mock_logger):
    """Build a MonitorHarness with scripted model replies."""
    def factory(**kwargs):
        return MonitorHarness(tmp_path, fake_clock, mock_logger, **kwargs)
    return factory


async def wait_until(predicate, timeout: float = 3.0, interval: float = 0.01):
    """Poll until predicate() is true or fail after timeout seconds."""
    import asyncio
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def mock_logger():
    """Create a mock logger for unit tests."""
    return Mock()


@pytest.fixture
def png_factory():
    """Factory for solid-color PNG screenshots."""
    return make_png


@pytest.fixture
def screenshot_png():
    """A 400x300 full-screen capture."""
    return make_png(400, 300)


@pytest.fixture
def fake_clock():
    return FakeClock(datetime(2024, 5, 1, 14, 5, 0))


@pytest.fixture
def decode_failure():
    """Error an LM Studio endpoint returns when it cannot decode the image."""
    return ModelCallError("Error code: 400 - {'error': 'Failed to process image'}", status_code=400)


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: marks tests as unit tests")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers based on file location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


@pytest.fixture(autouse=True)
def suppress_logging():
    """Suppress logging during tests unless explicitly needed."""
    import logging
    logging.getLogger().setLevel(logging.WARNING)
    logging.getLogger('chatsentry').setLevel(logging.WARNING)
    logging.getLogger('anthropic').setLevel(logging.WARNING)
    logging.getLogger('openai').setLevel(logging.WARNING)
