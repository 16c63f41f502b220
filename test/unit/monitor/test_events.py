"""Unit tests for monitor status events and their console rendering."""

from io import StringIO

import pytest
from rich.console import Console

from chatsentry.monitor.events import ConsoleEventSink, EventKind, MonitorEvent, null_sink


@pytest.fixture
def output():
    return StringIO()


@pytest.fixture
def sink(output):
    return ConsoleEventSink(Console(file=output, force_terminal=False, width=200))


class TestConsoleEventSink:

    @pytest.mark.unit
    def test_message_event(self, sink, output):
        sink(MonitorEvent(EventKind.MESSAGE, {
            "id": 7, "nickname": "Alice", "message_time": "14:02", "content": "the shop is broken",
            "topic": "BUG", "sentiment": "Negative"
        }))
        assert "#7 [Negative/BUG] Alice 14:02: the shop is broken" in output.getvalue()

    @pytest.mark.unit
    def test_alert_event(self, sink, output):
        sink(MonitorEvent(EventKind.ALERT, {"id": 3, "summary": "Alice reported a problem: lag"}))
        assert "ALERT #3: Alice reported a problem: lag" in output.getvalue()

    @pytest.mark.unit
    def test_error_event(self, sink, output):
        sink(MonitorEvent(EventKind.ERROR, {"stage": "capture", "error": "no display"}))
        assert "capture failed: no display" in output.getvalue()

    @pytest.mark.unit
    def test_stats_event(self, sink, output):
        sink(MonitorEvent(EventKind.STATS, {"cycles_run": 2}))
        assert "cycles_run=2" in output.getvalue()

    @pytest.mark.unit
    def test_null_sink(self):
        assert null_sink(MonitorEvent(EventKind.STOPPED)) is None
