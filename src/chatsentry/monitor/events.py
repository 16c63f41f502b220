"""Status events emitted to the UI layer during monitoring."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

from rich.console import Console
from rich.text import Text


class EventKind(Enum):
    """Kinds of monitor status events."""
    STARTED = "started"
    STOPPED = "stopped"
    PROGRESS = "progress"
    MESSAGE = "message"
    ALERT = "alert"
    ERROR = "error"
    STATS = "stats"


@dataclass
class MonitorEvent:
    """One status update for the UI."""
    kind: EventKind
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)


EventSink = Callable[[MonitorEvent], None]


def null_sink(event: MonitorEvent) -> None:
    """Discard events."""


class ConsoleEventSink:
    """Renders monitor events on the terminal with rich."""

    STYLES = {
        EventKind.STARTED: "bold green",
        EventKind.STOPPED: "bold yellow",
        EventKind.PROGRESS: "dim",
        EventKind.MESSAGE: "white",
        EventKind.ALERT: "bold red",
        EventKind.ERROR: "red",
        EventKind.STATS: "cyan",
    }

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def _describe(self, event: MonitorEvent) -> str:
        payload = event.payload
        if event.kind == EventKind.MESSAGE:
            return (f"#{payload.get('id')} [{payload.get('sentiment')}/{payload.get('topic')}] "
                    f"{payload.get('nickname')} {payload.get('message_time')}: {payload.get('content')}")
        if event.kind == EventKind.ALERT:
            return f"ALERT #{payload.get('id')}: {payload.get('summary')}"
        if event.kind == EventKind.ERROR:
            return f"{payload.get('stage', 'cycle')} failed: {payload.get('error')}"
        if event.kind == EventKind.PROGRESS:
            return f"Captured at {payload.get('last_screenshot')}"
        if event.kind == EventKind.STARTED:
            return f"Monitoring every {payload.get('interval_seconds')}s, area {payload.get('area')}"
        if event.kind == EventKind.STOPPED:
            return "Monitoring stopped"
        return ", ".join(f"{k}={v}" for k, v in payload.items())

    def __call__(self, event: MonitorEvent) -> None:
        line = Text(f"{event.timestamp:%H:%M:%S} ", style="dim")
        line.append(self._describe(event), style=self.STYLES.get(event.kind, ""))
        self.console.print(line)
