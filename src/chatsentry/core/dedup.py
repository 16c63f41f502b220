"""Duplicate suppression for messages, alerts and alert emails.

All state is session-scoped: it lives in memory and resets when the
process restarts.
"""

import re
import time
from typing import Callable, Dict, Set

from chatsentry.core.models import RawMessage


ALERT_COOLDOWN_SECONDS = 30 * 60


def normalize(text: str) -> str:
    """Trim and collapse internal whitespace."""
    return re.sub(r"\s+", " ", text or "").strip()


def message_key(message: RawMessage) -> str:
    """Key identifying a unique (nickname, time, content) message."""
    return "|".join((
        normalize(message.nickname),
        normalize(message.message_time),
        normalize(message.content)
    ))


def alert_key(message: RawMessage) -> str:
    """Coarser (nickname, time) key used for the alert cooldown."""
    return f"{message.nickname}-{message.message_time}"


class Deduplicator:
    """Three independent suppression gates.

    - message level: a key is accepted once per process lifetime
    - alert level: one alert per alert key per cooldown window
    - email level: one email per message key per process lifetime
    """

    def __init__(self,
                 cooldown_seconds: float = ALERT_COOLDOWN_SECONDS,
                 clock: Callable[[], float] = time.time):
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock
        self._seen_messages: Set[str] = set()
        self._last_alert: Dict[str, float] = {}
        self._emailed: Set[str] = set()

    def is_duplicate(self, message: RawMessage) -> bool:
        return message_key(message) in self._seen_messages

    def mark_seen(self, message: RawMessage) -> None:
        self._seen_messages.add(message_key(message))

    def check_and_mark(self, message: RawMessage) -> bool:
        """Record a message key. Returns True if it was new."""
        key = message_key(message)
        if key in self._seen_messages:
            return False
        self._seen_messages.add(key)
        return True

    def alert_allowed(self, message: RawMessage) -> bool:
        """True if no alert was raised for this alert key within the cooldown."""
        last_time = self._last_alert.get(alert_key(message))
        if last_time is None:
            return True
        return self.clock() - last_time >= self.cooldown_seconds

    def record_alert(self, message: RawMessage) -> None:
        """Start the cooldown window. Call only when an alert is actually raised."""
        self._last_alert[alert_key(message)] = self.clock()

    def email_allowed(self, message: RawMessage) -> bool:
        return message_key(message) not in self._emailed

    def record_email(self, message: RawMessage) -> None:
        self._emailed.add(message_key(message))

    def reset(self) -> None:
        self._seen_messages.clear()
        self._last_alert.clear()
        self._emailed.clear()

    def get_stats(self) -> Dict[str, int]:
        return {
            "seen_messages": len(self._seen_messages),
            "alert_keys": len(self._last_alert),
            "emailed_messages": len(self._emailed)
        }
