"""Append-only message and alert logs backed by JSON snapshot files.

Each save rewrites the whole snapshot ({<records>: [...], nextId: n})
through an atomic rename. Durability is best-effort: a failed write is
logged and the in-memory log stays authoritative.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional
import structlog

from chatsentry import PersistenceError
from chatsentry.core.models import Alert, Message, MessageDraft
from chatsentry.utils.files import atomic_write_text


class JsonSnapshotStore:
    """Shared load/save logic for snapshot-backed logs."""

    records_key = "records"

    def __init__(self, path: Path, logger: Optional[structlog.BoundLogger] = None):
        self.logger = logger or structlog.get_logger(__name__)
        self.path = Path(path)
        self.next_id = 1
        self.write_failures = 0
        self._records: List[Any] = []

    def _record_from_dict(self, data: Dict[str, Any]) -> Any:
        raise NotImplementedError

    def load(self) -> int:
        """Load the snapshot if present.

        Any read or parse failure resets the store to empty instead of
        failing startup.

        Returns:
            Number of records loaded
        """
        if not self.path.exists():
            self.logger.info("No existing snapshot found", file=str(self.path))
            self._records = []
            self.next_id = 1
            return 0

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            records = [self._record_from_dict(item) for item in data.get(self.records_key, [])]
            highest_id = max((record.id for record in records), default=0)
            next_id = max(int(data.get('nextId', 1)), highest_id + 1)
        except Exception as e:
            self.logger.error("Failed to load snapshot, starting empty",
                            file=str(self.path), error=str(e))
            self._records = []
            self.next_id = 1
            return 0

        self._records = records
        self.next_id = next_id
        self.logger.info("Loaded snapshot", file=str(self.path),
                        count=len(records), next_id=next_id)
        return len(records)

    def _save(self) -> bool:
        payload = {
            self.records_key: [record.to_dict() for record in self._records],
            'nextId': self.next_id
        }
        try:
            atomic_write_text(self.path, json.dumps(payload, indent=2, ensure_ascii=False))
        except PersistenceError as e:
            self.write_failures += 1
            self.logger.error("Failed to save snapshot", file=str(self.path), error=str(e))
            return False
        return True

    def _allocate_id(self) -> int:
        record_id = self.next_id
        self.next_id += 1
        return record_id

    def __len__(self) -> int:
        return len(self._records)

    def get_stats(self) -> Dict[str, Any]:
        return {
            'total_records': len(self._records),
            'next_id': self.next_id,
            'write_failures': self.write_failures,
            'file': str(self.path)
        }


class MessageStore(JsonSnapshotStore):
    """Append-only log of stored chat messages."""

    records_key = "messages"

    def _record_from_dict(self, data: Dict[str, Any]) -> Message:
        return Message.from_dict(data)

    @property
    def messages(self) -> List[Message]:
        return list(self._records)

    def save(self, draft: MessageDraft) -> Message:
        """Assign the next id, append, and persist the full snapshot.

        Args:
            draft: Extracted message with its classification and capture metadata

        Returns:
            The stored Message
        """
        message = Message(
            id=self._allocate_id(),
            nickname=draft.raw.nickname,
            message_time=draft.raw.message_time,
            content=draft.raw.content,
            topic=draft.classification.topic,
            sentiment=draft.classification.sentiment,
            extracted_at=draft.extracted_at,
            screenshot_path=draft.screenshot_path,
            created_at=draft.created_at or datetime.now().isoformat()
        )
        self._records.append(message)
        self._save()

        self.logger.debug("Message stored", message_id=message.id, nickname=message.nickname)
        return message

    def get(self, message_id: int) -> Optional[Message]:
        for message in self._records:
            if message.id == message_id:
                return message
        return None


class AlertStore(JsonSnapshotStore):
    """Append-only log of raised alerts."""

    records_key = "alerts"

    def _record_from_dict(self, data: Dict[str, Any]) -> Alert:
        return Alert.from_dict(data)

    @property
    def alerts(self) -> List[Alert]:
        return list(self._records)

    def create(self, message_ids: List[int], alert_type: str, summary: str) -> Alert:
        """Create and persist a new alert."""
        alert = Alert(
            id=self._allocate_id(),
            message_ids=list(message_ids),
            alert_type=alert_type,
            summary=summary
        )
        self._records.append(alert)
        self._save()
        return alert

    def mark_email_sent(self, alert: Alert) -> None:
        """Flag an alert's email as delivered and persist."""
        alert.email_sent = True
        self._save()
