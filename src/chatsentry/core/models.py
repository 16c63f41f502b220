"""Domain records shared by the monitoring pipeline."""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class Topic(Enum):
    """Allowed message topics."""
    BUG = "BUG"
    GAMEPLAY = "Gameplay"
    COMPLAINT = "Complaint"
    OTHER = "Other"


class Sentiment(Enum):
    """Allowed message sentiments."""
    POSITIVE = "Positive"
    NEUTRAL = "Neutral"
    NEGATIVE = "Negative"


@dataclass(frozen=True)
class Rect:
    """Screen rectangle in full-screen pixel coordinates."""
    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    def fits_within(self, width: int, height: int) -> bool:
        """Check that the rectangle is non-empty and inside a width x height image."""
        return (self.x >= 0 and self.y >= 0 and
                self.width > 0 and self.height > 0 and
                self.right <= width and self.bottom <= height)

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Rect":
        return cls(
            x=int(data['x']),
            y=int(data['y']),
            width=int(data['width']),
            height=int(data['height'])
        )


@dataclass(frozen=True)
class Classification:
    """Topic and sentiment assigned to a message."""
    topic: Topic = Topic.OTHER
    sentiment: Sentiment = Sentiment.NEUTRAL


DEFAULT_CLASSIFICATION = Classification()


@dataclass(frozen=True)
class RawMessage:
    """A message as extracted from a screenshot, before storage."""
    nickname: str
    message_time: str
    content: str


@dataclass(frozen=True)
class Message:
    """A persisted chat message. Never mutated after creation."""
    id: int
    nickname: str
    message_time: str
    content: str
    topic: Topic
    sentiment: Sentiment
    extracted_at: str
    screenshot_path: str
    created_at: str

    @property
    def raw(self) -> RawMessage:
        return RawMessage(nickname=self.nickname, message_time=self.message_time, content=self.content)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['topic'] = self.topic.value
        data['sentiment'] = self.sentiment.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(
            id=int(data['id']),
            nickname=str(data.get('nickname', '')),
            message_time=str(data.get('message_time', '')),
            content=str(data.get('content', '')),
            topic=Topic(data.get('topic', Topic.OTHER.value)),
            sentiment=Sentiment(data.get('sentiment', Sentiment.NEUTRAL.value)),
            extracted_at=str(data.get('extracted_at', '')),
            screenshot_path=str(data.get('screenshot_path', '')),
            created_at=str(data.get('created_at', ''))
        )


@dataclass
class Alert:
    """A raised alert referencing one or more stored messages."""
    id: int
    message_ids: List[int]
    alert_type: str
    summary: str
    email_sent: bool = False
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Alert":
        message_ids = data.get('message_ids', [])
        if not isinstance(message_ids, list):
            message_ids = [message_ids]
        return cls(
            id=int(data['id']),
            message_ids=[int(m) for m in message_ids],
            alert_type=str(data.get('alert_type', '')),
            summary=str(data.get('summary', '')),
            email_sent=bool(data.get('email_sent', False)),
            created_at=str(data.get('created_at', ''))
        )


@dataclass(frozen=True)
class SheetRecord:
    """One spreadsheet row: a stored message and whether it was alerted."""
    message: Message
    alerted: bool = False


@dataclass(frozen=True)
class MessageDraft:
    """Everything MessageStore needs to create a Message, minus the id."""
    raw: RawMessage
    classification: Classification
    extracted_at: str
    screenshot_path: str
    created_at: Optional[str] = None
