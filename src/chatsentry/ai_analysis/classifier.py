"""Topic and sentiment classification of extracted chat messages."""

import json
import re
from typing import Any, Dict, Optional, Tuple
import structlog

from chatsentry import ClassificationError
from chatsentry.ai_analysis.backends import ChatBackend
from chatsentry.ai_analysis.prompts import build_classification_prompt
from chatsentry.core.models import Classification, DEFAULT_CLASSIFICATION, Sentiment, Topic


_TOPICS = {t.value.lower(): t for t in Topic}
_SENTIMENTS = {s.value.lower(): s for s in Sentiment}
_decoder = json.JSONDecoder()


def find_json_object(text: str, keys: Tuple[str, ...] = ()) -> Optional[Dict[str, Any]]:
    """Return the first complete JSON object in text, nested values included.

    With keys given, objects holding none of them are skipped.
    """
    index = text.find('{')
    while index != -1:
        try:
            value, _ = _decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, dict) and (not keys or any(key in value for key in keys)):
            return value
        index = text.find('{', index + 1)
    return None


def parse_classification(raw_text: str) -> Classification:
    """Parse a {topic, sentiment} reply.

    Each value must match its fixed enum (case-insensitively); anything
    else falls back to Other / Neutral.

    Raises:
        ClassificationError: If the reply holds no JSON object
    """
    stripped = re.sub(r"```(?:json)?", "", raw_text or "").strip()
    data = find_json_object(stripped, ('topic', 'sentiment'))
    if data is None:
        raise ClassificationError("No JSON object in classification reply")

    topic = _TOPICS.get(str(data.get('topic', '')).strip().lower(), DEFAULT_CLASSIFICATION.topic)
    sentiment = _SENTIMENTS.get(str(data.get('sentiment', '')).strip().lower(),
                                DEFAULT_CLASSIFICATION.sentiment)
    return Classification(topic=topic, sentiment=sentiment)


class Classifier:
    """Assigns a topic and sentiment to message text. Never blocks the pipeline."""

    def __init__(self, backend: ChatBackend, logger: Optional[structlog.BoundLogger] = None):
        self.backend = backend
        self.logger = logger or structlog.get_logger(__name__)
        self.classified_count = 0
        self.fallback_count = 0

    async def classify(self, content: str) -> Classification:
        """Classify a message.

        Returns:
            The model's classification, or Other / Neutral on empty input,
            any call failure, or an unparseable reply
        """
        if not content or not content.strip():
            return DEFAULT_CLASSIFICATION

        try:
            raw_text = await self.backend.complete(build_classification_prompt(content.strip()))
            classification = parse_classification(raw_text)
        except Exception as e:
            self.fallback_count += 1
            self.logger.warning("Classification failed, using default",
                              error=str(e), preview=content[:50])
            return DEFAULT_CLASSIFICATION

        self.classified_count += 1
        self.logger.debug("Message classified", topic=classification.topic.value,
                        sentiment=classification.sentiment.value)
        return classification

    def get_stats(self) -> Dict[str, Any]:
        """Get usage statistics."""
        return {
            "classified": self.classified_count,
            "fallbacks": self.fallback_count,
            "backend": self.backend.get_stats()
        }
