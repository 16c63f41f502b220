"""Vision model client for extracting chat messages from screenshots.

The model is asked for a JSON array of {nickname, messageTime, content}
records, but its reply is treated as untrusted free text: local models
wrap JSON in prose or code fences, truncate it, or answer with plain OCR
text instead.
"""

import base64
import json
import re
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import structlog

from chatsentry import ExtractionError
from chatsentry.ai_analysis.backends import ChatBackend, ModelCallError
from chatsentry.ai_analysis.prompts import build_extraction_prompt
from chatsentry.capture.image_processing import ImagePreprocessor
from chatsentry.config.config_manager import ImageConfig
from chatsentry.core.models import RawMessage


FALLBACK_NICKNAME = "OCR"

# Error texts the vision servers return when they cannot decode the image
IMAGE_DECODE_SIGNATURES = (
    re.compile(r"cannot process image", re.IGNORECASE),
    re.compile(r"failed to (?:process|decode|load) image", re.IGNORECASE),
)

# '[' directly followed by '{' means the model tried to emit a record array
_ARRAY_ATTEMPT = re.compile(r"\[\s*\{")

_NICKNAME_KEYS = ("nickname", "name", "player")
_TIME_KEYS = ("messageTime", "message_time", "time")
_CONTENT_KEYS = ("content", "message", "text")

_decoder = json.JSONDecoder()


def is_image_decode_failure(error: Exception) -> bool:
    """Check whether a model error means the endpoint could not decode the image."""
    text = str(error)
    return any(pattern.search(text) for pattern in IMAGE_DECODE_SIGNATURES)


def _first_field(record: Dict[str, Any], keys) -> str:
    for key in keys:
        value = record.get(key)
        if value is not None:
            return str(value).strip()
    return ""


def find_json_array(text: str) -> Optional[List[Any]]:
    """Return the first valid JSON array in text that is empty or holds objects.

    Arrays of bare scalars (e.g. "[1]" in prose) are skipped.
    """
    index = text.find('[')
    while index != -1:
        try:
            value, _ = _decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, list) and (not value or any(isinstance(v, dict) for v in value)):
            return value
        index = text.find('[', index + 1)
    return None


def parse_message_array(raw_text: str, now: Optional[datetime] = None,
                        logger: Optional[structlog.BoundLogger] = None) -> List[RawMessage]:
    """Turn a vision model reply into chat messages.

    Args:
        raw_text: Model reply text
        now: Clock value used for the fallback record's time
        logger: Optional logger for parse diagnostics

    Returns:
        Parsed messages. Plain prose with no JSON array becomes a single
        fallback message attributed to "OCR" so OCR output is never dropped;
        a malformed or truncated array yields no messages.
    """
    logger = logger or structlog.get_logger(__name__)
    text = (raw_text or "").strip()
    if not text:
        return []

    array = find_json_array(text)
    if array is not None:
        messages = []
        for record in array:
            if not isinstance(record, dict):
                continue
            content = _first_field(record, _CONTENT_KEYS)
            if not content:
                continue
            messages.append(RawMessage(
                nickname=_first_field(record, _NICKNAME_KEYS),
                message_time=_first_field(record, _TIME_KEYS),
                content=content
            ))
        if len(messages) < len(array):
            logger.debug("Skipped unusable records", total=len(array), kept=len(messages))
        return messages

    if _ARRAY_ATTEMPT.search(text):
        logger.warning("Malformed message array in model reply", preview=text[:120])
        return []

    now = now or datetime.now()
    logger.info("No JSON array in model reply, keeping raw text", length=len(text))
    return [RawMessage(nickname=FALLBACK_NICKNAME, message_time=now.strftime("%H:%M"), content=text)]


class ExtractionClient:
    """Extracts chat messages from a screenshot with a vision model."""

    def __init__(self,
                 backend: ChatBackend,
                 preprocessor: Optional[ImagePreprocessor] = None,
                 image_config: Optional[ImageConfig] = None,
                 logger: Optional[structlog.BoundLogger] = None,
                 clock: Callable[[], datetime] = datetime.now):
        """Initialize the extraction client.

        Args:
            backend: Vision-capable model backend
            preprocessor: Image preprocessor used to size images for the model
            image_config: Size, format and quality caps
            logger: Structured logger for operation tracking
            clock: Source of the current time for fallback records
        """
        self.backend = backend
        self.logger = logger or structlog.get_logger(__name__)
        self.preprocessor = preprocessor or ImagePreprocessor(self.logger)
        self.image_config = image_config or ImageConfig()
        self.clock = clock
        self.prompt = build_extraction_prompt()

        self.extraction_count = 0
        self.retry_count = 0
        self.message_count = 0

    @property
    def media_type(self) -> str:
        fmt = self.image_config.format.upper()
        return "image/jpeg" if fmt in ("JPEG", "JPG") else f"image/{fmt.lower()}"

    async def _request(self, image: bytes, max_side: int) -> str:
        prepared = self.preprocessor.resize_for_model(
            image, max_side, self.image_config.format, self.image_config.quality
        )
        image_base64 = base64.b64encode(prepared).decode('utf-8')
        self.logger.debug("Sending image to vision model", max_side=max_side,
                        size_kb=len(prepared) // 1024)
        return await self.backend.complete(self.prompt, image_base64, self.media_type)

    async def extract(self, image: bytes) -> List[RawMessage]:
        """Extract chat messages from an encoded image.

        An empty result is a normal outcome, not an error. When the endpoint
        cannot decode the image, the request is retried exactly once with a
        smaller image.

        Raises:
            ExtractionError: If the model call fails (after the one retry when it applies)
        """
        self.extraction_count += 1
        try:
            raw_text = await self._request(image, self.image_config.max_side)
        except ModelCallError as e:
            if not is_image_decode_failure(e):
                raise ExtractionError(f"Vision model call failed: {e}") from e

            self.retry_count += 1
            self.logger.warning("Vision model could not process image, retrying smaller",
                              retry_max_side=self.image_config.retry_max_side, error=str(e))
            try:
                raw_text = await self._request(image, self.image_config.retry_max_side)
            except ModelCallError as retry_error:
                raise ExtractionError(
                    f"Vision model call failed after retry: {retry_error}"
                ) from retry_error

        messages = parse_message_array(raw_text, now=self.clock(), logger=self.logger)
        self.message_count += len(messages)
        self.logger.info("Messages extracted", count=len(messages), reply_length=len(raw_text))
        return messages

    def get_stats(self) -> Dict[str, Any]:
        """Get usage statistics."""
        return {
            "extractions": self.extraction_count,
            "retries": self.retry_count,
            "messages_extracted": self.message_count,
            "backend": self.backend.get_stats()
        }
