"""ChatSentry: screen-region chat monitoring with AI vision extraction.

This package periodically captures a selected screen rectangle, extracts
chat messages from it with a vision model, classifies their topic and
sentiment, stores new messages, appends them to an hourly spreadsheet and
raises alerts (optionally by email) on negative content.

Main Components:
- MonitorManager: capture/extract/dedupe/classify/persist/alert loop
- ConfigManager: YAML configuration management
- ExtractionClient: vision model message extraction
- Classifier: topic and sentiment classification
- SpreadsheetSink: hourly workbook export
"""

__version__ = "1.0.0"
__author__ = "ChatSentry Team"


class ChatSentryError(Exception):
    """Base exception for all ChatSentry errors."""


class ConfigError(ChatSentryError):
    """Configuration is missing or invalid."""


class CaptureError(ChatSentryError):
    """The OS-level screenshot failed or produced no output."""


class CropError(ChatSentryError):
    """The crop rectangle lies outside the captured image."""


class ExtractionError(ChatSentryError):
    """The vision model call failed, including its one retry."""


class ClassificationError(ChatSentryError):
    """The classification call failed. Never escapes the Classifier."""


class PersistenceError(ChatSentryError):
    """A snapshot or spreadsheet write failed."""


class EmailError(ChatSentryError):
    """Sending an alert email failed."""


__all__ = [
    "ChatSentryError",
    "ConfigError",
    "CaptureError",
    "CropError",
    "ExtractionError",
    "ClassificationError",
    "PersistenceError",
    "EmailError",
    "__version__",
    "__author__",
]
