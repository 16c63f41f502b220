"""Prompts for chat message extraction and classification.

Kept short: local vision models lose track of long instructions, and the
classification call runs once per new message.
"""

from chatsentry.core.models import Sentiment, Topic


TOPIC_VALUES = [t.value for t in Topic]
SENTIMENT_VALUES = [s.value for s in Sentiment]


EXTRACTION_PROMPT = """This image is a screenshot of an in-game chat window.
Read every chat message in it, top to bottom, and return ONLY a JSON array:
[{"nickname": "player name", "messageTime": "HH:MM as shown", "content": "message text"}]
Keep the original language of the text. Use "" for a missing nickname or time.
Return [] if there are no messages. No explanation, no markdown."""


def build_extraction_prompt() -> str:
    """Build the vision prompt asking for a JSON array of chat messages."""
    return EXTRACTION_PROMPT


def build_classification_prompt(content: str) -> str:
    """Build the text prompt asking for a topic/sentiment JSON object.

    Args:
        content: Chat message text to classify

    Returns:
        Prompt string
    """
    return (
        "Classify this game chat message. Reply with ONLY a compact JSON object "
        '{"topic": ..., "sentiment": ...}.\n'
        f"topic must be one of: {', '.join(TOPIC_VALUES)}\n"
        f"sentiment must be one of: {', '.join(SENTIMENT_VALUES)}\n"
        "Bug reports, errors and crashes are BUG. Anger, refunds and frustration are Complaint.\n\n"
        f"Message: {content}"
    )
