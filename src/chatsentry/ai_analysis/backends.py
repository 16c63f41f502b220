"""Model backends for vision extraction and text classification.

Each backend sends one user turn (an instruction and, optionally, one
embedded image) to a chat-style model endpoint and returns the raw text
of the reply. Callers decide how to interpret that text.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
import structlog

import anthropic
import openai

from chatsentry import ChatSentryError
from chatsentry.config.config_manager import AIProviderConfig, AIProviderType


class ModelCallError(ChatSentryError):
    """A model endpoint call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ChatBackend(ABC):
    """A chat-completion style model endpoint."""

    provider: AIProviderType

    def __init__(self, config: AIProviderConfig, logger: Optional[structlog.BoundLogger] = None):
        self.config = config
        self.model = config.model
        self.timeout = config.timeout
        self.logger = logger or structlog.get_logger(__name__)
        self.request_count = 0
        self.error_count = 0
        self.total_processing_time = 0.0

    @abstractmethod
    def _create(self, prompt: str, image_base64: Optional[str], media_type: str) -> str:
        """Blocking SDK call returning the reply text."""

    async def complete(self, prompt: str, image_base64: Optional[str] = None,
                       media_type: str = "image/png") -> str:
        """Send a prompt (and optional base64 image) and return the reply text.

        Raises:
            ModelCallError: On timeout or any transport/API failure
        """
        start_time = time.time()
        self.request_count += 1
        try:
            text = await asyncio.wait_for(
                asyncio.to_thread(self._create, prompt, image_base64, media_type),
                timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            self.error_count += 1
            self.logger.error("Model request timed out", provider=self.provider.value,
                            model=self.model, timeout=self.timeout)
            raise ModelCallError(f"Request timed out after {self.timeout}s") from e
        except ModelCallError:
            self.error_count += 1
            raise
        except Exception as e:
            self.error_count += 1
            status_code = getattr(e, 'status_code', None)
            self.logger.warning("Model request failed", provider=self.provider.value,
                              model=self.model, status_code=status_code, error=str(e))
            raise ModelCallError(str(e), status_code=status_code) from e

        processing_time = time.time() - start_time
        self.total_processing_time += processing_time
        self.logger.debug("Model request completed", provider=self.provider.value,
                        model=self.model, processing_time=round(processing_time, 3),
                        with_image=image_base64 is not None)
        return (text or "").strip()

    def get_stats(self) -> Dict[str, Any]:
        """Get usage statistics."""
        return {
            "provider": self.provider.value,
            "model": self.model,
            "total_requests": self.request_count,
            "failed_requests": self.error_count,
            "average_processing_time": round(
                self.total_processing_time / max(self.request_count - self.error_count, 1), 3
            )
        }


class OpenAICompatibleBackend(ChatBackend):
    """OpenAI chat completions, or any server speaking the same API (LM Studio, Ollama)."""

    provider = AIProviderType.OPENAI

    def __init__(self, config: AIProviderConfig, logger: Optional[structlog.BoundLogger] = None,
                 client: Optional[Any] = None):
        super().__init__(config, logger)
        # Local servers ignore the key but the SDK insists on one
        self.client = client or openai.OpenAI(
            api_key=config.api_key or "not-needed",
            base_url=config.base_url or None
        )
        self.logger.info("OpenAI-compatible backend configured", model=config.model,
                        base_url=config.base_url)

    def _create(self, prompt: str, image_base64: Optional[str], media_type: str) -> str:
        content: Any
        if image_base64 is None:
            content = prompt
        else:
            # text first, then image_url; LM Studio rejects any other part types
            content = [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": f"data:{media_type};base64,{image_base64}"}}
            ]

        response = self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": content}],
            max_tokens=self.config.max_tokens,
            temperature=self.config.temperature
        )
        if not response.choices:
            raise ModelCallError("Response contained no choices")
        return response.choices[0].message.content or ""


class AnthropicBackend(ChatBackend):
    """Anthropic messages API."""

    provider = AIProviderType.ANTHROPIC

    def __init__(self, config: AIProviderConfig, logger: Optional[structlog.BoundLogger] = None,
                 client: Optional[Any] = None):
        super().__init__(config, logger)
        self.client = client or anthropic.Anthropic(api_key=config.api_key)
        self.logger.info("Anthropic backend configured", model=config.model)

    def _create(self, prompt: str, image_base64: Optional[str], media_type: str) -> str:
        content = []
        if image_base64 is not None:
            content.append({
                "type": "image",
                "source": {"type": "base64", "media_type": media_type, "data": image_base64}
            })
        content.append({"type": "text", "text": prompt})

        response = self.client.messages.create(
            model=self.model,
            max_tokens=self.config.max_tokens,
            temperature=self.config.temperature,
            messages=[{"role": "user", "content": content}]
        )
        return "".join(
            block.text for block in response.content if getattr(block, 'type', None) == 'text'
        )


def create_backend(config: AIProviderConfig, logger: Optional[structlog.BoundLogger] = None) -> ChatBackend:
    """Build the backend matching a provider configuration."""
    if config.provider == AIProviderType.OPENAI:
        return OpenAICompatibleBackend(config, logger)
    if config.provider == AIProviderType.ANTHROPIC:
        return AnthropicBackend(config, logger)
    raise ValueError(f"Unknown provider: {config.provider}")
