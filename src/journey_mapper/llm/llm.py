"""LLM client base class and the local Ollama implementation."""

import logging
import re
from abc import ABC, abstractmethod

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from journey_mapper.config import settings
from journey_mapper.llm.exceptions import (
    LLMConnectionError,
    LLMModelNotFoundError,
    LLMResponseError,
)

logger = logging.getLogger(__name__)

# A chat transcript: [{"role": "user" | "assistant", "content": "..."}]
ChatMessages = list[dict[str, str]]

_FENCE_START = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_END = re.compile(r"\s*```$")


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence (```json ... ```)."""
    text = text.strip()
    text = _FENCE_START.sub("", text)
    text = _FENCE_END.sub("", text)
    return text.strip()


class BaseLLM(ABC):
    """Base class for LLM implementations."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name (e.g., 'ollama', 'claude')."""
        pass

    @abstractmethod
    async def chat(
        self,
        system: str,
        messages: ChatMessages,
        max_tokens: int | None = None,
    ) -> str:
        """Send a system prompt plus role-tagged transcript, return raw text."""
        pass

    @abstractmethod
    async def check_health(self) -> bool:
        """Check if the LLM service is accessible and healthy."""
        pass

    async def is_available(self) -> bool:
        """Lightweight check if provider is configured.

        This checks configuration (e.g., API key exists) without making
        network requests. Override in subclasses as needed.
        """
        return True


class OllamaLLM(BaseLLM):
    """Ollama LLM client using the ``/api/chat`` endpoint."""

    def __init__(
        self,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float = 120.0,
    ):
        self.base_url = (base_url or settings.OLLAMA_BASE_URL).rstrip("/")
        self.model = model or settings.OLLAMA_LLM_MODEL
        self.timeout = timeout

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "ollama"

    async def is_available(self) -> bool:
        """Check if Ollama is configured (URL exists)."""
        return bool(self.base_url)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(LLMConnectionError),
    )
    async def chat(
        self,
        system: str,
        messages: ChatMessages,
        max_tokens: int | None = None,
    ) -> str:
        """Run one chat completion against Ollama."""
        payload = {
            "model": self.model,
            "messages": [{"role": "system", "content": system}, *messages],
            "stream": False,
            "options": {"num_predict": max_tokens or settings.LLM_MAX_TOKENS},
        }
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.post(f"{self.base_url}/api/chat", json=payload)
            except (httpx.ConnectError, httpx.TimeoutException) as e:
                raise LLMConnectionError(
                    f"Failed to reach Ollama: {e}", provider=self.provider_name
                ) from e

            if response.status_code == 404:
                raise LLMModelNotFoundError(
                    f"Model '{self.model}' is not pulled",
                    provider=self.provider_name,
                    model=self.model,
                )
            if response.status_code >= 400:
                raise LLMResponseError(
                    f"HTTP {response.status_code}: {response.text[:200]}",
                    provider=self.provider_name,
                )
            data = response.json()
            return data.get("message", {}).get("content", "")

    async def check_health(self) -> bool:
        """Check if Ollama is accessible."""
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                response = await client.get(f"{self.base_url}/api/tags")
                return response.status_code == 200
        except httpx.HTTPError as e:
            logger.error(f"Ollama health check failed: {e}")
            return False
