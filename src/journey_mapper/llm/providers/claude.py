"""Claude (Anthropic) LLM implementation using raw httpx."""

import logging

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from journey_mapper.config import settings
from journey_mapper.llm.exceptions import (
    LLMAuthenticationError,
    LLMConnectionError,
    LLMModelNotFoundError,
    LLMRateLimitError,
    LLMResponseError,
)
from journey_mapper.llm.llm import BaseLLM, ChatMessages

logger = logging.getLogger(__name__)

ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"


class ClaudeLLM(BaseLLM):
    """Claude LLM client using the Anthropic Messages API.

    Uses raw httpx for API calls (no SDK dependency).
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        max_tokens: int | None = None,
    ):
        """Initialize Claude LLM client.

        Args:
            api_key: Anthropic API key (defaults to settings.ANTHROPIC_API_KEY)
            model: Model to use (defaults to settings.ANTHROPIC_MODEL)
            timeout: Request timeout in seconds (defaults to settings.LLM_TIMEOUT)
            max_tokens: Default max tokens (defaults to settings.LLM_MAX_TOKENS)
        """
        self.api_key = api_key or settings.ANTHROPIC_API_KEY
        self.model = model or settings.ANTHROPIC_MODEL
        self.timeout = timeout or settings.LLM_TIMEOUT
        self.max_tokens = max_tokens or settings.LLM_MAX_TOKENS

        if not self.api_key:
            logger.warning("Claude API key not configured")

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "claude"

    async def is_available(self) -> bool:
        """Check if Claude is configured (API key exists)."""
        return bool(self.api_key)

    def _get_headers(self) -> dict[str, str]:
        """Get API request headers."""
        return {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        retry=retry_if_exception_type((LLMConnectionError, LLMRateLimitError)),
    )
    async def chat(
        self,
        system: str,
        messages: ChatMessages,
        max_tokens: int | None = None,
    ) -> str:
        """Send the interview transcript to Claude.

        Args:
            system: System instructions
            messages: Role-tagged transcript, starting with a user turn
            max_tokens: Response budget for this call

        Returns:
            Concatenated text blocks of the response

        Raises:
            LLMAuthenticationError: If API key is missing or invalid
            LLMRateLimitError: If rate limit is exceeded
            LLMConnectionError: If connection fails or times out
            LLMResponseError: For any other non-success status
        """
        if not self.api_key:
            raise LLMAuthenticationError(
                "API key not configured", provider=self.provider_name
            )

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.post(
                    ANTHROPIC_API_URL,
                    headers=self._get_headers(),
                    json={
                        "model": self.model,
                        "max_tokens": max_tokens or self.max_tokens,
                        "system": system,
                        "messages": messages,
                    },
                )
            except httpx.ConnectError as e:
                raise LLMConnectionError(
                    f"Failed to connect: {e}", provider=self.provider_name
                ) from e
            except httpx.TimeoutException as e:
                raise LLMConnectionError(
                    f"Request timed out: {e}", provider=self.provider_name
                ) from e

            if response.status_code == 401:
                raise LLMAuthenticationError(
                    "Invalid API key", provider=self.provider_name
                )
            elif response.status_code == 404:
                raise LLMModelNotFoundError(
                    f"Model '{self.model}' not found",
                    provider=self.provider_name,
                    model=self.model,
                )
            elif response.status_code == 429:
                retry_after = response.headers.get("retry-after")
                raise LLMRateLimitError(
                    "Rate limit exceeded",
                    provider=self.provider_name,
                    retry_after=float(retry_after) if retry_after else None,
                )
            elif response.status_code >= 500:
                raise LLMConnectionError(
                    f"Upstream error {response.status_code}", provider=self.provider_name
                )
            elif response.status_code >= 400:
                raise LLMResponseError(
                    f"HTTP {response.status_code}: {response.text[:200]}",
                    provider=self.provider_name,
                )

            data = response.json()

            # Extract text from Claude response format
            content_blocks = data.get("content", [])
            text_parts = [
                block.get("text", "")
                for block in content_blocks
                if block.get("type") == "text"
            ]
            return "".join(text_parts)

    async def check_health(self) -> bool:
        """Check if Claude API is accessible.

        We verify the API key is set and make a one-token request.
        """
        if not self.api_key:
            logger.warning("Claude health check: No API key configured")
            return False

        try:
            async with httpx.AsyncClient(timeout=30.0) as client:
                response = await client.post(
                    ANTHROPIC_API_URL,
                    headers=self._get_headers(),
                    json={
                        "model": self.model,
                        "max_tokens": 1,
                        "messages": [{"role": "user", "content": "Hi"}],
                    },
                )
                logger.info(f"Claude health check status: {response.status_code}")
                # 200 = success, 400 = bad request but API is reachable
                return response.status_code in (200, 400)
        except httpx.HTTPError as e:
            logger.error(f"Claude health check failed: {type(e).__name__}: {e}")
            return False
