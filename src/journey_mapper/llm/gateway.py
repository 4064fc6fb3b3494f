"""Structured-reply gateway in front of the raw LLM providers."""

import json
import logging

from pydantic import ValidationError

from journey_mapper.config import settings
from journey_mapper.llm.exceptions import LLMInvalidResponseError
from journey_mapper.llm.llm import BaseLLM, ChatMessages, strip_code_fences
from journey_mapper.llm.schemas import StructuredReply

logger = logging.getLogger(__name__)

JSON_CORRECTION_MESSAGE = (
    "Your previous response was not valid JSON. Please respond with ONLY valid JSON, "
    "no markdown, no backticks, no preamble."
)


def parse_structured_reply(raw_text: str) -> StructuredReply:
    """Parse raw model output into a :class:`StructuredReply`.

    Raises:
        ValueError: If the text is not a JSON object with a usable shape
            (``json.JSONDecodeError`` and pydantic's ``ValidationError`` are
            both ``ValueError`` subclasses).
    """
    data = json.loads(strip_code_fences(raw_text))
    return StructuredReply.model_validate(data)


class LLMGateway:
    """Sends interview transcripts to the LLM and returns validated replies."""

    def __init__(self, llm: BaseLLM):
        self.llm = llm

    @property
    def provider_name(self) -> str:
        return self.llm.provider_name

    async def generate(self, system_prompt: str, messages: ChatMessages) -> StructuredReply:
        """Get a structured reply, retrying once with a correction request.

        Raises:
            LLMInvalidResponseError: Both attempts produced unusable output
        """
        raw_text = await self.llm.chat(system_prompt, messages, max_tokens=settings.LLM_MAX_TOKENS)
        try:
            return parse_structured_reply(raw_text)
        except (ValueError, ValidationError) as e:
            logger.warning(f"Invalid structured reply from {self.provider_name}, retrying once: {e}")
            logger.debug(f"Raw response: {raw_text}")

        retry_messages = [
            *messages,
            {"role": "assistant", "content": raw_text},
            {"role": "user", "content": JSON_CORRECTION_MESSAGE},
        ]
        retry_text = await self.llm.chat(
            system_prompt, retry_messages, max_tokens=settings.LLM_MAX_TOKENS
        )
        try:
            return parse_structured_reply(retry_text)
        except (ValueError, ValidationError) as e:
            sample = retry_text[: settings.INVALID_RESPONSE_SAMPLE_CHARS]
            logger.error(f"{self.provider_name} returned invalid JSON after retry: {e}")
            raise LLMInvalidResponseError(
                f"Invalid JSON after retry: {e}",
                provider=self.provider_name,
                raw_sample=sample,
            ) from e

    async def generate_summary(self, system_prompt: str, messages: ChatMessages) -> StructuredReply:
        """Long-form variant (openings, summaries, reports).

        Never retries. Output that is not a structured reply is returned as
        plain text in ``reply``.
        """
        raw_text = await self.llm.chat(
            system_prompt, messages, max_tokens=settings.LLM_SUMMARY_MAX_TOKENS
        )
        try:
            return parse_structured_reply(raw_text)
        except (ValueError, ValidationError):
            logger.debug(f"Summary response from {self.provider_name} is plain text")
            return StructuredReply.from_text(strip_code_fences(raw_text))
