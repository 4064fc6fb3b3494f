"""LLM providers and the structured-reply gateway."""

from journey_mapper.llm.exceptions import (
    LLMAuthenticationError,
    LLMConnectionError,
    LLMError,
    LLMInvalidResponseError,
    LLMModelNotFoundError,
    LLMProviderNotConfiguredError,
    LLMRateLimitError,
    LLMResponseError,
)
from journey_mapper.llm.factory import get_available_providers, get_llm, get_provider
from journey_mapper.llm.gateway import LLMGateway
from journey_mapper.llm.llm import BaseLLM, OllamaLLM, strip_code_fences
from journey_mapper.llm.schemas import StructuredReply

__all__ = [
    "BaseLLM",
    "OllamaLLM",
    "LLMGateway",
    "StructuredReply",
    "get_llm",
    "get_provider",
    "get_available_providers",
    "strip_code_fences",
    "LLMError",
    "LLMConnectionError",
    "LLMRateLimitError",
    "LLMAuthenticationError",
    "LLMModelNotFoundError",
    "LLMResponseError",
    "LLMInvalidResponseError",
    "LLMProviderNotConfiguredError",
]
