"""LLM provider registry and selection."""

import logging
from typing import Callable

from journey_mapper.config import settings
from journey_mapper.llm.exceptions import LLMProviderNotConfiguredError
from journey_mapper.llm.llm import BaseLLM

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[], BaseLLM]

# Provider name -> zero-argument factory
_PROVIDER_REGISTRY: dict[str, ProviderFactory] = {}


def register_provider(name: str) -> Callable[[ProviderFactory], ProviderFactory]:
    """Decorator that registers an LLM provider factory under ``name``."""

    def decorator(factory: ProviderFactory) -> ProviderFactory:
        _PROVIDER_REGISTRY[name.lower()] = factory
        logger.debug(f"Registered LLM provider: {name}")
        return factory

    return decorator


def get_available_providers() -> list[str]:
    """Get list of registered provider names."""
    return list(_PROVIDER_REGISTRY.keys())


def get_provider(name: str) -> BaseLLM:
    """Instantiate a registered provider.

    Raises:
        LLMProviderNotConfiguredError: If no provider has that name
    """
    factory = _PROVIDER_REGISTRY.get(name.lower())
    if factory is None:
        available = ", ".join(get_available_providers())
        raise LLMProviderNotConfiguredError(
            f"Unknown provider '{name}'. Available: {available}",
            provider=name,
        )
    return factory()


async def get_llm(provider: str | None = None) -> BaseLLM:
    """Pick the LLM used for interviews.

    Selection order: the explicit ``provider`` argument, then
    ``settings.LLM_PROVIDER``, then Claude when an API key is set, then Ollama.

    Raises:
        LLMProviderNotConfiguredError: If nothing usable is configured
    """
    provider_name = provider or settings.LLM_PROVIDER

    if provider_name:
        llm = get_provider(provider_name)
        if await llm.is_available():
            logger.info(f"Using LLM provider: {llm.provider_name}")
            return llm
        logger.warning(f"Configured provider '{provider_name}' not available")

    for fallback in ("claude", "ollama"):
        if fallback == provider_name:
            continue
        llm = get_provider(fallback)
        if await llm.is_available():
            logger.info(f"Auto-selected {fallback} LLM provider")
            return llm

    raise LLMProviderNotConfiguredError(
        "No LLM provider is configured or available. "
        "Set ANTHROPIC_API_KEY for Claude or OLLAMA_BASE_URL for a local model.",
        provider="none",
    )


@register_provider("ollama")
def _create_ollama() -> BaseLLM:
    from journey_mapper.llm.llm import OllamaLLM

    return OllamaLLM()


@register_provider("claude")
def _create_claude() -> BaseLLM:
    from journey_mapper.llm.providers.claude import ClaudeLLM

    return ClaudeLLM()
