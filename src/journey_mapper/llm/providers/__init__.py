"""Hosted LLM provider implementations."""

from journey_mapper.llm.providers.claude import ClaudeLLM

__all__ = ["ClaudeLLM"]
