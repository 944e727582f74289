"""LLM provider abstraction module."""

from focusflow.providers.base import LLMProvider, LLMResponse
from focusflow.providers.litellm_provider import LiteLLMProvider

__all__ = ["LLMProvider", "LLMResponse", "LiteLLMProvider"]
