"""LLM provider abstraction module."""

from replybot.providers.base import LLMProvider, LLMResponse
from replybot.providers.litellm_provider import LiteLLMProvider, ModelHealth

__all__ = [
    "LLMProvider",
    "LLMResponse",
    "LiteLLMProvider",
    "ModelHealth",
]
