"""Base LLM provider interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class LLMResponse:
    """Text returned by a provider, with token usage when known."""
    content: str | None
    finish_reason: str = "stop"
    usage: dict[str, int] = field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        return self.finish_reason == "error"


class LLMProvider(ABC):
    """Chat model backend used by the response generator."""

    def __init__(self, api_key: str | None = None, api_base: str | None = None):
        self.api_key = api_key
        self.api_base = api_base

    @abstractmethod
    async def chat(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """Complete a list of role/content messages.

        Implementations report failures through ``finish_reason="error"``
        instead of raising.
        """

    @abstractmethod
    def get_default_model(self) -> str:
        """Model used when ``chat`` is called without one."""
