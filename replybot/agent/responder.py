"""
Reply generation for ReplyBot.

Wraps the LLM provider with:
- A hard timeout per generation call
- Markup cleanup and length enforcement
- Canned fallback replies when generation fails
"""

import asyncio
import random
import re
from dataclasses import dataclass

from loguru import logger

from replybot.agent.context import ContextBuilder
from replybot.errors import GenerationError
from replybot.memory.models import ConversationContext
from replybot.providers.base import LLMProvider


FALLBACK_RESPONSES = (
    "I'm sorry, I'm having trouble processing your message right now. Please try again in a moment.",
    "I apologize, but I'm experiencing some technical difficulties. Could you please rephrase your question?",
    "I'm having trouble understanding that right now. Could you try asking in a different way?",
    "I'm sorry, I'm not able to respond properly at the moment. Please try again later.",
    "I'm experiencing some issues right now. Please give me a moment and try again.",
)

MIN_RESPONSE_LENGTH = 3
ELLIPSIS = "..."

_MARKUP_PATTERNS = [
    (re.compile(r"```[\s\S]*?```"), ""),  # Code blocks
    (re.compile(r"`[^`]*`"), ""),  # Inline code
    (re.compile(r"\*\*([^*]+)\*\*"), r"\1"),  # Bold
    (re.compile(r"\*([^*]+)\*"), r"\1"),  # Italic
    (re.compile(r"#{1,6}\s+"), ""),  # Headers
]


@dataclass
class Reply:
    """Text to send plus how it was produced."""
    text: str
    is_fallback: bool = False
    error: str | None = None


def clean_response(text: str, max_length: int) -> str:
    """Trim, strip markdown artifacts and truncate with an ellipsis."""
    cleaned = text.strip()
    for pattern, replacement in _MARKUP_PATTERNS:
        cleaned = pattern.sub(replacement, cleaned)
    cleaned = cleaned.strip()

    if len(cleaned) > max_length:
        cleaned = cleaned[: max(max_length - len(ELLIPSIS), 0)] + ELLIPSIS

    return cleaned


class ResponseGenerator:
    """Turns a message and its conversation context into a reply."""

    def __init__(
        self,
        provider: LLMProvider,
        context_builder: ContextBuilder,
        max_response_length: int = 500,
        timeout_seconds: float = 30.0,
        model: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
        rng: random.Random | None = None,
    ):
        self.provider = provider
        self.context_builder = context_builder
        self.max_response_length = max_response_length
        self.timeout_seconds = timeout_seconds
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._rng = rng or random.Random()

        self._generated_count = 0
        self._fallback_count = 0

    def fallback_response(self) -> str:
        return self._rng.choice(FALLBACK_RESPONSES)

    async def generate(
        self,
        message: str,
        context: ConversationContext,
        display_name: str = "User",
    ) -> Reply:
        """
        Generate a reply. Never raises; failures yield a fallback reply.

        Args:
            message: Text the contact sent.
            context: Conversation snapshot.
            display_name: Name to address the contact by.
        """
        try:
            raw = await asyncio.wait_for(
                self._complete(message, context, display_name),
                timeout=self.timeout_seconds,
            )
            text = clean_response(raw, self.max_response_length)
            if len(text) < MIN_RESPONSE_LENGTH:
                raise GenerationError("Generated response too short")

        except asyncio.TimeoutError:
            return self._fallback(f"Generation timed out after {self.timeout_seconds}s", display_name)
        except Exception as e:
            return self._fallback(str(e), display_name)

        self._generated_count += 1
        logger.info(f"Reply generated for {display_name} ({len(raw)} -> {len(text)} chars)")
        return Reply(text=text)

    async def _complete(self, message: str, context: ConversationContext, display_name: str) -> str:
        messages = self.context_builder.build_messages(message, context, display_name)
        logger.debug(
            f"Generating reply: {len(message)} chars, "
            f"{len(context.messages)} context messages, summary={context.summary is not None}"
        )

        response = await self.provider.chat(
            messages,
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        if response.is_error:
            raise GenerationError(response.content or "Provider returned an error")
        if not response.content:
            raise GenerationError("Provider returned an empty response")
        return response.content

    def _fallback(self, error: str, display_name: str) -> Reply:
        self._fallback_count += 1
        logger.warning(f"Generation failed for {display_name}, using fallback: {error}")
        return Reply(text=self.fallback_response(), is_fallback=True, error=error)

    def get_stats(self) -> dict[str, int]:
        return {
            "generated_count": self._generated_count,
            "fallback_count": self._fallback_count,
        }
