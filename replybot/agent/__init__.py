"""Reply generation: prompt assembly and post-processing."""

from replybot.agent.context import BOT_SENDER_ID, ContextBuilder
from replybot.agent.responder import (
    FALLBACK_RESPONSES,
    Reply,
    ResponseGenerator,
    clean_response,
)

__all__ = [
    "BOT_SENDER_ID",
    "ContextBuilder",
    "FALLBACK_RESPONSES",
    "Reply",
    "ResponseGenerator",
    "clean_response",
]
