"""
Conversation memory for ReplyBot.

Provides:
- Per-contact message history with a bounded context window
- Keyword summaries of evicted history
- Versioned JSON file persistence
"""

from replybot.memory.conversation import ConversationMemory, conversation_id_for
from replybot.memory.models import (
    Conversation,
    ConversationContext,
    Message,
    Summary,
    TimeRange,
)
from replybot.memory.store import ConversationStore
from replybot.memory.topics import count_terms, top_terms

__all__ = [
    "ConversationMemory",
    "ConversationStore",
    "Conversation",
    "ConversationContext",
    "Message",
    "Summary",
    "TimeRange",
    "conversation_id_for",
    "count_terms",
    "top_terms",
]
