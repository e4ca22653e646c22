"""
Conversation memory for ReplyBot.

Keeps a bounded, durable message history per contact:
- In-memory cache of conversations, reloaded from disk at startup
- Write-through persistence after every change (best effort)
- Automatic summarization once a conversation reaches the threshold

Persistence is at-most-once: a failed write is logged and not retried.
The in-memory state stays authoritative for the session and the next
successful write of the same conversation carries the latest state.
"""

import re
import time
from typing import Any, Callable

from loguru import logger

from replybot.bus.events import USER_SUFFIX
from replybot.errors import StorageError
from replybot.memory.models import (
    Conversation,
    ConversationContext,
    Message,
    Summary,
    TimeRange,
)
from replybot.memory.store import ConversationStore
from replybot.memory.topics import count_terms, top_terms


# Cap on term counts carried from one summary to the next
MAX_TRACKED_TERMS = 500

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


def conversation_id_for(contact_id: str) -> str:
    """Deterministic storage key for a contact."""
    return _NON_ALNUM.sub("_", contact_id.replace(USER_SUFFIX, ""))


class ConversationMemory:
    """
    Owner of all Conversation and Summary objects.

    Callers never touch conversations directly; every mutation goes
    through append, summarize, delete or cleanup_older_than.
    """

    def __init__(
        self,
        store: ConversationStore,
        max_context_messages: int = 20,
        summarization_threshold: int = 50,
        clock: Callable[[], float] = time.time,
    ):
        if max_context_messages < 1:
            raise ValueError("max_context_messages must be at least 1")
        if summarization_threshold <= max_context_messages:
            raise ValueError("summarization_threshold must exceed max_context_messages")

        self.store = store
        self.max_context_messages = max_context_messages
        self.summarization_threshold = summarization_threshold
        self._clock = clock

        self._conversations: dict[str, Conversation] = {}
        self._summaries: dict[str, Summary] = {}
        self._initialized = False

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> int:
        """
        Create the storage root and reload persisted conversations.

        Unreadable records are skipped; that conversation starts empty.

        Returns:
            Number of conversations loaded.
        """
        self.store.ensure_root()
        self._conversations.clear()
        self._summaries.clear()

        for conversation_id in self.store.list_ids():
            try:
                conversation = self.store.load_conversation(conversation_id)
            except StorageError as e:
                logger.warning(f"Skipping conversation {conversation_id}: {e}")
                continue
            if conversation is None:
                continue

            self._conversations[conversation_id] = conversation

            try:
                summary = self.store.load_summary(conversation_id)
            except StorageError as e:
                logger.warning(f"Skipping summary for {conversation_id}: {e}")
                summary = None
            if summary:
                self._summaries[conversation_id] = summary

        self._initialized = True
        logger.info(f"Loaded {len(self._conversations)} existing conversations")
        return len(self._conversations)

    def append(self, conversation_id: str, message: Message) -> None:
        """
        Append a message, persist, and summarize once the threshold is hit.

        Summarization runs synchronously before this returns.
        """
        now = self._now_ms()
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            conversation = Conversation(id=conversation_id, created_at=now, updated_at=now)
            self._conversations[conversation_id] = conversation
            logger.debug(f"Created conversation {conversation_id}")

        conversation.messages.append(message)
        conversation.total_messages += 1
        conversation.updated_at = now

        self._persist_conversation(conversation)

        if len(conversation.messages) >= self.summarization_threshold:
            self.summarize(conversation_id)

        logger.debug(
            f"Message added to {conversation_id} "
            f"({len(conversation.messages)} retained, {conversation.total_messages} total)"
        )

    def summarize(self, conversation_id: str) -> Summary | None:
        """
        Fold the oldest messages into the conversation's summary.

        Only the last ``max_context_messages`` messages are retained.
        The new summary replaces any previous one and accumulates its
        message count, start time and term frequencies.

        Returns:
            The new Summary, or None when below the threshold.
        """
        conversation = self._conversations.get(conversation_id)
        if conversation is None or len(conversation.messages) < self.summarization_threshold:
            return None

        split = len(conversation.messages) - self.max_context_messages
        older = conversation.messages[:split]
        recent = conversation.messages[split:]

        previous = self._summaries.get(conversation_id)
        counts = count_terms(older, seed=previous.term_counts if previous else None)
        # Filtering by membership keeps first-occurrence order for the next pass
        kept = set(top_terms(counts, MAX_TRACKED_TERMS))
        tracked = {word: count for word, count in counts.items() if word in kept}

        summary = Summary(
            conversation_id=conversation_id,
            message_count=len(older) + (previous.message_count if previous else 0),
            time_range=TimeRange(
                start=previous.time_range.start if previous else older[0].timestamp,
                end=older[-1].timestamp,
            ),
            key_topics=tuple(top_terms(counts)),
            created_at=self._now_ms(),
            term_counts=tracked,
        )

        self._summaries[conversation_id] = summary
        conversation.messages = list(recent)

        self._persist_conversation(conversation)
        try:
            self.store.save_summary(summary)
        except StorageError as e:
            logger.error(f"Failed to save summary for {conversation_id}: {e}")

        logger.info(
            f"Conversation {conversation_id} summarized: "
            f"{len(older)} messages folded, {len(recent)} retained"
        )
        return summary

    def get_context(self, conversation_id: str, max_messages: int | None = None) -> ConversationContext:
        """
        Snapshot of the recent messages and summary. No side effects.

        Args:
            conversation_id: Conversation key.
            max_messages: Number of recent messages, default max_context_messages.
                Zero returns no messages.
        """
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            return ConversationContext()

        limit = self.max_context_messages if max_messages is None else max_messages
        return ConversationContext(
            messages=tuple(conversation.messages[-limit:]) if limit > 0 else (),
            summary=self._summaries.get(conversation_id),
            total_messages=conversation.total_messages,
        )

    def has_conversation(self, conversation_id: str) -> bool:
        return conversation_id in self._conversations

    def get_summary(self, conversation_id: str) -> Summary | None:
        return self._summaries.get(conversation_id)

    def conversation_ids(self) -> list[str]:
        return list(self._conversations)

    def is_stale(self, conversation_id: str, max_age_ms: int) -> bool:
        """Check if a conversation was last updated more than ``max_age_ms`` ago."""
        conversation = self._conversations.get(conversation_id)
        return conversation is not None and conversation.updated_at < self._now_ms() - max_age_ms

    def stale_ids(self, max_age_ms: int) -> list[str]:
        return [cid for cid in self._conversations if self.is_stale(cid, max_age_ms)]

    def delete(self, conversation_id: str) -> bool:
        """Drop a conversation, its summary and its files."""
        existed = self._conversations.pop(conversation_id, None) is not None
        self._summaries.pop(conversation_id, None)

        try:
            self.store.delete(conversation_id)
        except StorageError as e:
            logger.error(f"Failed to delete files for {conversation_id}: {e}")

        if existed:
            logger.debug(f"Conversation deleted: {conversation_id}")
        return existed

    def cleanup_older_than(self, max_age_ms: int) -> int:
        """
        Delete every conversation whose last update is older than the cutoff.

        Returns:
            Number of conversations deleted.
        """
        stale = self.stale_ids(max_age_ms)
        for conversation_id in stale:
            self.delete(conversation_id)

        if stale:
            logger.info(f"Cleaned up {len(stale)} old conversations")
        return len(stale)

    def get_stats(self) -> dict[str, Any]:
        return {
            "total_conversations": len(self._conversations),
            "retained_messages": sum(len(c.messages) for c in self._conversations.values()),
            "total_messages": sum(c.total_messages for c in self._conversations.values()),
            "total_summaries": len(self._summaries),
        }

    def _persist_conversation(self, conversation: Conversation) -> None:
        try:
            self.store.save_conversation(conversation)
        except StorageError as e:
            logger.error(f"Failed to save conversation {conversation.id}: {e}")
