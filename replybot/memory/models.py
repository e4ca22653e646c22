"""
Conversation records for ReplyBot memory.

Every record serializes with a ``schema_version`` so files written by
an older release can be migrated and files from a newer one refused.
"""

import time
from dataclasses import dataclass, field, asdict
from typing import Any


SCHEMA_VERSION = 1


class UnsupportedSchemaError(ValueError):
    """A record was written with a schema version this release cannot read."""


def now_ms() -> int:
    return int(time.time() * 1000)


def _check_version(data: dict[str, Any]) -> None:
    version = data.get("schema_version", SCHEMA_VERSION)
    if not isinstance(version, int) or version > SCHEMA_VERSION:
        raise UnsupportedSchemaError(f"Unsupported schema_version: {version!r}")


@dataclass(frozen=True)
class Message:
    """A single chat turn. Immutable once appended."""
    id: str
    sender_id: str
    body: str
    timestamp: int  # Unix seconds, as reported by the transport
    type: str = "chat"
    recorded_at: int = field(default_factory=now_ms)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        return cls(
            id=str(data["id"]),
            sender_id=str(data["sender_id"]),
            body=data.get("body") or "",
            timestamp=int(data.get("timestamp") or 0),
            type=data.get("type", "chat"),
            recorded_at=int(data.get("recorded_at") or 0),
        )


@dataclass
class Conversation:
    """Ordered message history for one contact."""
    id: str
    messages: list[Message] = field(default_factory=list)
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)
    total_messages: int = 0  # Includes messages folded into the summary

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": SCHEMA_VERSION,
            "id": self.id,
            "messages": [m.to_dict() for m in self.messages],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "total_messages": self.total_messages,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Conversation":
        _check_version(data)
        messages = [Message.from_dict(m) for m in data.get("messages", [])]
        return cls(
            id=str(data["id"]),
            messages=messages,
            created_at=int(data.get("created_at") or now_ms()),
            updated_at=int(data.get("updated_at") or now_ms()),
            total_messages=int(data.get("total_messages") or len(messages)),
        )


@dataclass(frozen=True)
class TimeRange:
    start: int | None
    end: int | None


@dataclass(frozen=True)
class Summary:
    """Compaction of the oldest messages of a conversation."""
    conversation_id: str
    message_count: int
    time_range: TimeRange
    key_topics: tuple[str, ...] = ()
    created_at: int = field(default_factory=now_ms)
    # Frequencies of summarized terms, carried into the next summary
    term_counts: dict[str, int] = field(default_factory=dict, compare=False, hash=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": SCHEMA_VERSION,
            "conversation_id": self.conversation_id,
            "message_count": self.message_count,
            "time_range": {"start": self.time_range.start, "end": self.time_range.end},
            "key_topics": list(self.key_topics),
            "created_at": self.created_at,
            "term_counts": dict(self.term_counts),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Summary":
        _check_version(data)
        time_range = data.get("time_range") or {}
        return cls(
            conversation_id=str(data["conversation_id"]),
            message_count=int(data.get("message_count", 0)),
            time_range=TimeRange(start=time_range.get("start"), end=time_range.get("end")),
            key_topics=tuple(data.get("key_topics", []))[:10],
            created_at=int(data.get("created_at") or now_ms()),
            term_counts={str(k): int(v) for k, v in (data.get("term_counts") or {}).items()},
        )


@dataclass(frozen=True)
class ConversationContext:
    """Snapshot of a conversation handed to reply generation."""
    messages: tuple[Message, ...] = ()
    summary: Summary | None = None
    total_messages: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.messages and self.summary is None
