"""
File storage for conversation records.

Layout under the storage root:
- <conversation_id>.json          - Conversation with retained messages
- <conversation_id>.summary.json  - Summary of evicted messages

Conversation ids are restricted to letters, digits and underscores, so
the dotted summary suffix never collides with a conversation file.

Writes go to a temporary file first and are renamed into place, so a
crash never leaves a half-written record behind.
"""

import json
import os
from pathlib import Path
from typing import Any, Iterator

from loguru import logger

from replybot.errors import StorageError
from replybot.memory.models import Conversation, Summary, UnsupportedSchemaError


SUMMARY_SUFFIX = ".summary"


class ConversationStore:
    """JSON file store, one record per conversation and per summary."""

    def __init__(self, root: Path):
        self.root = root

    def ensure_root(self) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create storage root {self.root}: {e}") from e

    def conversation_path(self, conversation_id: str) -> Path:
        return self.root / f"{conversation_id}.json"

    def summary_path(self, conversation_id: str) -> Path:
        return self.root / f"{conversation_id}{SUMMARY_SUFFIX}.json"

    def list_ids(self) -> list[str]:
        """Ids of every stored conversation."""
        if not self.root.exists():
            return []
        return sorted(
            file.stem for file in self.root.glob("*.json")
            if "." not in file.stem
        )

    def save_conversation(self, conversation: Conversation) -> None:
        self._write(self.conversation_path(conversation.id), conversation.to_dict(), conversation.id)

    def save_summary(self, summary: Summary) -> None:
        self._write(self.summary_path(summary.conversation_id), summary.to_dict(), summary.conversation_id)

    def load_conversation(self, conversation_id: str) -> Conversation | None:
        data = self._read(self.conversation_path(conversation_id), conversation_id)
        if data is None:
            return None
        try:
            return Conversation.from_dict(data)
        except (KeyError, TypeError, ValueError, UnsupportedSchemaError) as e:
            raise StorageError(f"Malformed conversation record: {e}", conversation_id) from e

    def load_summary(self, conversation_id: str) -> Summary | None:
        data = self._read(self.summary_path(conversation_id), conversation_id)
        if data is None:
            return None
        try:
            return Summary.from_dict(data)
        except (KeyError, TypeError, ValueError, UnsupportedSchemaError) as e:
            raise StorageError(f"Malformed summary record: {e}", conversation_id) from e

    def delete(self, conversation_id: str) -> None:
        """Remove both records for a conversation. Missing files are fine."""
        errors = []
        for path in (self.conversation_path(conversation_id), self.summary_path(conversation_id)):
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                errors.append(str(e))
        if errors:
            raise StorageError(f"Failed to delete records: {'; '.join(errors)}", conversation_id)

    def iter_conversations(self) -> Iterator[Conversation]:
        """Yield readable conversations, skipping broken records."""
        for conversation_id in self.list_ids():
            try:
                conversation = self.load_conversation(conversation_id)
            except StorageError as e:
                logger.warning(f"Skipping conversation {conversation_id}: {e}")
                continue
            if conversation:
                yield conversation

    def _read(self, path: Path, conversation_id: str) -> dict[str, Any] | None:
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            raise StorageError(f"Failed to read {path.name}: {e}", conversation_id) from e
        if not isinstance(data, dict):
            raise StorageError(f"Unexpected content in {path.name}", conversation_id)
        return data

    def _write(self, path: Path, data: dict[str, Any], conversation_id: str) -> None:
        tmp = path.with_suffix(".json.tmp")
        try:
            tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp, path)
        except OSError as e:
            raise StorageError(f"Failed to write {path.name}: {e}", conversation_id) from e
