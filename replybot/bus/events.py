"""Event types passed between channels and the dispatch pipeline."""

import time
from dataclasses import dataclass, field
from typing import Any


GROUP_SUFFIX = "@g.us"
USER_SUFFIX = "@c.us"
BROADCAST_CONTACT = "status@broadcast"


@dataclass
class InboundEvent:
    """A message received from a chat channel."""
    id: str
    sender: str  # Contact the message came from
    body: str
    recipient: str = ""
    timestamp: int = field(default_factory=lambda: int(time.time()))  # Unix seconds
    type: str = "chat"
    from_me: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_group(self) -> bool:
        """Check if the event was posted in a group chat."""
        return GROUP_SUFFIX in self.sender

    @property
    def is_broadcast(self) -> bool:
        return self.sender == BROADCAST_CONTACT

    @property
    def preview(self) -> str:
        """Short body excerpt for log lines."""
        body = self.body or ""
        return body[:50] + ("..." if len(body) > 50 else "")
