"""Base class for chat channels."""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from replybot.bus.events import InboundEvent


EventHandler = Callable[[InboundEvent], Awaitable[None]]


class BaseChannel(ABC):
    """
    Transport for a chat protocol.

    A channel delivers inbound events to the registered handler and
    sends replies back to contacts. Session and authentication handling
    belong to the concrete channel.
    """

    name: str = "base"

    def __init__(self):
        self._running = False
        self._handler: EventHandler | None = None

    def on_event(self, handler: EventHandler) -> None:
        """Register the handler that receives inbound events."""
        self._handler = handler

    async def _emit(self, event: InboundEvent) -> None:
        if self._handler:
            await self._handler(event)

    @property
    def is_running(self) -> bool:
        return self._running

    @abstractmethod
    async def start(self) -> None:
        """Start receiving events."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop receiving events."""

    @abstractmethod
    async def send(self, contact_id: str, text: str) -> bool:
        """
        Send a text message.

        Returns:
            True if the transport accepted the message.
        """

    async def get_contact_name(self, contact_id: str) -> str | None:
        """Resolve a display name for a contact, if the transport knows it."""
        return None
