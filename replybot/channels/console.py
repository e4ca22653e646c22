"""
Console channel for ReplyBot.

Reads lines from the terminal and prints replies, so the full
dispatch pipeline can be exercised without a chat protocol.
"""

import asyncio
import uuid

from loguru import logger
from rich.console import Console
from rich.markup import escape

from replybot.bus.events import InboundEvent
from replybot.channels.base import BaseChannel


class ConsoleChannel(BaseChannel):
    """Local terminal channel acting as a single contact."""

    name = "console"

    def __init__(
        self,
        contact_id: str = "console@c.us",
        display_name: str = "You",
        console: Console | None = None,
    ):
        super().__init__()
        self.contact_id = contact_id
        self.display_name = display_name
        self.console = console or Console()
        self._reader: asyncio.Task | None = None

    async def start(self) -> None:
        """Start reading input lines."""
        self._running = True
        logger.info(f"Console channel started as {self.contact_id}")
        self._reader = asyncio.create_task(self._read_loop())

    async def stop(self) -> None:
        self._running = False
        if self._reader and not self._reader.done():
            self._reader.cancel()
        logger.info("Console channel stopped")

    async def wait_closed(self) -> None:
        """Wait until the input stream ends."""
        if self._reader:
            try:
                await self._reader
            except asyncio.CancelledError:
                pass

    async def _read_loop(self) -> None:
        while self._running:
            try:
                line = await asyncio.to_thread(input, "> ")
            except EOFError:
                break

            if line.strip() in {"exit", "quit"}:
                break

            await self.feed(line)

        self._running = False

    async def feed(self, text: str) -> None:
        """Inject a line as if the contact had sent it."""
        event = InboundEvent(
            id=uuid.uuid4().hex[:12],
            sender=self.contact_id,
            recipient="bot",
            body=text,
        )
        await self._emit(event)

    async def send(self, contact_id: str, text: str) -> bool:
        self.console.print(f"[bold cyan]bot[/bold cyan] → {contact_id}: {escape(text)}")
        return True

    async def get_contact_name(self, contact_id: str) -> str | None:
        if contact_id == self.contact_id:
            return self.display_name
        return None
