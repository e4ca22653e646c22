"""Chat channel integrations."""

from replybot.channels.base import BaseChannel, EventHandler
from replybot.channels.console import ConsoleChannel

__all__ = ["BaseChannel", "EventHandler", "ConsoleChannel"]
