"""Inbound event types."""

from replybot.bus.events import InboundEvent

__all__ = ["InboundEvent"]
