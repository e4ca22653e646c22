"""
Auto-reply system for ReplyBot.

Provides per-contact message handling:
- Filter chain and single-worker dispatch
- Command detection and per-contact preferences
- Short cooldown and sliding-window rate limiting
- Periodic eviction of stale state
"""

from replybot.auto_reply.commands import (
    Command,
    CommandRegistry,
    CommandRouter,
    UserPreference,
    parse_command,
)
from replybot.auto_reply.cooldown import CooldownState, CooldownTracker
from replybot.auto_reply.dispatch import DispatchOutcome, DispatchPipeline
from replybot.auto_reply.locks import KeyedLock
from replybot.auto_reply.maintenance import MaintenanceService

__all__ = [
    # Commands
    "Command",
    "CommandRegistry",
    "CommandRouter",
    "UserPreference",
    "parse_command",
    # Rate control
    "CooldownState",
    "CooldownTracker",
    "KeyedLock",
    # Dispatch
    "DispatchOutcome",
    "DispatchPipeline",
    "MaintenanceService",
]
