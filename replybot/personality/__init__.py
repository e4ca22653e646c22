"""Personality profiles."""

from replybot.personality.loader import (
    Personality,
    PersonalityLoader,
    write_default_personalities,
)

__all__ = ["Personality", "PersonalityLoader", "write_default_personalities"]
