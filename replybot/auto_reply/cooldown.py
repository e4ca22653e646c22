"""
Per-contact reply rate control.

Two independent limits:
- Short cooldown: minimum gap between consecutive replies to a contact
- Frequency window: at most N replies per sliding window
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable

from loguru import logger


@dataclass
class CooldownState:
    """Rate state for one contact. Times are epoch milliseconds."""
    last_response: float | None = None
    recent_responses: list[float] = field(default_factory=list)

    @property
    def last_activity(self) -> float:
        candidates = list(self.recent_responses)
        if self.last_response is not None:
            candidates.append(self.last_response)
        return max(candidates, default=0.0)


class CooldownTracker:
    """
    Owns the per-contact cooldown map.

    All operations are total; unknown contacts are simply unrestricted.
    """

    def __init__(
        self,
        short_cooldown_ms: int = 1000,
        clock: Callable[[], float] = time.time,
    ):
        self.short_cooldown_ms = short_cooldown_ms
        self._clock = clock
        self._states: dict[str, CooldownState] = {}

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def is_allowed(self, contact_key: str) -> bool:
        """Check the short cooldown. Does not mutate state."""
        state = self._states.get(contact_key)
        if state is None or state.last_response is None:
            return True
        return self._now_ms() - state.last_response >= self.short_cooldown_ms

    def check_frequency(self, contact_key: str, limit: int, window_ms: int) -> bool:
        """
        Check the sliding window and record this reply if it fits.

        Check and record happen in one call, so only call this when a
        reply will actually be attempted.

        Returns:
            True if the reply is within the limit (and was recorded).
        """
        now = self._now_ms()
        cutoff = now - window_ms
        state = self._states.setdefault(contact_key, CooldownState())

        # Clean old entries
        state.recent_responses = [ts for ts in state.recent_responses if ts >= cutoff]

        if len(state.recent_responses) >= limit:
            return False

        state.recent_responses.append(now)
        return True

    def record_response(self, contact_key: str) -> None:
        """Start the short cooldown for a contact."""
        state = self._states.setdefault(contact_key, CooldownState())
        state.last_response = self._now_ms()

    def is_stale(self, contact_key: str, max_age_ms: int) -> bool:
        """Check if a tracked contact has had no activity within ``max_age_ms``."""
        state = self._states.get(contact_key)
        return state is not None and state.last_activity < self._now_ms() - max_age_ms

    def stale_keys(self, max_age_ms: int) -> list[str]:
        return [key for key in self._states if self.is_stale(key, max_age_ms)]

    def evict(self, contact_key: str) -> bool:
        return self._states.pop(contact_key, None) is not None

    def evict_stale(self, max_age_ms: int = 24 * 60 * 60 * 1000) -> int:
        """
        Drop contacts with no activity within ``max_age_ms``.

        Returns:
            Number of contacts evicted.
        """
        stale = self.stale_keys(max_age_ms)
        for key in stale:
            del self._states[key]

        if stale:
            logger.debug(f"Evicted {len(stale)} stale cooldown entries")
        return len(stale)

    def __contains__(self, contact_key: str) -> bool:
        return contact_key in self._states

    def __len__(self) -> int:
        return len(self._states)

    def get_stats(self) -> dict[str, Any]:
        return {
            "tracked_contacts": len(self._states),
            "short_cooldown_ms": self.short_cooldown_ms,
        }
