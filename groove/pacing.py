"""Minimum-interval guard for calls against the Spotify Web API.

Not a rate limiter: there is no window and no per-client accounting.  A guard
only remembers when each key last went through and refuses another call for
that key until ``min_interval`` seconds have passed.  State lives on the
instance, so the owner decides its scope (one per app, one per client).
"""

from __future__ import annotations

import time
from typing import Callable, Dict


class MinIntervalGuard:
    """Reject calls that arrive sooner than ``min_interval`` after the last one."""

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self.min_interval = min_interval
        self._clock = clock
        self._last: Dict[str, float] = {}

    def try_acquire(self, key: str = "default") -> bool:
        """Record a call for *key* and return True, or return False if too soon."""
        now = self._clock()
        last = self._last.get(key)
        if last is not None and now - last < self.min_interval:
            return False
        self._last[key] = now
        return True

    def retry_after(self, key: str = "default") -> float:
        """Seconds until *key* is allowed again (0.0 when it already is)."""
        last = self._last.get(key)
        if last is None:
            return 0.0
        return max(0.0, self.min_interval - (self._clock() - last))

    def reset(self, key: str | None = None) -> None:
        if key is None:
            self._last.clear()
        else:
            self._last.pop(key, None)
