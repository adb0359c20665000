"""Minimum-interval rate limiting shared by callers of one external service."""

from __future__ import annotations

import threading
import time
from typing import Callable


class RateLimiter:
    """Blocks until at least ``min_interval_seconds`` passed since the previous call.

    One instance is shared by every caller of the same collaborator so
    concurrent jobs space their requests out together.
    """

    def __init__(
        self,
        min_interval_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.min_interval_seconds = max(0.0, float(min_interval_seconds))
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_ts: float | None = None

    def wait(self) -> float:
        """Wait for the next slot and return the seconds slept."""
        with self._lock:
            slept = 0.0
            if self._last_ts is not None:
                wait_for = self.min_interval_seconds - (self._clock() - self._last_ts)
                if wait_for > 0:
                    self._sleep(wait_for)
                    slept = wait_for
            self._last_ts = self._clock()
            return slept

    def __enter__(self) -> "RateLimiter":
        self.wait()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None
