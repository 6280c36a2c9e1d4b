"""Sliding-window rate limiting for pairing requests."""

from __future__ import annotations

import time
from typing import Callable

from pairbot.config import RateLimitConfig
from pairbot.core.errors import RateLimitedError


class RateLimiter:
    """Per-identity request history pruned to a sliding window."""

    def __init__(self, config: RateLimitConfig, clock: Callable[[], float] = time.time) -> None:
        self._max_requests = config.max_requests
        self._window = config.window_seconds
        # Keeping fewer entries than the limit would make the limit unreachable.
        self._keep = max(config.history_size, config.max_requests)
        self._clock = clock
        self._request_times: dict[str, list[float]] = {}

    def _prune(self, identity: str, now: float) -> list[float]:
        window_start = now - self._window
        times = [t for t in self._request_times.get(identity, ()) if t > window_start]
        if times:
            self._request_times[identity] = times
        else:
            # Identities with nothing left in the window are forgotten.
            self._request_times.pop(identity, None)
        return times

    def check(self, identity: str) -> None:
        """Raise RateLimitedError if ``identity`` is at or over quota."""
        now = self._clock()
        times = self._prune(identity, now)
        if len(times) >= self._max_requests:
            raise RateLimitedError(identity, reset_at=min(times) + self._window)

    def record(self, identity: str) -> None:
        now = self._clock()
        times = self._prune(identity, now)
        times.append(now)
        self._request_times[identity] = times[-self._keep:]

    def remaining(self, identity: str) -> int:
        return max(self._max_requests - len(self._prune(identity, self._clock())), 0)

    def reset(self) -> None:
        self._request_times.clear()

    def __len__(self) -> int:
        """Number of identities with requests inside the window."""
        return len(self._request_times)
