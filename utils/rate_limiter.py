"""
Command throttling for the soundboard.

Three sliding windows are checked in order: the whole bot, the guild, then
the invoking user.  Guild and user windows live in TTL caches so that idle
keys fall out on their own.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Hashable, List, Optional, Tuple

from cachetools import TTLCache


@dataclass
class RateLimitResult:
    """Outcome of :meth:`RateLimiter.check`."""

    allowed: bool
    retry_after: float = 0.0  # seconds until a slot frees up
    reason: str = ""


class _Window:
    """Timestamps of accepted commands within the last ``length`` seconds."""

    def __init__(self, capacity: int, length: float):
        self.capacity = capacity
        self.length = length
        self.hits: List[float] = []

    def _trim(self, now: float) -> None:
        horizon = now - self.length
        while self.hits and self.hits[0] <= horizon:
            self.hits.pop(0)

    def retry_after(self, now: float) -> float:
        """0 when a slot is free, otherwise seconds until the oldest hit expires."""
        self._trim(now)
        if len(self.hits) < self.capacity:
            return 0.0
        return max(self.hits[0] + self.length - now, 0.1)

    def hit(self, now: float) -> None:
        self.hits.append(now)


class RateLimiter:
    """
    Global, per-guild and per-user command limits.

    A command is recorded against every window only when all of them have
    room, so a rejected command never consumes budget.
    """

    def __init__(
        self,
        user_limit: int = 10,
        server_limit: int = 100,
        global_limit: int = 200,
        window_seconds: float = 60.0,
    ):
        self.user_limit = user_limit
        self.server_limit = server_limit
        self.window_seconds = window_seconds

        ttl = window_seconds * 2
        self._users: TTLCache[Hashable, _Window] = TTLCache(maxsize=10_000, ttl=ttl)
        self._servers: TTLCache[Hashable, _Window] = TTLCache(maxsize=5_000, ttl=ttl)
        self._global = _Window(global_limit, window_seconds)

    def _window(self, cache: TTLCache, key: Hashable, capacity: int) -> _Window:
        window = cache.get(key)
        if window is None:
            window = _Window(capacity, self.window_seconds)
        # Reassign so the TTL restarts on every use
        cache[key] = window
        return window

    def check(self, user_id: int, server_id: Optional[int] = None) -> RateLimitResult:
        """Admit one command from *user_id* (in *server_id*) or say why not."""
        now = time.monotonic()
        layers: List[Tuple[_Window, str]] = [(self._global, "Global rate limit reached")]
        if server_id is not None:
            layers.append(
                (self._window(self._servers, server_id, self.server_limit),
                 "Server rate limit reached")
            )
        layers.append(
            (self._window(self._users, user_id, self.user_limit), "User rate limit reached")
        )

        for window, reason in layers:
            wait = window.retry_after(now)
            if wait:
                return RateLimitResult(allowed=False, retry_after=wait, reason=reason)

        for window, _ in layers:
            window.hit(now)
        return RateLimitResult(allowed=True)
