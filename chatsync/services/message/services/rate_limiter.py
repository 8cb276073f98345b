"""Fixed-window rate limiter keyed by caller."""

import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from chatsync.shared.errors import RateLimitedError


@dataclass
class RateLimitEntry:
    count: int
    reset_at: float


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float
    retry_after: Optional[float] = None


class RateLimiter:
    """In-memory fixed-window limiter (per process)."""

    def __init__(
        self,
        max_requests: int,
        window: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._entries: Dict[str, RateLimitEntry] = {}
        self._last_prune = clock()

    @property
    def tracked(self) -> int:
        """Identifiers with a window currently held in memory."""
        return len(self._entries)

    def check(self, identifier: str) -> RateLimitResult:
        """Consume one request for ``identifier`` if the window allows it."""
        now = self._clock()
        # Expired windows are dropped at most once per window
        if now - self._last_prune >= self.window:
            self.prune()
        entry = self._entries.get(identifier)

        if entry is None or entry.reset_at <= now:
            entry = RateLimitEntry(count=1, reset_at=now + self.window)
            self._entries[identifier] = entry
            return RateLimitResult(True, self.max_requests - 1, entry.reset_at)

        if entry.count < self.max_requests:
            entry.count += 1
            return RateLimitResult(True, self.max_requests - entry.count, entry.reset_at)

        return RateLimitResult(False, 0, entry.reset_at, retry_after=entry.reset_at - now)

    def status(self, identifier: str) -> RateLimitResult:
        """Current state for ``identifier`` without consuming a request."""
        now = self._clock()
        entry = self._entries.get(identifier)
        if entry is None or entry.reset_at <= now:
            return RateLimitResult(True, self.max_requests, now + self.window)

        remaining = self.max_requests - entry.count
        if remaining > 0:
            return RateLimitResult(True, remaining, entry.reset_at)
        return RateLimitResult(False, 0, entry.reset_at, retry_after=entry.reset_at - now)

    def enforce(self, identifier: str) -> RateLimitResult:
        """Like ``check`` but raises ``RateLimitedError`` when over the limit."""
        result = self.check(identifier)
        if not result.allowed:
            raise RateLimitedError(
                "Too many messages, please slow down",
                retry_after=result.retry_after,
            )
        return result

    def reset(self, identifier: str) -> None:
        self._entries.pop(identifier, None)

    def prune(self) -> int:
        """Drop expired windows; returns how many were removed."""
        now = self._clock()
        self._last_prune = now
        expired = [key for key, entry in self._entries.items() if entry.reset_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)
