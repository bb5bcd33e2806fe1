"""Rate Limiting - sliding-window quota per monitor.

Manifesto:
    A misbehaving job that checks in in a tight loop must not amplify
    writes to the monitor store or starve other monitors sharing it.
    Excess check-ins are dropped before they reach the store: the caller
    gets a 429 and the service never retries them.

ARCHITECTURE
────────────
::

    RateLimiter (ABC)
      └── SlidingWindowLimiter       ─ exact count in rolling window
    KeyedSlidingWindowLimiter        ─ one window per (slug, environment)

    All limiters are thread-safe (internal Lock). The lock only guards
    in-memory state; no I/O happens while it is held.

Example::

    limiter = KeyedSlidingWindowLimiter(max_requests=6, window_seconds=60)
    if not limiter.acquire(("nightly-report", "production")):
        raise RateLimitedError(retry_after=...)

Tags:
    cronspine, rate-limit, sliding-window, check-ins

Doc-Types:
    api-reference
"""

from __future__ import annotations

import math
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Callable, Hashable
from dataclasses import dataclass, field

Clock = Callable[[], float]


class RateLimiter(ABC):
    """Abstract base for rate limiters."""

    @abstractmethod
    def acquire(self, tokens: int = 1) -> bool:
        """Attempt to acquire tokens without blocking.

        Args:
            tokens: Number of requests to count

        Returns:
            True if the requests fit in the quota, False otherwise
        """
        ...

    @abstractmethod
    def get_wait_time(self, tokens: int = 1) -> float:
        """Get seconds to wait before tokens are available (0 if now)."""
        ...


@dataclass
class SlidingWindowLimiter(RateLimiter):
    """Sliding window rate limiter.

    Counts requests in a sliding time window. More accurate than fixed
    windows: a burst straddling a window boundary is still capped.

    Attributes:
        max_requests: Maximum requests per window
        window_seconds: Window size in seconds
        clock: Monotonic clock (injectable for tests)
    """

    max_requests: int
    window_seconds: float
    clock: Clock = time.monotonic

    _timestamps: deque[float] = field(default_factory=deque, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    def _cleanup(self, now: float) -> None:
        """Remove timestamps outside the window."""
        cutoff = now - self.window_seconds
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    def acquire(self, tokens: int = 1) -> bool:
        with self._lock:
            now = self.clock()
            self._cleanup(now)

            if len(self._timestamps) + tokens <= self.max_requests:
                self._timestamps.extend([now] * tokens)
                return True
            return False

    def get_wait_time(self, tokens: int = 1) -> float:
        with self._lock:
            now = self.clock()
            self._cleanup(now)

            available = self.max_requests - len(self._timestamps)
            if available >= tokens:
                return 0.0

            # Wait for the oldest timestamps to leave the window
            need_to_expire = tokens - available
            if need_to_expire <= len(self._timestamps):
                oldest = self._timestamps[need_to_expire - 1]
                return max(0.0, (oldest + self.window_seconds) - now)

            return self.window_seconds

    @property
    def current_count(self) -> int:
        """Get current request count in window."""
        with self._lock:
            self._cleanup(self.clock())
            return len(self._timestamps)

    @property
    def idle(self) -> bool:
        """True when no request is left in the window."""
        return self.current_count == 0


@dataclass
class KeyedSlidingWindowLimiter:
    """Sliding-window limiter with one independent window per key.

    Keys are typically ``(slug, environment)`` tuples. Idle windows are
    dropped every ``cleanup_interval`` acquires so the key map stays
    bounded by the set of recently active monitors.

    Example:
        >>> limiter = KeyedSlidingWindowLimiter(max_requests=6, window_seconds=60)
        >>> all(limiter.acquire(("job", "prod")) for _ in range(6))
        True
        >>> limiter.acquire(("job", "prod"))
        False
    """

    max_requests: int = 6
    window_seconds: float = 60.0
    clock: Clock = time.monotonic
    cleanup_interval: int = 1000  # Cleanup every N acquires

    _limiters: dict[Hashable, SlidingWindowLimiter] = field(default_factory=dict, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)
    _acquire_count: int = field(default=0, init=False)

    def _get_limiter(self, key: Hashable) -> SlidingWindowLimiter:
        limiter = self._limiters.get(key)
        if limiter is None:
            limiter = SlidingWindowLimiter(
                max_requests=self.max_requests,
                window_seconds=self.window_seconds,
                clock=self.clock,
            )
            self._limiters[key] = limiter
        return limiter

    def _maybe_cleanup(self) -> None:
        """Periodically drop windows with nothing left in them."""
        self._acquire_count += 1
        if self._acquire_count >= self.cleanup_interval:
            self._acquire_count = 0
            for key in [k for k, limiter in self._limiters.items() if limiter.idle]:
                del self._limiters[key]

    def acquire(self, key: Hashable, tokens: int = 1) -> bool:
        """Count a request against *key*; False means the quota is spent."""
        with self._lock:
            self._maybe_cleanup()
            limiter = self._get_limiter(key)

        return limiter.acquire(tokens)

    def get_wait_time(self, key: Hashable, tokens: int = 1) -> float:
        """Seconds until *key* has room for *tokens* more requests."""
        with self._lock:
            limiter = self._limiters.get(key)
        if limiter is None:
            return 0.0
        return limiter.get_wait_time(tokens)

    def retry_after(self, key: Hashable) -> int:
        """Whole seconds for a ``Retry-After`` header (at least 1)."""
        return max(1, math.ceil(self.get_wait_time(key)))

    def reset(self, key: Hashable | None = None) -> None:
        """Forget one key's window, or every window when *key* is None."""
        with self._lock:
            if key is None:
                self._limiters.clear()
            else:
                self._limiters.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._limiters)


__all__ = [
    "Clock",
    "RateLimiter",
    "SlidingWindowLimiter",
    "KeyedSlidingWindowLimiter",
]
