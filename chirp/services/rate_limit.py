"""
Per-client-address request throttling for the public auth routes.

Counters live in process memory with a fixed window: they are lost on restart
and not shared between instances, so the limit is approximate in a
multi-instance deployment.
"""
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Request

from chirp.config import settings
from chirp.errors import RateLimitError

logger = logging.getLogger(__name__)

_limiters: list["RateLimiter"] = []


@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    def __init__(
        self,
        max_requests: int,
        window_seconds: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self._window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._next_sweep = 0.0
        self._lock = threading.Lock()
        _limiters.append(self)

    @property
    def window_seconds(self) -> int:
        if self._window_seconds is not None:
            return self._window_seconds
        return settings.RATE_LIMIT_WINDOW_SECONDS

    def hit(self, key: str) -> bool:
        """Count one request for ``key``; False once the window's budget is spent."""
        now = self._clock()
        with self._lock:
            if now >= self._next_sweep:
                self._sweep(now)
            window = self._windows.get(key)
            if window is None or now > window.reset_at:
                self._windows[key] = _Window(count=1, reset_at=now + self.window_seconds)
                return True
            window.count += 1
            return window.count <= self.max_requests

    def _sweep(self, now: float) -> None:
        # must hold self._lock
        expired = [key for key, window in self._windows.items() if now > window.reset_at]
        for key in expired:
            del self._windows[key]
        self._next_sweep = now + self.window_seconds

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
            self._next_sweep = 0.0

    def __call__(self, request: Request) -> None:
        if not settings.RATE_LIMIT_ENABLED:
            return
        key = request.client.host if request.client else "unknown"
        if not self.hit(key):
            logger.warning("Rate limit exceeded for %s on %s", key, request.url.path)
            raise RateLimitError()


def reset_rate_limits() -> None:
    for limiter in _limiters:
        limiter.reset()
