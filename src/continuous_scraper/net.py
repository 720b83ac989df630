"""Per-host request spacing shared by every worker thread in the process."""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict
from urllib.parse import urlsplit


@dataclass
class RateLimitConfig:
    max_calls: int = 1
    window_seconds: float = 1.5
    min_interval: float = 1.5  # enforce spacing between call starts


class HostTokenBucket:
    """Token bucket for one host with min-interval spacing.

    ``acquire`` blocks the calling thread until a token is available; work is
    never dropped. Tokens are reserved under the lock and the sleep happens
    outside it, so waiters queue up in reservation order.
    """

    def __init__(
        self,
        cfg: RateLimitConfig,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.cfg = cfg
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._calls: list[float] = []  # reserved start times
        self._next_slot: float = 0.0

    def reserve(self) -> float:
        """Reserve the next start time and return how long to wait for it."""
        with self._lock:
            now = self._clock()
            start = max(now, self._next_slot)
            # Evict old calls, then respect the window capacity
            cutoff = start - self.cfg.window_seconds
            self._calls = [t for t in self._calls if t > cutoff]
            if len(self._calls) >= self.cfg.max_calls:
                start = max(start, self._calls[0] + self.cfg.window_seconds)
                cutoff = start - self.cfg.window_seconds
                self._calls = [t for t in self._calls if t > cutoff]
            self._calls.append(start)
            self._next_slot = start + self.cfg.min_interval
            return max(0.0, start - now)

    def acquire(self) -> float:
        wait = self.reserve()
        if wait > 0:
            self._sleep(wait)
        return wait


class HostRateLimiter:
    """Registry of token buckets keyed by lowercase host."""

    def __init__(
        self,
        delay_per_host: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.default = RateLimitConfig(
            max_calls=1, window_seconds=delay_per_host, min_interval=delay_per_host
        )
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._buckets: Dict[str, HostTokenBucket] = {}

    def bucket_for(self, host: str) -> HostTokenBucket:
        key = host.lower()
        with self._lock:
            if key not in self._buckets:
                self._buckets[key] = HostTokenBucket(self.default, self._clock, self._sleep)
            return self._buckets[key]

    def acquire(self, url: str) -> float:
        """Block until a request to ``url``'s host may start. Returns seconds waited."""
        return self.bucket_for(host_of(url)).acquire()


def host_of(url: str) -> str:
    return (urlsplit(url).hostname or "").lower()
