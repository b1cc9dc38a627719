"""
Per-source rate limiting with token buckets.
One bucket per catalog, shared by every fetch task that calls that catalog;
buckets are built per fetcher (or injected) and never live at module level.
"""
from __future__ import annotations

import asyncio
import time
from typing import Iterable, Optional

from shared.utils.logging import get_logger
from shared.utils.metrics import RATE_LIMIT_WAITS

from verification.config import FetchConfig
from verification.errors import ConfigError

logger = get_logger(__name__)


class TokenBucket:
    """
    In-process token bucket for one source.
    Refills at `rps` tokens per second; max burst = `burst`.
    Callers reserve a token under the lock and sleep outside it, so waiters
    are served in arrival order.
    """

    def __init__(self, rps: float, burst: int = 1, name: str = "") -> None:
        if rps <= 0:
            raise ConfigError(f"rps must be > 0, got {rps}")
        self.name = name
        self._rps = float(rps)
        self._burst = max(1, burst)
        self._tokens = float(self._burst)
        self._last_refill = time.monotonic()
        self._paused_until = 0.0
        self._lock = asyncio.Lock()

    @property
    def rps(self) -> float:
        return self._rps

    @property
    def burst(self) -> int:
        return self._burst

    def _refill(self, now: float) -> None:
        elapsed = now - self._last_refill
        self._tokens = min(float(self._burst), self._tokens + elapsed * self._rps)
        self._last_refill = now

    async def try_acquire(self) -> bool:
        """Consume one token if available without waiting."""
        async with self._lock:
            now = time.monotonic()
            if now < self._paused_until:
                return False
            self._refill(now)
            if self._tokens >= 1:
                self._tokens -= 1
                return True
            return False

    async def acquire(self) -> float:
        """Wait for a token. Returns the seconds spent waiting."""
        async with self._lock:
            now = time.monotonic()
            self._refill(now)
            self._tokens -= 1
            wait = 0.0
            if self._tokens < 0:
                wait = -self._tokens / self._rps
            if self._paused_until > now:
                wait = max(wait, self._paused_until - now)
        if wait > 0:
            RATE_LIMIT_WAITS.labels(source=self.name or "unknown").inc()
            await asyncio.sleep(wait)
        return wait

    async def pause(self, seconds: float) -> None:
        """Hold every caller of this bucket for `seconds` (e.g. a Retry-After hint)."""
        if seconds <= 0:
            return
        async with self._lock:
            until = time.monotonic() + seconds
            if until > self._paused_until:
                self._paused_until = until
                logger.warning("rate_limit_backoff", source=self.name, backoff_s=round(seconds, 3))


class SourceRateLimiters:
    """Token buckets keyed by source name."""

    def __init__(self, buckets: Optional[dict[str, TokenBucket]] = None) -> None:
        self._buckets: dict[str, TokenBucket] = dict(buckets or {})

    @classmethod
    def from_config(cls, config: FetchConfig, sources: Iterable[str]) -> "SourceRateLimiters":
        return cls({
            name: TokenBucket(rps=config.rps_for(name), burst=config.burst_for(name), name=name)
            for name in sources
        })

    def ensure(self, source: str, config: FetchConfig) -> TokenBucket:
        """Get the bucket for a source, creating it from config if missing."""
        bucket = self._buckets.get(source)
        if bucket is None:
            bucket = TokenBucket(rps=config.rps_for(source), burst=config.burst_for(source), name=source)
            self._buckets[source] = bucket
        return bucket

    def __getitem__(self, source: str) -> TokenBucket:
        return self._buckets[source]

    def __contains__(self, source: object) -> bool:
        return source in self._buckets

    def sources(self) -> list[str]:
        return sorted(self._buckets)
