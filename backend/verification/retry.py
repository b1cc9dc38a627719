"""
Declarative retry policy applied uniformly to every source fetch.
Exponential backoff with jitter; RateLimitError hints override the computed delay.
"""
from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

from shared.utils.logging import get_logger
from shared.utils.metrics import SOURCE_RETRIES

from verification.config import FetchConfig
from verification.errors import FetchError, RateLimitError

logger = get_logger(__name__)

T = TypeVar("T")


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, FetchError) and exc.retryable


def exponential_backoff(
    base_ms: float,
    jitter_ratio: float = 0.0,
    max_ms: Optional[float] = None,
    rng: Optional[random.Random] = None,
) -> Callable[[int], float]:
    """Return attempt -> delay seconds: base_ms * 2^attempt, ± jitter_ratio."""
    rand = rng or random.Random()

    def delay(attempt: int) -> float:
        ms = base_ms * (2 ** attempt)
        if max_ms is not None:
            ms = min(ms, max_ms)
        if jitter_ratio > 0:
            ms += ms * jitter_ratio * rand.uniform(-1.0, 1.0)
        return max(0.0, ms) / 1000.0

    return delay


@dataclass
class RetryPolicy:
    """
    max_attempts counts the first call; max_retries=3 means up to 4 calls.
    backoff maps the zero-based retry number to a delay in seconds.
    """
    max_attempts: int = 4
    backoff: Callable[[int], float] = field(default_factory=lambda: exponential_backoff(500.0))
    is_retryable: Callable[[BaseException], bool] = is_retryable

    @classmethod
    def from_config(cls, config: FetchConfig, rng: Optional[random.Random] = None) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_retries + 1,
            backoff=exponential_backoff(
                config.backoff_base_ms,
                jitter_ratio=config.jitter_ratio,
                max_ms=config.backoff_max_ms,
                rng=rng,
            ),
        )

    def delay_for(self, attempt: int, exc: BaseException) -> float:
        if isinstance(exc, RateLimitError) and exc.retry_after is not None:
            return max(0.0, exc.retry_after)
        return self.backoff(attempt)

    async def run(
        self,
        call: Callable[[], Awaitable[T]],
        *,
        source: str = "",
        on_retry: Optional[Callable[[BaseException, float], Awaitable[None]]] = None,
    ) -> tuple[T, int]:
        """
        Await call() until it succeeds, raises a non-retryable error, or attempts
        run out. Returns (result, attempts). The last error propagates.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await call(), attempt
            except Exception as exc:
                if not self.is_retryable(exc) or attempt >= self.max_attempts:
                    raise
                delay = self.delay_for(attempt - 1, exc)
                kind = getattr(exc, "kind", type(exc).__name__)
                SOURCE_RETRIES.labels(source=source or "unknown", error_kind=kind).inc()
                logger.info(
                    "source_fetch_retry",
                    source=source,
                    attempt=attempt,
                    error_kind=kind,
                    delay_s=round(delay, 3),
                )
                if on_retry is not None:
                    await on_retry(exc, delay)
                await asyncio.sleep(delay)
