"""
Circuit breaker per source: open after N consecutive record-level failures,
half-open after the recovery window.
"""
from __future__ import annotations

import asyncio
import time
from typing import Optional

from shared.utils.logging import get_logger
from shared.utils.metrics import CIRCUIT_REJECTIONS

from verification.config import FetchConfig

logger = get_logger(__name__)


class CircuitState:
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class SourceCircuitBreaker:
    """Per-source circuit breaker."""

    def __init__(self, failure_threshold: int = 5, recovery_s: float = 120.0) -> None:
        self._threshold = max(1, failure_threshold)
        self._recovery_s = recovery_s
        self._failures: dict[str, int] = {}
        self._state: dict[str, str] = {}
        self._opened_at: dict[str, float] = {}
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: FetchConfig) -> "SourceCircuitBreaker":
        return cls(failure_threshold=config.circuit_failure_threshold, recovery_s=config.circuit_recovery_s)

    def state(self, source: str) -> str:
        return self._state.get(source, CircuitState.CLOSED)

    async def allow_request(self, source: str) -> bool:
        """Return True if the source may be called (closed or half_open)."""
        async with self._lock:
            state = self._state.get(source, CircuitState.CLOSED)
            if state != CircuitState.OPEN:
                return True
            opened = self._opened_at.get(source, 0.0)
            if time.monotonic() - opened >= self._recovery_s:
                self._state[source] = CircuitState.HALF_OPEN
                logger.info("circuit_half_open", source=source)
                return True
            CIRCUIT_REJECTIONS.labels(source=source).inc()
            return False

    async def record_success(self, source: str) -> None:
        async with self._lock:
            if self._state.get(source) == CircuitState.HALF_OPEN:
                logger.info("circuit_closed", source=source)
            self._state[source] = CircuitState.CLOSED
            self._failures[source] = 0

    async def record_failure(self, source: str, reason: Optional[str] = None) -> None:
        """Count a failed fetch; open the circuit at the threshold or on a half-open probe failure."""
        async with self._lock:
            self._failures[source] = self._failures.get(source, 0) + 1
            if self._state.get(source) == CircuitState.HALF_OPEN:
                self._state[source] = CircuitState.OPEN
                self._opened_at[source] = time.monotonic()
                logger.warning("circuit_open", source=source, reason="failure_in_half_open")
            elif self._failures[source] >= self._threshold and self._state.get(source) != CircuitState.OPEN:
                self._state[source] = CircuitState.OPEN
                self._opened_at[source] = time.monotonic()
                logger.warning(
                    "circuit_open",
                    source=source,
                    failures=self._failures[source],
                    threshold=self._threshold,
                    reason=reason,
                )
