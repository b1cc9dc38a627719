"""Shared fixtures: scripted fake catalog adapters and fast fetch limits."""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Optional

import pytest

from shared.models.domain import RecordRef, SourceData, SourceOutcome, SourceValue
from shared.models.enums import SourceStatus
from verification.config import FetchConfig, VerificationConfig
from verification.errors import NotFoundError
from verification.sources.base import SourceAdapter

FIXED_TIME = datetime(2024, 1, 15, tzinfo=timezone.utc)


class FakeSource(SourceAdapter):
    """
    Scripted adapter. responses maps record_id to a dict (returned every call),
    an exception (raised every call) or a list consumed one item per call with
    the last item repeated.
    """

    def __init__(
        self,
        name: str,
        responses: Optional[dict[str, Any]] = None,
        delay: float = 0.0,
    ) -> None:
        self._name = name
        self._responses = dict(responses or {})
        self._delay = delay
        self.calls: list[str] = []

    @property
    def name(self) -> str:
        return self._name

    async def fetch(self, record: RecordRef) -> dict[str, Any]:
        self.calls.append(record.record_id)
        if self._delay:
            await asyncio.sleep(self._delay)
        else:
            await asyncio.sleep(0)
        response = self._responses.get(record.record_id)
        if response is None:
            raise NotFoundError(self._name, record.record_id, "not scripted")
        if isinstance(response, list):
            index = min(self.calls.count(record.record_id), len(response)) - 1
            response = response[index]
        if isinstance(response, BaseException):
            raise response
        return dict(response)


def make_source_data(record_id: str, by_source: dict[str, dict[str, Any]]) -> SourceData:
    """SourceData from {source: {field: raw value}}."""
    values = [
        SourceValue(source=source, field=field, raw_value=raw, fetched_at=FIXED_TIME)
        for source, fields in by_source.items()
        for field, raw in fields.items()
    ]
    outcomes = [SourceOutcome(source=s, status=SourceStatus.SUCCESS, attempts=1) for s in sorted(by_source)]
    return SourceData(record_id=record_id, values=tuple(values), outcomes=tuple(outcomes))


@pytest.fixture
def fast_fetch_config() -> FetchConfig:
    return FetchConfig(
        concurrency=4,
        per_source_rps={},
        default_rps=10_000.0,
        burst=1_000,
        max_retries=2,
        backoff_base_ms=1.0,
        jitter_ratio=0.0,
        timeout_ms=1_000.0,
        circuit_failure_threshold=100,
    )


@pytest.fixture
def verification_config() -> VerificationConfig:
    return VerificationConfig()
