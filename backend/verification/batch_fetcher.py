"""
Parallel multi-source batch fetcher.

A bounded pool of workers pulls records off a work queue; each record fans out
one task per source (joined with gather) and the finished record is put on a
result queue. The async-generator body is the single coordinator: it owns
BatchProgress and the checkpoint, and yields results as they complete.
"""
from __future__ import annotations

import asyncio
import inspect
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Iterable, Optional, Sequence, Union

from shared.models.domain import BatchProgress, Checkpoint, RecordRef, SourceData, SourceOutcome, SourceValue
from shared.models.enums import SourceStatus
from shared.utils.logging import get_logger
from shared.utils.metrics import BATCH_REMAINING

from verification.checkpoint import CheckpointStore, new_checkpoint
from verification.circuit_breaker import SourceCircuitBreaker
from verification.config import FetchConfig
from verification.errors import AllSourcesFailed, ConfigError, FetchError, FetchTimeoutError, NotFoundError, ParseError, RateLimitError
from verification.normalization import is_missing
from verification.rate_limiter import SourceRateLimiters
from verification.retry import RetryPolicy
from verification.sources.base import SourceAdapter

logger = get_logger(__name__)

ProgressCallback = Callable[[BatchProgress], Any]

_WORKER_DONE = object()


@dataclass
class RecordFetchResult:
    """One record's fetch outcome plus the progress snapshot taken when it was recorded."""
    record_id: str
    source_data: Optional[SourceData]
    outcomes: list[SourceOutcome] = field(default_factory=list)
    error: Optional[AllSourcesFailed] = None
    progress: Optional[BatchProgress] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.source_data is not None


@dataclass
class _RecordDone:
    record_id: str
    source_data: Optional[SourceData]
    outcomes: list[SourceOutcome]
    error: Optional[AllSourcesFailed]


class BatchFetcher:
    """Fetches every record from every source under shared rate limits."""

    def __init__(
        self,
        sources: Sequence[SourceAdapter],
        config: Optional[FetchConfig] = None,
        rate_limiters: Optional[SourceRateLimiters] = None,
        checkpoint_store: Optional[CheckpointStore] = None,
        on_progress: Optional[ProgressCallback] = None,
        retry_policy: Optional[RetryPolicy] = None,
        circuit_breaker: Optional[SourceCircuitBreaker] = None,
    ) -> None:
        self._sources = list(sources)
        self._config = config or FetchConfig()
        self._limiters = rate_limiters
        self._store = checkpoint_store
        self._on_progress = on_progress
        self._retry = retry_policy
        self._breaker = circuit_breaker

    @property
    def config(self) -> FetchConfig:
        return self._config

    # ── Validation ──────────────────────────────────────────────────────
    def _validate(self, records: Iterable[Union[RecordRef, str]]) -> list[RecordRef]:
        self._config.ensure_valid()
        if not self._sources:
            raise ConfigError("at least one source is required")
        names = [s.name for s in self._sources]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ConfigError(f"duplicate source names: {duplicates}")

        refs: list[RecordRef] = []
        seen: set[str] = set()
        for record in records:
            ref = RecordRef.coerce(record)
            if ref.record_id in seen:
                logger.warning("duplicate_record_skipped", record_id=ref.record_id)
                continue
            seen.add(ref.record_id)
            refs.append(ref)
        if not refs:
            raise ConfigError("record list is empty")
        return refs

    def fetch_all(
        self,
        records: Iterable[Union[RecordRef, str]],
        batch_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[RecordFetchResult]:
        """
        Validate eagerly, then return an async iterator of per-record results in
        completion order. Raises ConfigError before any task starts.
        """
        refs = self._validate(records)
        if self._limiters is None:
            self._limiters = SourceRateLimiters.from_config(self._config, [s.name for s in self._sources])
        if self._retry is None:
            self._retry = RetryPolicy.from_config(self._config)
        if self._breaker is None:
            self._breaker = SourceCircuitBreaker.from_config(self._config)
        return self._run(refs, batch_id or uuid.uuid4().hex, cancel_event or asyncio.Event())

    # ── Coordinator ─────────────────────────────────────────────────────
    async def _run(
        self,
        refs: list[RecordRef],
        batch_id: str,
        cancel: asyncio.Event,
    ) -> AsyncIterator[RecordFetchResult]:
        started = time.monotonic()
        checkpoint = await self._load_checkpoint(batch_id)
        done_ids = set(checkpoint.processed_ids)
        pending = [r for r in refs if r.record_id not in done_ids]

        progress = BatchProgress(
            batch_id=batch_id,
            total=len(refs),
            skipped=len(refs) - len(pending),
            checkpoint=checkpoint,
        )
        BATCH_REMAINING.labels(batch_id=batch_id).set(progress.remaining)
        logger.info(
            "batch_started",
            batch_id=batch_id,
            total=progress.total,
            skipped=progress.skipped,
            sources=[s.name for s in self._sources],
            concurrency=self._config.concurrency,
        )

        work: asyncio.Queue[RecordRef] = asyncio.Queue()
        for ref in pending:
            work.put_nowait(ref)
        done: asyncio.Queue[Any] = asyncio.Queue()
        workers = [
            asyncio.create_task(self._worker(work, done, cancel))
            for _ in range(min(self._config.concurrency, len(pending)))
        ]
        active = len(workers)

        try:
            while active:
                item = await done.get()
                if item is _WORKER_DONE:
                    active -= 1
                    continue
                progress.completed += 1
                if item.error is not None:
                    progress.failed += 1
                checkpoint.processed_ids.append(item.record_id)
                checkpoint.timestamp = datetime.now(timezone.utc)
                await self._save_checkpoint(checkpoint)

                progress.elapsed_s = round(time.monotonic() - started, 3)
                rate = progress.completed / progress.elapsed_s if progress.elapsed_s > 0 else 0.0
                progress.estimated_remaining_s = round(progress.remaining / rate, 3) if rate > 0 else 0.0
                BATCH_REMAINING.labels(batch_id=batch_id).set(progress.remaining)

                snapshot = progress.model_copy(deep=True)
                await self._notify(snapshot)
                yield RecordFetchResult(
                    record_id=item.record_id,
                    source_data=item.source_data,
                    outcomes=item.outcomes,
                    error=item.error,
                    progress=snapshot,
                )

            # Surface unexpected worker crashes
            await asyncio.gather(*workers)

            progress.elapsed_s = round(time.monotonic() - started, 3)
            if cancel.is_set() and progress.remaining > 0:
                await self._save_checkpoint(checkpoint)
                logger.info(
                    "batch_cancelled",
                    batch_id=batch_id,
                    completed=progress.completed,
                    dropped=progress.remaining,
                )
            else:
                if self._store is not None:
                    await self._store.discard(batch_id)
                logger.info(
                    "batch_completed",
                    batch_id=batch_id,
                    completed=progress.completed,
                    failed=progress.failed,
                    skipped=progress.skipped,
                    elapsed_s=progress.elapsed_s,
                )
        finally:
            for task in workers:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            BATCH_REMAINING.remove(batch_id)

    async def _load_checkpoint(self, batch_id: str) -> Checkpoint:
        existing = await self._store.load(batch_id) if self._store is not None else None
        if existing is not None:
            logger.info("checkpoint_resumed", batch_id=batch_id, processed=len(existing.processed_ids))
            return existing
        checkpoint = new_checkpoint(batch_id)
        await self._save_checkpoint(checkpoint)
        return checkpoint

    async def _save_checkpoint(self, checkpoint: Checkpoint) -> None:
        if self._store is not None:
            await self._store.save(checkpoint)

    async def _notify(self, snapshot: BatchProgress) -> None:
        if self._on_progress is None:
            return
        ret = self._on_progress(snapshot)
        if inspect.isawaitable(ret):
            await ret

    # ── Workers ─────────────────────────────────────────────────────────
    async def _worker(self, work: asyncio.Queue, done: asyncio.Queue, cancel: asyncio.Event) -> None:
        try:
            while not cancel.is_set():
                try:
                    ref = work.get_nowait()
                except asyncio.QueueEmpty:
                    break
                await done.put(await self._fetch_record(ref))
        finally:
            done.put_nowait(_WORKER_DONE)

    async def _fetch_record(self, ref: RecordRef) -> _RecordDone:
        """Fetch one record from every source concurrently and join."""
        pairs = await asyncio.gather(*(self._fetch_source(source, ref) for source in self._sources))

        values: list[SourceValue] = []
        outcomes: list[SourceOutcome] = []
        for source_values, outcome in pairs:
            values.extend(source_values)
            outcomes.append(outcome)
        values.sort(key=lambda v: (v.field, v.source))
        outcomes.sort(key=lambda o: o.source)

        if not values:
            error = AllSourcesFailed(
                ref.record_id,
                [f"{o.source}: {o.error_kind or o.status.value}" for o in outcomes],
            )
            logger.warning("record_all_sources_failed", record_id=ref.record_id, errors=error.errors)
            return _RecordDone(ref.record_id, None, outcomes, error)

        data = SourceData(record_id=ref.record_id, values=tuple(values), outcomes=tuple(outcomes))
        return _RecordDone(ref.record_id, data, outcomes, None)

    async def _fetch_source(self, source: SourceAdapter, ref: RecordRef) -> tuple[list[SourceValue], SourceOutcome]:
        name = source.name
        if not await self._breaker.allow_request(name):
            logger.info("source_absent", source=name, record_id=ref.record_id, error_kind="circuit_open")
            return [], SourceOutcome(source=name, status=SourceStatus.SKIPPED, error_kind="circuit_open")

        bucket = self._limiters.ensure(name, self._config)
        timeout_s = self._config.timeout_ms / 1000.0
        attempts = 0

        async def attempt() -> Any:
            nonlocal attempts
            attempts += 1
            await bucket.acquire()
            try:
                return await asyncio.wait_for(source.fetch(ref), timeout=timeout_s)
            except asyncio.TimeoutError as exc:
                raise FetchTimeoutError(name, ref.record_id, f"no response within {self._config.timeout_ms:g}ms") from exc

        async def on_retry(exc: BaseException, delay: float) -> None:
            if isinstance(exc, RateLimitError) and exc.retry_after:
                await bucket.pause(exc.retry_after)

        try:
            data, _ = await self._retry.run(attempt, source=name, on_retry=on_retry)
            if not isinstance(data, dict):
                raise ParseError(name, ref.record_id, f"adapter returned {type(data).__name__}, expected dict")
        except NotFoundError as exc:
            await self._breaker.record_success(name)
            logger.info("source_absent", source=name, record_id=ref.record_id, error_kind=exc.kind)
            return [], SourceOutcome(
                source=name, status=SourceStatus.ABSENT, attempts=attempts, error_kind=exc.kind, error=str(exc)
            )
        except FetchError as exc:
            # only transport-level failures count toward the circuit
            if exc.retryable:
                await self._breaker.record_failure(name, reason=exc.kind)
            else:
                await self._breaker.record_success(name)
            logger.info(
                "source_absent",
                source=name,
                record_id=ref.record_id,
                error_kind=exc.kind,
                attempts=attempts,
                error=str(exc),
            )
            return [], SourceOutcome(
                source=name, status=SourceStatus.FAILED, attempts=attempts, error_kind=exc.kind, error=str(exc)
            )
        except Exception as exc:
            await self._breaker.record_failure(name, reason="unexpected")
            logger.exception("source_fetch_unexpected_error", source=name, record_id=ref.record_id)
            return [], SourceOutcome(
                source=name,
                status=SourceStatus.FAILED,
                attempts=attempts,
                error_kind="unexpected",
                error=f"{type(exc).__name__}: {exc}",
            )

        await self._breaker.record_success(name)
        fetched_at = datetime.now(timezone.utc)
        values = [
            SourceValue(source=name, field=str(key), raw_value=raw, fetched_at=fetched_at)
            for key, raw in sorted(data.items())
            if not is_missing(raw)
        ]
        if not values:
            logger.info("source_absent", source=name, record_id=ref.record_id, error_kind="empty")
            return [], SourceOutcome(source=name, status=SourceStatus.ABSENT, attempts=attempts, error_kind="empty")
        return values, SourceOutcome(source=name, status=SourceStatus.SUCCESS, attempts=attempts)
