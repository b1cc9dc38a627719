"""
End-to-end verification run: fetch every record from every source, build
consensus per record, then produce the discrepancy and batch reports.
"""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence, Union

from shared.models.domain import BatchProgress, BatchReport, ConsensusResult, DiscrepancyReport, RecordRef
from shared.utils.logging import batch_context, get_logger
from shared.utils.metrics import DISCREPANCIES, RECORD_CONFIDENCE, RECORDS_PROCESSED

from verification.batch_fetcher import BatchFetcher, ProgressCallback
from verification.checkpoint import CheckpointStore
from verification.config import FetchConfig, VerificationConfig
from verification.consensus_builder import ConsensusBuilder
from verification.errors import AllSourcesFailed
from verification.rate_limiter import SourceRateLimiters
from verification.report_generator import generate_batch_report, generate_discrepancy_report
from verification.sources.base import SourceAdapter

logger = get_logger(__name__)


@dataclass
class PipelineOutcome:
    results: list[ConsensusResult] = field(default_factory=list)
    unverifiable: list[AllSourcesFailed] = field(default_factory=list)
    discrepancy_report: Optional[DiscrepancyReport] = None
    batch_report: Optional[BatchReport] = None
    progress: Optional[BatchProgress] = None
    cancelled: bool = False


class VerificationPipeline:
    """Fetch -> consensus -> reports for one batch of records."""

    def __init__(
        self,
        sources: Sequence[SourceAdapter],
        fetch_config: Optional[FetchConfig] = None,
        verification_config: Optional[VerificationConfig] = None,
        checkpoint_store: Optional[CheckpointStore] = None,
        rate_limiters: Optional[SourceRateLimiters] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        self._sources = list(sources)
        self._verification_config = verification_config or VerificationConfig()
        self._fetcher = BatchFetcher(
            self._sources,
            config=fetch_config,
            rate_limiters=rate_limiters,
            checkpoint_store=checkpoint_store,
            on_progress=on_progress,
        )
        self._builder = ConsensusBuilder(self._verification_config)

    async def start(self) -> None:
        """Open adapter connections."""
        await asyncio.gather(*(s.start() for s in self._sources))

    async def close(self) -> None:
        await asyncio.gather(*(s.close() for s in self._sources), return_exceptions=True)

    async def run(
        self,
        records: Iterable[Union[RecordRef, str]],
        batch_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PipelineOutcome:
        self._verification_config.ensure_valid()
        batch_id = batch_id or uuid.uuid4().hex
        with batch_context(batch_id):
            return await self._run(records, batch_id, cancel_event)

    async def _run(
        self,
        records: Iterable[Union[RecordRef, str]],
        batch_id: str,
        cancel_event: Optional[asyncio.Event],
    ) -> PipelineOutcome:
        outcome = PipelineOutcome()
        stream = self._fetcher.fetch_all(records, batch_id=batch_id, cancel_event=cancel_event)

        async for item in stream:
            outcome.progress = item.progress
            if item.error is not None or item.source_data is None:
                outcome.unverifiable.append(item.error or AllSourcesFailed(item.record_id))
                RECORDS_PROCESSED.labels(outcome="unverifiable").inc()
                continue

            result = self._builder.build_consensus(item.source_data)
            outcome.results.append(result)
            RECORD_CONFIDENCE.observe(result.overall_confidence)
            RECORDS_PROCESSED.labels(outcome="needs_review" if result.needs_review else "verified").inc()
            for d in result.discrepancies:
                DISCREPANCIES.labels(classification=d.classification.value, severity=d.severity.value).inc()

        if outcome.progress is not None:
            outcome.cancelled = outcome.progress.remaining > 0 and cancel_event is not None and cancel_event.is_set()
        elif cancel_event is not None and cancel_event.is_set():
            outcome.cancelled = True

        outcome.results.sort(key=lambda r: r.record_id)
        outcome.unverifiable.sort(key=lambda e: e.record_id)
        outcome.discrepancy_report = generate_discrepancy_report(outcome.results, outcome.unverifiable)
        outcome.batch_report = generate_batch_report(outcome.results, outcome.unverifiable)
        logger.info(
            "verification_run_finished",
            results=len(outcome.results),
            unverifiable=len(outcome.unverifiable),
            needs_review=outcome.batch_report.records_needing_review,
            cancelled=outcome.cancelled,
        )
        return outcome
