"""
End-to-end pipeline test with scripted sources: fetch, consensus, reports.

Run: pytest backend/tests/test_pipeline.py -v
"""
from __future__ import annotations

import asyncio

import pytest

from shared.models.enums import DiscrepancyClass, ResolutionMethod
from verification.checkpoint import InMemoryCheckpointStore
from verification.config import FetchConfig, VerificationConfig
from verification.errors import AllSourcesFailed, ConfigError
from verification.pipeline import VerificationPipeline

from conftest import FakeSource


def scripted_sources() -> list[FakeSource]:
    tmdb = FakeSource("tmdb", {
        "r1": {"title": "Eega", "release_year": 2012, "director": "S. S. Rajamouli", "runtime": 134},
        "r2": {"title": "Magadheera", "release_year": 1998},
    })
    omdb = FakeSource("omdb", {
        "r1": {"title": "EEGA", "release_year": "2012", "director": "S. S. Rajamouli", "runtime": "134 min"},
        "r2": {"title": "Magadheera", "release_year": "2001"},
    })
    wikipedia = FakeSource("wikipedia", {
        "r1": {"title": "Eega (film)", "release_year": "2012"},
    })
    return [tmdb, omdb, wikipedia]


@pytest.mark.asyncio
async def test_pipeline_end_to_end(fast_fetch_config: FetchConfig, verification_config: VerificationConfig) -> None:
    seen = []
    pipeline = VerificationPipeline(
        scripted_sources(),
        fetch_config=fast_fetch_config,
        verification_config=verification_config,
        checkpoint_store=InMemoryCheckpointStore(),
        on_progress=seen.append,
    )
    await pipeline.start()
    try:
        outcome = await pipeline.run(["r3", "r1", "r2"], batch_id="nightly")
    finally:
        await pipeline.close()

    assert [r.record_id for r in outcome.results] == ["r1", "r2"]
    assert [e.record_id for e in outcome.unverifiable] == ["r3"]
    assert isinstance(outcome.unverifiable[0], AllSourcesFailed)
    assert outcome.cancelled is False
    assert outcome.progress.completed == 3
    assert outcome.progress.failed == 1
    assert len(seen) == 3

    r1, r2 = outcome.results
    assert r1.needs_review is False
    assert r1.field("title").value == "Eega"
    assert r1.field("runtime").value == 134
    assert r1.sources_succeeded == ["omdb", "tmdb", "wikipedia"]

    assert r2.needs_review is True
    assert r2.field("release_year").method == ResolutionMethod.MANUAL_REQUIRED
    year_issue = next(d for d in r2.discrepancies if d.field == "release_year")
    assert year_issue.classification == DiscrepancyClass.FACTUAL

    report = outcome.discrepancy_report
    assert report.total_records == 2
    assert [u.record_id for u in report.unverifiable] == ["r3"]
    assert report.unverifiable[0].reason == "AllSourcesFailed"
    assert report.counts["critical"]["factual"] == 1

    batch = outcome.batch_report
    assert batch.total_records == 3
    assert batch.records_needing_review == 1
    assert batch.records_by_status.needs_review == ["r2"]
    assert batch.records_by_status.unverifiable == ["r3"]


@pytest.mark.asyncio
async def test_pipeline_rejects_invalid_verification_config(fast_fetch_config: FetchConfig) -> None:
    sources = scripted_sources()
    pipeline = VerificationPipeline(
        sources,
        fetch_config=fast_fetch_config,
        verification_config=VerificationConfig(consensus_threshold=0.0),
    )
    with pytest.raises(ConfigError):
        await pipeline.run(["r1"])
    assert all(s.calls == [] for s in sources)


@pytest.mark.asyncio
async def test_pipeline_reports_cancellation() -> None:
    config = FetchConfig(concurrency=1, per_source_rps={}, default_rps=10_000.0, burst=100)
    records = [f"r{i}" for i in range(5)]
    source = FakeSource("tmdb", {r: {"title": "Eega"} for r in records}, delay=0.01)
    cancel = asyncio.Event()
    pipeline = VerificationPipeline([source], fetch_config=config, on_progress=lambda p: cancel.set())

    outcome = await pipeline.run(records, batch_id="cancelled", cancel_event=cancel)

    assert outcome.cancelled is True
    assert 1 <= len(outcome.results) < len(records)
    assert outcome.batch_report.total_records == len(outcome.results)
