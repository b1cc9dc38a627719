"""
Service wiring for a verification run.
Builds catalog adapters and the checkpoint store from settings, and runs one
batch with SIGTERM/SIGINT mapped to cooperative cancellation.
"""
from __future__ import annotations

import asyncio
import signal
from typing import Any, Iterable, Mapping, Optional, Union

from shared.config import Settings, get_settings
from shared.models.domain import RecordRef
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server
from shared.utils.redis_manager import RedisManager

from verification.checkpoint import CheckpointStore, JsonFileCheckpointStore, RedisCheckpointStore
from verification.config import VerifierSettings, get_verifier_settings
from verification.pipeline import PipelineOutcome, VerificationPipeline
from verification.sources import InternalSource, OMDbSource, SourceAdapter, TMDBSource, WikidataSource, WikipediaSource

logger = get_logger(__name__)


def build_sources(
    settings: Optional[Settings] = None,
    internal_rows: Optional[Mapping[str, Mapping[str, Any]]] = None,
) -> list[SourceAdapter]:
    """Catalog adapters for every configured source."""
    settings = settings or get_settings()
    sources: list[SourceAdapter] = [WikipediaSource(), WikidataSource()]
    if settings.tmdb_api_key:
        sources.append(TMDBSource(api_key=settings.tmdb_api_key))
    else:
        logger.warning("source_disabled", source="tmdb", reason="missing api key")
    if settings.omdb_api_key:
        sources.append(OMDbSource(api_key=settings.omdb_api_key))
    else:
        logger.warning("source_disabled", source="omdb", reason="missing api key")
    if internal_rows is not None:
        sources.append(InternalSource(internal_rows))
    return sources


def build_checkpoint_store(
    verifier_settings: VerifierSettings,
    redis: Optional[RedisManager] = None,
) -> CheckpointStore:
    if verifier_settings.checkpoint_backend == "redis":
        if redis is None:
            raise RuntimeError("redis checkpoint backend requires a connected RedisManager")
        return RedisCheckpointStore(redis, ttl_s=verifier_settings.checkpoint_ttl_s)
    return JsonFileCheckpointStore(verifier_settings.checkpoint_dir)


async def run_batch(
    records: Iterable[Union[RecordRef, str]],
    batch_id: Optional[str] = None,
    internal_rows: Optional[Mapping[str, Mapping[str, Any]]] = None,
) -> PipelineOutcome:
    setup_logging("verification")
    settings = get_settings()
    verifier_settings = get_verifier_settings()
    start_metrics_server()

    redis: Optional[RedisManager] = None
    if verifier_settings.checkpoint_backend == "redis":
        redis = RedisManager(settings)
        try:
            await redis.connect()
        except Exception as e:
            logger.exception("startup_connect_failed", error=str(e))
            raise

    pipeline = VerificationPipeline(
        build_sources(settings, internal_rows),
        fetch_config=verifier_settings.to_fetch_config(),
        verification_config=verifier_settings.to_verification_config(),
        checkpoint_store=build_checkpoint_store(verifier_settings, redis),
    )

    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, cancel.set)
        except NotImplementedError:
            pass

    try:
        await pipeline.start()
        return await pipeline.run(records, batch_id=batch_id, cancel_event=cancel)
    finally:
        await pipeline.close()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.remove_signal_handler(sig)
            except NotImplementedError:
                pass
        if redis is not None:
            await redis.disconnect()
