"""
Checkpoint persistence for resumable batches.
Format: {batch_id, processed_ids: [str], timestamp: ISO-8601}.
"""
from __future__ import annotations

import asyncio
import os
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from pydantic import ValidationError

from shared.models.domain import Checkpoint
from shared.utils.logging import get_logger
from shared.utils.redis_manager import RedisManager

logger = get_logger(__name__)


def new_checkpoint(batch_id: str, processed_ids: Iterable[str] = ()) -> Checkpoint:
    return Checkpoint(
        batch_id=batch_id,
        processed_ids=list(processed_ids),
        timestamp=datetime.now(timezone.utc),
    )


class CheckpointStore(ABC):
    """Where a batch records which records are done."""

    @abstractmethod
    async def load(self, batch_id: str) -> Optional[Checkpoint]:
        """Return the stored checkpoint, or None when the batch has none."""
        ...

    @abstractmethod
    async def save(self, checkpoint: Checkpoint) -> None:
        ...

    @abstractmethod
    async def discard(self, batch_id: str) -> None:
        ...


class InMemoryCheckpointStore(CheckpointStore):
    """Process-local store; used when no persistence is configured."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def load(self, batch_id: str) -> Optional[Checkpoint]:
        payload = self._data.get(batch_id)
        return Checkpoint.model_validate_json(payload) if payload else None

    async def save(self, checkpoint: Checkpoint) -> None:
        self._data[checkpoint.batch_id] = checkpoint.model_dump_json()

    async def discard(self, batch_id: str) -> None:
        self._data.pop(batch_id, None)


class JsonFileCheckpointStore(CheckpointStore):
    """One JSON file per batch, written with an atomic replace."""

    def __init__(self, directory: Path | str) -> None:
        self._dir = Path(directory)

    def path_for(self, batch_id: str) -> Path:
        safe = "".join(c if c.isalnum() or c in "-_." else "_" for c in batch_id)
        return self._dir / f"{safe}.json"

    def _read(self, path: Path) -> Optional[str]:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def _write(self, path: Path, payload: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(payload, encoding="utf-8")
        os.replace(tmp, path)

    async def load(self, batch_id: str) -> Optional[Checkpoint]:
        path = self.path_for(batch_id)
        payload = await asyncio.to_thread(self._read, path)
        if payload is None:
            return None
        try:
            return Checkpoint.model_validate_json(payload)
        except ValidationError as exc:
            logger.warning("checkpoint_corrupt", batch_id=batch_id, path=str(path), error=str(exc))
            return None

    async def save(self, checkpoint: Checkpoint) -> None:
        await asyncio.to_thread(self._write, self.path_for(checkpoint.batch_id), checkpoint.model_dump_json())

    async def discard(self, batch_id: str) -> None:
        path = self.path_for(batch_id)
        await asyncio.to_thread(path.unlink, missing_ok=True)
        logger.debug("checkpoint_discarded", batch_id=batch_id, path=str(path))


class RedisCheckpointStore(CheckpointStore):
    """Checkpoints in Redis via the shared RedisManager."""

    def __init__(self, redis: RedisManager, ttl_s: Optional[int] = None) -> None:
        self._redis = redis
        self._ttl_s = ttl_s

    async def load(self, batch_id: str) -> Optional[Checkpoint]:
        payload = await self._redis.get_checkpoint(batch_id)
        if not payload:
            return None
        try:
            return Checkpoint.model_validate_json(payload)
        except ValidationError as exc:
            logger.warning("checkpoint_corrupt", batch_id=batch_id, error=str(exc))
            return None

    async def save(self, checkpoint: Checkpoint) -> None:
        await self._redis.set_checkpoint(checkpoint.batch_id, checkpoint.model_dump_json(), ttl_s=self._ttl_s)

    async def discard(self, batch_id: str) -> None:
        await self._redis.delete_checkpoint(batch_id)
