"""
Redis connection manager for the verification services.
Provides an async connection pool and key namespace utilities.
"""
from __future__ import annotations

from typing import Any, Optional

import redis.asyncio as aioredis
from redis.asyncio import Redis

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Key namespaces ──────────────────────────────────────────────────────
CHECKPOINT_KEY = "verification:checkpoint:{batch_id}"
CHECKPOINT_INDEX_KEY = "verification:checkpoints"


def _fmt(template: str, **kwargs: Any) -> str:
    return template.format(**kwargs)


class RedisManager:
    """Manages async Redis connection pool and provides typed helpers."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._pool: Optional[Redis] = None

    async def connect(self) -> None:
        """Initialize the connection pool."""
        self._pool = aioredis.from_url(
            self._settings.redis_url_str,
            max_connections=self._settings.redis_max_connections,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_keepalive=True,
            retry_on_timeout=True,
        )
        # Verify
        await self._pool.ping()
        logger.info("redis_connected", url=self._settings.redis_url_safe_log)

    async def disconnect(self) -> None:
        """Graceful shutdown."""
        if self._pool:
            await self._pool.aclose()
            logger.info("redis_disconnected")

    @property
    def client(self) -> Redis:
        if self._pool is None:
            raise RuntimeError("RedisManager not connected. Call connect() first.")
        return self._pool

    # ── Checkpoint helpers ──────────────────────────────────────────────
    async def get_checkpoint(self, batch_id: str) -> Optional[str]:
        """Retrieve a JSON checkpoint payload."""
        return await self.client.get(_fmt(CHECKPOINT_KEY, batch_id=batch_id))

    async def set_checkpoint(self, batch_id: str, payload: str, ttl_s: int | None = None) -> None:
        """Store a JSON checkpoint payload and index the batch id."""
        key = _fmt(CHECKPOINT_KEY, batch_id=batch_id)
        pipe = self.client.pipeline(transaction=True)
        pipe.set(key, payload, ex=ttl_s)
        pipe.sadd(CHECKPOINT_INDEX_KEY, batch_id)
        await pipe.execute()

    async def delete_checkpoint(self, batch_id: str) -> None:
        """Remove a checkpoint and its index entry."""
        pipe = self.client.pipeline(transaction=True)
        pipe.delete(_fmt(CHECKPOINT_KEY, batch_id=batch_id))
        pipe.srem(CHECKPOINT_INDEX_KEY, batch_id)
        await pipe.execute()
