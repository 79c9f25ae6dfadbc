"""
Redis connection manager for the reconciler.
Provides the async connection pool, job overlap locks and the push-feed subscription.
"""
from __future__ import annotations

from typing import Any, Optional

import redis.asyncio as aioredis
from redis.asyncio import Redis
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Key namespaces ──────────────────────────────────────────────────────
JOB_LOCK_KEY = "lock:job:{job}"


def _fmt(template: str, **kwargs: Any) -> str:
    return template.format(**kwargs)


class RedisManager:
    """Manages the async Redis connection pool and provides typed helpers."""

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
        await self._pool.ping()
        logger.info("redis_connected", url=self._settings.redis_url_str)

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

    async def ping(self) -> bool:
        if self._pool is None:
            return False
        try:
            return bool(await self._pool.ping())
        except RedisError as exc:
            logger.warning("redis_ping_failed", error=str(exc))
            return False

    # ── Job overlap locks ───────────────────────────────────────────────

    # Lua script: atomically delete only if we hold the lock
    _RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    redis.call("del", KEYS[1])
    return 1
end
return 0
"""

    async def try_acquire_job_lock(self, job: str, token: str, ttl_s: int) -> bool:
        """Attempt to take the named job lock using SET NX EX."""
        key = _fmt(JOB_LOCK_KEY, job=job)
        return bool(await self.client.set(key, token, nx=True, ex=max(ttl_s, 1)))

    async def release_job_lock(self, job: str, token: str) -> bool:
        """Release the job lock only if this token still holds it."""
        key = _fmt(JOB_LOCK_KEY, job=job)
        result = await self.client.eval(self._RELEASE_LOCK_SCRIPT, 1, key, token)
        return bool(result)

    # ── Push feed ───────────────────────────────────────────────────────
    async def subscribe_channel(self, channel: str) -> PubSub:
        """Create a PubSub subscription on a single channel."""
        pubsub = self.client.pubsub()
        await pubsub.subscribe(channel)
        return pubsub
