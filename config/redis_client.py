"""
config/redis_client.py
Async Redis client for caching, slot locking, JWT deny-list,
rate limiting, and pub/sub (chat realtime channel).
"""

import json
from typing import Any, Optional
import redis.asyncio as aioredis
from redis.exceptions import WatchError

from config.settings import settings


# ── Global client (initialized on startup) ───────────────────
redis_client: Optional[aioredis.Redis] = None


async def init_redis() -> None:
    """Initialize the Redis connection pool."""
    global redis_client
    redis_client = aioredis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )
    # Test connection
    await redis_client.ping()


async def close_redis() -> None:
    """Close Redis connection pool."""
    global redis_client
    if redis_client:
        await redis_client.aclose()


def get_redis() -> aioredis.Redis:
    """FastAPI dependency to get Redis client."""
    if not redis_client:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return redis_client


def dialog_channel(dialog_id: str) -> str:
    return f"chat:dialog:{dialog_id}"


# ── Cache Helpers ─────────────────────────────────────────────
class RedisCache:
    """Helper class for common Redis caching patterns."""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    async def get(self, key: str) -> Optional[Any]:
        value = await self.client.get(key)
        if value:
            return json.loads(value)
        return None

    async def set(self, key: str, value: Any, ttl: int = settings.REDIS_CACHE_TTL) -> None:
        await self.client.setex(key, ttl, json.dumps(value, default=str))

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    # ── Slot Locking ─────────────────────────────────────────
    @staticmethod
    def _slot_key(cleaner_id: str, date: str, time_slot: str) -> str:
        return f"slot_lock:{cleaner_id}:{date}:{time_slot}"

    async def lock_slot(self, cleaner_id: str, date: str, time_slot: str, holder: str) -> bool:
        """
        Atomic slot lock using SET NX (set if not exists).
        Returns True if lock acquired, False if another writer holds the slot.
        """
        result = await self.client.set(
            self._slot_key(cleaner_id, date, time_slot),
            holder,
            ex=settings.REDIS_SLOT_LOCK_TTL,
            nx=True,  # Only set if key doesn't exist
        )
        return result is True

    async def release_slot(self, cleaner_id: str, date: str, time_slot: str, holder: str) -> bool:
        """
        Delete the lock only if `holder` still owns it (WATCH/MULTI compare-and-delete).
        Returns False when the lock expired and another writer took it over.
        """
        key = self._slot_key(cleaner_id, date, time_slot)
        async with self.client.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                current = await pipe.get(key)
                if isinstance(current, bytes):
                    current = current.decode()
                if current != holder:
                    await pipe.unwatch()
                    return False
                pipe.multi()
                pipe.delete(key)
                await pipe.execute()
                return True
            except WatchError:
                # Key changed between GET and EXEC: someone else holds it now
                return False

    # ── JWT Deny List ─────────────────────────────────────────
    async def revoke_token(self, jti: str, ttl_seconds: int) -> None:
        """Add JWT ID to deny list until it expires."""
        await self.client.setex(f"jwt_revoked:{jti}", ttl_seconds, "1")

    async def is_token_revoked(self, jti: str) -> bool:
        return await self.client.exists(f"jwt_revoked:{jti}") == 1

    # ── Pub/Sub ───────────────────────────────────────────────
    async def publish(self, channel: str, message: dict) -> int:
        """Publish a JSON message. Returns the number of subscribers reached."""
        return await self.client.publish(channel, json.dumps(message, default=str))

    # ── Rate Limiting ─────────────────────────────────────────
    async def check_rate_limit(self, key: str, limit: int, window_seconds: int = 60) -> bool:
        """
        Fixed window rate limiter.
        Returns True if request is allowed, False if rate limited.
        """
        pipe = self.client.pipeline()
        pipe.incr(key)
        pipe.expire(key, window_seconds)
        results = await pipe.execute()
        current_count = results[0]
        return current_count <= limit
