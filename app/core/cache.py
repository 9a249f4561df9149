"""
Table-existence caching.

Checking ``information_schema`` on every report build is wasteful, so the
answer is cached per ``schema.table`` key with an expiry. The cache is an
explicit object built once at startup and passed to whoever needs it; two
backends share one async interface:

* ``MemoryTableCache`` - in-process map, the default
* ``RedisTableCache`` - shared between workers through Redis
"""
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Protocol, Tuple

import redis.asyncio as redis

from app.core.config import Settings
from app.core.logging import logger

# Cache key prefix to avoid collisions
CACHE_PREFIX = "sar:table:"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TableExistenceCache(Protocol):
    async def get(self, key: str) -> Optional[bool]:
        ...

    async def put(self, key: str, value: bool, expires_at: datetime) -> None:
        ...


class MemoryTableCache:
    """In-process TTL cache."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self._entries: Dict[str, Tuple[bool, datetime]] = {}

    async def get(self, key: str) -> Optional[bool]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        return value

    async def put(self, key: str, value: bool, expires_at: datetime) -> None:
        self._entries[key] = (value, expires_at)

    def clear(self) -> None:
        self._entries.clear()


class RedisTableCache:
    """Redis-backed TTL cache; lookups degrade to a miss when Redis is down."""

    def __init__(self, client: "redis.Redis", clock: Callable[[], datetime] = _utcnow):
        self._client = client
        self._clock = clock

    async def get(self, key: str) -> Optional[bool]:
        try:
            value = await self._client.get(f"{CACHE_PREFIX}{key}")
        except redis.RedisError as e:
            logger.error(f"Cache get error: {e}")
            return None
        if value is None:
            return None
        return value in (b"1", "1")

    async def put(self, key: str, value: bool, expires_at: datetime) -> None:
        ttl = int((expires_at - self._clock()).total_seconds())
        if ttl <= 0:
            return
        try:
            await self._client.set(f"{CACHE_PREFIX}{key}", b"1" if value else b"0", ex=ttl)
        except redis.RedisError as e:
            logger.error(f"Cache set error: {e}")

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except redis.RedisError as e:
            logger.error(f"Redis connection check failed: {e}")
            return False

    async def aclose(self) -> None:
        await self._client.aclose()


def cache_expiry(settings: Settings, now: Optional[datetime] = None) -> datetime:
    return (now or _utcnow()) + timedelta(seconds=settings.cache.ttl)


def build_table_cache(settings: Settings) -> TableExistenceCache:
    """Create the table-existence cache selected by configuration."""
    if settings.cache.backend == "redis":
        redis_kwargs = {
            "host": settings.redis.host,
            "port": settings.redis.port,
            "db": settings.redis.db,
            "decode_responses": False,
            "socket_connect_timeout": 5,
            "socket_timeout": 5,
            "max_connections": settings.redis.max_connections,
        }
        # Only include password if it's actually configured
        if settings.redis.password_str:
            redis_kwargs["password"] = settings.redis.password_str

        client = redis.Redis(**redis_kwargs)
        logger.info(f"Redis table cache initialized: {settings.redis.host}:{settings.redis.port}, db={settings.redis.db}")
        return RedisTableCache(client)

    logger.info("In-memory table cache initialized")
    return MemoryTableCache()
