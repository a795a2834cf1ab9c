"""
RedisCacheStore - Networked cache store backed by redis.asyncio.

The connection is opened lazily on the first operation. Store failures are
logged and treated as cache misses / no-ops; they never reach the caller.
"""

import json
from typing import Any
from urllib.parse import urlsplit, urlunsplit

from loguru import logger
from redis.asyncio import Redis
from redis.exceptions import RedisError

from lirax.services.cache import (
    DEFAULT_CACHE_PREFIX,
    CacheProvider,
    CacheStats,
    CacheStore,
)

DEFAULT_REDIS_URL = "redis://localhost:6379"

# Errors that mean "store unavailable or value unusable", never raised to callers
STORE_ERRORS = (RedisError, OSError, ValueError, TypeError)


def _with_tls(url: str) -> str:
    """Switch a redis:// URL to rediss:// so the client negotiates TLS."""
    parts = urlsplit(url)
    if parts.scheme == "redis":
        return urlunsplit(parts._replace(scheme="rediss"))
    return url


class RedisCacheStore(CacheStore):
    """
    Cache store on a Redis server.

    Usage:
        cache = RedisCacheStore(url="redis://cache:6379/0", key_prefix="tenant-1")
        await cache.set("users:all", users, ttl_seconds=3600)
    """

    provider = CacheProvider.REDIS

    def __init__(
        self,
        url: str | None = None,
        key_prefix: str = DEFAULT_CACHE_PREFIX,
        tls: bool = False,
        password: str | None = None,
        db: int | None = None,
        client: Redis | None = None,
        debug: bool = False,
    ):
        super().__init__(key_prefix, debug)
        self._connected = False

        if client is not None:
            self._client = client
            return

        url = url or DEFAULT_REDIS_URL
        if tls:
            url = _with_tls(url)

        kwargs: dict[str, Any] = {
            "decode_responses": True,
            "socket_connect_timeout": 5,
            "socket_timeout": 5,
        }
        if password:
            kwargs["password"] = password
        if db is not None:
            kwargs["db"] = db

        # Builds the connection pool only; no network I/O happens here
        self._client = Redis.from_url(url, **kwargs)

    async def _ensure_connected(self) -> None:
        if self._connected:
            return
        await self._client.ping()
        self._connected = True
        logger.info("Redis cache connected")

    def _on_error(self, action: str, error: Exception) -> None:
        # Force a reconnect check on the next operation
        self._connected = False
        logger.warning(f"Redis cache {action} error: {error}")

    async def get(self, key: str) -> Any | None:
        full_key = self.make_key(key)
        try:
            await self._ensure_connected()
            data = await self._client.get(full_key)
            if data is None:
                self._stats.misses += 1
                self._log(f"MISS: {full_key[:50]}")
                return None
            value = json.loads(data)
        except STORE_ERRORS as e:
            self._on_error("get", e)
            self._stats.misses += 1
            return None

        self._stats.hits += 1
        self._log(f"HIT: {full_key[:50]}")
        return value

    async def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        full_key = self.make_key(key)
        try:
            await self._ensure_connected()
            serialized = json.dumps(value, default=str)
            if ttl_seconds and ttl_seconds > 0:
                await self._client.setex(full_key, max(1, int(ttl_seconds)), serialized)
            else:
                await self._client.set(full_key, serialized)
        except STORE_ERRORS as e:
            self._on_error("set", e)
            return

        self._log(f"SET: {full_key[:50]} (TTL: {ttl_seconds or 'never'})")

    async def delete(self, key: str) -> None:
        try:
            await self._ensure_connected()
            await self._client.delete(self.make_key(key))
        except STORE_ERRORS as e:
            self._on_error("delete", e)

    async def clear(self) -> None:
        pattern = f"{self.namespace}:*"
        removed = 0
        try:
            await self._ensure_connected()
            batch: list[str] = []
            async for key in self._client.scan_iter(match=pattern, count=1000):
                batch.append(key)
                if len(batch) >= 1000:
                    removed += await self._client.delete(*batch)
                    batch = []
            if batch:
                removed += await self._client.delete(*batch)
        except STORE_ERRORS as e:
            self._on_error("clear", e)
            return

        self._stats = CacheStats()
        self._log(f"CLEAR: {removed} entries removed")

    async def stats(self) -> CacheStats:
        size = 0
        try:
            await self._ensure_connected()
            async for _ in self._client.scan_iter(match=f"{self.namespace}:*", count=1000):
                size += 1
        except STORE_ERRORS as e:
            self._on_error("stats", e)
        self._stats.size = size
        return self._stats

    async def close(self) -> None:
        try:
            await self._client.aclose()
        except STORE_ERRORS as e:
            logger.warning(f"Redis cache close error: {e}")
        self._connected = False
