"""
Cache stores - Pluggable async key/value stores with TTL.

Variants:
- MemoryCacheStore: in-process dict with lazy expiry and LRU bound
- RedisCacheStore: networked store (lirax.services.redis_cache)
- FileCacheStore: one JSON document per key on disk (lirax.services.file_cache)

All keys are namespaced with a configurable prefix so several tenants can
share one physical store. A TTL of 0 / None means "no expiry".
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable
from urllib.parse import quote

from loguru import logger

DEFAULT_CACHE_PREFIX = "lirax"
DEFAULT_FILE_CACHE_PATH = "/tmp/lirax-cache"


class CacheProvider(str, Enum):
    """Available cache store variants."""

    MEMORY = "memory"
    REDIS = "redis"
    FILE = "file"


@dataclass
class CacheOptions:
    """Connection and namespacing options for cache stores."""

    key_prefix: str = DEFAULT_CACHE_PREFIX
    redis_url: str | None = None
    redis_tls: bool = False
    redis_password: str | None = None
    redis_db: int | None = None
    file_cache_path: str = DEFAULT_FILE_CACHE_PATH
    max_size: int | None = None
    debug: bool = False


@dataclass
class CacheEntry:
    """A single cache entry."""

    value: Any
    expires_at: float | None  # Wall-clock seconds, None = never

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now > self.expires_at


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    size: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "size": self.size,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "hit_rate": f"{self.hit_rate:.2%}",
        }


def expiry_for(ttl_seconds: float | None, now: float) -> float | None:
    """Absolute expiry for a TTL, None when the entry never expires."""
    if not ttl_seconds or ttl_seconds <= 0:
        return None
    return now + ttl_seconds


class CacheStore(ABC):
    """Common contract for every cache store variant."""

    provider: CacheProvider

    def __init__(self, key_prefix: str = DEFAULT_CACHE_PREFIX, debug: bool = False):
        self._prefix = key_prefix
        # Separator and glob characters encoded so prefixes never overlap
        self._namespace = quote(key_prefix, safe="")
        self._debug = debug
        self._stats = CacheStats()

    @property
    def key_prefix(self) -> str:
        return self._prefix

    @property
    def namespace(self) -> str:
        return self._namespace

    def make_key(self, key: str) -> str:
        """Namespace a key with the store prefix."""
        return f"{self._namespace}:{key}"

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the cached value, or None when absent or expired."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        """Store a value. A TTL of 0 / None means no expiry."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a key if present."""

    @abstractmethod
    async def clear(self) -> None:
        """Remove every key under this store's prefix."""

    async def stats(self) -> CacheStats:
        """Get cache statistics."""
        return self._stats

    async def close(self) -> None:
        """Release any connection held by the store."""

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[{type(self).__name__}] {message}")


class MemoryCacheStore(CacheStore):
    """
    In-process cache with lazy expiry.

    Usage:
        cache = MemoryCacheStore(key_prefix="tenant-1")

        value = await cache.get("users:all")
        if value is None:
            value = await fetch_users()
            await cache.set("users:all", value, ttl_seconds=3600)
    """

    provider = CacheProvider.MEMORY

    def __init__(
        self,
        key_prefix: str = DEFAULT_CACHE_PREFIX,
        max_size: int | None = None,
        clock: Callable[[], float] = time.time,
        debug: bool = False,
    ):
        super().__init__(key_prefix, debug)
        self._memory: dict[str, CacheEntry] = {}
        self._max_size = max_size
        self._clock = clock

    async def get(self, key: str) -> Any | None:
        full_key = self.make_key(key)
        entry = self._memory.get(full_key)

        if entry is None:
            self._stats.misses += 1
            self._log(f"MISS: {full_key[:50]}")
            return None

        if entry.is_expired(self._clock()):
            del self._memory[full_key]
            self._stats.misses += 1
            self._log(f"EXPIRED: {full_key[:50]}")
            return None

        self._stats.hits += 1
        self._log(f"HIT: {full_key[:50]}")
        return entry.value

    async def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        full_key = self.make_key(key)

        # LRU eviction if at capacity
        if (
            self._max_size
            and len(self._memory) >= self._max_size
            and full_key not in self._memory
        ):
            self._evict_oldest()

        # Re-insert so dict order tracks recency
        self._memory.pop(full_key, None)
        self._memory[full_key] = CacheEntry(
            value=value,
            expires_at=expiry_for(ttl_seconds, self._clock()),
        )
        self._log(f"SET: {full_key[:50]} (TTL: {ttl_seconds or 'never'})")

    async def delete(self, key: str) -> None:
        if self._memory.pop(self.make_key(key), None) is not None:
            self._log(f"DELETE: {key[:50]}")

    async def clear(self) -> None:
        count = len(self._memory)
        self._memory.clear()
        self._stats = CacheStats()
        self._log(f"CLEAR: {count} entries removed")

    async def stats(self) -> CacheStats:
        self._stats.size = len(self._memory)
        return self._stats

    def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        now = self._clock()
        expired_keys = [k for k, v in self._memory.items() if v.is_expired(now)]
        for key in expired_keys:
            del self._memory[key]

        if expired_keys:
            self._log(f"CLEANUP: {len(expired_keys)} expired entries removed")

        return len(expired_keys)

    def _evict_oldest(self) -> None:
        """Evict the least recently written entry."""
        if not self._memory:
            return

        oldest_key = next(iter(self._memory))
        del self._memory[oldest_key]
        self._stats.evictions += 1
        self._log(f"EVICT: {oldest_key[:50]}")


def _log_fallback(source: str, reason: str) -> None:
    logger.warning(f"Cache store falling back from {source} to memory: {reason}")


def create_cache_store(
    provider: CacheProvider | str = CacheProvider.MEMORY,
    options: CacheOptions | None = None,
) -> CacheStore:
    """
    Build the configured cache store.

    Construction failures of the external variants (library not installed,
    malformed URL, unusable directory) never propagate: the failure is
    logged and an in-process store is returned instead.
    """
    options = options or CacheOptions()

    try:
        provider = CacheProvider(provider)
    except ValueError:
        _log_fallback(str(provider), "unknown cache provider")
        provider = CacheProvider.MEMORY

    if provider == CacheProvider.REDIS:
        try:
            from lirax.services.redis_cache import RedisCacheStore

            store: CacheStore = RedisCacheStore(
                url=options.redis_url,
                key_prefix=options.key_prefix,
                tls=options.redis_tls,
                password=options.redis_password,
                db=options.redis_db,
                debug=options.debug,
            )
        except ImportError:
            _log_fallback("redis", "redis package not installed")
        except Exception as e:
            _log_fallback("redis", f"init error: {e}")
        else:
            logger.info("Using Redis cache store")
            return store

    elif provider == CacheProvider.FILE:
        try:
            from lirax.services.file_cache import FileCacheStore

            store = FileCacheStore(
                directory=options.file_cache_path,
                key_prefix=options.key_prefix,
                debug=options.debug,
            )
        except Exception as e:
            _log_fallback("file", f"init error: {e}")
        else:
            logger.info(f"Using file cache store at {options.file_cache_path}")
            return store

    return MemoryCacheStore(
        key_prefix=options.key_prefix,
        max_size=options.max_size,
        debug=options.debug,
    )
