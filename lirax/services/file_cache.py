"""
FileCacheStore - Disk cache storing one JSON document per key.

Each document holds ``{"key", "value", "expires_at"}``. Expired documents are
removed when read. Each key prefix gets its own subdirectory. Blocking file I/O
runs in a worker thread.
"""

import asyncio
import hashlib
import json
import re
import time
from pathlib import Path
from typing import Any, Callable

from loguru import logger

from lirax.services.cache import (
    DEFAULT_CACHE_PREFIX,
    DEFAULT_FILE_CACHE_PATH,
    CacheProvider,
    CacheStats,
    CacheStore,
    expiry_for,
)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


class FileCacheStore(CacheStore):
    """
    Cache store on the local filesystem.

    Usage:
        cache = FileCacheStore(directory="/var/cache/lirax", key_prefix="tenant-1")
        await cache.set("stages:all", stages, ttl_seconds=3600)
    """

    provider = CacheProvider.FILE

    def __init__(
        self,
        directory: str | Path = DEFAULT_FILE_CACHE_PATH,
        key_prefix: str = DEFAULT_CACHE_PREFIX,
        clock: Callable[[], float] = time.time,
        debug: bool = False,
    ):
        super().__init__(key_prefix, debug)
        self._dir = Path(directory)
        self._clock = clock
        # One subdirectory per prefix; the hash separates prefixes that sanitize alike
        prefix_digest = hashlib.sha1(key_prefix.encode()).hexdigest()[:8]
        safe_prefix = _UNSAFE_CHARS.sub("_", key_prefix)
        self._ns_dir = self._dir / f"{safe_prefix}_{prefix_digest}"
        # Fails fast (and lets the factory fall back) if the path is unusable
        self._ns_dir.mkdir(parents=True, exist_ok=True)

    @property
    def directory(self) -> Path:
        return self._dir

    @property
    def namespace_directory(self) -> Path:
        return self._ns_dir

    def _path_for(self, key: str) -> Path:
        """Filesystem-safe path; the hash keeps distinct keys from colliding."""
        safe = _UNSAFE_CHARS.sub("_", key)[:100]
        digest = hashlib.sha1(self.make_key(key).encode()).hexdigest()[:12]
        return self._ns_dir / f"{safe}_{digest}.json"

    def _iter_files(self) -> list[Path]:
        return [
            path
            for path in self._ns_dir.glob("*.json")
            if path.is_file()
        ]

    async def get(self, key: str) -> Any | None:
        path = self._path_for(key)
        try:
            content = await asyncio.to_thread(path.read_text, encoding="utf-8")
            entry = json.loads(content)
        except FileNotFoundError:
            self._stats.misses += 1
            self._log(f"MISS: {key[:50]}")
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"File cache read error: {e}")
            self._stats.misses += 1
            return None

        expires_at = entry.get("expires_at")
        if expires_at is not None and self._clock() > expires_at:
            await self.delete(key)
            self._stats.misses += 1
            self._log(f"EXPIRED: {key[:50]}")
            return None

        self._stats.hits += 1
        self._log(f"HIT: {key[:50]}")
        return entry.get("value")

    async def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        path = self._path_for(key)
        entry = {
            "key": self.make_key(key),
            "value": value,
            "expires_at": expiry_for(ttl_seconds, self._clock()),
        }
        try:
            content = json.dumps(entry, default=str)
            await asyncio.to_thread(self._write, path, content)
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"File cache write error: {e}")
            return

        self._log(f"SET: {key[:50]} (TTL: {ttl_seconds or 'never'})")

    def _write(self, path: Path, content: str) -> None:
        self._ns_dir.mkdir(parents=True, exist_ok=True)
        # Write-then-rename so readers never see a partial document
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(content, encoding="utf-8")
        tmp_path.replace(path)

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._path_for(key).unlink, missing_ok=True)
        except OSError as e:
            logger.warning(f"File cache delete error: {e}")

    async def clear(self) -> None:
        try:
            removed = await asyncio.to_thread(self._clear_sync)
        except OSError as e:
            logger.warning(f"File cache clear error: {e}")
            return

        self._stats = CacheStats()
        self._log(f"CLEAR: {removed} entries removed")

    def _clear_sync(self) -> int:
        removed = 0
        for path in self._iter_files():
            try:
                path.unlink()
                removed += 1
            except FileNotFoundError:
                continue
        return removed

    async def stats(self) -> CacheStats:
        try:
            self._stats.size = len(await asyncio.to_thread(self._iter_files))
        except OSError:
            self._stats.size = 0
        return self._stats
