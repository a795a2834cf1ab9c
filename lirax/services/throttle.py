"""
KeyedAsyncThrottle - Serializes and spaces out calls that share a key.

Calls under the same key (for example one SMS gateway + sender pair) never
overlap, run in arrival order, and start at least ``min_interval_ms`` after
the previous call under that key started. Different keys are independent.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

T = TypeVar("T")

SMS_THROTTLE_INTERVAL_MS = 5000
THROTTLE_IDLE_SECONDS = 300


def create_sms_throttle_key(provider: str, ext: str) -> str:
    """Build the throttle key for an SMS gateway and sender extension."""
    return f"sms:{provider}:{ext}"


@dataclass
class ThrottleEntry:
    """Per-key throttle state."""

    key: str
    last_started: float | None = None
    pending: int = 0
    # asyncio.Lock wakes waiters in FIFO order
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class KeyedAsyncThrottle:
    """
    Per-key serializing rate limiter.

    Usage:
        throttle = KeyedAsyncThrottle()

        result = await throttle.throttle(
            key=create_sms_throttle_key("gsm1", "101"),
            operation=lambda: client.send(...),
        )
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        debug: bool = False,
    ):
        self._entries: dict[str, ThrottleEntry] = {}
        self._clock = clock
        self._sleep = sleep
        self._debug = debug
        self._stats = ThrottleStats()

    async def throttle(
        self,
        key: str,
        operation: Callable[[], Awaitable[T]],
        min_interval_ms: float = SMS_THROTTLE_INTERVAL_MS,
    ) -> T:
        """
        Execute operation once every earlier call under key has finished
        and the minimum spacing since the previous start has elapsed.
        """
        entry = self._entries.get(key)
        if entry is None:
            entry = ThrottleEntry(key=key)
            self._entries[key] = entry

        entry.pending += 1
        try:
            async with entry.lock:
                if entry.last_started is not None:
                    elapsed = self._clock() - entry.last_started
                    wait = min_interval_ms / 1000 - elapsed
                    if wait > 0:
                        self._stats.delayed += 1
                        self._log(f"WAIT: {key} for {wait:.3f}s")
                        await self._sleep(wait)

                entry.last_started = self._clock()
                self._stats.total += 1
                return await operation()
        finally:
            entry.pending -= 1

    def cleanup(self, idle_seconds: float = THROTTLE_IDLE_SECONDS) -> int:
        """Evict entries with no pending calls whose last start is older than idle_seconds."""
        now = self._clock()
        idle = [
            key
            for key, entry in self._entries.items()
            if entry.pending == 0
            and (entry.last_started is None or now - entry.last_started > idle_seconds)
        ]
        for key in idle:
            del self._entries[key]

        if idle:
            self._log(f"CLEANUP: {len(idle)} idle keys removed")
        return len(idle)

    def get_keys(self) -> list[str]:
        """Get all tracked throttle keys."""
        return list(self._entries.keys())

    def get_stats(self) -> "ThrottleStats":
        """Get throttle statistics."""
        self._stats.keys = len(self._entries)
        self._stats.pending = sum(entry.pending for entry in self._entries.values())
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[Throttle] {message}")


class ThrottleStats:
    """Statistics for throttled calls."""

    def __init__(self):
        self.total: int = 0  # Calls started
        self.delayed: int = 0  # Calls that had to sleep before starting
        self.keys: int = 0  # Tracked keys
        self.pending: int = 0  # Calls running or waiting

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_calls": self.total,
            "delayed": self.delayed,
            "keys": self.keys,
            "pending": self.pending,
        }
