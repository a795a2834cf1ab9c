"""
Maintenance scheduler - periodic idle-state eviction with APScheduler.

Jobs:
- breaker sweep: drops healthy circuit breakers idle for an hour
- throttle sweep: drops throttle keys idle for five minutes
- cache sweep: removes expired entries from an in-process cache
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from lirax.services.cache import CacheStore, MemoryCacheStore
from lirax.services.circuit_breaker import BREAKER_IDLE_SECONDS, CircuitBreakerRegistry
from lirax.services.throttle import THROTTLE_IDLE_SECONDS, KeyedAsyncThrottle
from lirax.utils import safe_job


class MaintenanceScheduler:
    """Runs the idle-eviction sweeps on an interval."""

    def __init__(
        self,
        breakers: CircuitBreakerRegistry,
        throttle: KeyedAsyncThrottle,
        cache: CacheStore | None = None,
        interval_seconds: int = 60,
        breaker_idle_seconds: float = BREAKER_IDLE_SECONDS,
        throttle_idle_seconds: float = THROTTLE_IDLE_SECONDS,
    ):
        self.scheduler = AsyncIOScheduler()
        self.breakers = breakers
        self.throttle = throttle
        self.cache = cache
        self.interval_seconds = interval_seconds
        self.breaker_idle_seconds = breaker_idle_seconds
        self.throttle_idle_seconds = throttle_idle_seconds
        self._is_running = False

    @safe_job
    def cleanup_breakers_job(self) -> int:
        removed = self.breakers.cleanup_idle(self.breaker_idle_seconds)
        if removed:
            logger.info(f"Maintenance: removed {removed} idle circuit breakers")
        return removed

    @safe_job
    def cleanup_throttle_job(self) -> int:
        removed = self.throttle.cleanup(self.throttle_idle_seconds)
        if removed:
            logger.info(f"Maintenance: removed {removed} idle throttle keys")
        return removed

    @safe_job
    def cleanup_cache_job(self) -> int:
        # Redis and file stores expire entries themselves
        if not isinstance(self.cache, MemoryCacheStore):
            return 0
        removed = self.cache.cleanup_expired()
        if removed:
            logger.info(f"Maintenance: removed {removed} expired cache entries")
        return removed

    def start(self) -> None:
        """Start the scheduler."""
        if self._is_running:
            logger.warning("Maintenance scheduler is already running")
            return

        jobs = [
            (self.cleanup_breakers_job, "breaker_cleanup_job", "Circuit Breaker Sweep"),
            (self.cleanup_throttle_job, "throttle_cleanup_job", "Throttle Sweep"),
            (self.cleanup_cache_job, "cache_cleanup_job", "Cache Expiry Sweep"),
        ]
        for func, job_id, name in jobs:
            self.scheduler.add_job(
                func,
                trigger="interval",
                seconds=self.interval_seconds,
                id=job_id,
                name=name,
                replace_existing=True,
            )

        self.scheduler.start()
        self._is_running = True

        logger.info(
            f"Maintenance scheduler started: sweeping every {self.interval_seconds}s"
        )

    def stop(self) -> None:
        """Stop the scheduler."""
        if not self._is_running:
            logger.warning("Maintenance scheduler is not running")
            return

        self.scheduler.shutdown(wait=False)
        self._is_running = False
        logger.info("Maintenance scheduler stopped")

    def is_running(self) -> bool:
        return self._is_running

    def run_now(self) -> dict[str, int]:
        """Run every sweep once (manual trigger)."""
        logger.info("Manual maintenance sweep triggered")
        return {
            "breakers": self.cleanup_breakers_job() or 0,
            "throttle_keys": self.cleanup_throttle_job() or 0,
            "cache_entries": self.cleanup_cache_job() or 0,
        }
