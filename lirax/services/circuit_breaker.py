"""
CircuitBreaker - Fails fast while a tenant's LiraX endpoint keeps failing.

States:
- CLOSED: calls go through, consecutive failures are counted
- OPEN: calls are rejected with CircuitOpenError, nothing is sent
- HALF_OPEN: a limited number of probe calls test for recovery

Transitions:
- CLOSED → OPEN: failure_threshold consecutive failures
- OPEN → HALF_OPEN: first call once reset_timeout has elapsed
- HALF_OPEN → CLOSED: success_threshold successful probes
- HALF_OPEN → OPEN: any failed probe, or a call after the probe budget is spent

State only changes when a call is attempted; nothing runs in the background.
"""

import time
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from lirax.services.errors import CircuitOpenError

T = TypeVar("T")

BREAKER_IDLE_SECONDS = 3600


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class CircuitBreakerConfig:
    """Thresholds shared by every tenant breaker."""

    failure_threshold: int = 5
    reset_timeout: timedelta = timedelta(seconds=60)
    half_open_max_requests: int = 3  # probe budget
    success_threshold: int = 3


class CircuitBreaker:
    """
    Circuit breaker guarding one tenant.

    Usage:
        breaker = CircuitBreaker("tenant-1")
        data = await breaker.call(lambda: client.send("getUsers", payload))
    """

    def __init__(
        self,
        service_id: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.service_id = service_id
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._probes_started = 0
        self._probes_succeeded = 0
        self._opened_at: float | None = None
        self._last_failure_at: float | None = None
        self._last_activity = clock()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failures

    @property
    def last_activity(self) -> float:
        return self._last_activity

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run operation if the breaker admits it.

        Every exception raised by operation counts as a failure and is
        re-raised unchanged.

        Raises:
            CircuitOpenError: The breaker rejected the call; operation was
                not invoked.
        """
        self.before_request()
        try:
            result = await operation()
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def before_request(self) -> None:
        """Admit a call or raise CircuitOpenError, applying due transitions."""
        now = self._clock()
        self._last_activity = now

        if self._state == CircuitState.OPEN:
            if not self._reset_timeout_elapsed(now):
                raise self._rejection()
            self._transition(CircuitState.HALF_OPEN)

        if self._state == CircuitState.HALF_OPEN:
            if self._probes_started >= self.config.half_open_max_requests:
                self._transition(CircuitState.OPEN)
                raise self._rejection()
            self._probes_started += 1

    def record_success(self) -> None:
        self._last_activity = self._clock()

        if self._state == CircuitState.CLOSED:
            self._failures = 0
            return

        if self._state == CircuitState.HALF_OPEN:
            self._probes_succeeded += 1
            if self._probes_succeeded >= self.config.success_threshold:
                self._transition(CircuitState.CLOSED)

    def record_failure(self) -> None:
        now = self._clock()
        self._last_activity = now
        self._last_failure_at = now
        self._failures += 1

        if self._state == CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN)
        elif (
            self._state == CircuitState.CLOSED
            and self._failures >= self.config.failure_threshold
        ):
            self._transition(CircuitState.OPEN)

    def _reset_timeout_elapsed(self, now: float) -> bool:
        if self._opened_at is None:
            return True
        return now - self._opened_at > self.config.reset_timeout.total_seconds()

    def _rejection(self) -> CircuitOpenError:
        return CircuitOpenError(self.service_id, self.get_time_until_reset() or 0)

    def _transition(self, target: CircuitState) -> None:
        self._state = target
        self._probes_started = 0
        self._probes_succeeded = 0

        if target == CircuitState.OPEN:
            self._opened_at = self._clock()
            logger.warning(
                f"Circuit breaker '{self.service_id}' opened "
                f"({self._failures} consecutive failures)"
            )
        elif target == CircuitState.HALF_OPEN:
            logger.info(f"Circuit breaker '{self.service_id}' half-open, probing LiraX")
        else:
            self._failures = 0
            self._opened_at = None
            logger.info(f"Circuit breaker '{self.service_id}' closed, LiraX recovered")

    def reset(self) -> None:
        """Force the breaker back to CLOSED."""
        self._transition(CircuitState.CLOSED)
        self._last_failure_at = None

    def get_time_until_reset(self) -> float | None:
        """Seconds until an OPEN breaker will admit a probe, None otherwise."""
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return None
        deadline = self._opened_at + self.config.reset_timeout.total_seconds()
        return max(0.0, deadline - self._clock())

    def get_status(self) -> dict[str, Any]:
        return {
            "service_id": self.service_id,
            "state": self._state.value,
            "failure_count": self._failures,
            "half_open_probes": self._probes_started,
            "half_open_successes": self._probes_succeeded,
            "last_failure_at": self._last_failure_at,
            "opened_at": self._opened_at,
            "time_until_reset": self.get_time_until_reset(),
        }


class CircuitBreakerRegistry:
    """
    Per-tenant breakers, created on first use and evicted when idle.

    Usage:
        registry = CircuitBreakerRegistry()
        breaker = registry.get(credentials.breaker_key)
    """

    def __init__(
        self,
        default_config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._default_config = default_config or CircuitBreakerConfig()
        self._clock = clock
        self._by_tenant: dict[str, CircuitBreaker] = {}

    def get(self, tenant_id: str, config: CircuitBreakerConfig | None = None) -> CircuitBreaker:
        breaker = self._by_tenant.get(tenant_id)
        if breaker is None:
            breaker = CircuitBreaker(
                tenant_id, config or self._default_config, clock=self._clock
            )
            self._by_tenant[tenant_id] = breaker
        return breaker

    def __contains__(self, tenant_id: str) -> bool:
        return tenant_id in self._by_tenant

    def __len__(self) -> int:
        return len(self._by_tenant)

    def get_all_status(self) -> dict[str, dict[str, Any]]:
        return {tenant: b.get_status() for tenant, b in self._by_tenant.items()}

    def get_open_circuits(self) -> list[str]:
        return [
            tenant
            for tenant, b in self._by_tenant.items()
            if b.state == CircuitState.OPEN
        ]

    def reset(self, tenant_id: str) -> bool:
        breaker = self._by_tenant.get(tenant_id)
        if breaker is None:
            return False
        breaker.reset()
        return True

    def reset_all(self) -> None:
        for breaker in self._by_tenant.values():
            breaker.reset()
        logger.info(f"Reset {len(self._by_tenant)} circuit breakers")

    def cleanup_idle(self, idle_seconds: float = BREAKER_IDLE_SECONDS) -> int:
        """Drop CLOSED breakers with no failures that have been idle for idle_seconds."""
        now = self._clock()
        idle = [
            tenant
            for tenant, b in self._by_tenant.items()
            if b.state == CircuitState.CLOSED
            and b.failure_count == 0
            and now - b.last_activity > idle_seconds
        ]
        for tenant in idle:
            del self._by_tenant[tenant]

        if idle:
            logger.debug(f"Removed {len(idle)} idle circuit breakers")
        return len(idle)
