"""
RequestOrchestrator - Runs a LiraX operation through every resilience layer.

Order per call:
1. read cache (when use_cache and cache_key are given)
2. idempotency cache (when idempotency_key is given)
3. throttle(key) → circuit breaker → failover client
4. write the result back under cache_key / idempotency key

Idempotency is best-effort deduplication within the TTL: two concurrent calls
with the same key can both miss and both reach the vendor.
"""

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable

from loguru import logger

from lirax.models import Credentials
from lirax.services.cache import CacheStore, MemoryCacheStore
from lirax.services.circuit_breaker import CircuitBreakerRegistry
from lirax.services.errors import OperationError
from lirax.services.throttle import SMS_THROTTLE_INTERVAL_MS, KeyedAsyncThrottle
from lirax.services.transport import RetryingFailoverClient, SendOptions

DEFAULT_CACHE_TTL_SECONDS = 3600
DEFAULT_IDEMPOTENCY_TTL_SECONDS = 86400
IDEMPOTENCY_PREFIX = "idempotency:"

# Collaborator hook: returns wire-ready params or raises pydantic.ValidationError
ParamsValidator = Callable[[str, Mapping[str, Any]], Mapping[str, Any]]


@dataclass
class RequestOptions:
    """Per-call behaviour of RequestOrchestrator.execute."""

    use_cache: bool = False
    cache_key: str | None = None
    cache_ttl_seconds: int | None = None
    idempotency_key: str | None = None
    idempotency_ttl_seconds: int = DEFAULT_IDEMPOTENCY_TTL_SECONDS
    bypass_circuit_breaker: bool = False
    throttle_key: str | None = None
    throttle_interval_ms: int = SMS_THROTTLE_INTERVAL_MS
    timeout_override_ms: int | None = None
    disable_retry: bool = False
    cancel_event: asyncio.Event | None = None


@dataclass
class RequestResult:
    """Result of an orchestrated operation."""

    data: Any
    operation: str
    from_cache: bool = False
    idempotency_hit: bool = False
    meta: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Render the result with a ``_meta`` block, as workflow items expect."""
        body = dict(self.data) if isinstance(self.data, Mapping) else {"data": self.data}
        meta = {"operation": self.operation, **self.meta}
        if self.from_cache:
            meta["fromCache"] = True
        if self.idempotency_hit:
            meta["idempotencyHit"] = True
        body["_meta"] = meta
        return body


class RequestOrchestrator:
    """
    Composes cache, idempotency, throttle, circuit breaker and failover.

    Usage:
        orchestrator = RequestOrchestrator(credentials, cache=MemoryCacheStore())

        result = await orchestrator.execute(
            "makeCall",
            {"ext": "101", "phone": "380501234567"},
            RequestOptions(idempotency_key="run-42-item-0"),
        )
    """

    def __init__(
        self,
        credentials: Credentials,
        cache: CacheStore | None = None,
        transport: RetryingFailoverClient | None = None,
        breakers: CircuitBreakerRegistry | None = None,
        throttle: KeyedAsyncThrottle | None = None,
        validator: ParamsValidator | None = None,
        circuit_breaker_enabled: bool = True,
        default_cache_ttl: int = DEFAULT_CACHE_TTL_SECONDS,
    ):
        self._credentials = credentials
        self._cache = cache if cache is not None else MemoryCacheStore()
        self._transport = (
            transport if transport is not None else RetryingFailoverClient(credentials)
        )
        self._breakers = breakers if breakers is not None else CircuitBreakerRegistry()
        self._throttle = throttle if throttle is not None else KeyedAsyncThrottle()
        self._validator = validator
        self._circuit_breaker_enabled = circuit_breaker_enabled
        self._default_cache_ttl = default_cache_ttl

    @property
    def cache(self) -> CacheStore:
        return self._cache

    @property
    def breakers(self) -> CircuitBreakerRegistry:
        return self._breakers

    @property
    def throttle(self) -> KeyedAsyncThrottle:
        return self._throttle

    @property
    def transport(self) -> RetryingFailoverClient:
        return self._transport

    async def execute(
        self,
        operation: str,
        params: Mapping[str, Any] | None = None,
        options: RequestOptions | None = None,
    ) -> RequestResult:
        """
        Execute a LiraX operation.

        Raises:
            OperationError: Classified, scrubbed failure. Failures are never
                cached.
        """
        options = options or RequestOptions()
        params = params or {}
        translator = self._transport.translator

        if options.use_cache and options.cache_key:
            cached = await self._cache_get(options.cache_key)
            if cached is not None:
                logger.debug(f"LiraX '{operation}' served from cache")
                return RequestResult(data=cached, operation=operation, from_cache=True)

        if options.idempotency_key:
            cached = await self._cache_get(f"{IDEMPOTENCY_PREFIX}{options.idempotency_key}")
            if cached is not None:
                logger.info(f"LiraX '{operation}' idempotency hit, skipping vendor call")
                return RequestResult(
                    data=cached,
                    operation=operation,
                    from_cache=True,
                    idempotency_hit=True,
                )

        try:
            if self._validator is not None:
                params = self._validator(operation, params)
            payload = {**params, "cmd": operation}
            data = await self._run(operation, payload, options)
        except OperationError as e:
            raise translator.attach_context(e, operation, params)
        except Exception as e:
            raise translator.classify(e, operation, params) from e

        if options.cache_key:
            await self._cache_set(
                options.cache_key,
                data,
                (
                    options.cache_ttl_seconds
                    if options.cache_ttl_seconds is not None
                    else self._default_cache_ttl
                ),
            )

        if options.idempotency_key:
            await self._cache_set(
                f"{IDEMPOTENCY_PREFIX}{options.idempotency_key}",
                data,
                options.idempotency_ttl_seconds,
            )

        return RequestResult(data=data, operation=operation)

    async def _run(
        self,
        operation: str,
        payload: dict[str, Any],
        options: RequestOptions,
    ) -> Any:
        """Transport path: optional throttle around the (guarded) send."""
        if options.throttle_key:
            return await self._throttle.throttle(
                options.throttle_key,
                lambda: self._guarded_send(operation, payload, options),
                min_interval_ms=options.throttle_interval_ms,
            )
        return await self._guarded_send(operation, payload, options)

    async def _guarded_send(
        self,
        operation: str,
        payload: dict[str, Any],
        options: RequestOptions,
    ) -> Any:
        send_options = SendOptions(
            idempotency_key=options.idempotency_key,
            timeout_override_ms=options.timeout_override_ms,
            disable_retry=options.disable_retry,
            cancel_event=options.cancel_event,
        )

        async def send() -> Any:
            return await self._transport.send(operation, payload, send_options)

        if options.bypass_circuit_breaker or not self._circuit_breaker_enabled:
            return await send()

        breaker = self._breakers.get(self._credentials.breaker_key)
        return await breaker.call(send)

    async def _cache_get(self, key: str) -> Any | None:
        """Best-effort cache read; store errors count as a miss."""
        try:
            return await self._cache.get(key)
        except Exception as e:
            logger.warning(f"Cache read failed for '{key[:50]}': {e}")
            return None

    async def _cache_set(self, key: str, value: Any, ttl_seconds: int | None) -> None:
        """Best-effort cache write; store errors never fail the call."""
        try:
            await self._cache.set(key, value, ttl_seconds)
        except Exception as e:
            logger.warning(f"Cache write failed for '{key[:50]}': {e}")

    async def clear_cache(self) -> None:
        await self._cache.clear()

    async def close(self) -> None:
        """Close the transport and the cache store."""
        await self._transport.close()
        await self._cache.close()
