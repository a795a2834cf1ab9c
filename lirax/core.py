"""
LiraXCore - Caller-facing facade over the request layer.

Usage:
    core = LiraXCore(Credentials.from_settings(global_settings), global_settings)

    users = await core.get_users("ivan")
    result = await core.execute_operation("makeCall", {"ext": "101", "phone": "..."})
    await core.close()
"""

from collections.abc import Mapping, Sequence
from dataclasses import replace
from typing import Any, Callable

from loguru import logger

from lirax.models import Credentials
from lirax.services.batch import BatchItemResult, run_batch
from lirax.services.cache import CacheOptions, CacheStore, create_cache_store
from lirax.services.circuit_breaker import CircuitBreakerRegistry
from lirax.services.errors import OperationError
from lirax.services.orchestrator import (
    ParamsValidator,
    RequestOptions,
    RequestOrchestrator,
    RequestResult,
)
from lirax.services.throttle import KeyedAsyncThrottle, create_sms_throttle_key
from lirax.services.transport import RetryingFailoverClient
from lirax.settings import Settings

LOOKUP_CACHE_TTL_SECONDS = 3600


def _matches(item: Mapping[str, Any], text_field: str, id_field: str, query: str) -> bool:
    """Case-insensitive match on the name field, plain substring on the id field."""
    name = item.get(text_field)
    if name is not None and query.lower() in str(name).lower():
        return True
    ident = item.get(id_field)
    return ident is not None and query in str(ident)


class LiraXCore:
    """Executes LiraX operations with caching, idempotency and resilience."""

    def __init__(
        self,
        credentials: Credentials,
        settings: Settings | None = None,
        cache: CacheStore | None = None,
        transport: RetryingFailoverClient | None = None,
        breakers: CircuitBreakerRegistry | None = None,
        throttle: KeyedAsyncThrottle | None = None,
        validator: ParamsValidator | None = None,
    ):
        self.credentials = credentials
        self.settings = settings or Settings()

        if cache is None:
            cache = create_cache_store(
                self.settings.cache_provider,
                CacheOptions(
                    key_prefix=self.settings.cache_prefix,
                    redis_url=self.settings.redis_url,
                    redis_tls=self.settings.redis_tls,
                    redis_password=self.settings.redis_password,
                    redis_db=self.settings.redis_db,
                    file_cache_path=self.settings.file_cache_path,
                ),
            )

        self.orchestrator = RequestOrchestrator(
            credentials,
            cache=cache,
            transport=transport,
            breakers=breakers,
            throttle=throttle,
            validator=validator,
            circuit_breaker_enabled=self.settings.circuit_breaker_enabled,
            default_cache_ttl=self.settings.cache_ttl,
        )

    @property
    def cache(self) -> CacheStore:
        return self.orchestrator.cache

    async def execute_operation(
        self,
        operation: str,
        params: Mapping[str, Any] | None = None,
        options: RequestOptions | None = None,
    ) -> RequestResult:
        """Execute any LiraX command through the request layer."""
        options = replace(options) if options else RequestOptions()
        if self.settings.bypass_cache:
            options.use_cache = False
        if options.timeout_override_ms is None:
            options.timeout_override_ms = self.settings.timeout_override_ms
        return await self.orchestrator.execute(operation, params, options)

    async def _lookup(self, operation: str, resource: str, filter: str | None) -> list[dict]:
        result = await self.execute_operation(
            operation,
            {},
            RequestOptions(
                use_cache=True,
                cache_key=f"{resource}:{filter or 'all'}",
                cache_ttl_seconds=LOOKUP_CACHE_TTL_SECONDS,
            ),
        )
        data = result.data if isinstance(result.data, Mapping) else {}
        items = data.get(resource) or []
        return [item for item in items if isinstance(item, Mapping)]

    async def get_users(self, filter: str | None = None) -> list[dict]:
        """List users, optionally filtered by name or extension."""
        users = await self._lookup("getUsers", "users", filter)
        if filter:
            return [u for u in users if _matches(u, "Name", "ext", filter)]
        return users

    async def get_shops(self, filter: str | None = None) -> list[dict]:
        """List shops, optionally filtered by name or id."""
        shops = await self._lookup("getShops", "shops", filter)
        if filter:
            return [s for s in shops if _matches(s, "name", "id", filter)]
        return shops

    async def get_stages(self, filter: str | None = None) -> list[dict]:
        """List deal stages, optionally filtered by title or stage number."""
        stages = await self._lookup("getStages", "stages", filter)
        if filter:
            return [s for s in stages if _matches(s, "title", "stage", filter)]
        return stages

    async def send_sms(
        self,
        params: Mapping[str, Any],
        provider: str,
        ext: str,
        options: RequestOptions | None = None,
    ) -> RequestResult:
        """Send an SMS, serialized and spaced per gateway and sender."""
        options = replace(
            options or RequestOptions(),
            throttle_key=create_sms_throttle_key(provider, ext),
        )
        return await self.execute_operation(
            "sendSMS",
            {**params, "provider": provider, "ext": ext},
            options,
        )

    async def health_check(self) -> bool:
        """Probe the API with getShops, bypassing the breaker and the cache."""
        try:
            result = await self.execute_operation(
                "getShops",
                {"health_check": True},
                RequestOptions(bypass_circuit_breaker=True, disable_retry=True),
            )
        except OperationError as e:
            logger.warning(f"LiraX health check failed: {e.message}")
            return False

        data = result.data
        return isinstance(data, Mapping) and ("shops" in data or "users" in data)

    async def execute_many(
        self,
        operation: str,
        items: Sequence[Mapping[str, Any]],
        continue_on_fail: bool = False,
        batch_size: int = 10,
        delay_between_batches_ms: float = 0,
        options_factory: Callable[[int, Mapping[str, Any]], RequestOptions] | None = None,
    ) -> list[BatchItemResult[RequestResult]]:
        """Run one operation per item, optionally continuing past failures."""
        indexed = list(enumerate(items))

        async def run(entry: tuple[int, Mapping[str, Any]]) -> RequestResult:
            index, params = entry
            options = options_factory(index, params) if options_factory else None
            return await self.execute_operation(operation, params, options)

        return await run_batch(
            indexed,
            run,
            continue_on_fail=continue_on_fail,
            batch_size=batch_size,
            delay_between_batches_ms=delay_between_batches_ms,
        )

    async def clear_cache(self) -> None:
        await self.orchestrator.clear_cache()

    async def get_cache_stats(self) -> dict[str, Any]:
        stats = await self.cache.stats()
        return {"provider": self.cache.provider.value, **stats.to_dict()}

    def get_health_status(self) -> dict[str, Any]:
        """Breaker and throttle state for diagnostics."""
        breakers = self.orchestrator.breakers
        return {
            "circuit_breakers": breakers.get_all_status(),
            "open_circuits": breakers.get_open_circuits(),
            "throttle": self.orchestrator.throttle.get_stats().to_dict(),
        }

    async def close(self) -> None:
        await self.orchestrator.close()
