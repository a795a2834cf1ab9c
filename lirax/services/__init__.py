"""
Service layer infrastructure - resilience patterns for LiraX API calls.

Provides:
- CacheStore: Pluggable TTL cache (memory, Redis, file)
- CircuitBreaker: Fails fast while the endpoint is unhealthy
- KeyedAsyncThrottle: Serializes and spaces calls per key
- RetryingFailoverClient: Retries with backoff across endpoints
- RequestOrchestrator: Unified executor combining all patterns
"""

from lirax.services.errors import (
    AggregatedFailoverError,
    AuthenticationError,
    AuthorizationError,
    CircuitOpenError,
    ConfigurationError,
    NetworkError,
    NotFoundError,
    OperationError,
    RateLimitedError,
    RequestAbortedError,
    RetryAttempt,
    ServerError,
    ValidationError,
    VendorError,
)
from lirax.services.cache import (
    CacheOptions,
    CacheProvider,
    CacheStats,
    CacheStore,
    MemoryCacheStore,
    create_cache_store,
)
from lirax.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from lirax.services.throttle import KeyedAsyncThrottle, create_sms_throttle_key
from lirax.services.translator import ErrorTranslator
from lirax.services.transport import RetryingFailoverClient, SendOptions
from lirax.services.orchestrator import (
    RequestOptions,
    RequestOrchestrator,
    RequestResult,
)
from lirax.services.batch import BatchItemResult, run_batch

__all__ = [
    # Errors
    "OperationError",
    "ConfigurationError",
    "AuthenticationError",
    "AuthorizationError",
    "ValidationError",
    "NotFoundError",
    "RateLimitedError",
    "ServerError",
    "NetworkError",
    "VendorError",
    "RequestAbortedError",
    "CircuitOpenError",
    "AggregatedFailoverError",
    "RetryAttempt",
    # Cache
    "CacheOptions",
    "CacheProvider",
    "CacheStats",
    "CacheStore",
    "MemoryCacheStore",
    "create_cache_store",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    # Throttle
    "KeyedAsyncThrottle",
    "create_sms_throttle_key",
    # Transport
    "ErrorTranslator",
    "RetryingFailoverClient",
    "SendOptions",
    # Orchestrator
    "RequestOptions",
    "RequestOrchestrator",
    "RequestResult",
    # Batch
    "BatchItemResult",
    "run_batch",
]
