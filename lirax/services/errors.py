"""
Request layer exceptions.

Every error surfaced to a caller is an ``OperationError``. Subclasses carry a
``retryable`` flag consulted by the failover client.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

# Vendor message fragments that mark a failure as transient
TRANSIENT_MARKERS = ("modem busy", "timeout", "temporarily unavailable")


def is_transient_message(text: str | None) -> bool:
    """Check whether a vendor message names a transient failure."""
    if not text:
        return False
    lowered = text.lower()
    return any(marker in lowered for marker in TRANSIENT_MARKERS)


class OperationError(Exception):
    """Base exception for request layer errors."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        status_code: int | None = None,
        code: str | None = None,
        detail: str | None = None,
        response_body: Any = None,
    ):
        self.message = message
        self.operation = operation
        self.status_code = status_code
        self.code = code
        # Raw vendor / transport message, used for transient-marker matching
        self.detail = detail if detail is not None else message
        self.response_body = response_body
        self.payload: dict[str, Any] = {}
        self.description: str = ""
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "operation": self.operation,
            "status_code": self.status_code,
            "code": self.code,
            "retryable": self.retryable,
            "payload": self.payload,
            "description": self.description,
            "timestamp": self.timestamp.isoformat(),
        }


class ConfigurationError(OperationError):
    """No usable endpoint or otherwise invalid client configuration."""


class AuthenticationError(OperationError):
    """Vendor rejected the API token (HTTP 401)."""


class ValidationError(OperationError):
    """Request parameters rejected (schema failure, HTTP 400/409/422)."""

    def __init__(self, message: str, field_errors: list[str] | None = None, **kwargs):
        self.field_errors = field_errors or []
        super().__init__(message, **kwargs)


class AuthorizationError(OperationError):
    """Access forbidden (HTTP 403)."""


class NotFoundError(OperationError):
    """Resource or command not found (HTTP 404)."""


class RateLimitedError(OperationError):
    """Rate limit exceeded (HTTP 429)."""

    retryable = True

    def __init__(self, message: str, retry_after: float | None = None, **kwargs):
        self.retry_after = retry_after
        super().__init__(message, **kwargs)


class ServerError(OperationError):
    """Vendor server failure (HTTP 5xx)."""

    retryable = True


class NetworkError(OperationError):
    """Transport failure before a response was received."""

    RETRYABLE_CODES = frozenset({"ETIMEDOUT", "ECONNRESET", "ECONNREFUSED"})

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.code in self.RETRYABLE_CODES


class VendorError(OperationError):
    """Application-level error reported in a successful HTTP response body."""

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return is_transient_message(self.detail)


class RequestAbortedError(OperationError):
    """Cancellation signal was set before an attempt started."""


class CircuitOpenError(OperationError):
    """Circuit breaker is open, request blocked without a network attempt."""

    def __init__(self, service_id: str, reset_after_seconds: float, **kwargs):
        self.service_id = service_id
        self.reset_after_seconds = reset_after_seconds
        super().__init__(
            f"Circuit breaker open for '{service_id}': requests to LiraX are "
            f"temporarily blocked, retry after {reset_after_seconds:.1f}s",
            **kwargs,
        )


@dataclass
class RetryAttempt:
    """A single failed attempt, kept only to build the aggregated report."""

    endpoint_index: int
    endpoint: str
    attempt_index: int
    error: OperationError


class AggregatedFailoverError(OperationError):
    """All endpoints and attempts were exhausted."""

    def __init__(self, message: str, attempts: list[RetryAttempt], **kwargs):
        self.attempts = attempts
        last = attempts[-1].error if attempts else None
        kwargs.setdefault("status_code", last.status_code if last else None)
        kwargs.setdefault("code", last.code if last else None)
        super().__init__(message, **kwargs)

    @property
    def last_error(self) -> OperationError | None:
        return self.attempts[-1].error if self.attempts else None
