"""
ErrorTranslator - Classifies raw transport / vendor errors into the
OperationError taxonomy and renders scrubbed, user-facing messages.

Secrets and PII (API tokens, phone numbers, emails, IP addresses) are masked
before anything is attached to an error, logged, or returned.
"""

import json
import re
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

import httpx
from pydantic import ValidationError as SchemaValidationError

from lirax.services.errors import (
    AggregatedFailoverError,
    AuthenticationError,
    AuthorizationError,
    NetworkError,
    NotFoundError,
    OperationError,
    RateLimitedError,
    ServerError,
    ValidationError,
    is_transient_message,
)

# Payload fields removed entirely from snapshots
SECRET_FIELDS = frozenset({"token", "from_LiraX_token", "password"})

# Payload fields masked down to their last four characters
SENSITIVE_FIELDS = frozenset(
    {
        "phone",
        "ani",
        "dnis",
        "to",
        "to1",
        "to2",
        "provider",
        "ext",
        "newext",
        "client",
        "email",
        "ip",
    }
)

_IPV4_RE = re.compile(r"(?<![\d.])(?:\d{1,3}\.){3}\d{1,3}(?![\d.])")
_EMAIL_RE = re.compile(r"[\w.+-]+@([\w-]+(?:\.[\w-]+)+)")
_PLUS_PHONE_RE = re.compile(r"\+\d[\d\s\-()]{7,}\d")
_DIGITS_RE = re.compile(r"\d{7,}")


def mask_value(value: Any) -> str:
    """Mask a value down to its last four characters."""
    text = str(value)
    if len(text) > 4:
        return "*" * (len(text) - 4) + text[-4:]
    return "****"


def _mask_digits(match: re.Match) -> str:
    digits = re.sub(r"\D", "", match.group(0))
    return mask_value(digits)


class ErrorTranslator:
    """
    Classifies raw errors and scrubs them for logs and callers.

    Usage:
        translator = ErrorTranslator(secrets=[token])
        error = translator.classify(exc, "makeCall", payload)
        logger.warning(error.message)
    """

    def __init__(self, secrets: Iterable[str] = ()):
        self._secrets = [s for s in secrets if s]

    # Scrubbing

    def scrub(self, text: str) -> str:
        """Remove secrets and mask PII-looking fragments in free text."""
        for secret in self._secrets:
            text = text.replace(secret, "***")
        text = _IPV4_RE.sub("***.***.***.***", text)
        text = _EMAIL_RE.sub(lambda m: f"***@{m.group(1)}", text)
        text = _PLUS_PHONE_RE.sub(_mask_digits, text)
        text = _DIGITS_RE.sub(_mask_digits, text)
        return text

    def mask_payload(self, payload: Mapping[str, Any] | None) -> dict[str, Any]:
        """Copy a payload with secrets removed and sensitive fields masked."""
        if not payload:
            return {}

        masked: dict[str, Any] = {}
        for key, value in payload.items():
            if key in SECRET_FIELDS:
                continue
            masked[key] = self._mask_field(value, key in SENSITIVE_FIELDS)
        return masked

    def _mask_field(self, value: Any, sensitive: bool) -> Any:
        if value in (None, ""):
            return value
        if isinstance(value, Mapping):
            return self.mask_payload(value)
        if isinstance(value, (list, tuple)):
            return [self._mask_field(item, sensitive) for item in value]
        if sensitive:
            return mask_value(value)
        if isinstance(value, str):
            return self.scrub(value)
        # bare numbers long enough to be phone numbers
        if isinstance(value, int) and not isinstance(value, bool):
            text = str(value)
            scrubbed = self.scrub(text)
            return value if scrubbed == text else scrubbed
        return value

    # Classification

    def classify(
        self,
        error: BaseException,
        operation: str,
        payload: Mapping[str, Any] | None = None,
    ) -> OperationError:
        """
        Map any raised error onto the OperationError taxonomy.

        Already-classified errors keep their type and gain the context
        (operation, masked payload, description) if they lack it.
        """
        if isinstance(error, OperationError):
            classified = error
        elif isinstance(error, SchemaValidationError):
            classified = self.from_validation(error, operation)
        elif isinstance(error, httpx.HTTPStatusError):
            classified = self.from_response(error.response, operation)
        elif isinstance(error, httpx.TransportError):
            classified = self.from_transport(error, operation)
        else:
            detail = str(error) or type(error).__name__
            classified = OperationError(
                self.scrub(f"Operation '{operation}' failed: {detail}"),
                operation=operation,
                detail=self.scrub(detail),
            )

        return self.attach_context(classified, operation, payload)

    def attach_context(
        self,
        error: OperationError,
        operation: str,
        payload: Mapping[str, Any] | None = None,
    ) -> OperationError:
        """Fill in operation, masked payload snapshot and description."""
        if error.operation is None:
            error.operation = operation
        if payload and not error.payload:
            error.payload = self.mask_payload(payload)
        error.message = self.scrub(error.message)
        error.args = (error.message,)
        error.description = self.describe(error)
        return error

    def from_response(
        self,
        response: httpx.Response,
        operation: str,
    ) -> OperationError:
        """Classify an HTTP error response."""
        status = response.status_code
        body = self._response_body(response)
        vendor_message = self._vendor_message(body)
        detail = vendor_message or f"HTTP {status}"
        kwargs: dict[str, Any] = {
            "operation": operation,
            "status_code": status,
            "detail": detail,
            "response_body": body,
        }
        prefix = f"Operation '{operation}' failed:"

        if status == 401:
            return AuthenticationError(
                f"{prefix} Invalid LiraX API Token. Check your credentials.",
                **kwargs,
            )
        if status in (400, 409, 422):
            return ValidationError(
                f"{prefix} Invalid parameters sent to LiraX. "
                "Check node inputs and validation.",
                **kwargs,
            )
        if status == 403:
            if is_transient_message(detail):
                message = f"{prefix} LiraX modem is busy. Please try again later."
            else:
                message = f"{prefix} Access forbidden. Check your permissions."
            error = AuthorizationError(message, **kwargs)
            # modem busy is reported as 403 but clears on its own
            error.retryable = is_transient_message(detail)
            return error
        if status == 404:
            return NotFoundError(
                f"{prefix} Resource not found. "
                "Check if the operation exists in your LiraX version.",
                **kwargs,
            )
        if status == 429:
            return RateLimitedError(
                f"{prefix} LiraX rate limit exceeded.",
                retry_after=self._retry_after(response),
                **kwargs,
            )
        if 500 <= status < 600:
            messages = {
                500: "LiraX server internal error.",
                502: "LiraX server is temporarily unavailable.",
                503: "LiraX service is temporarily overloaded.",
            }
            return ServerError(
                f"{prefix} {messages.get(status, f'LiraX server error (HTTP {status}).')}",
                **kwargs,
            )

        return OperationError(f"{prefix} {self.scrub(detail)}", **kwargs)

    def from_transport(
        self,
        error: httpx.TransportError,
        operation: str,
    ) -> NetworkError:
        """Classify an httpx transport failure by network error code."""
        text = str(error)
        if isinstance(error, httpx.TimeoutException):
            code = "ETIMEDOUT"
        elif isinstance(error, httpx.ConnectError):
            lowered = text.lower()
            if (
                "name or service not known" in lowered
                or "nodename nor servname" in lowered
                or "getaddrinfo" in lowered
                or "name resolution" in lowered
            ):
                code = "ENOTFOUND"
            else:
                code = "ECONNREFUSED"
        elif isinstance(
            error, (httpx.ReadError, httpx.WriteError, httpx.RemoteProtocolError)
        ):
            code = "ECONNRESET"
        else:
            code = "EIO"

        messages = {
            "ETIMEDOUT": "Connection to LiraX timed out.",
            "ECONNREFUSED": "Connection to LiraX refused. "
            "Check base URL and network connectivity.",
            "ENOTFOUND": "LiraX server not found. Check base URL.",
            "ECONNRESET": "Connection to LiraX was reset.",
        }
        message = messages.get(code, self.scrub(text) or type(error).__name__)
        return NetworkError(
            f"Operation '{operation}' failed: {message}",
            operation=operation,
            code=code,
            detail=self.scrub(text),
        )

    def from_validation(
        self,
        error: SchemaValidationError,
        operation: str,
    ) -> ValidationError:
        """Render a pydantic validation error listing each offending field."""
        field_errors = []
        for item in error.errors():
            location = ".".join(str(part) for part in item.get("loc", ())) or "input"
            field_errors.append(f"{location}: {item.get('msg', 'invalid value')}")

        return ValidationError(
            f"Operation '{operation}' failed: Invalid input parameters. "
            + ", ".join(field_errors),
            field_errors=field_errors,
            operation=operation,
        )

    # Description

    def describe(self, error: OperationError) -> str:
        """Build the multi-line diagnostic description of an error."""
        lines = ["LiraX API Error Details:"]
        if error.operation:
            lines.append(f"Operation: {error.operation}")
        if error.status_code:
            lines.append(f"HTTP Code: {error.status_code}")
        if error.code:
            lines.append(f"Error Code: {error.code}")
        lines.append(f"Timestamp: {error.timestamp.isoformat()}")

        if isinstance(error, ValidationError) and error.field_errors:
            lines.append("")
            lines.append("Validation Errors:")
            lines.extend(f"- {self.scrub(item)}" for item in error.field_errors)

        if isinstance(error, AggregatedFailoverError):
            lines.append("")
            lines.append(f"Failover Attempts: {len(error.attempts)}")
            for number, attempt in enumerate(error.attempts, start=1):
                attempt_error = attempt.error
                code = attempt_error.code or attempt_error.status_code or "-"
                lines.append(
                    f"{number}. endpoint #{attempt.endpoint_index + 1} "
                    f"attempt {attempt.attempt_index + 1} [{code}]: "
                    f"{self.scrub(attempt_error.message)}"
                )

        if error.payload:
            lines.append("")
            lines.append("Request Payload (sensitive data masked):")
            lines.append(json.dumps(error.payload, indent=2, ensure_ascii=False, default=str))

        if error.response_body not in (None, ""):
            lines.append("")
            lines.append("Response Body:")
            body = error.response_body
            if not isinstance(body, str):
                body = json.dumps(body, indent=2, ensure_ascii=False, default=str)
            lines.append(self.scrub(body))

        return "\n".join(lines)

    # Helpers

    @staticmethod
    def _response_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text[:500]

    @staticmethod
    def _vendor_message(body: Any) -> str | None:
        if isinstance(body, dict):
            for key in ("error", "message", "detail"):
                if body.get(key):
                    return str(body[key])
            return None
        if isinstance(body, str) and body.strip():
            return body.strip()[:200]
        return None

    @staticmethod
    def _retry_after(response: httpx.Response) -> float | None:
        value = response.headers.get("Retry-After")
        if not value:
            return None
        try:
            return max(0.0, float(value))
        except ValueError:
            pass
        try:
            retry_at = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if retry_at.tzinfo is None:
            retry_at = retry_at.replace(tzinfo=timezone.utc)
        return max(0.0, (retry_at - datetime.now(timezone.utc)).total_seconds())
