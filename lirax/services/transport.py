"""
RetryingFailoverClient - Sends one logical LiraX request across endpoints.

For each base URL in order, the request is attempted up to ``retries + 1``
times with exponential backoff and jitter between retryable failures. A
non-retryable failure moves straight on to the next endpoint. The first
success wins.

Wire protocol: POST ``{base_url}/general`` with a form-encoded body. The API
token travels both as the ``token`` form field and as a Bearer header; the
vendor requires both.
"""

import asyncio
import random
import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Awaitable, Callable
from urllib.parse import urlencode, urlsplit

import httpx
from loguru import logger

from lirax import __version__
from lirax.models import Credentials
from lirax.services.errors import (
    AggregatedFailoverError,
    ConfigurationError,
    OperationError,
    RequestAbortedError,
    RetryAttempt,
    VendorError,
)
from lirax.services.translator import ErrorTranslator

USER_AGENT = f"lirax-bridge/{__version__}"
MAX_BACKOFF_MS = 30000


@dataclass
class SendOptions:
    """Per-call transport options."""

    idempotency_key: str | None = None
    timeout_override_ms: int | None = None
    disable_retry: bool = False
    cancel_event: asyncio.Event | None = None


def is_valid_endpoint(url: str | None) -> bool:
    """Accept only well-formed http(s) base URLs."""
    if not url:
        return False
    parts = urlsplit(url)
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def is_retryable(error: OperationError) -> bool:
    """Classify a failed attempt as worth retrying on the same endpoint."""
    return bool(error.retryable)


def encode_form(payload: Mapping[str, Any]) -> str:
    """
    Form-encode a payload the way the vendor expects: lists become repeated
    fields, booleans become "1"/"0", None values are dropped.
    """
    pairs: list[tuple[str, str]] = []
    for key, value in payload.items():
        items = value if isinstance(value, (list, tuple)) else [value]
        for item in items:
            if item is None:
                continue
            if isinstance(item, bool):
                item = "1" if item else "0"
            pairs.append((key, str(item)))
    return urlencode(pairs)


def generate_request_id() -> str:
    """Unique id sent as X-Request-ID."""
    return f"lirax_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def calculate_backoff_ms(
    attempt: int,
    credentials: Credentials,
    jitter: Callable[[], float] | None = None,
) -> float:
    """
    Delay before retrying after the given zero-based attempt.

    Exponential policy: base * 2^attempt * U[0.8, 1.2], capped at 30s.
    """
    policy = credentials.retry_policy
    base = credentials.backoff_base_ms

    if policy == "none":
        return 0
    if policy == "fixed":
        delay = float(credentials.fixed_delay_ms)
    elif policy == "linear":
        delay = float(base * (attempt + 1))
    else:
        delay = float(base * (2**attempt))

    if credentials.jitter:
        factor = jitter() if jitter else random.uniform(0.8, 1.2)
        delay *= factor

    return min(delay, MAX_BACKOFF_MS)


class RetryingFailoverClient:
    """
    Executes a LiraX command with per-endpoint retries and failover.

    Usage:
        client = RetryingFailoverClient(credentials)
        data = await client.send("getUsers", {"cmd": "getUsers"})
    """

    def __init__(
        self,
        credentials: Credentials,
        http_client: httpx.AsyncClient | None = None,
        translator: ErrorTranslator | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        jitter: Callable[[], float] | None = None,
    ):
        self._credentials = credentials
        self._translator = translator or ErrorTranslator(
            secrets=[credentials.token.get_secret_value()]
        )
        self._sleep = sleep
        self._jitter = jitter

        # Injected client is used as-is; otherwise one pooled client per TLS mode
        self._injected_client = http_client
        self._http_clients: dict[bool, httpx.AsyncClient] = {}

    @property
    def translator(self) -> ErrorTranslator:
        return self._translator

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._injected_client is not None:
            return self._injected_client

        verify = self._credentials.ssl_verify
        if verify not in self._http_clients:
            self._http_clients[verify] = httpx.AsyncClient(
                timeout=httpx.Timeout(self._credentials.timeout_ms / 1000),
                verify=verify,
                follow_redirects=True,
            )
        return self._http_clients[verify]

    async def send(
        self,
        operation: str,
        payload: Mapping[str, Any],
        options: SendOptions | None = None,
        endpoints: list[str] | None = None,
    ) -> Any:
        """
        Send payload to the first endpoint that accepts it.

        Raises:
            ConfigurationError: If no endpoint is a valid http(s) URL
            RequestAbortedError: If the cancel event is set before an attempt
            OperationError: The classified error when only one attempt was
                made or every attempt was rejected outright
            AggregatedFailoverError: When transient failures exhausted every
                endpoint and attempt
        """
        options = options or SendOptions()
        candidates = endpoints if endpoints is not None else self._credentials.endpoints
        valid_endpoints = [url for url in candidates if is_valid_endpoint(url)]

        if not valid_endpoints:
            raise self._translator.attach_context(
                ConfigurationError(
                    f"Operation '{operation}' failed: No valid base URLs configured",
                    operation=operation,
                ),
                operation,
                payload,
            )

        max_attempts = 1 if options.disable_retry else self._credentials.retries + 1
        attempts: list[RetryAttempt] = []

        for endpoint_index, base_url in enumerate(valid_endpoints):
            for attempt in range(max_attempts):
                if options.cancel_event is not None and options.cancel_event.is_set():
                    raise self._translator.attach_context(
                        RequestAbortedError(
                            f"Operation '{operation}' failed: Request aborted by signal",
                            operation=operation,
                        ),
                        operation,
                        payload,
                    )

                try:
                    return await self._send_once(base_url, operation, payload, options)
                except OperationError as error:
                    attempts.append(
                        RetryAttempt(
                            endpoint_index=endpoint_index,
                            endpoint=base_url,
                            attempt_index=attempt,
                            error=error,
                        )
                    )

                    if not is_retryable(error) or attempt == max_attempts - 1:
                        logger.warning(
                            f"LiraX '{operation}' failed on endpoint "
                            f"#{endpoint_index + 1} after {attempt + 1} attempt(s): "
                            f"{error.message}"
                        )
                        break

                    delay_ms = calculate_backoff_ms(attempt, self._credentials, self._jitter)
                    logger.warning(
                        f"LiraX '{operation}' attempt {attempt + 1}/{max_attempts} on "
                        f"endpoint #{endpoint_index + 1} failed, retrying in "
                        f"{delay_ms:.0f}ms: {error.message}"
                    )
                    if delay_ms > 0:
                        await self._sleep(delay_ms / 1000)

        raise self._final_error(operation, payload, attempts, len(valid_endpoints))

    def _final_error(
        self,
        operation: str,
        payload: Mapping[str, Any],
        attempts: list[RetryAttempt],
        endpoint_count: int,
    ) -> OperationError:
        """Pick the error that surfaces once every endpoint is exhausted."""
        last = attempts[-1].error
        if len(attempts) == 1 or not any(is_retryable(a.error) for a in attempts):
            return self._translator.attach_context(last, operation, payload)

        return self._translator.attach_context(
            AggregatedFailoverError(
                f"All failover attempts failed for operation '{operation}' "
                f"({endpoint_count} endpoint(s), {len(attempts)} attempt(s)): "
                f"{last.message}",
                attempts=attempts,
                operation=operation,
            ),
            operation,
            payload,
        )

    async def _send_once(
        self,
        base_url: str,
        operation: str,
        payload: Mapping[str, Any],
        options: SendOptions,
    ) -> Any:
        """Execute a single HTTP attempt and classify any failure."""
        client = await self._get_http_client()
        token = self._credentials.token.get_secret_value()

        url = f"{base_url.rstrip('/')}/general"
        body = encode_form({**payload, "token": token})
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Authorization": f"Bearer {token}",
            "User-Agent": USER_AGENT,
            "X-Request-ID": generate_request_id(),
        }
        if options.idempotency_key:
            headers["X-Idempotency-Key"] = options.idempotency_key

        timeout_ms = options.timeout_override_ms or self._credentials.timeout_ms

        try:
            response = await client.post(
                url,
                content=body,
                headers=headers,
                timeout=timeout_ms / 1000,
            )
        except httpx.TransportError as e:
            raise self._translator.from_transport(e, operation) from e

        if response.status_code >= 400:
            raise self._translator.from_response(response, operation)

        try:
            data = response.json()
        except ValueError:
            return {"response": response.text}

        if isinstance(data, dict) and "error" in data:
            detail = str(data["error"])
            error = VendorError(
                self._translator.scrub(f"Operation '{operation}' failed: {detail}"),
                operation=operation,
                status_code=response.status_code,
                detail=detail,
                response_body=data,
            )
            raise error

        return data

    async def close(self) -> None:
        """Close owned HTTP clients."""
        for client in self._http_clients.values():
            await client.aclose()
        self._http_clients.clear()
