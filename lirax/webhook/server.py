"""FastAPI server for LiraX webhook callbacks."""

import inspect
from collections import defaultdict
from typing import Any, Awaitable, Callable, Union

from fastapi import FastAPI, HTTPException, Request, status
from loguru import logger

from lirax.exceptions import UnauthorizedError, ValidationError
from lirax.services.translator import ErrorTranslator
from lirax.webhook.events import (
    WEBHOOK_TOKEN_FIELD,
    ContactLookupResponse,
    WebhookAuthError,
    WebhookEvent,
    normalize_event,
    parse_webhook_body,
    verify_webhook_token,
)

HandlerResult = Union[ContactLookupResponse, dict, None]
EventHandler = Callable[[WebhookEvent], Union[HandlerResult, Awaitable[HandlerResult]]]

ALL_EVENTS = "*"


class WebhookServer:
    """HTTP server for handling LiraX webhook events."""

    def __init__(
        self,
        incoming_token: str | None,
        path: str = "lirax",
        validate_token: bool = True,
        event_filter: list[str] | None = None,
        translator: ErrorTranslator | None = None,
        log_payload: bool = False,
    ):
        self.incoming_token = incoming_token
        self.path = "/" + path.strip("/")
        self.validate_token = validate_token
        self.event_filter = set(event_filter or [])
        self.log_payload = log_payload
        self._translator = translator or ErrorTranslator(
            secrets=[incoming_token] if incoming_token else []
        )
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._received = 0

        self.app = FastAPI(title="LiraX Webhook Server")

        # Register routes
        self.app.post(self.path)(self.handle_event)
        self.app.get("/health")(self.health_check)

    def on(self, cmd: str, handler: EventHandler) -> EventHandler:
        """Register a handler for a webhook command, or ``*`` for every command."""
        self._handlers[cmd].append(handler)
        return handler

    async def handle_event(self, request: Request) -> dict[str, Any]:
        """Handle an incoming webhook from LiraX.

        Returns:
            The contact lookup answer for ``contact`` events when a handler
            provides one, otherwise an acknowledgement.
        """
        payload = parse_webhook_body(await request.body())

        if self.validate_token:
            try:
                verify_webhook_token(
                    str(payload.get(WEBHOOK_TOKEN_FIELD) or ""),
                    self.incoming_token,
                )
            except WebhookAuthError as e:
                logger.warning(f"Rejected LiraX webhook: {e}")
                raise UnauthorizedError("Webhook token verification failed")

        cmd = payload.get("cmd")
        if not cmd:
            raise ValidationError("Invalid webhook payload: missing cmd field")

        if self.log_payload:
            logger.debug(
                f"Received LiraX webhook '{cmd}': {self._translator.mask_payload(payload)}"
            )

        if self.event_filter and cmd not in self.event_filter:
            logger.debug(f"Ignoring filtered LiraX webhook '{cmd}'")
            return {"status": "ignored", "cmd": cmd}

        event = normalize_event(payload, self._translator)
        self._received += 1

        try:
            answer = await self._dispatch(event)
        except Exception as e:
            logger.error(f"Error handling LiraX webhook '{cmd}': {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Failed to process webhook event: {cmd}",
            )

        if event.requires_response and answer is not None:
            return answer.model_dump(exclude_none=True)

        return {"status": "received", "event": event.event, "event_type": event.event_type}

    async def _dispatch(self, event: WebhookEvent) -> ContactLookupResponse | None:
        """Run every handler for the event; the first contact answer wins."""
        answer: ContactLookupResponse | None = None
        handlers = self._handlers.get(event.cmd, []) + self._handlers.get(ALL_EVENTS, [])

        for handler in handlers:
            result = handler(event)
            if inspect.isawaitable(result):
                result = await result

            if answer is None and event.requires_response and result is not None:
                if isinstance(result, ContactLookupResponse):
                    answer = result
                elif isinstance(result, dict):
                    answer = ContactLookupResponse.model_validate(result)

        return answer

    async def health_check(self):
        """Health check endpoint."""
        return {"status": "ok", "service": "lirax-webhook", "received": self._received}


def create_webhook_server(
    incoming_token: str | None,
    path: str = "lirax",
    validate_token: bool = True,
    event_filter: list[str] | None = None,
) -> WebhookServer:
    """Create the webhook server.

    Args:
        incoming_token: Token LiraX sends in ``from_LiraX_token``
        path: URL path the vendor posts to
        validate_token: Reject requests without a matching token
        event_filter: Commands to accept; empty accepts all

    Returns:
        WebhookServer whose ``app`` is the FastAPI application
    """
    return WebhookServer(
        incoming_token=incoming_token,
        path=path,
        validate_token=validate_token,
        event_filter=event_filter,
    )
