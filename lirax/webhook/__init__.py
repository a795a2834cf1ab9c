from lirax.webhook.events import (
    ContactLookupResponse,
    WebhookAuthError,
    WebhookEvent,
    normalize_event,
    parse_webhook_body,
    verify_webhook_token,
)
from lirax.webhook.server import WebhookServer, create_webhook_server

__all__ = [
    "ContactLookupResponse",
    "WebhookAuthError",
    "WebhookEvent",
    "WebhookServer",
    "create_webhook_server",
    "normalize_event",
    "parse_webhook_body",
    "verify_webhook_token",
]
