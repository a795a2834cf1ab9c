"""
Inbound webhook events - body parsing, token verification and normalization
of the vendor ``cmd`` payloads into workflow events.
"""

import hmac
import json
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any
from urllib.parse import parse_qsl

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from lirax.services.translator import ErrorTranslator

WEBHOOK_TOKEN_FIELD = "from_LiraX_token"

STATUS_MEANINGS = {
    "1": "Available",
    "2": "Busy",
    "3": "Away",
    "4": "Offline",
    "5": "Do Not Disturb",
    "6": "Break",
    "7": "Meeting",
}

MAX_IVR_DEPTH = 10


class WebhookAuthError(Exception):
    """Webhook token missing, unconfigured or wrong."""


class WebhookEvent(BaseModel):
    """A normalized inbound event."""

    cmd: str
    event: str
    event_type: str
    data: dict[str, Any] = Field(default_factory=dict)
    requires_response: bool = False
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    raw: dict[str, Any] = Field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.event,
            "event_type": self.event_type,
            **self.data,
            "timestamp": self.timestamp.isoformat(),
            "raw": self.raw,
        }


class ContactLookupResponse(BaseModel):
    """Answer to a ``contact`` lookup, shown on the agent's phone."""

    model_config = ConfigDict(extra="allow")

    contact_name: str
    responsible: str | None = None


def parse_webhook_body(body: Any) -> dict[str, Any]:
    """
    Parse a webhook body.

    Mappings pass through; bytes / str are tried as JSON, then as a
    form-encoded string. Anything else is wrapped as ``{"raw": body}``.
    """
    if isinstance(body, Mapping):
        return dict(body)

    if isinstance(body, bytes):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError:
            return {"raw": body.decode("utf-8", errors="replace")}

    if isinstance(body, str):
        try:
            parsed = json.loads(body)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            return parsed

        pairs = parse_qsl(body, keep_blank_values=True)
        if pairs:
            return dict(pairs)
        return {"raw": body}

    return {"raw": body}


def verify_webhook_token(incoming: str | None, expected: str | None) -> None:
    """
    Check the token sent by the vendor in constant time.

    Raises:
        WebhookAuthError: If the token is missing, not configured, or wrong
    """
    if not incoming:
        raise WebhookAuthError("Missing webhook token")
    if not expected:
        raise WebhookAuthError("Webhook token not configured")
    if not hmac.compare_digest(incoming.encode(), expected.encode()):
        raise WebhookAuthError("Invalid webhook token")


def parse_ivr_keys(keys: Any, max_depth: int = MAX_IVR_DEPTH) -> list[dict[str, Any]]:
    """Normalize the IVR key presses attached to call events."""
    if not keys:
        return []

    if isinstance(keys, str):
        try:
            keys = json.loads(keys)
        except ValueError:
            logger.warning("Failed to parse IVR keys")
            return []

    if isinstance(keys, Mapping):
        keys = [keys]
    if not isinstance(keys, list):
        return []

    items = [key for key in keys if isinstance(key, Mapping)]
    result = []
    for index, key in enumerate(items[:max_depth]):
        result.append(
            {
                "ivr_name": key.get("ivr_name") or f"Level_{index + 1}",
                "ivr_entry": key.get("ivr_entry") or "unknown",
                "key": key.get("key") or key.get("dtmf") or "unknown",
                "timestamp": key.get("timestamp") or key.get("time"),
                "duration": key.get("duration"),
                "sequence": index + 1,
                "is_final": index == len(items) - 1,
            }
        )
    return result


def _pick(payload: Mapping[str, Any], *fields: str) -> dict[str, Any]:
    return {name: payload.get(name) for name in fields}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _contact(payload):
    return "contact", "contact_lookup", _pick(payload, "phone", "callid", "diversion")


def _call(payload):
    data = _pick(
        payload,
        "phone",
        "diversion",
        "ext",
        "callid",
        "duration",
        "call_duration",
        "is_recorded",
        "status",
        "record_link",
    )
    data["call_type"] = payload.get("type")
    data["keys"] = parse_ivr_keys(payload.get("keys"))
    data["crm"] = _pick(payload, "tid", "cid", "cs", "cm", "cc", "ct")
    return "call", payload.get("event") or "call", data


def _record(payload):
    data = _pick(payload, "callid", "record_link", "file_size", "duration")
    return "record", "recording_available", data


def _sms_received(payload):
    data = {
        "id_sms": payload.get("id"),
        **_pick(payload, "ani", "provider", "text"),
        "timestamp_received": payload.get("timestamp") or _now_iso(),
    }
    return "sms", "sms_received", data


def _sms_delivered(payload):
    data = {
        **_pick(payload, "id_sms", "status"),
        "delivery_timestamp": payload.get("timestamp") or _now_iso(),
    }
    return "sms", "sms_delivered", data


def _status(payload):
    data = _pick(payload, "ext", "status", "previous_status")
    data["status_text"] = STATUS_MEANINGS.get(str(payload.get("status")), "Unknown")
    return "presence", "status_changed", data


def _makecall_finished(payload):
    data = _pick(payload, "id_makecall", "Call_id", "success", "duration", "error_message")
    return "operation", "makecall_finished", data


def _make2calls_finished(payload):
    data = _pick(payload, "id_make2calls", "success", "duration_success")
    data["keys"] = parse_ivr_keys(payload.get("keys"))
    data["operation_type"] = payload.get("operation_type") or "make2Calls"
    return "operation", "make2calls_finished", data


def _task_completed(payload):
    data = _pick(payload, "id_task", "task_type", "result", "completed_by")
    data["completion_time"] = payload.get("completion_time") or _now_iso()
    return "task", "task_completed", data


def _deal_updated(payload):
    data = _pick(
        payload,
        "id_deal",
        "deal_name",
        "old_stage",
        "new_stage",
        "old_status",
        "new_status",
        "amount",
    )
    return "deal", "deal_updated", data


EVENT_BUILDERS = {
    "contact": _contact,
    "event": _call,
    "record": _record,
    "smsReceived": _sms_received,
    "smsDelivered": _sms_delivered,
    "staton": _status,
    "makecall_finished": _makecall_finished,
    "make2calls_finished": _make2calls_finished,
    "task_completed": _task_completed,
    "deal_updated": _deal_updated,
}


def normalize_event(
    payload: Mapping[str, Any],
    translator: ErrorTranslator | None = None,
) -> WebhookEvent:
    """
    Turn a raw webhook payload into a WebhookEvent.

    Unknown commands become ``event="unknown"`` with the command as the event
    type. The raw payload is attached with the token removed and contact data
    masked.
    """
    translator = translator or ErrorTranslator()
    cmd = str(payload.get("cmd") or "")

    builder = EVENT_BUILDERS.get(cmd)
    if builder is None:
        logger.warning(f"Unknown webhook command '{cmd}'")
        event, event_type, data = "unknown", cmd, {}
    else:
        event, event_type, data = builder(payload)

    return WebhookEvent(
        cmd=cmd,
        event=event,
        event_type=str(event_type),
        data=data,
        requires_response=cmd == "contact",
        raw=translator.mask_payload(payload),
    )
