import json

import pytest
from fastapi.testclient import TestClient

from lirax.webhook.events import (
    ContactLookupResponse,
    WebhookAuthError,
    normalize_event,
    parse_webhook_body,
    verify_webhook_token,
)
from lirax.webhook.server import WebhookServer

INCOMING = "incoming-secret"


def build_client(**kwargs):
    server = WebhookServer(incoming_token=INCOMING, path="lirax", **kwargs)
    return server, TestClient(server.app)


def test_parse_webhook_body_variants():
    assert parse_webhook_body({"cmd": "event"}) == {"cmd": "event"}
    assert parse_webhook_body(b'{"cmd": "record"}') == {"cmd": "record"}
    assert parse_webhook_body("cmd=staton&ext=101") == {"cmd": "staton", "ext": "101"}
    assert parse_webhook_body("") == {"raw": ""}
    assert parse_webhook_body(42) == {"raw": 42}


def test_verify_webhook_token():
    verify_webhook_token(INCOMING, INCOMING)

    for incoming, expected in [(None, INCOMING), (INCOMING, ""), ("wrong", INCOMING)]:
        with pytest.raises(WebhookAuthError):
            verify_webhook_token(incoming, expected)


def test_normalize_status_event():
    event = normalize_event({"cmd": "staton", "ext": "101", "status": "2"})

    assert (event.event, event.event_type) == ("presence", "status_changed")
    assert event.data["status_text"] == "Busy"


def test_normalize_call_event_with_ivr_keys():
    event = normalize_event(
        {
            "cmd": "event",
            "event": "INCOMING",
            "type": "in",
            "phone": "380501234567",
            "keys": json.dumps([{"ivr_name": "Main", "key": "1"}, {"dtmf": "3"}]),
        }
    )

    assert (event.event, event.event_type) == ("call", "INCOMING")
    assert event.data["call_type"] == "in"
    assert [k["key"] for k in event.data["keys"]] == ["1", "3"]
    assert event.data["keys"][-1]["is_final"] is True


def test_normalize_unknown_event_masks_raw():
    event = normalize_event(
        {"cmd": "brand_new", "from_LiraX_token": INCOMING, "phone": "380501234567"}
    )

    assert (event.event, event.event_type) == ("unknown", "brand_new")
    assert "from_LiraX_token" not in event.raw
    assert event.raw["phone"] == "********4567"
    assert event.to_dict()["event_type"] == "brand_new"


def test_contact_event_requires_response():
    event = normalize_event({"cmd": "contact", "phone": "380501234567", "callid": "c1"})

    assert event.requires_response is True
    assert event.event_type == "contact_lookup"


def test_rejects_bad_token_without_processing():
    server, client = build_client()
    seen = []
    server.on("*", seen.append)

    response = client.post("/lirax", json={"cmd": "event", "from_LiraX_token": "nope"})

    assert response.status_code == 401
    assert seen == []


def test_rejects_payload_without_cmd():
    _, client = build_client()

    response = client.post("/lirax", json={"from_LiraX_token": INCOMING})

    assert response.status_code == 422


def test_form_body_dispatches_to_handlers():
    server, client = build_client()
    seen = []
    server.on("smsReceived", seen.append)

    response = client.post(
        "/lirax",
        data={
            "cmd": "smsReceived",
            "from_LiraX_token": INCOMING,
            "id": "55",
            "ani": "380501234567",
            "text": "hi",
        },
    )

    assert response.status_code == 200
    assert response.json() == {
        "status": "received",
        "event": "sms",
        "event_type": "sms_received",
    }
    assert len(seen) == 1
    assert seen[0].data["id_sms"] == "55"


def test_contact_lookup_returns_handler_answer():
    server, client = build_client()

    async def lookup(event):
        return ContactLookupResponse(contact_name="Ivan Petrenko", responsible="101")

    server.on("contact", lookup)

    response = client.post(
        "/lirax",
        json={"cmd": "contact", "from_LiraX_token": INCOMING, "phone": "380501234567"},
    )

    assert response.status_code == 200
    assert response.json() == {"contact_name": "Ivan Petrenko", "responsible": "101"}


def test_filtered_events_are_ignored():
    server, client = build_client(event_filter=["contact"])
    seen = []
    server.on("*", seen.append)

    response = client.post("/lirax", json={"cmd": "record", "from_LiraX_token": INCOMING})

    assert response.json() == {"status": "ignored", "cmd": "record"}
    assert seen == []


def test_token_check_can_be_disabled():
    _, client = build_client(validate_token=False)

    response = client.post("/lirax", json={"cmd": "deal_updated", "id_deal": 9})

    assert response.status_code == 200
    assert response.json()["event_type"] == "deal_updated"


def test_failing_handler_returns_500():
    server, client = build_client()

    def broken(event):
        raise RuntimeError("crm down")

    server.on("record", broken)

    response = client.post("/lirax", json={"cmd": "record", "from_LiraX_token": INCOMING})

    assert response.status_code == 500


def test_health():
    _, client = build_client()

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
