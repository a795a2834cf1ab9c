"""Shared fixtures for the LiraX bridge tests."""

import asyncio
import json
from urllib.parse import parse_qs

import httpx
import pytest
from pydantic import SecretStr

from lirax.models import Credentials

TOKEN = "abc123xyz"


class FakeClock:
    """Manually advanced clock whose sleep advances time instead of waiting."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class RecordingHandler:
    """httpx.MockTransport handler that records every request it serves."""

    def __init__(self, respond):
        self.respond = respond
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)

    @property
    def calls(self) -> int:
        return len(self.requests)

    def hosts(self) -> list[str]:
        return [request.url.host for request in self.requests]

    def form(self, index: int = -1) -> dict[str, list[str]]:
        return parse_qs(self.requests[index].content.decode())


def json_response(status_code: int, body) -> httpx.Response:
    return httpx.Response(
        status_code,
        content=json.dumps(body).encode(),
        headers={"Content-Type": "application/json"},
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def credentials():
    return Credentials(
        base_url="https://a.lirax.test",
        token=SecretStr(TOKEN),
        retries=2,
        backoff_base_ms=10,
    )


@pytest.fixture
def failover_credentials(credentials):
    return credentials.model_copy(update={"secondary_base_url": "https://b.lirax.test"})


@pytest.fixture
def recorder():
    """Build a RecordingHandler plus an httpx client routed through it."""

    def build(respond):
        handler = RecordingHandler(respond)
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return handler, client

    return build
