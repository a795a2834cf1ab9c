import pytest

from conftest import json_response
from lirax.core import LiraXCore
from lirax.services.cache import MemoryCacheStore
from lirax.services.errors import ValidationError
from lirax.services.throttle import KeyedAsyncThrottle
from lirax.services.transport import RetryingFailoverClient
from lirax.settings import Settings

USERS = {
    "users": [
        {"Name": "Ivan Petrenko", "ext": "101"},
        {"Name": "Olena Shevchenko", "ext": "102"},
    ]
}


def respond(request):
    form = request.content.decode()
    if "cmd=getUsers" in form:
        return json_response(200, USERS)
    if "cmd=getShops" in form:
        return json_response(200, {"shops": [{"id": 7, "name": "Main Office"}]})
    if "cmd=getStages" in form:
        return json_response(200, {"stages": [{"stage": 1, "title": "New lead"}]})
    if "phone=bad" in form:
        return json_response(400, {"error": "invalid phone"})
    return json_response(200, {"status": "ok"})


def build_core(credentials, http_client, clock, settings=None):
    return LiraXCore(
        credentials,
        settings or Settings(),
        cache=MemoryCacheStore(clock=clock),
        transport=RetryingFailoverClient(
            credentials, http_client=http_client, sleep=clock.sleep
        ),
        throttle=KeyedAsyncThrottle(clock=clock, sleep=clock.sleep),
    )


@pytest.mark.asyncio
async def test_get_users_is_cached_and_filtered(credentials, recorder, clock):
    handler, http_client = recorder(respond)
    core = build_core(credentials, http_client, clock)

    assert len(await core.get_users()) == 2
    assert len(await core.get_users()) == 2
    assert handler.calls == 1

    assert await core.get_users("IVAN") == [USERS["users"][0]]
    assert await core.get_users("102") == [USERS["users"][1]]
    assert handler.calls == 3


@pytest.mark.asyncio
async def test_get_shops_and_stages_filters(credentials, recorder, clock):
    handler, http_client = recorder(respond)
    core = build_core(credentials, http_client, clock)

    assert await core.get_shops("office") == [{"id": 7, "name": "Main Office"}]
    assert await core.get_shops("8") == []
    assert await core.get_stages("lead") == [{"stage": 1, "title": "New lead"}]


@pytest.mark.asyncio
async def test_bypass_cache_setting_disables_reads(credentials, recorder, clock):
    handler, http_client = recorder(respond)
    core = build_core(credentials, http_client, clock, Settings(bypass_cache=True))

    await core.get_users()
    await core.get_users()

    assert handler.calls == 2


@pytest.mark.asyncio
async def test_send_sms_is_throttled_per_sender(credentials, recorder, clock):
    handler, http_client = recorder(respond)
    core = build_core(credentials, http_client, clock)

    await core.send_sms({"to": "380501234567", "text": "hi"}, provider="gsm1", ext="101")
    await core.send_sms({"to": "380501234567", "text": "again"}, provider="gsm1", ext="101")

    assert core.orchestrator.throttle.get_keys() == ["sms:gsm1:101"]
    assert clock.sleeps == [pytest.approx(5.0)]
    form = handler.form()
    assert form["cmd"] == ["sendSMS"]
    assert form["provider"] == ["gsm1"]


@pytest.mark.asyncio
async def test_health_check(credentials, recorder, clock):
    handler, http_client = recorder(respond)
    core = build_core(credentials, http_client, clock)

    assert await core.health_check() is True
    assert handler.form()["health_check"] == ["1"]
    assert credentials.breaker_key not in core.orchestrator.breakers


@pytest.mark.asyncio
async def test_health_check_reports_failure(credentials, recorder, clock):
    handler, http_client = recorder(lambda r: json_response(500, {}))
    core = build_core(credentials, http_client, clock)

    assert await core.health_check() is False
    assert handler.calls == 1


@pytest.mark.asyncio
async def test_execute_many_continue_on_fail(credentials, recorder, clock):
    handler, http_client = recorder(respond)
    core = build_core(credentials, http_client, clock)

    results = await core.execute_many(
        "makeCall",
        [{"ext": "101", "phone": "380501234567"}, {"ext": "101", "phone": "bad"}],
        continue_on_fail=True,
    )

    assert results[0].ok
    assert results[0].result.data == {"status": "ok"}
    assert isinstance(results[1].error, ValidationError)


@pytest.mark.asyncio
async def test_execute_many_stops_on_first_failure(credentials, recorder, clock):
    handler, http_client = recorder(respond)
    core = build_core(credentials, http_client, clock)

    with pytest.raises(ValidationError):
        await core.execute_many("makeCall", [{"phone": "bad"}])


@pytest.mark.asyncio
async def test_cache_stats_and_clear(credentials, recorder, clock):
    handler, http_client = recorder(respond)
    core = build_core(credentials, http_client, clock)
    await core.get_users()

    stats = await core.get_cache_stats()
    assert stats["provider"] == "memory"
    assert stats["size"] == 1

    await core.clear_cache()
    await core.get_users()
    assert handler.calls == 2


@pytest.mark.asyncio
async def test_health_status(credentials, recorder, clock):
    handler, http_client = recorder(respond)
    core = build_core(credentials, http_client, clock)
    await core.execute_operation("getShops")

    status = core.get_health_status()

    assert status["open_circuits"] == []
    assert status["circuit_breakers"]["default"]["state"] == "CLOSED"


def test_cache_built_from_settings(credentials, tmp_path):
    settings = Settings(cache_provider="file", file_cache_path=str(tmp_path))

    core = LiraXCore(credentials, settings)

    assert core.cache.provider.value == "file"
