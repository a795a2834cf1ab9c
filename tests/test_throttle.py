import asyncio

import pytest

from lirax.services.throttle import KeyedAsyncThrottle, create_sms_throttle_key


def make_operation(clock, windows, name, duration=1.0):
    async def operation():
        start = clock()
        await asyncio.sleep(0)
        clock.advance(duration)
        windows[name] = (start, clock())
        return name

    return operation


def test_sms_throttle_key():
    assert create_sms_throttle_key("gsm1", "101") == "sms:gsm1:101"


@pytest.mark.asyncio
async def test_same_key_calls_never_overlap_and_are_spaced(clock):
    throttle = KeyedAsyncThrottle(clock=clock, sleep=clock.sleep)
    windows = {}

    results = await asyncio.gather(
        throttle.throttle("sms:gsm1:101", make_operation(clock, windows, "first")),
        throttle.throttle("sms:gsm1:101", make_operation(clock, windows, "second")),
    )

    assert results == ["first", "second"]
    first_start, first_end = windows["first"]
    second_start, _ = windows["second"]
    assert second_start >= first_end
    assert second_start - first_start >= 5.0
    assert throttle.get_stats().delayed == 1


@pytest.mark.asyncio
async def test_calls_run_in_arrival_order(clock):
    throttle = KeyedAsyncThrottle(clock=clock, sleep=clock.sleep)
    windows = {}

    names = ["a", "b", "c", "d"]
    await asyncio.gather(
        *(
            throttle.throttle("k", make_operation(clock, windows, n), min_interval_ms=100)
            for n in names
        )
    )

    starts = [windows[n][0] for n in names]
    assert starts == sorted(starts)


@pytest.mark.asyncio
async def test_different_keys_are_independent(clock):
    throttle = KeyedAsyncThrottle(clock=clock, sleep=clock.sleep)
    windows = {}

    await asyncio.gather(
        throttle.throttle("sms:gsm1:101", make_operation(clock, windows, "a", 0)),
        throttle.throttle("sms:gsm1:102", make_operation(clock, windows, "b", 0)),
    )

    assert clock.sleeps == []
    assert sorted(throttle.get_keys()) == ["sms:gsm1:101", "sms:gsm1:102"]


@pytest.mark.asyncio
async def test_no_wait_once_interval_has_passed(clock):
    throttle = KeyedAsyncThrottle(clock=clock, sleep=clock.sleep)
    windows = {}

    await throttle.throttle("k", make_operation(clock, windows, "a", 0))
    clock.advance(6)
    await throttle.throttle("k", make_operation(clock, windows, "b", 0))

    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_failure_releases_the_key(clock):
    throttle = KeyedAsyncThrottle(clock=clock, sleep=clock.sleep)

    async def boom():
        raise RuntimeError("gateway down")

    with pytest.raises(RuntimeError):
        await throttle.throttle("k", boom)

    async def ok():
        return "ok"

    assert await throttle.throttle("k", ok) == "ok"
    assert throttle.get_stats().pending == 0


@pytest.mark.asyncio
async def test_cleanup_evicts_idle_keys_only(clock):
    throttle = KeyedAsyncThrottle(clock=clock, sleep=clock.sleep)

    async def ok():
        return None

    await throttle.throttle("old", ok)
    clock.advance(200)
    await throttle.throttle("recent", ok)
    clock.advance(150)

    assert throttle.cleanup(idle_seconds=300) == 1
    assert throttle.get_keys() == ["recent"]
