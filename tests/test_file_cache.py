import json

import pytest

from lirax.services.file_cache import FileCacheStore


@pytest.mark.asyncio
async def test_round_trip_writes_one_document_per_key(tmp_path):
    store = FileCacheStore(directory=tmp_path, key_prefix="tenant-1")

    await store.set("users:all", {"users": [{"ext": "101"}]}, ttl_seconds=60)
    await store.set("shops:all", {"shops": []})

    assert await store.get("users:all") == {"users": [{"ext": "101"}]}
    files = sorted(store.namespace_directory.glob("*.json"))
    assert len(files) == 2
    document = json.loads(files[-1].read_text())
    assert document["key"] == "tenant-1:users:all"


@pytest.mark.asyncio
async def test_expired_documents_are_deleted_on_read(tmp_path, clock):
    store = FileCacheStore(directory=tmp_path, clock=clock)

    await store.set("k", "v", ttl_seconds=1)
    clock.advance(1.1)

    assert await store.get("k") is None
    assert list(store.namespace_directory.glob("*.json")) == []


@pytest.mark.asyncio
async def test_missing_key_is_a_miss(tmp_path):
    store = FileCacheStore(directory=tmp_path)

    assert await store.get("nope") is None
    assert (await store.stats()).misses == 1


@pytest.mark.asyncio
async def test_similar_keys_do_not_collide(tmp_path):
    store = FileCacheStore(directory=tmp_path)

    await store.set("users:a/b", 1)
    await store.set("users:a_b", 2)

    assert await store.get("users:a/b") == 1
    assert await store.get("users:a_b") == 2


@pytest.mark.asyncio
async def test_corrupt_document_is_a_miss(tmp_path):
    store = FileCacheStore(directory=tmp_path)
    await store.set("k", "v")
    next(store.namespace_directory.glob("*.json")).write_text("{not json")

    assert await store.get("k") is None


@pytest.mark.asyncio
async def test_clear_only_touches_own_prefix(tmp_path):
    mine = FileCacheStore(directory=tmp_path, key_prefix="mine")
    theirs = FileCacheStore(directory=tmp_path, key_prefix="theirs")
    await mine.set("a", 1)
    await mine.set("b", 2)
    await theirs.set("a", 3)

    await mine.clear()

    assert (await mine.stats()).size == 0
    assert await theirs.get("a") == 3


@pytest.mark.asyncio
async def test_clear_spares_prefixes_sharing_a_stem(tmp_path):
    tenant = FileCacheStore(directory=tmp_path, key_prefix="tenant")
    tenant_2 = FileCacheStore(directory=tmp_path, key_prefix="tenant_2")
    await tenant.set("u", {"u": 0})
    await tenant_2.set("u", {"u": 1})

    await tenant.clear()

    assert await tenant.get("u") is None
    assert await tenant_2.get("u") == {"u": 1}
    assert (await tenant_2.stats()).size == 1


@pytest.mark.asyncio
async def test_prefixes_that_sanitize_alike_stay_separate(tmp_path):
    dashed = FileCacheStore(directory=tmp_path, key_prefix="tenant-1")
    dotted = FileCacheStore(directory=tmp_path, key_prefix="tenant.1")
    await dashed.set("k", "dash")
    await dotted.set("k", "dot")

    await dotted.clear()

    assert dashed.namespace_directory != dotted.namespace_directory
    assert await dashed.get("k") == "dash"
    assert await dotted.get("k") is None
