import pytest

from vindecode.caching import VinCache, cache_key, identifier_hash
from vinservice.storage import RedisCache


def test_redis_cache_satisfies_cache_protocol(memory_cache):
    assert isinstance(memory_cache, VinCache)
    assert not memory_cache.connected


def test_cache_keys_are_prefixed_hashes():
    key = cache_key("vin_data", "1HGCM82633A004352")
    assert key == f"vin_data_{identifier_hash('1HGCM82633A004352')}"
    assert len(key) == len("vin_data_") + 32
    assert cache_key("vin_data", "a") != cache_key("local_vin", "a")


@pytest.mark.asyncio
async def test_memory_fallback_round_trip(memory_cache):
    assert await memory_cache.get("missing") is None
    assert await memory_cache.set("k", {"make": "Honda", "year": "2003"}, 60)
    assert await memory_cache.has("k")
    assert await memory_cache.get("k") == {"make": "Honda", "year": "2003"}
    assert await memory_cache.delete("k")
    assert not await memory_cache.delete("k")
    assert await memory_cache.get("k") is None


@pytest.mark.asyncio
async def test_memory_entries_expire(memory_cache, monkeypatch):
    clock = [1000.0]
    monkeypatch.setattr(memory_cache, "_now", lambda: clock[0])

    await memory_cache.set("short", "v", 10)
    await memory_cache.set("forever", "v", None)
    clock[0] += 11
    assert not await memory_cache.has("short")
    assert await memory_cache.get("short") is None
    assert await memory_cache.get("forever") == "v"


@pytest.mark.asyncio
async def test_overwriting_without_ttl_clears_expiry(memory_cache, monkeypatch):
    clock = [0.0]
    monkeypatch.setattr(memory_cache, "_now", lambda: clock[0])

    await memory_cache.set("k", 1, 5)
    await memory_cache.set("k", 2)
    clock[0] += 100
    assert await memory_cache.get("k") == 2


@pytest.mark.asyncio
async def test_namespaces_are_isolated():
    a = RedisCache(namespace="a")
    b = RedisCache(namespace="b")
    await a.set("k", "from-a")
    assert await b.get("k") is None


@pytest.mark.asyncio
async def test_connect_without_url_stays_in_memory(memory_cache):
    await memory_cache.connect()
    assert not memory_cache.connected
    assert not await memory_cache.ping()
    await memory_cache.close()
