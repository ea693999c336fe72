"""RedisStore over fakeredis: queue order, expiry, conditional set, error mapping."""
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from errors import TransientIOError
from redis_store import RedisStore


@pytest.mark.asyncio
async def test_queue_is_fifo(store):
    for item in ("a", "b", "c"):
        await store.push("q", item)
    assert await store.queue_length("q") == 3
    assert [await store.blocking_pop("q", 1) for _ in range(3)] == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_set_with_expiry(store):
    await store.set_with_expiry("k", 60, "v")
    assert await store.get("k") == "v"
    assert 0 < await store.client.ttl("k") <= 60


@pytest.mark.asyncio
async def test_set_if_absent_only_first_wins(store):
    assert await store.set_if_absent("claim", "w1", 300) is True
    assert await store.set_if_absent("claim", "w2", 300) is False
    assert await store.get("claim") == "w1"
    await store.delete("claim")
    assert await store.set_if_absent("claim", "w3", 300) is True


@pytest.mark.asyncio
async def test_sets_and_sorted_sets(store):
    await store.set_add("s", "b")
    await store.set_add("s", "a")
    await store.set_add("s", "a")
    assert await store.set_members("s") == ["a", "b"]

    await store.sorted_set_add("z", 1, "old")
    await store.sorted_set_add("z", 3, "new")
    await store.sorted_set_add("z", 2, "mid")
    assert await store.sorted_set_range_desc("z", 2) == ["new", "mid"]
    assert await store.sorted_set_range_desc("z", 0) == []


@pytest.mark.asyncio
async def test_ping(store):
    assert await store.ping() is True


@pytest.mark.asyncio
async def test_redis_errors_become_transient():
    client = AsyncMock()
    client.get.side_effect = RedisConnectionError("refused")
    client.ping.side_effect = RedisConnectionError("refused")
    s = RedisStore(client=client)
    with pytest.raises(TransientIOError):
        await s.get("k")
    assert await s.ping() is False


@pytest.mark.asyncio
async def test_not_connected():
    with pytest.raises(TransientIOError):
        await RedisStore().get("k")
