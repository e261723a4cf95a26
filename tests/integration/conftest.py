"""
Store fixtures shared by the integration tests.

The ``store`` fixture is parametrized over every backend so each test runs
against the in-memory store and, when fakeredis is installed, against the
Redis store backed by an in-process fake server.
"""

from __future__ import annotations

import pytest

from reservation_arbiter.stores.memory import MemoryIntervalStore

try:
    import fakeredis.aioredis as fakeredis
except ImportError:
    fakeredis = None


def _fake_redis_store():
    if fakeredis is None:
        pytest.skip("fakeredis not installed")
    from reservation_arbiter.stores.redis import RedisIntervalStore

    client = fakeredis.FakeRedis(decode_responses=True)
    return client, RedisIntervalStore(redis_client=client, namespace="it")


@pytest.fixture
async def redis_store():
    """Redis store over a fresh fakeredis instance."""
    client, store = _fake_redis_store()
    yield store
    await store.close()
    await client.aclose()


@pytest.fixture(params=["memory", "redis"])
async def store(request):
    """Each interval store backend in turn."""
    if request.param == "memory":
        async with MemoryIntervalStore(namespace="it") as memory:
            yield memory
        return
    client, redis = _fake_redis_store()
    yield redis
    await redis.close()
    await client.aclose()
