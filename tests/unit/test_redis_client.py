from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from payaware.services.redis_client import FastRedisClient, RedisOperationError


@pytest.fixture
def client():
    redis_client = FastRedisClient("redis://localhost:6379/0")
    redis_client.client = AsyncMock()
    redis_client._initialized = True
    return redis_client


@pytest.mark.asyncio
async def test_set_if_absent_uses_nx_and_ttl(client):
    client.client.set.return_value = True

    assert await client.set_if_absent("reminder:subscription:1", "queued", 600) is True
    client.client.set.assert_awaited_once_with("reminder:subscription:1", "queued", ex=600, nx=True)


@pytest.mark.asyncio
async def test_set_if_absent_existing_key(client):
    client.client.set.return_value = None

    assert await client.set_if_absent("k", "v", 60) is False


@pytest.mark.asyncio
async def test_set_if_absent_raises_when_unreachable(client):
    client.client.set.side_effect = RedisConnectionError("refused")

    with pytest.raises(RedisOperationError) as exc:
        await client.set_if_absent("k", "v", 60)
    assert exc.value.operation == "set_if_absent"


@pytest.mark.asyncio
async def test_set_if_absent_rejects_non_positive_ttl(client):
    with pytest.raises(ValueError):
        await client.set_if_absent("k", "v", 0)


@pytest.mark.asyncio
async def test_delete_failure_returns_false(client):
    client.client.delete.side_effect = RedisConnectionError("refused")

    assert await client.delete("k") is False


@pytest.mark.asyncio
async def test_delete_matching_batches_scan(client):
    keys = [f"subscriptions:user:{i}" for i in range(5)]

    async def scan_iter(match=None, count=None):
        for key in keys:
            yield key

    client.client.scan_iter = scan_iter
    client.client.delete.side_effect = lambda *batch: len(batch)

    deleted = await client.delete_matching("subscriptions:user:*", batch_size=2)

    assert deleted == 5
    assert client.client.delete.await_count == 3


@pytest.mark.asyncio
async def test_health_check_reports_failure(client):
    client.client.ping.return_value = False

    health = await client.health_check()

    assert health["healthy"] is False
