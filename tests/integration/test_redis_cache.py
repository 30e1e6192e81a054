import asyncio
import json
import os
import uuid
from typing import Any, Dict

import pytest
import pytest_asyncio

from catalog_store import CatalogStore
from catalog_store.backends import InMemoryStorageBackend
from catalog_store.cache.redis import RedisCacheBackend


@pytest.fixture
def redis_url() -> str:
    """Get the Redis URL from environment or use default."""
    return os.environ.get("REDIS_URL", "redis://localhost:6379/0")


@pytest.fixture
def test_namespace() -> str:
    """Generate a unique namespace for test runs."""
    return f"cache-test-{uuid.uuid4().hex[:8]}"


@pytest.fixture
def sample_data() -> Dict[str, Any]:
    return {
        "_id": "p1",
        "title": "Galaxy Phone",
        "price": 499,
        "createdAt": "2024-01-01T00:00:00.000Z",
    }


@pytest_asyncio.fixture
async def redis_cache(redis_url: str, test_namespace: str):
    """Create a Redis cache backend and clear its namespace afterwards."""
    cache = RedisCacheBackend(redis_url=redis_url, namespace=test_namespace)
    await cache.setup()

    yield cache

    await cache.teardown()
    await cache.close()


@pytest.mark.integration_test
async def test_redis_cache_add_get(redis_cache: RedisCacheBackend, sample_data: Dict[str, Any]):
    await redis_cache.add("products:p1", sample_data)

    assert await redis_cache.get("products:p1") == sample_data


@pytest.mark.integration_test
async def test_redis_cache_missing_key(redis_cache: RedisCacheBackend):
    assert await redis_cache.get("products:missing") is None


@pytest.mark.integration_test
async def test_redis_cache_remove(redis_cache: RedisCacheBackend, sample_data: Dict[str, Any]):
    await redis_cache.add("products:p1", sample_data)
    assert await redis_cache.get("products:p1") is not None

    await redis_cache.remove("products:p1")

    assert await redis_cache.get("products:p1") is None


@pytest.mark.integration_test
async def test_redis_cache_ttl(redis_cache: RedisCacheBackend, sample_data: Dict[str, Any]):
    await redis_cache.add("products:p1", sample_data, ttl=1)
    assert await redis_cache.get("products:p1") is not None

    await asyncio.sleep(1.5)

    assert await redis_cache.get("products:p1") is None


@pytest.mark.integration_test
async def test_redis_cache_overwrite(redis_cache: RedisCacheBackend, sample_data: Dict[str, Any]):
    await redis_cache.add("products:p1", sample_data)
    await redis_cache.add("products:p1", {**sample_data, "price": 450})

    assert (await redis_cache.get("products:p1"))["price"] == 450


@pytest.mark.integration_test
async def test_redis_cache_nested_data(redis_cache: RedisCacheBackend):
    document = {
        "_id": "p2",
        "tags": ["mobile", "android"],
        "ratings": {"average": 4.5, "quantity": 12},
        "colors": [{"name": "black", "stock": 3}],
    }
    await redis_cache.add("products:p2", document)

    result = await redis_cache.get("products:p2")
    assert json.dumps(result, sort_keys=True) == json.dumps(document, sort_keys=True)


@pytest.mark.integration_test
async def test_redis_cache_corrupt_entry_is_a_miss(redis_cache: RedisCacheBackend):
    await redis_cache._client.set(redis_cache._get_key("products:bad"), "{not json")

    assert await redis_cache.get("products:bad") is None
    assert await redis_cache._client.exists(redis_cache._get_key("products:bad")) == 0


@pytest.mark.integration_test
async def test_redis_cache_namespace_isolation(redis_url: str, sample_data: Dict[str, Any]):
    cache1 = RedisCacheBackend(redis_url=redis_url, namespace=f"ns1-{uuid.uuid4().hex[:8]}")
    cache2 = RedisCacheBackend(redis_url=redis_url, namespace=f"ns2-{uuid.uuid4().hex[:8]}")

    try:
        await cache1.add("products:p1", sample_data)
        await cache2.add("products:p1", {**sample_data, "title": "Other"})

        assert (await cache1.get("products:p1"))["title"] == "Galaxy Phone"
        assert (await cache2.get("products:p1"))["title"] == "Other"

        await cache1.teardown()
        assert await cache1.get("products:p1") is None
        assert await cache2.get("products:p1") is not None
    finally:
        await cache1.teardown()
        await cache2.teardown()
        await cache1.close()
        await cache2.close()


@pytest.mark.integration_test
async def test_store_invalidates_redis_entries(redis_cache: RedisCacheBackend):
    store = CatalogStore(backend=InMemoryStorageBackend(), cache=redis_cache, namespace="test")

    created = (await store.create_one("Categories", {"name": "Phones"}))["data"]
    key = f"categories:{created['_id']}"

    await store.get_one("Categories", created["_id"])
    assert (await redis_cache.get(key))["name"] == "Phones"

    await store.update_one("Categories", created["_id"], {"name": "Mobiles"})
    assert await redis_cache.get(key) is None
    assert (await store.get_one("Categories", created["_id"]))["data"]["name"] == "Mobiles"
