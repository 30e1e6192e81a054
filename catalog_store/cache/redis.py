# Redis cache backend implementation
# Holds single documents as JSON strings under namespaced keys with a TTL

import json
import os
from typing import Any, Dict, Optional

import redis.asyncio as redis

from ..exceptions import CatalogStoreError
from ..interfaces import CacheBackend
from ..logging import get_logger

# Logger for this module
logger = get_logger("cache.redis")


class RedisCacheBackend(CacheBackend):
    """
    Redis implementation of the CacheBackend interface.

    Keys are prefixed with ``<namespace>:`` so that several stores can share
    one Redis database, and teardown only clears its own namespace.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        namespace: str = "catalog_store",
        client: Optional[redis.Redis] = None,
    ):
        """
        Initialize the Redis cache backend.

        Args:
            redis_url: Redis connection URL (falls back to REDIS_URL, then redis://localhost:6379/0)
            namespace: Namespace for keys to avoid collisions (default: catalog_store)
            client: Optional pre-configured Redis client
        """
        self.redis_url = redis_url or os.environ.get("REDIS_URL", "redis://localhost:6379/0")
        self.namespace = namespace
        self._client = client or redis.from_url(self.redis_url)

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
        self._client = None

    async def teardown(self) -> None:
        """Delete every key in this cache's namespace."""
        pattern = f"{self.namespace}:*"
        cursor = 0
        deleted_keys = 0

        while True:
            cursor, keys = await self._client.scan(cursor, match=pattern, count=100)
            if keys:
                await self._client.delete(*keys)
                deleted_keys += len(keys)
            if cursor == 0:
                break

        logger.info(
            f"Cleaned up namespace {self.namespace}",
            metadata={"namespace": self.namespace, "deleted_keys": deleted_keys},
        )

    def _get_key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def add(self, key: str, value: Dict[str, Any], ttl: int = 3600) -> None:
        redis_key = self._get_key(key)

        try:
            serialized = json.dumps(value, default=str)
            await self._client.setex(redis_key, ttl, serialized)
        except Exception as e:
            logger.error(
                f"Failed to add key {key} to Redis cache",
                metadata={"key": key, "error": str(e), "namespace": self.namespace},
            )
            raise CatalogStoreError(f"Redis add operation failed: {e}") from e

        logger.debug(
            f"Added key {key} to Redis cache",
            metadata={"key": key, "ttl": ttl, "namespace": self.namespace},
        )

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        """
        Retrieve a document from the Redis cache.

        A cache that cannot be read behaves like a miss, so lookups fall
        through to the storage backend.
        """
        redis_key = self._get_key(key)

        try:
            serialized = await self._client.get(redis_key)
        except Exception as e:
            logger.error(
                f"Failed to get key {key} from Redis cache",
                metadata={"key": key, "error": str(e), "namespace": self.namespace},
            )
            return None

        if serialized is None:
            logger.debug(f"Cache miss for key {key}", metadata={"key": key, "namespace": self.namespace})
            return None

        try:
            value = json.loads(serialized)
        except json.JSONDecodeError as e:
            logger.error(
                f"Failed to decode JSON for key {key}",
                metadata={"key": key, "error": str(e), "namespace": self.namespace},
            )
            # Remove corrupted data
            await self.remove(key)
            return None

        logger.debug(f"Cache hit for key {key}", metadata={"key": key, "namespace": self.namespace})
        return value

    async def remove(self, key: str) -> None:
        """
        Remove a document from the Redis cache.

        Raises:
            CatalogStoreError: If Redis cannot be reached, since a stale entry
                would outlive an update or delete
        """
        redis_key = self._get_key(key)

        try:
            await self._client.delete(redis_key)
        except Exception as e:
            logger.error(
                f"Failed to remove key {key} from Redis cache",
                metadata={"key": key, "error": str(e), "namespace": self.namespace},
            )
            raise CatalogStoreError(f"Redis remove operation failed: {e}") from e

        logger.debug(f"Removed key {key} from Redis cache", metadata={"key": key, "namespace": self.namespace})
