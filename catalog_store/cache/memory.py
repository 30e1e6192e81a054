# In-memory cache backend implementation
# Holds single documents with TTL-based expiry, for tests and development

import copy
import time
from typing import Any, Dict, Optional, Tuple

from ..interfaces import CacheBackend


class InMemoryCacheBackend(CacheBackend):
    """
    In-memory implementation of CacheBackend.

    Entries expire ``ttl`` seconds after they were added, measured on the
    monotonic clock. Expired entries are dropped lazily on read and swept
    on every write.
    """

    def __init__(self):
        # key -> (document, expiry on the monotonic clock)
        self._cache: Dict[str, Tuple[Dict[str, Any], float]] = {}

    async def add(self, key: str, value: Dict[str, Any], ttl: int = 3600) -> None:
        self._clean_expired()
        self._cache[key] = (copy.deepcopy(value), time.monotonic() + ttl)

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        entry = self._cache.get(key)
        if entry is None:
            return None

        value, expiry_time = entry
        if time.monotonic() > expiry_time:
            del self._cache[key]
            return None

        # Return a deep copy to prevent external modification
        return copy.deepcopy(value)

    async def remove(self, key: str) -> None:
        self._cache.pop(key, None)

    async def teardown(self) -> None:
        self._cache.clear()

    def _clean_expired(self) -> None:
        """Remove all expired entries from the cache."""
        now = time.monotonic()
        for key in [k for k, (_, expiry_time) in self._cache.items() if now > expiry_time]:
            del self._cache[key]
