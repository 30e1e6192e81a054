# Abstract base classes defining interfaces for storage and cache backends
# These interfaces define the contract that all backend implementations must follow

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .query import QueryPlan


class StorageBackend(ABC):
    """Abstract base class for storage backends that persist documents in collections."""

    @abstractmethod
    async def add(self, collection: str, document: Dict[str, Any]) -> None:
        """
        Add a document to a collection.

        Args:
            collection: The collection to add the document to
            document: The document to store, with its string ``_id`` set

        Raises:
            InvalidDocument: If the collection already holds a document with this ``_id``
        """
        pass

    @abstractmethod
    async def get(self, collection: str, id: str) -> Optional[Dict[str, Any]]:
        """
        Retrieve a document by id.

        Args:
            collection: The collection to look in
            id: The document id

        Returns:
            The document, or None if there is none
        """
        pass

    @abstractmethod
    async def update(
        self, collection: str, id: str, changes: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        """
        Merge ``changes`` into a stored document.

        Args:
            collection: The collection holding the document
            id: The document id
            changes: Top-level fields to set

        Returns:
            The updated document, or None if there is none
        """
        pass

    @abstractmethod
    async def remove(self, collection: str, id: str) -> bool:
        """
        Remove a document.

        Args:
            collection: The collection holding the document
            id: The document id

        Returns:
            True if a document was removed
        """
        pass

    @abstractmethod
    async def count(self, collection: str, criteria: Optional[Dict[str, Any]] = None) -> int:
        """
        Count the documents matching a filter predicate.

        Args:
            collection: The collection to count in
            criteria: Filter predicate, None or empty for all documents
        """
        pass

    @abstractmethod
    async def find(self, plan: QueryPlan) -> List[Dict[str, Any]]:
        """
        Execute a query plan.

        Args:
            plan: Filter, sort, projection and skip/limit to apply

        Returns:
            The matching documents in plan order

        Raises:
            QueryError: If the engine rejects the plan
        """
        pass

    async def setup(self) -> None:
        """Set up the backend (default no-op implementation)."""
        pass

    async def teardown(self) -> None:
        """Tear down the backend (default no-op implementation)."""
        pass

    async def close(self) -> None:
        """Release connections (default no-op implementation)."""
        pass


class CacheBackend(ABC):
    """Abstract base class for cache backends that temporarily hold single documents."""

    @abstractmethod
    async def add(self, key: str, value: Dict[str, Any], ttl: int = 3600) -> None:
        """
        Add an item to the cache.

        Args:
            key: The cache key
            value: The value to cache
            ttl: Time-to-live in seconds (default: 1 hour)
        """
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        """
        Retrieve an item from the cache.

        Returns:
            The cached value, or None if not found
        """
        pass

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Remove an item from the cache."""
        pass

    async def setup(self) -> None:
        """Set up the cache (default no-op implementation)."""
        pass

    async def teardown(self) -> None:
        """Tear down the cache (default no-op implementation)."""
        pass

    async def close(self) -> None:
        """Release connections (default no-op implementation)."""
        pass
