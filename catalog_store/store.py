# Catalog Store core implementation
# Provides the CatalogStore facade and the generic CRUD handlers every resource shares

import asyncio
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional

from .backends import InMemoryStorageBackend
from .cache import InMemoryCacheBackend
from .exceptions import DocumentNotFound, InvalidDocument
from .features import VERSION_FIELD, ApiFeatures
from .interfaces import CacheBackend, StorageBackend
from .logging import get_logger, with_logging
from .query import QueryPlan
from .resources import DEFAULT_RESOURCES, Resource, ResourceRegistry

# Default namespace to use if none provided
DEFAULT_NAMESPACE = "catalog_store"

# Fields the store maintains itself; request bodies cannot overwrite them
PROTECTED_FIELDS = frozenset({"_id", "createdAt", VERSION_FIELD})

# Logger for this module
logger = get_logger("store")


def _now() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _require_document(body: Any) -> Dict[str, Any]:
    """
    Validate a request body as a document.

    Raises:
        InvalidDocument: If the body isn't a dict or carries a non-string _id
    """
    if not isinstance(body, Mapping):
        raise InvalidDocument("Document must be a dictionary")

    document_id = body.get("_id")
    if document_id is not None and (not isinstance(document_id, str) or not document_id):
        raise InvalidDocument("Document '_id' must be a nonempty string")

    return dict(body)


class CatalogStore:
    """
    Main class for storing and listing catalog documents.

    Binds a storage backend and a document cache, and exposes the generic
    handlers that every resource type uses: ``get_all`` for list endpoints
    and ``get_one``/``create_one``/``update_one``/``delete_one``. Handlers
    return the response envelope the web layer serialises.
    """

    def __init__(
        self,
        backend: Optional[StorageBackend] = None,
        cache: Optional[CacheBackend] = None,
        namespace: Optional[str] = None,
        resources: Iterable[Resource] = DEFAULT_RESOURCES,
    ):
        """
        Initialize a CatalogStore instance.

        Args:
            backend: Storage backend to use (defaults to factory-created backend)
            cache: Cache backend to use (defaults to factory-created cache)
            namespace: Namespace for this store (defaults to CATALOG_STORE_NAMESPACE or 'catalog_store')
            resources: Resource types served by this store
        """
        self.namespace = namespace or os.environ.get("CATALOG_STORE_NAMESPACE", DEFAULT_NAMESPACE)
        self.backend = backend or self.backend_factory(self.namespace)
        self.cache = cache or self.cache_factory(self.namespace)
        self.resources = ResourceRegistry(resources)

    async def __aenter__(self) -> "CatalogStore":
        await self.setup()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close backend and cache connections."""
        await self.backend.close()
        await self.cache.close()

    async def setup(self) -> None:
        await self.backend.setup()
        await self.cache.setup()

    async def teardown(self, delete_all_backend_data=False) -> None:
        await self.cache.teardown()
        if delete_all_backend_data:
            await self.backend.teardown()

    @staticmethod
    def backend_factory(namespace: str = DEFAULT_NAMESPACE) -> StorageBackend:
        """
        Create a backend based on configuration.

        Respects the CATALOG_STORE_BACKEND environment variable:
        - 'memory': In-memory backend (default)
        - 'elasticsearch': Elasticsearch backend, connected through the
          ELASTICSEARCH_* variables

        Returns:
            A StorageBackend instance
        """
        backend_type = os.environ.get("CATALOG_STORE_BACKEND", "memory")

        if backend_type == "memory":
            return InMemoryStorageBackend()
        elif backend_type == "elasticsearch":
            try:
                from .backends.elastic import ElasticsearchBackend
            except ImportError:
                logger.error(
                    "Failed to create Elasticsearch backend, missing dependencies. Install with `pip install catalog-store[es]`",
                    metadata={"requested_backend": backend_type},
                )
                return InMemoryStorageBackend()
            return ElasticsearchBackend(index_prefix=namespace)
        else:
            logger.warning(
                f"Unknown backend type: {backend_type}, using InMemoryStorageBackend",
                metadata={"requested_backend": backend_type},
            )
            return InMemoryStorageBackend()

    @staticmethod
    def cache_factory(namespace: str = DEFAULT_NAMESPACE) -> CacheBackend:
        """
        Create a cache based on configuration.

        Respects the CATALOG_STORE_CACHE environment variable:
        - 'memory': In-memory cache (default)
        - 'redis': Redis cache at REDIS_URL

        Returns:
            A CacheBackend instance
        """
        cache_type = os.environ.get("CATALOG_STORE_CACHE", "memory")

        if cache_type == "memory":
            return InMemoryCacheBackend()
        elif cache_type == "redis":
            try:
                from .cache.redis import RedisCacheBackend
            except ImportError:
                logger.error(
                    "Failed to create Redis cache, missing dependencies. Install with `pip install catalog-store[redis]`",
                    metadata={"requested_cache": cache_type},
                )
                return InMemoryCacheBackend()
            return RedisCacheBackend(
                redis_url=os.environ.get("REDIS_URL", "redis://localhost:6379/0"),
                namespace=namespace,
            )
        else:
            logger.warning(
                f"Unknown cache type: {cache_type}, using InMemoryCacheBackend",
                metadata={"requested_cache": cache_type},
            )
            return InMemoryCacheBackend()

    @staticmethod
    def _cache_key(resource: Resource, id: str) -> str:
        return f"{resource.collection}:{id}"

    async def get_all(
        self,
        resource: "Resource | str",
        params: Optional[Mapping[str, Any]] = None,
        base_filter: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        List documents of a resource, driven by query-string parameters.

        Filtering and keyword search are applied first so that the count
        (and with it the number of pages) reflects what the request asked
        for. Count and fetch are two separate queries.

        Args:
            resource: Resource or resource name
            params: Parsed query-string parameters (page, limit, sort, fields,
                keyword and field filters)
            base_filter: Scoping predicate applied before the request's own
                filters, e.g. ``{"product": product_id}`` for a product's reviews

        Returns:
            ``{"results": n, "paginationResult": {...}, "data": [...]}``

        Raises:
            QueryError: If the backend rejects the resulting query
        """
        resource = self.resources.get(resource)
        params = params or {}

        features = ApiFeatures(
            QueryPlan(collection=resource.collection, criteria=base_filter or {}),
            params,
            search_fields={**self.resources.search_fields(), resource.name: resource.search_fields},
        ).filter().search(resource.name)

        count = await self.backend.count(resource.collection, features.plan.criteria)

        features.paginate(count).limit_fields().sort()
        documents = await self.backend.find(features.plan)
        data = [resource.sanitize(document) for document in documents]

        logger.info(
            f"Listed {resource.name}",
            metadata={
                "collection": resource.collection,
                "query": features.plan.to_dict(),
                "total": count,
                "returned": len(data),
            },
        )

        return {
            "results": len(data),
            "paginationResult": features.pagination_result.to_dict(),
            "data": data,
        }

    async def get_one(self, resource: "Resource | str", id: str) -> Dict[str, Any]:
        """
        Fetch one document by id, from the cache when possible.

        Raises:
            DocumentNotFound: If no document has this id
        """
        resource = self.resources.get(resource)
        key = self._cache_key(resource, id)

        document = await self.cache.get(key)
        if document is not None:
            logger.debug(f"Cache hit for {key}", metadata={"document_id": id, "collection": resource.collection})
        else:
            document = await self.backend.get(resource.collection, id)
            if document is None:
                raise DocumentNotFound(f"No document for this id {id}")
            await self.cache.add(key, document)

        return {"data": resource.sanitize(document)}

    @with_logging(log_args=False)
    async def create_one(self, resource: "Resource | str", body: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Create a document, stamping id, timestamps and version.

        Raises:
            InvalidDocument: If the body is not a document, or its ``_id`` is
                already taken
        """
        resource = self.resources.get(resource)
        document = _require_document(body)

        now = _now()
        document["_id"] = document.get("_id") or uuid.uuid4().hex
        document["createdAt"] = now
        document["updatedAt"] = now
        document[VERSION_FIELD] = 0

        await self.backend.add(resource.collection, document)

        logger.info(
            f"Created {resource.name} document {document['_id']}",
            metadata={"document_id": document["_id"], "collection": resource.collection},
        )
        return {"data": resource.sanitize(document)}

    @with_logging(log_args=False)
    async def update_one(
        self, resource: "Resource | str", id: str, body: Mapping[str, Any]
    ) -> Dict[str, Any]:
        """
        Merge the body's fields into a stored document.

        ``_id``, ``createdAt`` and the version field are kept; ``updatedAt``
        is refreshed.

        Raises:
            InvalidDocument: If the body is not a document
            DocumentNotFound: If no document has this id
        """
        resource = self.resources.get(resource)
        changes = {k: v for k, v in _require_document(body).items() if k not in PROTECTED_FIELDS}
        changes["updatedAt"] = _now()

        document = await self.backend.update(resource.collection, id, changes)
        if document is None:
            raise DocumentNotFound(f"No document for this id {id}")

        await self.cache.remove(self._cache_key(resource, id))

        logger.info(
            f"Updated {resource.name} document {id}",
            metadata={"document_id": id, "collection": resource.collection, "fields": sorted(changes)},
        )
        return {"data": resource.sanitize(document)}

    @with_logging(log_args=False)
    async def delete_one(self, resource: "Resource | str", id: str) -> None:
        """
        Delete a document.

        Raises:
            DocumentNotFound: If no document has this id
        """
        resource = self.resources.get(resource)

        if not await self.backend.remove(resource.collection, id):
            raise DocumentNotFound(f"No document for this id {id}")

        await self.cache.remove(self._cache_key(resource, id))

        logger.info(
            f"Deleted {resource.name} document {id}",
            metadata={"document_id": id, "collection": resource.collection},
        )


class SyncCatalogStore:
    """
    Synchronous wrapper for CatalogStore.

    Runs the async handlers on a private event loop for callers such as
    scripts and WSGI views that have no loop of their own.
    """

    def __init__(
        self,
        backend: Optional[StorageBackend] = None,
        cache: Optional[CacheBackend] = None,
        namespace: Optional[str] = None,
        resources: Iterable[Resource] = DEFAULT_RESOURCES,
    ):
        self._async_store = CatalogStore(backend, cache, namespace, resources)
        self._loop = asyncio.new_event_loop()

    def __enter__(self) -> "SyncCatalogStore":
        self._loop.run_until_complete(self._async_store.setup())
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        try:
            self._loop.run_until_complete(self._async_store.close())
        finally:
            self._loop.close()

    def _run_async(self, coro):
        return self._loop.run_until_complete(coro)

    def setup(self) -> None:
        self._run_async(self._async_store.setup())

    def teardown(self, delete_all_backend_data=False) -> None:
        self._run_async(self._async_store.teardown(delete_all_backend_data))

    def get_all(
        self,
        resource: "Resource | str",
        params: Optional[Mapping[str, Any]] = None,
        base_filter: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """List documents of a resource synchronously."""
        return self._run_async(self._async_store.get_all(resource, params, base_filter))

    def get_one(self, resource: "Resource | str", id: str) -> Dict[str, Any]:
        return self._run_async(self._async_store.get_one(resource, id))

    def create_one(self, resource: "Resource | str", body: Mapping[str, Any]) -> Dict[str, Any]:
        return self._run_async(self._async_store.create_one(resource, body))

    def update_one(self, resource: "Resource | str", id: str, body: Mapping[str, Any]) -> Dict[str, Any]:
        return self._run_async(self._async_store.update_one(resource, id, body))

    def delete_one(self, resource: "Resource | str", id: str) -> None:
        self._run_async(self._async_store.delete_one(resource, id))
