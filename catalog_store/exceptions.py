# Custom exceptions for the Catalog Store package
# Provides specific error types for different failure scenarios


class CatalogStoreError(Exception):
    """Base exception for all CatalogStore errors."""

    pass


class DocumentNotFound(CatalogStoreError, KeyError):
    """Raised when no document exists for the requested id."""

    pass


class InvalidDocument(CatalogStoreError, ValueError):
    """Raised when a document cannot be stored as given."""

    pass


class QueryError(CatalogStoreError, ValueError):
    """Raised when a storage engine rejects a query (bad cast, bad pattern, unknown operator)."""

    pass
