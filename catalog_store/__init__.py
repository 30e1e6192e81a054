# Catalog Store main package initialization
# Exports the public API components for the library

from .exceptions import CatalogStoreError, DocumentNotFound, InvalidDocument, QueryError
from .features import ApiFeatures, parse_query_string
from .query import PaginationResult, QueryPlan
from .resources import Resource, ResourceRegistry
from .store import CatalogStore, SyncCatalogStore

# Define package version
__version__ = "0.1.0"

# Explicitly define public API
__all__ = [
    "CatalogStore",
    "SyncCatalogStore",
    "ApiFeatures",
    "QueryPlan",
    "PaginationResult",
    "Resource",
    "ResourceRegistry",
    "parse_query_string",
    "CatalogStoreError",
    "DocumentNotFound",
    "InvalidDocument",
    "QueryError",
]
