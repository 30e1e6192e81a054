# Resource registry for the catalog
# Describes each resource type: where it is stored, what ?keyword= searches, what is never returned

from typing import Any, Dict, Iterable, Mapping, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .exceptions import CatalogStoreError
from .features import FALLBACK_SEARCH_FIELDS


class Resource(BaseModel):
    """
    A resource type served by the generic CRUD handlers.

    The ``name`` doubles as the resource tag used to pick searchable fields.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Resource tag, e.g. 'Products'")
    collection: str = Field(description="Collection the documents are stored in")
    search_fields: Tuple[str, ...] = Field(
        default=tuple(FALLBACK_SEARCH_FIELDS),
        description="Text fields matched by ?keyword="
    )
    hidden_fields: Tuple[str, ...] = Field(
        default=(),
        description="Fields stripped from every returned document"
    )

    def sanitize(self, document: Dict[str, Any]) -> Dict[str, Any]:
        if not self.hidden_fields:
            return document
        return {k: v for k, v in document.items() if k not in self.hidden_fields}


PRODUCTS = Resource(name="Products", collection="products", search_fields=("title", "description"))
CATEGORIES = Resource(name="Categories", collection="categories")
SUBCATEGORIES = Resource(name="SubCategories", collection="subcategories")
BRANDS = Resource(name="Brands", collection="brands")
COUPONS = Resource(name="Coupons", collection="coupons")
REVIEWS = Resource(name="Reviews", collection="reviews")
USERS = Resource(
    name="Users",
    collection="users",
    hidden_fields=(
        "password",
        "__v",
        "role",
        "passwordChangedAt",
        "passwordResetToken",
        "passwordResetExpires",
        "passwordResetVerified",
    ),
)

DEFAULT_RESOURCES: Tuple[Resource, ...] = (
    PRODUCTS,
    CATEGORIES,
    SUBCATEGORIES,
    BRANDS,
    COUPONS,
    REVIEWS,
    USERS,
)


class ResourceRegistry:
    """Lookup of resources by name."""

    def __init__(self, resources: Iterable[Resource] = DEFAULT_RESOURCES):
        self._resources: Dict[str, Resource] = {}
        for resource in resources:
            self.register(resource)

    def register(self, resource: Resource) -> None:
        self._resources[resource.name] = resource

    def get(self, resource: "Resource | str") -> Resource:
        """
        Resolve a resource or resource name.

        Raises:
            CatalogStoreError: If the name is not registered
        """
        if isinstance(resource, Resource):
            return resource
        try:
            return self._resources[resource]
        except KeyError:
            raise CatalogStoreError(f"Unknown resource: {resource}") from None

    def search_fields(self) -> Mapping[str, Sequence[str]]:
        """The resource tag -> searchable fields mapping consumed by ApiFeatures."""
        return {name: resource.search_fields for name, resource in self._resources.items()}

    def __contains__(self, name: str) -> bool:
        return name in self._resources

    def __iter__(self):
        return iter(self._resources.values())
