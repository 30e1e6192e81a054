# Query models for CatalogStore
# QueryPlan is the engine-neutral description of one find() against a collection,
# PaginationResult is the summary returned alongside a page of documents

from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field

# A sort key is a field name and a direction: 1 ascending, -1 descending
SortKey = Tuple[str, int]


def and_predicates(left: Mapping[str, Any], right: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Combine two filter predicates with a logical AND.

    Predicates over disjoint fields are merged into one document, anything
    else is wrapped in an ``$and`` so that neither side is overwritten.
    """
    if not left:
        return dict(right)
    if not right:
        return dict(left)
    if left.keys().isdisjoint(right.keys()):
        return {**left, **right}
    return {"$and": [dict(left), dict(right)]}


class QueryPlan(BaseModel):
    """
    Immutable description of a query against one collection.

    Every builder method returns a new plan, so a plan can be handed to
    several stages (or kept for a count query) without being disturbed.
    The filter language is the MongoDB query dialect: field equality,
    ``$gte``/``$gt``/``$lte``/``$lt`` and friends, ``$regex`` and
    ``$and``/``$or``. Backends translate or evaluate it.
    """

    model_config = ConfigDict(frozen=True)

    collection: str = Field(
        description="Collection (or index) the query runs against"
    )

    criteria: Dict[str, Any] = Field(
        default_factory=dict,
        description="Filter predicate in the MongoDB query dialect"
    )

    sort_by: List[SortKey] = Field(
        default_factory=list,
        description="Sort keys, first key has the highest priority"
    )

    projection: Optional[Dict[str, int]] = Field(
        default=None,
        description="Inclusion ({field: 1}) or exclusion ({field: 0}) projection"
    )

    offset: int = Field(
        default=0,
        ge=0,
        description="Number of matching documents to skip"
    )

    size: Optional[int] = Field(
        default=None,
        gt=0,
        description="Maximum number of documents to return, None for no limit"
    )

    def find(self, predicate: Optional[Mapping[str, Any]]) -> "QueryPlan":
        """AND a predicate into the plan's filter."""
        if not predicate:
            return self
        return self.model_copy(update={"criteria": and_predicates(self.criteria, predicate)})

    def sort(self, keys: Sequence[SortKey]) -> "QueryPlan":
        return self.model_copy(update={"sort_by": list(keys)})

    def select(self, projection: Optional[Mapping[str, int]]) -> "QueryPlan":
        return self.model_copy(update={"projection": dict(projection) if projection else None})

    def skip(self, offset: int) -> "QueryPlan":
        return self.model_copy(update={"offset": offset})

    def limit(self, size: int) -> "QueryPlan":
        return self.model_copy(update={"size": size})

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert the plan to a dictionary, leaving out unset parts.

        Used for log metadata.
        """
        return {k: v for k, v in self.model_dump().items() if v not in (None, {}, [])}


class PaginationResult(BaseModel):
    """
    Pagination summary for one page of a list response.

    ``next`` is only set when documents remain after this page and ``prev``
    only when this is not the first page. Serialised with camelCase keys and
    without the unset links.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    current_page: int = Field(alias="currentPage", ge=1)
    limit: int = Field(ge=1)
    number_of_pages: int = Field(alias="numberOfPages", ge=0)
    next: Optional[int] = None
    prev: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
