# Query-string driven list features: filter, search, sort, field selection, pagination
# Each stage turns request parameters into part of a QueryPlan

import math
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence
from urllib.parse import parse_qsl

from .query import PaginationResult, QueryPlan, SortKey

# Parameters that steer the listing instead of filtering documents
CONTROL_PARAMS = frozenset({"page", "sort", "limit", "fields", "keyword"})

# Comparison keywords accepted in query strings, e.g. price[gte]=100
COMPARISON_OPERATORS = frozenset({"gte", "gt", "lte", "lt"})
OPERATOR_MARKER = "$"

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 50
DEFAULT_SORT: List[SortKey] = [("createdAt", -1)]
VERSION_FIELD = "__v"

# Resource tag -> text fields searched by ?keyword=
DEFAULT_SEARCH_FIELDS: Dict[str, Sequence[str]] = {"Products": ("title", "description")}
FALLBACK_SEARCH_FIELDS: Sequence[str] = ("name",)

_BRACKETS = re.compile(r"\[([^\]]*)\]")


def parse_query_string(query_string: str) -> Dict[str, Any]:
    """
    Parse a raw URL query string into a nested parameter map.

    Bracket notation nests values (``price[gte]=100`` becomes
    ``{"price": {"gte": "100"}}``) and repeated keys collect into a list.
    Values are left as strings.

    A key used both plain and with brackets keeps only one shape: in
    ``a=1&a[gte]=2`` the nested ``a[gte]`` replaces the earlier ``a=1``, and
    in ``a[gte]=2&a=1`` the two values collect into a list.
    """
    params: Dict[str, Any] = {}
    for raw_key, value in parse_qsl(query_string, keep_blank_values=True):
        head, _, rest = raw_key.partition("[")
        path = [head] + (_BRACKETS.findall("[" + rest) if rest else [])

        # tags[]=a&tags[]=b
        append = len(path) > 1 and path[-1] == ""
        if append:
            path = path[:-1]

        node = params
        for key in path[:-1]:
            child = node.get(key)
            if not isinstance(child, dict):
                child = node[key] = {}
            node = child

        leaf = path[-1]
        if leaf in node:
            existing = node[leaf]
            node[leaf] = existing + [value] if isinstance(existing, list) else [existing, value]
        else:
            node[leaf] = [value] if append else value
    return params


def rewrite_operators(value: Any) -> Any:
    """
    Rename comparison keywords to the engine's operator syntax.

    Walks nested mappings and lists and renames keys only, so
    ``{"gte": "100"}`` becomes ``{"$gte": "100"}`` while a string value
    such as ``"gte"`` is left alone.
    """
    if isinstance(value, Mapping):
        return {
            (OPERATOR_MARKER + key if key in COMPARISON_OPERATORS else key): rewrite_operators(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [rewrite_operators(item) for item in value]
    return value


def build_filter(params: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        key: rewrite_operators(value)
        for key, value in params.items()
        if key not in CONTROL_PARAMS
    }


def build_search(keyword: str, fields: Sequence[str]) -> Dict[str, Any]:
    """Case-insensitive substring match of ``keyword`` on any of ``fields``."""
    pattern = {"$regex": re.escape(keyword), "$options": "i"}
    clauses = [{field: dict(pattern)} for field in fields]
    if len(clauses) == 1:
        return clauses[0]
    return {"$or": clauses}


def _split(value: Any) -> List[str]:
    if isinstance(value, (list, tuple)):
        value = ",".join(str(v) for v in value)
    return [part.strip() for part in str(value).split(",") if part.strip()]


def parse_sort(value: Optional[Any]) -> List[SortKey]:
    """Parse ``-price,name`` into ``[("price", -1), ("name", 1)]``."""
    if not value:
        return list(DEFAULT_SORT)

    keys = []
    for part in _split(value):
        if part.startswith("-"):
            field, direction = part[1:], -1
        else:
            field, direction = part.lstrip("+"), 1
        if field:
            keys.append((field, direction))
    return keys or list(DEFAULT_SORT)


def parse_fields(value: Optional[Any]) -> Dict[str, int]:
    """Parse ``name,price`` into an inclusion projection and ``-price`` into an exclusion."""
    projection = {}
    for part in _split(value) if value else []:
        if part.startswith("-"):
            field, flag = part[1:], 0
        else:
            field, flag = part.lstrip("+"), 1
        if field:
            projection[field] = flag
    return projection or {VERSION_FIELD: 0}


def coerce_positive_int(value: Any, default: int) -> int:
    """Coerce a query parameter to a positive integer, falling back to ``default``."""
    if value is None or isinstance(value, bool):
        return default
    try:
        number = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default
    return number if number > 0 else default


def paginate(page: int, limit: int, total: int) -> PaginationResult:
    """
    Summarise page ``page`` of ``limit`` documents out of ``total``.

    Args:
        page: Current page, 1-based
        limit: Page size
        total: Number of documents matching the query

    Returns:
        PaginationResult with next/prev only where such a page exists
    """
    return PaginationResult(
        current_page=page,
        limit=limit,
        number_of_pages=math.ceil(total / limit),
        next=page + 1 if page * limit < total else None,
        prev=page - 1 if page > 1 else None,
    )


class ApiFeatures:
    """
    Applies list-endpoint query parameters to a QueryPlan.

    Each stage replaces ``self.plan`` with a refined plan and returns the
    pipeline itself, so stages chain::

        features = ApiFeatures(QueryPlan(collection="products"), params)
        features.filter().search("Products").limit_fields().sort()
        total = await backend.count("products", features.plan.criteria)
        features.paginate(total)

    The parameter map is never modified.
    """

    def __init__(
        self,
        plan: QueryPlan,
        params: Mapping[str, Any],
        search_fields: Optional[Mapping[str, Sequence[str]]] = None,
    ):
        self.plan = plan
        self.params = params
        self.search_fields = DEFAULT_SEARCH_FIELDS if search_fields is None else search_fields
        self.pagination_result: Optional[PaginationResult] = None

    def filter(self) -> "ApiFeatures":
        self.plan = self.plan.find(build_filter(self.params))
        return self

    def search(self, resource: str = "") -> "ApiFeatures":
        """
        AND a keyword match into the plan when ``keyword`` is given.

        Args:
            resource: Resource tag selecting the searched fields; tags without
                an entry in ``search_fields`` search ``name``
        """
        keyword = self.params.get("keyword")
        if isinstance(keyword, list):
            # keyword=a&keyword=b searches for the last value
            keyword = keyword[-1] if keyword else None
        if keyword:
            fields = self.search_fields.get(resource) or FALLBACK_SEARCH_FIELDS
            self.plan = self.plan.find(build_search(str(keyword), fields))
        return self

    def sort(self) -> "ApiFeatures":
        self.plan = self.plan.sort(parse_sort(self.params.get("sort")))
        return self

    def limit_fields(self) -> "ApiFeatures":
        self.plan = self.plan.select(parse_fields(self.params.get("fields")))
        return self

    def paginate(self, count_documents: int) -> "ApiFeatures":
        """
        Apply skip/limit for the requested page and record the summary.

        Args:
            count_documents: Total documents matching the query, counted by the caller
        """
        page = coerce_positive_int(self.params.get("page"), DEFAULT_PAGE)
        limit = coerce_positive_int(self.params.get("limit"), DEFAULT_LIMIT)

        self.plan = self.plan.skip((page - 1) * limit).limit(limit)
        self.pagination_result = paginate(page, limit, count_documents)
        return self
