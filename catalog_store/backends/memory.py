# In-memory storage backend implementation
# Evaluates QueryPlans directly over dicts, for tests and development

import copy
import operator
import re
from functools import cmp_to_key
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from ..exceptions import InvalidDocument, QueryError
from ..interfaces import StorageBackend
from ..query import QueryPlan

_MISSING = object()

_COMPARATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "$gt": operator.gt,
    "$gte": operator.ge,
    "$lt": operator.lt,
    "$lte": operator.le,
}

_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}


def _resolve(document: Mapping[str, Any], path: str) -> Any:
    """Follow a dotted path through nested dicts, returning _MISSING if it breaks."""
    value: Any = document
    for part in path.split("."):
        if not isinstance(value, Mapping) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _cast(operand: Any, sample: Any) -> Any:
    """
    Cast a query operand to the type of a stored value.

    Query strings only carry strings, so ``"100"`` has to become ``100``
    before it can be compared with a stored price.
    """
    if not isinstance(operand, str):
        return operand
    if isinstance(sample, bool):
        lowered = operand.lower()
        if lowered in ("true", "1"):
            return True
        if lowered in ("false", "0"):
            return False
        raise QueryError(f'Cast to Boolean failed for value "{operand}"')
    if isinstance(sample, (int, float)):
        try:
            return int(operand)
        except ValueError:
            pass
        try:
            return float(operand)
        except ValueError:
            raise QueryError(f'Cast to Number failed for value "{operand}"') from None
    return operand


def _candidates(value: Any) -> List[Any]:
    # Array fields match when the array itself or any element matches
    if isinstance(value, list):
        return [value, *value]
    return [value]


def _equals(value: Any, operand: Any) -> bool:
    if value is _MISSING:
        return operand is None
    return any(candidate == _cast(operand, candidate) for candidate in _candidates(value))


def _compare(compare: Callable[[Any, Any], bool], value: Any, operand: Any) -> bool:
    if value is _MISSING:
        return False
    for candidate in _candidates(value):
        if candidate is None or isinstance(candidate, (list, dict)):
            continue
        try:
            if compare(candidate, _cast(operand, candidate)):
                return True
        except TypeError:
            # Mismatched types never match
            continue
    return False


def _compile(pattern: Any, options: str) -> "re.Pattern[str]":
    flags = 0
    for option in options:
        if option not in _REGEX_FLAGS:
            raise QueryError(f"Invalid regular expression option: {option}")
        flags |= _REGEX_FLAGS[option]
    try:
        return re.compile(str(pattern), flags)
    except re.error as e:
        raise QueryError(f"Invalid regular expression {pattern!r}: {e}") from e


def _regex(value: Any, regex: "re.Pattern[str]") -> bool:
    if value is _MISSING:
        return False
    return any(isinstance(c, str) and regex.search(c) is not None for c in _candidates(value))


def _in(value: Any, operand: Any) -> bool:
    if not isinstance(operand, list):
        raise QueryError("$in needs an array")
    return any(_equals(value, item) for item in operand)


def _match_operators(value: Any, conditions: Mapping[str, Any]) -> bool:
    for op, operand in conditions.items():
        if op in _COMPARATORS:
            matched = _compare(_COMPARATORS[op], value, operand)
        elif op == "$eq":
            matched = _equals(value, operand)
        elif op == "$ne":
            matched = not _equals(value, operand)
        elif op == "$in":
            matched = _in(value, operand)
        elif op == "$nin":
            matched = not _in(value, operand)
        elif op == "$exists":
            matched = (value is not _MISSING) == bool(operand)
        elif op == "$regex":
            matched = _regex(value, _compile(operand, conditions.get("$options", "")))
        elif op == "$options":
            if "$regex" not in conditions:
                raise QueryError("$options needs a $regex")
            continue
        elif op == "$not":
            if not isinstance(operand, Mapping):
                raise QueryError("$not needs an operator expression")
            matched = not _match_operators(value, operand)
        else:
            raise QueryError(f"Unknown operator: {op}")
        if not matched:
            return False
    return True


def _is_operator_expression(condition: Any) -> bool:
    return (
        isinstance(condition, Mapping)
        and bool(condition)
        and all(str(key).startswith("$") for key in condition)
    )


def matches(document: Mapping[str, Any], criteria: Mapping[str, Any]) -> bool:
    """
    Evaluate a MongoDB-style filter predicate against a document.

    Args:
        document: The document to test
        criteria: Filter predicate

    Returns:
        True if the document satisfies every clause

    Raises:
        QueryError: If an operator is unknown or an operand cannot be cast
    """
    for key, condition in criteria.items():
        if key in ("$and", "$or", "$nor"):
            if not isinstance(condition, list) or not condition:
                raise QueryError(f"{key} needs a nonempty array")
            results = (matches(document, clause) for clause in condition)
            if key == "$and":
                matched = all(results)
            elif key == "$or":
                matched = any(results)
            else:
                matched = not any(results)
        elif key.startswith("$"):
            raise QueryError(f"Unknown top level operator: {key}")
        elif _is_operator_expression(condition):
            matched = _match_operators(_resolve(document, key), condition)
        else:
            matched = _equals(_resolve(document, key), condition)
        if not matched:
            return False
    return True


def _type_rank(value: Any) -> int:
    # Cross-type ordering: missing/null, numbers, strings, objects, arrays, booleans
    if value is _MISSING or value is None:
        return 0
    if isinstance(value, bool):
        return 5
    if isinstance(value, (int, float)):
        return 1
    if isinstance(value, str):
        return 2
    if isinstance(value, Mapping):
        return 3
    return 4


def _compare_values(left: Any, right: Any) -> int:
    left_rank, right_rank = _type_rank(left), _type_rank(right)
    if left_rank != right_rank:
        return -1 if left_rank < right_rank else 1
    if left_rank == 0:
        return 0
    if left_rank in (3, 4):
        left, right = repr(left), repr(right)
    return (left > right) - (left < right)


def sort_documents(documents: List[Dict[str, Any]], keys: List[Tuple[str, int]]) -> List[Dict[str, Any]]:
    """Sort documents by several keys, first key highest priority. Ties keep insertion order."""
    def compare(left: Dict[str, Any], right: Dict[str, Any]) -> int:
        for field, direction in keys:
            result = _compare_values(_resolve(left, field), _resolve(right, field))
            if result:
                return result * (-1 if direction < 0 else 1)
        return 0

    return sorted(documents, key=cmp_to_key(compare))


def project(document: Dict[str, Any], projection: Optional[Mapping[str, int]]) -> Dict[str, Any]:
    """
    Apply an inclusion or exclusion projection to a document.

    ``_id`` is kept by inclusion projections unless excluded explicitly.
    """
    if not projection:
        return document

    include = {field for field, flag in projection.items() if flag and field != "_id"}
    exclude = {field for field, flag in projection.items() if not flag}

    if include and exclude - {"_id"}:
        raise QueryError("Projection cannot mix inclusion and exclusion")

    if include:
        result: Dict[str, Any] = {}
        if "_id" in document and "_id" not in exclude:
            result["_id"] = document["_id"]
        for field in include:
            value = _resolve(document, field)
            if value is _MISSING:
                continue
            node = result
            *parents, leaf = field.split(".")
            for parent in parents:
                node = node.setdefault(parent, {})
            node[leaf] = value
        return result

    result = copy.deepcopy(document)
    for field in exclude:
        *parents, leaf = field.split(".")
        node: Any = result
        for parent in parents:
            node = node.get(parent) if isinstance(node, dict) else None
        if isinstance(node, dict):
            node.pop(leaf, None)
    return result


class InMemoryStorageBackend(StorageBackend):
    """
    In-memory implementation of StorageBackend for testing and development.

    Collections are dicts of documents keyed by ``_id`` and nothing survives a
    restart. Queries are evaluated in Python with the same dialect and casting
    rules the other backends expose, so list endpoints behave the same way.
    """

    def __init__(self):
        # collection name -> {document id -> document}
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def _collection(self, name: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(name, {})

    async def teardown(self) -> None:
        self._collections.clear()

    async def add(self, collection: str, document: Dict[str, Any]) -> None:
        if "_id" not in document:
            raise ValueError("Document must have an _id field")

        documents = self._collection(collection)
        if document["_id"] in documents:
            raise InvalidDocument(f"Duplicate _id {document['_id']} in {collection}")

        # Store a deep copy to prevent external modification
        documents[document["_id"]] = copy.deepcopy(document)

    async def get(self, collection: str, id: str) -> Optional[Dict[str, Any]]:
        document = self._collections.get(collection, {}).get(id)
        return copy.deepcopy(document) if document is not None else None

    async def update(
        self, collection: str, id: str, changes: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        document = self._collections.get(collection, {}).get(id)
        if document is None:
            return None
        document.update(copy.deepcopy(changes))
        return copy.deepcopy(document)

    async def remove(self, collection: str, id: str) -> bool:
        return self._collections.get(collection, {}).pop(id, None) is not None

    async def count(self, collection: str, criteria: Optional[Dict[str, Any]] = None) -> int:
        documents = self._collections.get(collection, {}).values()
        if not criteria:
            return len(documents)
        return sum(1 for document in documents if matches(document, criteria))

    async def find(self, plan: QueryPlan) -> List[Dict[str, Any]]:
        documents = [
            document
            for document in self._collections.get(plan.collection, {}).values()
            if matches(document, plan.criteria)
        ]

        if plan.sort_by:
            documents = sort_documents(documents, plan.sort_by)

        end = plan.offset + plan.size if plan.size is not None else None
        page = documents[plan.offset:end]

        return [project(copy.deepcopy(document), plan.projection) for document in page]
