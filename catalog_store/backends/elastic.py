# Elasticsearch backend for storing and querying catalog documents.
# Implements the StorageBackend interface by translating QueryPlans into the query DSL.

import copy
import os
from typing import Any, Dict, List, Mapping, Optional, Set

from elasticsearch import AsyncElasticsearch, BadRequestError, ConflictError, NotFoundError

from ..exceptions import CatalogStoreError, InvalidDocument, QueryError
from ..interfaces import StorageBackend
from ..logging import get_logger
from ..query import QueryPlan

# Logger for this module
logger = get_logger("backends.elastic")

# Default index settings and mappings
DEFAULT_INDEX_SETTINGS = {
    "number_of_shards": 1,
    "number_of_replicas": 0,
    "refresh_interval": "1s",
}

DEFAULT_MAPPINGS = {
    # Strings are stored whole so that term, range, regexp and sort work on
    # the exact value, the way a document database compares them
    "dynamic_templates": [
        {
            "strings_as_keywords": {
                "match_mapping_type": "string",
                "mapping": {"type": "keyword", "ignore_above": 8191},
            }
        }
    ],
    "properties": {
        "createdAt": {"type": "date"},
        "updatedAt": {"type": "date"},
        "__v": {"type": "integer"},
    },
    "dynamic": "true",
}

# Largest page Elasticsearch serves without a scroll (index.max_result_window)
MAX_RESULT_WINDOW = 10000

_RANGE_OPERATORS = {"$gt": "gt", "$gte": "gte", "$lt": "lt", "$lte": "lte"}

# Characters the Lucene regexp syntax reserves beyond Python's
_LUCENE_RESERVED = set('"<>@&~#')


def lucene_regexp(pattern: str) -> str:
    """
    Turn a Python search pattern into a Lucene regexp matching it anywhere in a value.

    Lucene patterns are anchored to the whole term, so the pattern is wrapped
    in ``.*``. Backslash escapes carry over unchanged.
    """
    out = []
    escaped = False
    for char in pattern:
        if escaped:
            out.append(char)
            escaped = False
        elif char == "\\":
            out.append(char)
            escaped = True
        elif char in _LUCENE_RESERVED:
            out.append("\\" + char)
        else:
            out.append(char)
    return ".*" + "".join(out) + ".*"


def _field_clauses(field: str, condition: Any) -> List[Dict[str, Any]]:
    if not (isinstance(condition, Mapping) and condition and all(str(k).startswith("$") for k in condition)):
        if condition is None:
            return [{"bool": {"must_not": [{"exists": {"field": field}}]}}]
        return [{"term": {field: condition}}]

    clauses: List[Dict[str, Any]] = []
    ranges: Dict[str, Any] = {}
    for op, operand in condition.items():
        if op in _RANGE_OPERATORS:
            ranges[_RANGE_OPERATORS[op]] = operand
        elif op == "$eq":
            clauses.extend(_field_clauses(field, operand))
        elif op == "$ne":
            clauses.append({"bool": {"must_not": _field_clauses(field, operand)}})
        elif op in ("$in", "$nin"):
            if not isinstance(operand, list):
                raise QueryError(f"{op} needs an array")
            terms = {"terms": {field: list(operand)}}
            clauses.append(terms if op == "$in" else {"bool": {"must_not": [terms]}})
        elif op == "$exists":
            exists = {"exists": {"field": field}}
            clauses.append(exists if operand else {"bool": {"must_not": [exists]}})
        elif op == "$regex":
            clauses.append({
                "regexp": {
                    field: {
                        "value": lucene_regexp(str(operand)),
                        "flags": "NONE",
                        "case_insensitive": "i" in condition.get("$options", ""),
                    }
                }
            })
        elif op == "$options":
            continue
        elif op == "$not":
            clauses.append({"bool": {"must_not": _field_clauses(field, operand)}})
        else:
            raise QueryError(f"Unknown operator: {op}")

    if ranges:
        clauses.append({"range": {field: ranges}})
    return clauses


def translate_criteria(criteria: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Translate a MongoDB-style filter predicate into an Elasticsearch query.

    Args:
        criteria: Filter predicate

    Returns:
        A bool query (or match_all for an empty predicate)

    Raises:
        QueryError: For operators the translation does not know
    """
    if not criteria:
        return {"match_all": {}}

    clauses: List[Dict[str, Any]] = []
    for key, condition in criteria.items():
        if key in ("$and", "$or", "$nor"):
            if not isinstance(condition, list) or not condition:
                raise QueryError(f"{key} needs a nonempty array")
            subqueries = [translate_criteria(clause) for clause in condition]
            if key == "$and":
                clauses.append({"bool": {"filter": subqueries}})
            elif key == "$or":
                clauses.append({"bool": {"should": subqueries, "minimum_should_match": 1}})
            else:
                clauses.append({"bool": {"must_not": subqueries}})
        elif key.startswith("$"):
            raise QueryError(f"Unknown top level operator: {key}")
        else:
            clauses.extend(_field_clauses(key, condition))

    return {"bool": {"filter": clauses}}


def translate_sort(sort_by: List[Any]) -> List[Dict[str, Any]]:
    return [
        {field: {"order": "desc" if direction < 0 else "asc", "unmapped_type": "keyword"}}
        for field, direction in sort_by
    ]


class ElasticsearchBackend(StorageBackend):
    """
    Elasticsearch implementation of the StorageBackend interface.

    Each collection lives in its own index named ``<index_prefix>-<collection>``,
    created on first write. Document ids are Elasticsearch ``_id`` values and
    are folded back into the returned documents.
    """

    def __init__(
        self,
        url: str | None = None,
        password: str | None = None,
        cloud_id: str | None = None,
        api_key: str | None = None,
        index_prefix: str = "catalog_store",
        client: Optional[AsyncElasticsearch] = None,
        refresh_on_write: bool = False,
    ):
        """
        Initialize the Elasticsearch backend.

        Args:
            url: Elasticsearch URL (falls back to ELASTICSEARCH_URL)
            password: Password for URL connections (falls back to ELASTICSEARCH_PASSWORD)
            cloud_id: Elastic Cloud id (falls back to ELASTICSEARCH_CLOUD_ID)
            api_key: API key for cloud connections (falls back to ELASTICSEARCH_API_KEY)
            index_prefix: Prefix for Elasticsearch indices (default: catalog_store)
            client: Optional pre-configured Elasticsearch client
            refresh_on_write: Whether to refresh indices immediately after writes
                              (useful for testing, but can impact performance)
        """
        self._client = client or self._create_client(
            cloud_id=cloud_id, api_key=api_key, url=url, password=password
        )
        self.index_prefix = index_prefix.lower()
        self.refresh_on_write = refresh_on_write
        self._known_indices: Set[str] = set()

    def _create_client(self, cloud_id=None, api_key=None, url=None, password=None):
        password = password or os.environ.get("ELASTICSEARCH_PASSWORD")
        api_key = api_key or os.environ.get("ELASTICSEARCH_API_KEY")
        cloud_id = cloud_id or os.environ.get("ELASTICSEARCH_CLOUD_ID")
        url = url or os.environ.get("ELASTICSEARCH_URL")

        if cloud_id:
            return AsyncElasticsearch(cloud_id=cloud_id, api_key=api_key)
        if url:
            basic_auth = ("elastic", password) if password else None
            return AsyncElasticsearch(url, basic_auth=basic_auth)

        raise RuntimeError(
            "Need environment variables ELASTICSEARCH_URL or ELASTICSEARCH_CLOUD_ID + ELASTICSEARCH_API_KEY"
        )

    def index_name(self, collection: str) -> str:
        return f"{self.index_prefix}-{collection.lower()}"

    @property
    def _refresh(self):
        return "wait_for" if self.refresh_on_write else False

    async def close(self):
        """Close the Elasticsearch client connection."""
        if self._client is not None:
            try:
                await self._client.close()
            finally:
                self._client = None

    async def _ensure_index(self, collection: str) -> str:
        index = self.index_name(collection)
        if index in self._known_indices:
            return index

        if not await self._client.indices.exists(index=index):
            await self._client.options(ignore_status=400).indices.create(
                index=index,
                settings=DEFAULT_INDEX_SETTINGS,
                mappings=DEFAULT_MAPPINGS,
            )
            logger.info(f"Created index {index}", metadata={"index": index})

        self._known_indices.add(index)
        return index

    async def teardown(self) -> None:
        """Delete every index under this backend's prefix."""
        pattern = f"{self.index_prefix}-*"
        result = await self._client.options(ignore_status=404).indices.delete(index=pattern)
        self._known_indices.clear()

        logger.info(
            "Deleted Elasticsearch indices",
            metadata={"pattern": pattern, "result": str(result)},
        )

    @staticmethod
    def _from_hit(hit: Mapping[str, Any]) -> Dict[str, Any]:
        return {"_id": hit["_id"], **hit.get("_source", {})}

    async def add(self, collection: str, document: Dict[str, Any]) -> None:
        if "_id" not in document:
            raise ValueError("Document must have an _id field")

        # _id is index metadata and may not appear in the source
        source = copy.deepcopy(document)
        document_id = source.pop("_id")

        try:
            index = await self._ensure_index(collection)
            await self._client.index(
                index=index,
                id=document_id,
                document=source,
                op_type="create",
                refresh=self._refresh,
            )
        except ConflictError as e:
            raise InvalidDocument(f"Duplicate _id {document_id} in {collection}") from e
        except Exception as e:
            logger.error(
                f"Failed to add document {document_id}",
                metadata={"document_id": document_id, "collection": collection, "error": str(e)},
            )
            raise CatalogStoreError(f"Elasticsearch add operation failed: {e}") from e

        logger.info(
            f"Added document {document_id} to {collection}",
            metadata={"document_id": document_id, "collection": collection},
        )

    async def get(self, collection: str, id: str) -> Optional[Dict[str, Any]]:
        try:
            response = await self._client.get(index=self.index_name(collection), id=id)
        except NotFoundError:
            return None
        return self._from_hit(response)

    async def update(
        self, collection: str, id: str, changes: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        changes = {k: v for k, v in changes.items() if k != "_id"}
        try:
            response = await self._client.update(
                index=self.index_name(collection),
                id=id,
                doc=changes,
                refresh=self._refresh,
                source=True,
            )
        except NotFoundError:
            return None

        logger.info(
            f"Updated document {id} in {collection}",
            metadata={"document_id": id, "collection": collection, "fields": sorted(changes)},
        )
        return {"_id": id, **response["get"]["_source"]}

    async def remove(self, collection: str, id: str) -> bool:
        response = await self._client.options(ignore_status=404).delete(
            index=self.index_name(collection),
            id=id,
            refresh=self._refresh,
        )
        removed = response.get("result") == "deleted"
        if removed:
            logger.info(
                f"Removed document {id} from {collection}",
                metadata={"document_id": id, "collection": collection},
            )
        return removed

    async def count(self, collection: str, criteria: Optional[Dict[str, Any]] = None) -> int:
        try:
            response = await self._client.count(
                index=self.index_name(collection),
                query=translate_criteria(criteria),
            )
        except NotFoundError:
            return 0
        except BadRequestError as e:
            raise QueryError(f"Elasticsearch rejected count on {collection}: {e}") from e
        return response["count"]

    async def find(self, plan: QueryPlan) -> List[Dict[str, Any]]:
        request: Dict[str, Any] = {
            "index": self.index_name(plan.collection),
            "query": translate_criteria(plan.criteria),
            "from_": plan.offset,
            "size": plan.size if plan.size is not None else MAX_RESULT_WINDOW,
        }

        if plan.sort_by:
            request["sort"] = translate_sort(plan.sort_by)

        if plan.projection:
            included = [f for f, flag in plan.projection.items() if flag and f != "_id"]
            excluded = [f for f, flag in plan.projection.items() if not flag and f != "_id"]
            if included and excluded:
                raise QueryError("Projection cannot mix inclusion and exclusion")
            if included:
                request["source_includes"] = included
            elif excluded:
                request["source_excludes"] = excluded

        try:
            response = await self._client.search(**request)
        except NotFoundError:
            return []
        except BadRequestError as e:
            raise QueryError(f"Elasticsearch rejected query on {plan.collection}: {e}") from e

        documents = [self._from_hit(hit) for hit in response["hits"]["hits"]]

        logger.debug(
            "Executed search",
            metadata={
                "collection": plan.collection,
                "query": request["query"],
                "returned_hits": len(documents),
            },
        )
        return documents
