import time
from unittest.mock import patch

import pytest

from catalog_store.backends.memory import InMemoryStorageBackend, matches, project, sort_documents
from catalog_store.cache.memory import InMemoryCacheBackend
from catalog_store.exceptions import InvalidDocument, QueryError
from catalog_store.query import QueryPlan
from tests.utils import add_documents, create_test_document


class TestMatching:
    """Test evaluation of filter predicates against documents."""

    @pytest.fixture
    def phone(self):
        return create_test_document(
            "p1",
            title="Galaxy Phone",
            description="Large screen",
            price=499,
            category="electronics",
            inStock=True,
            tags=["mobile", "android"],
            ratings={"average": 4.5},
        )

    def test_equality(self, phone):
        assert matches(phone, {"category": "electronics"})
        assert not matches(phone, {"category": "books"})

    def test_string_operands_are_cast_to_the_stored_type(self, phone):
        assert matches(phone, {"price": "499"})
        assert matches(phone, {"price": {"$gte": "100"}})
        assert not matches(phone, {"price": {"$lt": "100"}})
        assert matches(phone, {"inStock": "true"})
        assert matches(phone, {"ratings.average": {"$gt": "4"}})

    def test_range_and_equality_combined(self, phone):
        assert matches(phone, {"price": {"$gte": "100"}, "category": "electronics"})
        assert not matches(phone, {"price": {"$gte": "500"}, "category": "electronics"})

    def test_all_range_operators(self, phone):
        assert matches(phone, {"price": {"$gt": 498, "$lt": 500}})
        assert matches(phone, {"price": {"$gte": 499, "$lte": 499}})
        assert not matches(phone, {"price": {"$gt": 499}})

    def test_uncastable_operand_is_rejected(self, phone):
        with pytest.raises(QueryError):
            matches(phone, {"price": {"$gte": "cheap"}})

    def test_array_fields_match_any_element(self, phone):
        assert matches(phone, {"tags": "android"})
        assert matches(phone, {"tags": ["mobile", "android"]})
        assert not matches(phone, {"tags": "ios"})

    def test_regex(self, phone):
        assert matches(phone, {"title": {"$regex": "phone", "$options": "i"}})
        assert not matches(phone, {"title": {"$regex": "phone"}})
        assert not matches(phone, {"missing": {"$regex": "x"}})

    def test_invalid_regex_is_rejected(self, phone):
        with pytest.raises(QueryError):
            matches(phone, {"title": {"$regex": "(unclosed"}})

    def test_logical_operators(self, phone):
        assert matches(phone, {"$or": [{"title": "nope"}, {"price": 499}]})
        assert not matches(phone, {"$and": [{"title": "Galaxy Phone"}, {"price": 1}]})
        assert matches(phone, {"$nor": [{"category": "books"}]})

    def test_membership_and_existence(self, phone):
        assert matches(phone, {"category": {"$in": ["books", "electronics"]}})
        assert matches(phone, {"category": {"$nin": ["books"]}})
        assert matches(phone, {"price": {"$exists": True}})
        assert matches(phone, {"discount": {"$exists": False}})
        assert matches(phone, {"discount": None})
        assert matches(phone, {"category": {"$ne": "books"}})

    def test_unknown_operator_is_rejected(self, phone):
        with pytest.raises(QueryError):
            matches(phone, {"price": {"$near": 1}})
        with pytest.raises(QueryError):
            matches(phone, {"$where": "1"})

    def test_mismatched_types_do_not_match(self):
        assert not matches({"size": "L"}, {"size": {"$gt": 3}})


class TestSortAndProjection:
    """Test ordering and projection helpers."""

    def test_multi_key_sort(self):
        documents = [
            {"_id": "a", "price": 100, "name": "b"},
            {"_id": "b", "price": 200, "name": "z"},
            {"_id": "c", "price": 100, "name": "a"},
            {"_id": "d", "price": 200, "name": "c"},
        ]
        ordered = sort_documents(documents, [("price", -1), ("name", 1)])
        assert [d["_id"] for d in ordered] == ["d", "b", "c", "a"]

    def test_missing_values_sort_first_ascending(self):
        documents = [{"_id": "a", "price": 5}, {"_id": "b"}, {"_id": "c", "price": 1}]
        ordered = sort_documents(documents, [("price", 1)])
        assert [d["_id"] for d in ordered] == ["b", "c", "a"]

    def test_inclusion_projection_keeps_id(self):
        document = create_test_document("p1", name="Phone", price=1, category="x")
        assert project(document, {"name": 1, "price": 1}) == {"_id": "p1", "name": "Phone", "price": 1}

    def test_inclusion_projection_of_nested_field(self):
        document = {"_id": "p1", "ratings": {"average": 4, "count": 9}}
        assert project(document, {"ratings.average": 1}) == {"_id": "p1", "ratings": {"average": 4}}

    def test_exclusion_projection(self):
        document = create_test_document("p1", name="Phone")
        projected = project(document, {"__v": 0})
        assert "__v" not in projected
        assert projected["name"] == "Phone"
        assert "__v" in document

    def test_mixed_projection_is_rejected(self):
        with pytest.raises(QueryError):
            project({"_id": "a"}, {"name": 1, "price": 0})


class TestInMemoryStorageBackend:
    """Test the InMemoryStorageBackend implementation."""

    @pytest.fixture
    async def backend(self):
        """Create a fresh InMemoryStorageBackend for each test."""
        backend = InMemoryStorageBackend()
        yield backend
        await backend.teardown()

    async def test_add_and_get(self, backend, sample_product):
        await backend.add("products", sample_product)

        retrieved = await backend.get("products", "p1")

        # Should be equal but not the same object (deep copied)
        assert retrieved == sample_product
        assert retrieved is not sample_product

    async def test_add_requires_id(self, backend):
        with pytest.raises(ValueError):
            await backend.add("products", {"title": "No id"})

    async def test_add_rejects_duplicate_id(self, backend, sample_product):
        await backend.add("products", sample_product)

        with pytest.raises(InvalidDocument):
            await backend.add("products", {**sample_product, "title": "Replaced"})

        assert (await backend.get("products", "p1"))["title"] == sample_product["title"]

    async def test_collections_are_separate(self, backend, sample_product):
        await backend.add("products", sample_product)
        assert await backend.get("brands", "p1") is None

    async def test_get_nonexistent(self, backend):
        assert await backend.get("products", "nonexistent") is None

    async def test_update(self, backend, sample_product):
        await backend.add("products", sample_product)

        updated = await backend.update("products", "p1", {"price": 450})

        assert updated["price"] == 450
        assert updated["title"] == sample_product["title"]
        assert (await backend.get("products", "p1"))["price"] == 450
        assert await backend.update("products", "missing", {"price": 1}) is None

    async def test_remove(self, backend, sample_products):
        await add_documents(backend, "products", sample_products)

        assert await backend.remove("products", "p1") is True
        assert await backend.get("products", "p1") is None
        assert await backend.remove("products", "p1") is False
        assert await backend.count("products") == 9

    async def test_count_with_criteria(self, backend, sample_products):
        await add_documents(backend, "products", sample_products)

        assert await backend.count("products") == 10
        assert await backend.count("products", {"category": "books"}) == 5
        assert await backend.count("products", {"price": {"$gt": "500"}}) == 5
        assert await backend.count("empty") == 0

    async def test_find_empty(self, backend):
        assert await backend.find(QueryPlan(collection="products")) == []

    async def test_find_applies_the_whole_plan(self, backend, sample_products):
        await add_documents(backend, "products", sample_products)

        plan = (
            QueryPlan(collection="products")
            .find({"category": "electronics"})
            .sort([("price", -1)])
            .select({"price": 1})
            .skip(1)
            .limit(2)
        )
        results = await backend.find(plan)

        # electronics are p1, p3, p5, p7, p9; descending price, second page of one
        assert results == [{"_id": "p7", "price": 700}, {"_id": "p5", "price": 500}]

    async def test_find_does_not_leak_internal_state(self, backend, sample_product):
        await backend.add("products", sample_product)

        results = await backend.find(QueryPlan(collection="products"))
        results[0]["price"] = 0

        assert (await backend.get("products", "p1"))["price"] == 499


class TestInMemoryCacheBackend:
    """Test the InMemoryCacheBackend implementation."""

    @pytest.fixture
    def cache(self):
        return InMemoryCacheBackend()

    async def test_add_and_get(self, cache, sample_product):
        await cache.add("products:p1", sample_product)

        cached = await cache.get("products:p1")
        assert cached == sample_product
        assert cached is not sample_product

    async def test_get_missing(self, cache):
        assert await cache.get("products:none") is None

    async def test_remove(self, cache, sample_product):
        await cache.add("products:p1", sample_product)
        await cache.remove("products:p1")
        await cache.remove("products:p1")
        assert await cache.get("products:p1") is None

    async def test_expiry(self, cache, sample_product):
        with patch("catalog_store.cache.memory.time.monotonic", return_value=1000.0):
            await cache.add("products:p1", sample_product, ttl=10)

        with patch("catalog_store.cache.memory.time.monotonic", return_value=1005.0):
            assert await cache.get("products:p1") is not None

        with patch("catalog_store.cache.memory.time.monotonic", return_value=1011.0):
            assert await cache.get("products:p1") is None

    async def test_writes_sweep_expired_entries(self, cache, sample_product):
        await cache.add("old", sample_product, ttl=-1)
        await cache.add("new", sample_product)
        assert "old" not in cache._cache
        assert time.monotonic() < cache._cache["new"][1]
