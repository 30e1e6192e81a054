import pytest
import pytest_asyncio

from catalog_store import CatalogStore
from catalog_store.backends.memory import InMemoryStorageBackend
from catalog_store.cache.memory import InMemoryCacheBackend
from tests.utils import create_test_document


@pytest.fixture
def sample_product():
    """Sample product document for testing."""
    return create_test_document(
        "p1",
        title="Galaxy Phone",
        description="A smartphone with a large screen",
        price=499,
        category="electronics",
    )


@pytest.fixture
def sample_products():
    """Ten products with increasing prices and creation times."""
    return [
        create_test_document(
            f"p{i}",
            title=f"Product {i}",
            description=f"Description of product {i}",
            price=i * 100,
            category="electronics" if i % 2 else "books",
            createdAt=f"2024-01-{i:02d}T00:00:00.000Z",
        )
        for i in range(1, 11)
    ]


@pytest.fixture
def mock_storage_backend():
    """Create a fresh in-memory storage backend for testing."""
    return InMemoryStorageBackend()


@pytest.fixture
def mock_cache_backend():
    """Create a fresh in-memory cache backend for testing."""
    return InMemoryCacheBackend()


@pytest_asyncio.fixture
async def catalog_store(mock_storage_backend, mock_cache_backend):
    """
    Create and set up a CatalogStore instance for testing.

    Yields an initialized CatalogStore and handles teardown after tests.
    """
    store = CatalogStore(
        backend=mock_storage_backend,
        cache=mock_cache_backend,
        namespace="test"
    )

    await store.setup()
    yield store
    await store.teardown(delete_all_backend_data=True)
