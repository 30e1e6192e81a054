import io
import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional


def create_test_document(id: str = "doc-1", **fields) -> Dict[str, Any]:
    """
    Create a stored-shape test document.

    Args:
        id: Document id
        **fields: Additional fields

    Returns:
        A document dictionary with _id, timestamps and version
    """
    document = {
        "_id": id,
        "createdAt": "2024-01-01T00:00:00.000Z",
        "updatedAt": "2024-01-01T00:00:00.000Z",
        "__v": 0,
    }
    document.update(fields)
    return document


async def add_documents(backend, collection: str, documents: List[Dict[str, Any]]) -> None:
    for document in documents:
        await backend.add(collection, document)


@contextmanager
def capture_logs():
    """
    Context manager to capture catalog_store logs during tests.

    Yields:
        A list that will contain the captured log records
    """
    captured_logs = []
    handler = logging.StreamHandler(io.StringIO())
    handler.emit = lambda record: captured_logs.append(record)

    logger = logging.getLogger("catalog_store")
    level = logger.getEffectiveLevel()
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)

    try:
        yield captured_logs
    finally:
        logger.removeHandler(handler)
        logger.setLevel(level)


def get_metadata_from_logs(logs: List[logging.LogRecord],
                           message_contains: Optional[str] = None) -> Dict[str, Any]:
    """
    Merge the metadata of captured log records.

    Args:
        logs: List of captured log records
        message_contains: Optional substring to filter logs by message content
    """
    matching_logs = logs
    if message_contains:
        matching_logs = [
            log for log in logs
            if hasattr(log, "msg") and message_contains in str(log.msg)
        ]

    metadata = {}
    for log in matching_logs:
        if hasattr(log, "metadata"):
            metadata.update(log.metadata)

    return metadata
