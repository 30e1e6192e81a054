# Structured logging module for CatalogStore
# Wraps the standard logging package so every record carries a metadata dict

import functools
import inspect
import logging
from typing import Any, Callable, Dict, Optional

ROOT_LOGGER_NAME = "catalog_store"

# Setup default logger
DEFAULT_LOGGER = logging.getLogger(ROOT_LOGGER_NAME)


class StructuredLogger:
    """
    Structured logger that attaches metadata to log records.

    Metadata given at construction time is merged with the metadata of each
    call and stored on the record as ``record.metadata``, so handlers and
    formatters can render it however they like.
    """

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        default_metadata: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize a structured logger.

        Args:
            logger: Logger instance to use (defaults to the catalog_store logger)
            default_metadata: Metadata included with every message
        """
        self.logger = logger or DEFAULT_LOGGER
        self.default_metadata = default_metadata or {}

    def bind(self, **metadata: Any) -> "StructuredLogger":
        """Return a logger on the same channel with extra default metadata."""
        return StructuredLogger(
            logger=self.logger,
            default_metadata={**self.default_metadata, **metadata}
        )

    def _log(
        self,
        level: int,
        msg: str,
        metadata: Optional[Dict[str, Any]] = None,
        *args,
        **kwargs
    ) -> None:
        combined_metadata = {**self.default_metadata}
        if metadata:
            combined_metadata.update(metadata)

        extra = kwargs.get("extra", {})
        extra["metadata"] = combined_metadata
        kwargs["extra"] = extra

        self.logger.log(level, msg, *args, **kwargs)

    def debug(self, msg: str, metadata: Optional[Dict[str, Any]] = None, *args, **kwargs) -> None:
        """Log a debug message with metadata."""
        self._log(logging.DEBUG, msg, metadata, *args, **kwargs)

    def info(self, msg: str, metadata: Optional[Dict[str, Any]] = None, *args, **kwargs) -> None:
        """Log an info message with metadata."""
        self._log(logging.INFO, msg, metadata, *args, **kwargs)

    def warning(self, msg: str, metadata: Optional[Dict[str, Any]] = None, *args, **kwargs) -> None:
        """Log a warning message with metadata."""
        self._log(logging.WARNING, msg, metadata, *args, **kwargs)

    def error(self, msg: str, metadata: Optional[Dict[str, Any]] = None, *args, **kwargs) -> None:
        """Log an error message with metadata."""
        self._log(logging.ERROR, msg, metadata, *args, **kwargs)

    def critical(self, msg: str, metadata: Optional[Dict[str, Any]] = None, *args, **kwargs) -> None:
        """Log a critical message with metadata."""
        self._log(logging.CRITICAL, msg, metadata, *args, **kwargs)


def get_logger(
    name: Optional[str] = None,
    default_metadata: Optional[Dict[str, Any]] = None
) -> StructuredLogger:
    """
    Get a structured logger.

    Args:
        name: Logger name (appended to the 'catalog_store' namespace)
        default_metadata: Default metadata to include with all log messages

    Returns:
        StructuredLogger instance
    """
    logger_name = f"{ROOT_LOGGER_NAME}.{name}" if name else ROOT_LOGGER_NAME

    return StructuredLogger(
        logger=logging.getLogger(logger_name),
        default_metadata=default_metadata
    )


def with_logging(
    func: Optional[Callable] = None,
    *,
    logger: Optional[StructuredLogger] = None,
    level: int = logging.DEBUG,
    log_args: bool = True
) -> Callable:
    """
    Decorator that logs calls to a function and any exception it raises.

    Works on both plain and ``async def`` functions. Exceptions are logged at
    ERROR and re-raised unchanged. With ``log_args=False`` the call arguments
    stay out of the record, for functions that receive secrets.
    """
    def decorator(func: Callable) -> Callable:
        def _logger() -> StructuredLogger:
            return logger or get_logger(func.__module__.removeprefix(f"{ROOT_LOGGER_NAME}."))

        def _before(args, kwargs) -> None:
            metadata = {"function": func.__name__}
            if log_args:
                metadata.update(args=args, kwargs=kwargs)
            _logger()._log(level, f"Calling {func.__name__}", metadata=metadata)

        def _failed(e: Exception) -> None:
            _logger().error(
                f"Exception in {func.__name__}: {e}",
                metadata={
                    "function": func.__name__,
                    "exception": str(e),
                    "exception_type": type(e).__name__
                }
            )

        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                _before(args, kwargs)
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    _failed(e)
                    raise

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            _before(args, kwargs)
            try:
                return func(*args, **kwargs)
            except Exception as e:
                _failed(e)
                raise

        return wrapper

    if func is None:
        return decorator
    return decorator(func)
