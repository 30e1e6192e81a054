# Cache backends package
# Document caches implementing the CacheBackend interface

from .memory import InMemoryCacheBackend

try:
    from .redis import RedisCacheBackend
    __all__ = ["InMemoryCacheBackend", "RedisCacheBackend"]
except ImportError:
    # Redis dependencies not installed
    __all__ = ["InMemoryCacheBackend"]