"""trackcache: client-side caching for Redis with server-assisted invalidation."""

from trackcache.cache import CacheStats, ClientSideCache, ResultKeys
from trackcache.client import TrackingRedisClient
from trackcache.errors import CacheConfigurationError, TrackCacheError, TrackingError

__version__ = "0.1.0"

__all__ = [
    "CacheConfigurationError",
    "CacheStats",
    "ClientSideCache",
    "ResultKeys",
    "TrackCacheError",
    "TrackingError",
    "TrackingRedisClient",
    "__version__",
]
