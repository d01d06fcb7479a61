"""Client-side cache layer for trackcache.

Serves repeated Redis reads from process memory:
- Result-ids identify a read by its full argument list
- A reverse index maps each Redis key to the results that read it
- Server-pushed invalidations remove exactly the affected results
- Transport errors and closes reset the whole cache
"""

from trackcache.cache.base import ClientSideCacheProvider
from trackcache.cache.keys import ResultKeys, result_id
from trackcache.cache.maps import BoundedMap, InstrumentedMap, LRUMap
from trackcache.cache.provider import INVALIDATE_EVENT, ClientSideCache, no_copy
from trackcache.cache.stats import CacheStats, DisabledStatsCounter, StatsCounter
from trackcache.cache.store import MISSING, CacheEntry, DualMapStore

__all__ = [
    # Cache
    "ClientSideCache",
    "ClientSideCacheProvider",
    "INVALIDATE_EVENT",
    "no_copy",
    # Result-ids
    "ResultKeys",
    "result_id",
    # Store
    "CacheEntry",
    "DualMapStore",
    "MISSING",
    # Backing maps
    "BoundedMap",
    "InstrumentedMap",
    "LRUMap",
    # Statistics
    "CacheStats",
    "DisabledStatsCounter",
    "StatsCounter",
]
