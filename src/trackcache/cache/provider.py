"""Client-side cache kept coherent by Redis server-assisted tracking.

The cache sits between callers and a tracking-enabled Redis connection:

- Reads go through handle_cache(). A hit returns a copy of the stored
  reply; a miss runs the real command, stores its reply and indexes it
  under every key the command read.
- Redis pushes one invalidation per modified key (or a flush). The cache
  drops every result that read that key and tells its listeners.
- Any error or close on the transport resets the cache, because missed
  invalidations can no longer be ruled out.

Example:
    cache = ClientSideCache(enable_statistics=True)
    cache.on("invalidate", lambda key: print("invalidated", key))

    value = await cache.handle_cache(
        ["GET", "user:1"], ["user:1"], lambda: redis.get("user:1")
    )

Consistency is eventual. An invalidation that lands while a miss for the
same key is still awaiting Redis does not stop that reply from being
cached; the window is bounded by the duration of the in-flight read.
A full reset (clear, flush, transport error or close) does stop it: a
miss that started before the reset returns its reply without caching it.
"""

from __future__ import annotations

import copy
import logging
import time
from collections.abc import Awaitable, Callable, Iterable, MutableMapping, Sequence
from typing import Any, Final

from trackcache.cache.base import InvalidationListener, ReplyTransform
from trackcache.cache.keys import Arg, ResultKeys, source_keys
from trackcache.cache.stats import CacheStats, create_stats_recorder
from trackcache.cache.store import MISSING, CacheEntry, DualMapStore
from trackcache.errors import CacheConfigurationError

logger = logging.getLogger(__name__)

INVALIDATE_EVENT: Final = "invalidate"

TRACKING_ON: Final = ("CLIENT", "TRACKING", "ON")


def no_copy(value: Any) -> Any:
    """Copy function for caches whose values are never mutated."""
    return value


class ClientSideCache:
    """Read-through cache indexed by result-id and by source key.

    Args:
        enable_statistics: Count hits, misses, loads and evictions.
        cache_map_implementation: Factory for the result-id -> entry map.
        key_index_map_implementation: Factory for the key -> result-ids map.
        key_set_implementation: Factory for the per-key result-id sets.
        copy_value: Applied to every value handed to a caller. Defaults to
            copy.deepcopy; pass no_copy when values are immutable.
    """

    def __init__(
        self,
        *,
        enable_statistics: bool = False,
        cache_map_implementation: Callable[[], MutableMapping[str, CacheEntry]] = dict,
        key_index_map_implementation: Callable[[], MutableMapping[str, Any]] = dict,
        key_set_implementation: Callable[[], Any] = set,
        copy_value: Callable[[Any], Any] = copy.deepcopy,
    ) -> None:
        if not callable(copy_value):
            raise CacheConfigurationError(f"copy_value must be callable, got {copy_value!r}")

        self._store = DualMapStore(
            cache_map_implementation=cache_map_implementation,
            key_index_map_implementation=key_index_map_implementation,
            key_set_implementation=key_set_implementation,
        )
        self._stats = create_stats_recorder(enable_statistics)
        self._copy = copy_value
        self._listeners: list[InvalidationListener] = []
        # Bumped by every full reset; misses started before one aren't cached
        self._epoch = 0

    @classmethod
    def from_settings(cls, settings: Any, **options: Any) -> ClientSideCache:
        """Build a cache using the statistics flag from Settings."""
        options.setdefault("enable_statistics", settings.enable_statistics)
        return cls(**options)

    @property
    def store(self) -> DualMapStore:
        return self._store

    @property
    def statistics_enabled(self) -> bool:
        return self._stats.enabled

    # -------------------------------------------------------------------------
    # Read-through
    # -------------------------------------------------------------------------

    async def handle_cache(
        self,
        args: Sequence[Arg],
        keys: Sequence[Arg],
        fn: Callable[[], Awaitable[Any]],
        transform_reply: ReplyTransform | None = None,
        type_mapping: Any = None,
    ) -> Any:
        """Return the reply for a read, from memory when possible.

        Args:
            args: Full command, e.g. ["MGET", "user:1", "user:2"].
            keys: Keys the command reads; invalidating any of them drops
                the cached reply.
            fn: Runs the command against Redis.
            transform_reply: Applied to the raw reply before caching.
            type_mapping: Passed through to transform_reply untouched.

        Errors raised by ``fn`` reach the caller unchanged and nothing is
        cached for them.
        """
        result_id = ResultKeys.from_args(args)

        cached = self._store.lookup(result_id)
        if cached is not MISSING:
            self._stats.record_hit()
            logger.debug(f"Cache hit: {result_id}")
            return self._copy(cached)

        self._stats.record_miss()
        logger.debug(f"Cache miss: {result_id}")

        epoch = self._epoch
        started = time.perf_counter()
        try:
            reply = await fn()
        except BaseException:
            self._stats.record_load_failure()
            raise
        else:
            self._stats.record_load_success()
        finally:
            self._stats.record_load_time((time.perf_counter() - started) * 1000.0)

        value = transform_reply(reply, type_mapping) if transform_reply else reply
        if epoch != self._epoch:
            # A reset ran while the read was in flight and tracking may have
            # been re-enabled without this key, so the reply is not cached.
            logger.debug(f"Not caching {result_id}: cache was reset during the read")
            return value

        self._store.insert(result_id, self._copy(value), source_keys(keys))
        return self._copy(value)

    def tracking_on(self) -> list[str]:
        """Command enabling server-side tracking for the read connection."""
        return list(TRACKING_ON)

    # -------------------------------------------------------------------------
    # Invalidation
    # -------------------------------------------------------------------------

    def invalidate(self, key: str | bytes | None) -> None:
        """Drop everything that read ``key``; None drops everything.

        Listeners are notified with the key as received, whether or not
        anything was cached for it.
        """
        if key is None:
            evicted = self._reset_store()
            logger.debug(f"Global invalidation dropped {evicted} entries")
        else:
            evicted = self._store.remove_by_source_key(ResultKeys.source_key(key))
            logger.debug(f"Invalidation of {key!r} dropped {evicted} entries")

        self._stats.record_evictions(evicted)
        self._emit(key)

    def invalidate_many(self, keys: Iterable[str | bytes]) -> None:
        """Apply one server push carrying several keys."""
        for key in keys:
            self.invalidate(key)

    def on(self, event: str, listener: InvalidationListener) -> None:
        """Subscribe to cache events. Only "invalidate" exists."""
        self._check_event(event)
        self._listeners.append(listener)
        name = getattr(listener, "__name__", listener.__class__.__name__)
        logger.debug(f"Registered invalidation listener: {name}")

    def off(self, event: str, listener: InvalidationListener) -> None:
        """Remove a listener added with on(); unknown listeners are ignored."""
        self._check_event(event)
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def _check_event(self, event: str) -> None:
        if event != INVALIDATE_EVENT:
            raise ValueError(f"Unknown cache event {event!r}, expected {INVALIDATE_EVENT!r}")

    def _emit(self, key: str | bytes | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(key)
            except Exception as e:
                logger.error(f"Invalidation listener failed: {e}")

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def clear(self) -> None:
        """Drop all entries. Not counted as evictions."""
        self._reset_store()

    def reset(self) -> None:
        self.clear()

    def on_error(self, exc: BaseException | None = None) -> None:
        """Transport failed; invalidations may have been lost."""
        dropped = self._reset_store()
        logger.warning(f"Transport error ({exc!r}), dropped {dropped} cached entries")

    def on_close(self) -> None:
        """Transport closed; the invalidation channel is gone."""
        dropped = self._reset_store()
        logger.info(f"Transport closed, dropped {dropped} cached entries")

    def _reset_store(self) -> int:
        self._epoch += 1
        return self._store.clear_all()

    def size(self) -> int:
        return self._store.size()

    def entry_count(self) -> int:
        return self._store.size()

    def __len__(self) -> int:
        return self._store.size()

    def stats(self) -> CacheStats:
        """Snapshot of counters; all zero when statistics are disabled."""
        return self._stats.snapshot()

    def statistics_snapshot(self) -> CacheStats:
        return self._stats.snapshot()
