"""Dual-map store behind the client-side cache.

Two structures bridge the two identity spaces involved:

- forward map: result-id -> CacheEntry (cached value + its source keys)
- reverse index: source key -> set of result-ids that read that key

Redis pushes invalidations per source key, e.g. "user:1". One source key
can feed several cached results:

    GET user:1            -> "6_user:1"
    MGET user:1 user:2    -> "6_6_user:1_user:2"

    reverse index:
        "user:1" -> {"6_user:1", "6_6_user:1_user:2"}
        "user:2" -> {"6_6_user:1_user:2"}

Invalidating "user:1" is an O(1) index lookup plus O(k) deletes. Removing
the MGET result also unlinks it from "user:2", so the index never keeps a
result-id the forward map has dropped, and never keeps an empty set.

Every method here is synchronous. On an asyncio loop that makes each of
them atomic with respect to the others.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator, MutableMapping
from dataclasses import dataclass
from typing import Any, Final

from trackcache.errors import CacheConfigurationError

logger = logging.getLogger(__name__)

# Methods a backing map or membership set must provide
MAP_CAPABILITIES: Final = (
    "__getitem__",
    "__setitem__",
    "__delitem__",
    "__contains__",
    "__iter__",
    "__len__",
    "get",
    "pop",
    "clear",
)
SET_CAPABILITIES: Final = ("add", "discard", "__contains__", "__iter__", "__len__")


class _Missing:
    """Sentinel type for "no cached entry"; None is a cacheable value."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Final = _Missing()


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """One cached read result and the source keys it was indexed under."""

    value: Any
    source_keys: tuple[str, ...]


def validate_factory(
    factory: Any,
    option: str,
    capabilities: tuple[str, ...] = MAP_CAPABILITIES,
) -> Callable[[], Any]:
    """Check that ``factory()`` builds an object with the given capabilities.

    Raises CacheConfigurationError naming the option and what's missing, so
    a bad class fails at construction rather than mid-invalidation.
    """
    if not callable(factory):
        raise CacheConfigurationError(
            f"{option} must be a class or zero-argument callable, got {factory!r}"
        )

    try:
        probe = factory()
    except TypeError as e:
        raise CacheConfigurationError(
            f"{option} must be constructible without arguments: {e}"
        ) from e

    missing = [name for name in capabilities if not callable(getattr(probe, name, None))]
    if missing:
        name = getattr(factory, "__name__", type(factory).__name__)
        raise CacheConfigurationError(
            f"{option} {name} does not behave like a "
            f"{'map' if capabilities is MAP_CAPABILITIES else 'set'}: "
            f"missing {', '.join(missing)}"
        )
    if len(probe) != 0:
        raise CacheConfigurationError(f"{option} must build an empty container")

    return factory


class DualMapStore:
    """Forward map plus reverse index, mutated only through this class.

    Args:
        cache_map_implementation: Factory for the forward map.
        key_index_map_implementation: Factory for the reverse index.
        key_set_implementation: Factory for each per-key membership set.

    Substitutes must keep standard map semantics. A forward map that evicts
    on its own should expose an ``on_evict`` attribute; the store assigns
    it a callback that unlinks the evicted result from the reverse index.
    Maps without one are still tolerated, but evicted result-ids then stay
    indexed until one of their keys is invalidated.
    """

    def __init__(
        self,
        cache_map_implementation: Callable[[], MutableMapping[str, CacheEntry]] = dict,
        key_index_map_implementation: Callable[[], MutableMapping[str, Any]] = dict,
        key_set_implementation: Callable[[], Any] = set,
    ) -> None:
        validate_factory(cache_map_implementation, "cache_map_implementation")
        validate_factory(key_index_map_implementation, "key_index_map_implementation")
        validate_factory(key_set_implementation, "key_set_implementation", SET_CAPABILITIES)

        self._new_set = key_set_implementation
        self.cache: MutableMapping[str, CacheEntry] = cache_map_implementation()
        self.key_to_result_ids: MutableMapping[str, Any] = key_index_map_implementation()

        if hasattr(self.cache, "on_evict"):
            self.cache.on_evict = self._forward_evicted  # type: ignore[attr-defined]

    def _forward_evicted(self, result_id: str, entry: CacheEntry) -> None:
        # The forward map dropped an entry on its own to stay within size
        self._unlink(result_id, entry.source_keys)

    # -------------------------------------------------------------------------
    # Core operations
    # -------------------------------------------------------------------------

    def lookup(self, result_id: str) -> Any:
        """Return the cached value, or MISSING if there is none."""
        entry = self.cache.get(result_id)
        if entry is None:
            return MISSING
        return entry.value

    def insert(self, result_id: str, value: Any, source_keys: Iterable[str]) -> None:
        """Store a value and register it under every source key it read."""
        keys = tuple(dict.fromkeys(source_keys))

        previous = self.cache.get(result_id)
        if previous is not None:
            self._unlink(result_id, previous.source_keys)

        self.cache[result_id] = CacheEntry(value=value, source_keys=keys)
        for key in keys:
            members = self.key_to_result_ids.get(key)
            if members is None:
                members = self._new_set()
                self.key_to_result_ids[key] = members
            members.add(result_id)

    def remove_by_source_key(self, key: str) -> int:
        """Drop every result that read ``key``.

        Returns the number of forward entries removed; 0 for unknown keys.
        """
        members = self.key_to_result_ids.pop(key, None)
        if members is None:
            return 0

        removed = 0
        for result_id in list(members):
            entry = self.cache.pop(result_id, None)
            if entry is None:
                continue
            removed += 1
            self._unlink(result_id, entry.source_keys, skip=key)

        return removed

    def clear_all(self) -> int:
        """Empty both maps. Returns the number of entries dropped."""
        count = len(self.cache)
        self.cache.clear()
        self.key_to_result_ids.clear()
        return count

    def size(self) -> int:
        """Number of cached results."""
        return len(self.cache)

    def _unlink(self, result_id: str, keys: Iterable[str], skip: str | None = None) -> None:
        """Remove result_id from the membership sets of ``keys``."""
        for other in keys:
            if other == skip:
                continue
            members = self.key_to_result_ids.get(other)
            if members is None:
                continue
            members.discard(result_id)
            if not len(members):
                del self.key_to_result_ids[other]

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self.cache)

    def __contains__(self, result_id: object) -> bool:
        return result_id in self.cache

    def __iter__(self) -> Iterator[str]:
        return iter(list(self.cache))

    def source_keys(self) -> list[str]:
        """Source keys that currently have dependents."""
        return list(self.key_to_result_ids)

    def dependents(self, key: str) -> frozenset[str]:
        """Result-ids indexed under a source key."""
        members = self.key_to_result_ids.get(key)
        return frozenset(members) if members is not None else frozenset()

    def sources_of(self, result_id: str) -> tuple[str, ...]:
        """Source keys a cached result was registered under."""
        entry = self.cache.get(result_id)
        return entry.source_keys if entry is not None else ()

    def check_consistency(self) -> list[str]:
        """Describe every break in forward/backward consistency.

        An empty list means every cached result is indexed under each of
        its source keys and every indexed result-id is cached.
        """
        problems: list[str] = []

        for result_id in list(self.cache):
            entry = self.cache.get(result_id)
            if entry is None:
                continue
            for key in entry.source_keys:
                members = self.key_to_result_ids.get(key)
                if members is None or result_id not in members:
                    problems.append(f"{result_id!r} missing from index of {key!r}")

        for key in list(self.key_to_result_ids):
            members = self.key_to_result_ids[key]
            if not len(members):
                problems.append(f"empty index entry for {key!r}")
            for result_id in members:
                if result_id not in self.cache:
                    problems.append(f"index of {key!r} holds uncached {result_id!r}")

        return problems
