"""Alternate backing maps for DualMapStore.

Any zero-argument callable returning a MutableMapping can back the
forward map or the reverse index. These are the common variants:

- BoundedMap: drops the oldest insertion once max_size is reached
- LRUMap: drops the least recently read entry once max_size is reached
- InstrumentedMap: plain map that counts its operations

Size-limited maps report each eviction through their ``on_evict`` hook.
DualMapStore sets that hook on its forward map so an evicted result is
also unlinked from the reverse index, which keeps both maps bounded.

Example:
    cache = ClientSideCache(
        cache_map_implementation=LRUMap.with_max_size(10_000),
    )
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Callable, Iterator, MutableMapping
from dataclasses import dataclass
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K")
V = TypeVar("V")

_NOT_FOUND = object()


class BoundedMap(OrderedDict):  # type: ignore[type-arg]
    """Insertion-ordered map holding at most ``max_size`` entries."""

    DEFAULT_MAX_SIZE = 1000

    def __init__(self, max_size: int = DEFAULT_MAX_SIZE) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        super().__init__()
        self.max_size = max_size
        self.evictions = 0
        # Called with (key, value) for every entry dropped to make room
        self.on_evict: Callable[[Any, Any], None] | None = None

    @classmethod
    def with_max_size(cls, max_size: int) -> Callable[[], BoundedMap]:
        """Factory binding ``max_size``, for use as a map implementation."""

        def factory() -> BoundedMap:
            return cls(max_size)

        factory.__name__ = f"{cls.__name__}[{max_size}]"
        return factory

    def __setitem__(self, key: Any, value: Any) -> None:
        if key not in self:
            while len(self) >= self.max_size:
                evicted, dropped = self.popitem(last=False)
                self.evictions += 1
                logger.debug(f"{type(self).__name__} evicted {evicted!r}")
                if self.on_evict is not None:
                    self.on_evict(evicted, dropped)
        super().__setitem__(key, value)


class LRUMap(BoundedMap):
    """Bounded map that evicts the least recently read entry first."""

    def __getitem__(self, key: Any) -> Any:
        value = super().__getitem__(key)
        self.move_to_end(key)
        return value

    def get(self, key: Any, default: Any = None) -> Any:
        # OrderedDict.get bypasses __getitem__
        value = super().get(key, _NOT_FOUND)
        if value is _NOT_FOUND:
            return default
        self.move_to_end(key)
        return value

    def __setitem__(self, key: Any, value: Any) -> None:
        super().__setitem__(key, value)
        self.move_to_end(key)


@dataclass
class MapOperationCounts:
    """Operation counters kept by InstrumentedMap."""

    gets: int = 0
    sets: int = 0
    deletes: int = 0
    clears: int = 0


class InstrumentedMap(MutableMapping[K, V]):
    """dict-backed map that counts reads, writes, deletes and clears."""

    def __init__(self) -> None:
        self._data: dict[K, V] = {}
        self.counts = MapOperationCounts()

    def __getitem__(self, key: K) -> V:
        self.counts.gets += 1
        return self._data[key]

    def __setitem__(self, key: K, value: V) -> None:
        self.counts.sets += 1
        self._data[key] = value

    def __delitem__(self, key: K) -> None:
        self.counts.deletes += 1
        del self._data[key]

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __iter__(self) -> Iterator[K]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def clear(self) -> None:
        self.counts.clears += 1
        self._data.clear()

    def metrics(self) -> dict[str, int]:
        """Snapshot of operation counts plus current size."""
        return {
            "gets": self.counts.gets,
            "sets": self.counts.sets,
            "deletes": self.counts.deletes,
            "clears": self.counts.clears,
            "size": len(self._data),
        }
