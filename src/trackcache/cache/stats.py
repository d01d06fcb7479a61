"""Statistics for the client-side cache.

Counting is chosen once, at construction: StatsCounter updates counters,
DisabledStatsCounter does nothing. The cache holds one of them and calls
it unconditionally, so a cache without statistics pays no branch per read.

Both report through the same frozen CacheStats snapshot; a disabled
counter reports all zeros rather than omitting fields.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Protocol


@dataclass(frozen=True, slots=True)
class CacheStats:
    """Immutable snapshot of cache counters."""

    hits: int = 0
    misses: int = 0
    load_successes: int = 0
    load_failures: int = 0
    total_load_time_ms: float = 0.0
    evictions: int = 0

    @property
    def request_count(self) -> int:
        """Reads served, hits plus misses."""
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        """Fraction of reads served from memory; 1.0 before any read."""
        total = self.request_count
        return self.hits / total if total else 1.0

    @property
    def miss_rate(self) -> float:
        total = self.request_count
        return self.misses / total if total else 0.0

    @property
    def load_count(self) -> int:
        return self.load_successes + self.load_failures

    @property
    def average_load_penalty_ms(self) -> float:
        """Mean time spent per remote load, successful or not."""
        loads = self.load_count
        return self.total_load_time_ms / loads if loads else 0.0

    def as_dict(self) -> dict[str, float]:
        data: dict[str, float] = asdict(self)
        data["hit_rate"] = self.hit_rate
        data["average_load_penalty_ms"] = self.average_load_penalty_ms
        return data


class StatsRecorder(Protocol):
    """What the cache calls on every counted event."""

    enabled: bool

    def record_hit(self) -> None: ...

    def record_miss(self) -> None: ...

    def record_load_success(self) -> None: ...

    def record_load_failure(self) -> None: ...

    def record_load_time(self, elapsed_ms: float) -> None: ...

    def record_evictions(self, count: int) -> None: ...

    def snapshot(self) -> CacheStats: ...


class StatsCounter:
    """Counting strategy used when statistics are enabled."""

    enabled = True

    __slots__ = (
        "hits",
        "misses",
        "load_successes",
        "load_failures",
        "total_load_time_ms",
        "evictions",
    )

    def __init__(self) -> None:
        self.hits = 0
        self.misses = 0
        self.load_successes = 0
        self.load_failures = 0
        self.total_load_time_ms = 0.0
        self.evictions = 0

    def record_hit(self) -> None:
        self.hits += 1

    def record_miss(self) -> None:
        self.misses += 1

    def record_load_success(self) -> None:
        self.load_successes += 1

    def record_load_failure(self) -> None:
        self.load_failures += 1

    def record_load_time(self, elapsed_ms: float) -> None:
        self.total_load_time_ms += elapsed_ms

    def record_evictions(self, count: int) -> None:
        self.evictions += count

    def snapshot(self) -> CacheStats:
        return CacheStats(
            hits=self.hits,
            misses=self.misses,
            load_successes=self.load_successes,
            load_failures=self.load_failures,
            total_load_time_ms=self.total_load_time_ms,
            evictions=self.evictions,
        )


class DisabledStatsCounter:
    """No-op strategy used when statistics are disabled."""

    enabled = False

    __slots__ = ()

    def record_hit(self) -> None:
        pass

    def record_miss(self) -> None:
        pass

    def record_load_success(self) -> None:
        pass

    def record_load_failure(self) -> None:
        pass

    def record_load_time(self, elapsed_ms: float) -> None:
        pass

    def record_evictions(self, count: int) -> None:
        pass

    def snapshot(self) -> CacheStats:
        return EMPTY_STATS


EMPTY_STATS = CacheStats()


def create_stats_recorder(enable_statistics: bool) -> StatsRecorder:
    """Pick the counting strategy for a cache."""
    return StatsCounter() if enable_statistics else DisabledStatsCounter()
