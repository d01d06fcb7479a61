"""Prometheus metrics for the client-side cache.

Provides:
- CacheStatsCollector: exposes a cache's counters and size at scrape time
- InvalidationCounter: counts invalidate notifications by kind

Counters only move when the cache was built with enable_statistics=True;
otherwise they are exported as zeros.

Usage:
    from trackcache.observability.metrics import register_cache_metrics

    register_cache_metrics(cache, name="sessions")
    # ... expose prometheus_client.generate_latest() on /metrics
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING, Any

from prometheus_client import REGISTRY, CollectorRegistry, Counter
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric
from prometheus_client.registry import Collector

if TYPE_CHECKING:
    from trackcache.cache.provider import ClientSideCache

logger = logging.getLogger(__name__)

METRIC_PREFIX = "trackcache"


class CacheStatsCollector(Collector):
    """Custom collector reading ClientSideCache.stats() on every scrape."""

    def __init__(self, cache: ClientSideCache, name: str = "default") -> None:
        self.cache = cache
        self.name = name

    def collect(self) -> Iterator[Metric]:
        stats = self.cache.stats()
        labels = [self.name]

        counters: list[tuple[str, str, float]] = [
            ("hits", "Reads served from the client-side cache", stats.hits),
            ("misses", "Reads that went to Redis", stats.misses),
            ("load_successes", "Redis reads that completed", stats.load_successes),
            ("load_failures", "Redis reads that raised", stats.load_failures),
            ("evictions", "Entries removed by invalidation", stats.evictions),
        ]
        for suffix, documentation, value in counters:
            family = CounterMetricFamily(
                f"{METRIC_PREFIX}_cache_{suffix}", documentation, labels=["cache"]
            )
            family.add_metric(labels, value)
            yield family

        load_time = CounterMetricFamily(
            f"{METRIC_PREFIX}_cache_load_seconds",
            "Time spent waiting on Redis for cache misses",
            labels=["cache"],
        )
        load_time.add_metric(labels, stats.total_load_time_ms / 1000.0)
        yield load_time

        entries = GaugeMetricFamily(
            f"{METRIC_PREFIX}_cache_entries",
            "Results currently cached",
            labels=["cache"],
        )
        entries.add_metric(labels, self.cache.size())
        yield entries


class InvalidationCounter:
    """Invalidate listener counting notifications.

    Kind is "key" for a single-key invalidation and "flush" for a global one.
    """

    def __init__(self, registry: CollectorRegistry = REGISTRY, name: str = "default") -> None:
        self.name = name
        self.counter = Counter(
            f"{METRIC_PREFIX}_invalidations",
            "Invalidation notifications received",
            ["cache", "kind"],
            registry=registry,
        )

    def __call__(self, key: Any) -> None:
        kind = "flush" if key is None else "key"
        self.counter.labels(cache=self.name, kind=kind).inc()


def register_cache_metrics(
    cache: ClientSideCache,
    registry: CollectorRegistry = REGISTRY,
    name: str = "default",
) -> InvalidationCounter:
    """Export a cache's statistics and invalidations through ``registry``."""
    registry.register(CacheStatsCollector(cache, name=name))
    invalidations = InvalidationCounter(registry=registry, name=name)
    cache.on("invalidate", invalidations)
    if not cache.statistics_enabled:
        logger.info(f"Cache {name!r} has statistics disabled; its counters stay at zero")
    return invalidations
