"""Observability for trackcache.

Provides structured logging and metrics:
- JSON or console logging with the tracking client id
- Prometheus export of cache statistics and invalidations
"""

from trackcache.observability.logging import (
    ConsoleFormatter,
    JsonFormatter,
    LogContext,
    client_id_var,
    configure_logging,
)
from trackcache.observability.metrics import (
    CacheStatsCollector,
    InvalidationCounter,
    register_cache_metrics,
)

__all__ = [
    # Logging
    "configure_logging",
    "ConsoleFormatter",
    "JsonFormatter",
    "LogContext",
    "client_id_var",
    # Metrics
    "CacheStatsCollector",
    "InvalidationCounter",
    "register_cache_metrics",
]
