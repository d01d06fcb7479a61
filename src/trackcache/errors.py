"""Exception hierarchy for trackcache.

Errors raised by the remote read itself are never wrapped: callers see
exactly what redis-py raised. The classes below cover failures that belong
to the cache and its transport.
"""

from __future__ import annotations


class TrackCacheError(Exception):
    """Base exception for trackcache errors."""

    pass


class CacheConfigurationError(TrackCacheError, TypeError):
    """A construction-time option does not satisfy its contract.

    Subclasses TypeError because the usual cause is a pluggable map or set
    class that does not behave like one.
    """

    pass


class TrackingError(TrackCacheError, RuntimeError):
    """The server rejected or did not complete the tracking handshake."""

    pass
