"""Global pytest fixtures.

Provides caches and a scripted stand-in for the Redis round trip, so the
read-through path can be exercised without a server.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from trackcache.cache.provider import ClientSideCache


class FakeRemote:
    """Scripted replacement for one Redis command.

    Each call returns the next reply (or raises it, if it is an exception)
    and is recorded, so tests can tell hits from misses by call count.
    """

    def __init__(self, *replies: Any) -> None:
        self.replies = list(replies)
        self.calls = 0

    def __call__(self) -> Callable[[], Any]:
        async def fetch() -> Any:
            self.calls += 1
            reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
            if isinstance(reply, BaseException):
                raise reply
            return reply

        return fetch


@pytest.fixture
def cache() -> ClientSideCache:
    """Cache with statistics disabled (the default)."""
    return ClientSideCache()


@pytest.fixture
def stats_cache() -> ClientSideCache:
    """Cache with statistics enabled."""
    return ClientSideCache(enable_statistics=True)


@pytest.fixture
def remote() -> type[FakeRemote]:
    return FakeRemote
