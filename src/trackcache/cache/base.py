"""Capability interface a tracking transport depends on.

The transport never needs to know which cache it drives. Anything that
satisfies ClientSideCacheProvider can be plugged in.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Protocol, runtime_checkable

from trackcache.cache.keys import Arg
from trackcache.cache.stats import CacheStats

ReplyTransform = Callable[[Any, Any], Any]
InvalidationListener = Callable[[Any], None]


@runtime_checkable
class ClientSideCacheProvider(Protocol):
    """Interface used by the Redis transport around every cacheable read."""

    async def handle_cache(
        self,
        args: Sequence[Arg],
        keys: Sequence[Arg],
        fn: Callable[[], Awaitable[Any]],
        transform_reply: ReplyTransform | None = None,
        type_mapping: Any = None,
    ) -> Any:
        """Serve a read from memory, or run ``fn`` and cache its reply."""
        ...

    def tracking_on(self) -> list[str]:
        """Command the transport sends to enable server-side tracking."""
        ...

    def invalidate(self, key: str | bytes | None) -> None:
        """Apply one invalidation; None means everything."""
        ...

    def on_error(self, exc: BaseException | None = None) -> None: ...

    def on_close(self) -> None: ...

    def clear(self) -> None: ...

    def size(self) -> int: ...

    def stats(self) -> CacheStats: ...
