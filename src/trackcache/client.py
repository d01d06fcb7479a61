"""Redis client with a tracking-backed client-side cache.

Uses two connections:
1. A single command connection. CLIENT TRACKING is per connection, so
   every cached read must go through the connection tracking was enabled on.
2. A Pub/Sub listener subscribed to __redis__:invalidate. The command
   connection enables tracking in REDIRECT mode, pointing at the
   listener's client id, so invalidations arrive as ordinary messages.

When either connection is lost, invalidations may have been missed: the
cache is reset, cached reads bypass the cache, and the listener loop
redoes the handshake with backoff.

Example:
    async with TrackingRedisClient.from_url("redis://localhost:6379/0") as client:
        await client.get("user:1")   # miss, read from Redis
        await client.get("user:1")   # hit, served from memory
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import redis.asyncio as redis
from redis.exceptions import RedisError, ResponseError

from trackcache.cache.base import ClientSideCacheProvider, ReplyTransform
from trackcache.cache.keys import Arg
from trackcache.cache.provider import ClientSideCache
from trackcache.errors import TrackingError
from trackcache.observability.logging import LogContext

if TYPE_CHECKING:
    from redis.asyncio import Redis
    from redis.asyncio.client import PubSub
    from redis.asyncio.connection import Connection

    from trackcache.config import Settings

logger = logging.getLogger(__name__)

# Channel Redis publishes invalidations on in REDIRECT mode
INVALIDATION_CHANNEL = "__redis__:invalidate"


class TrackingRedisClient:
    """Redis reads served through a ClientSideCacheProvider.

    Args:
        client: Command client. Must be a single-connection client.
        listener: Client the Pub/Sub listener connection is taken from.
        cache: Cache to drive; a plain ClientSideCache if omitted.
        channel: Invalidation channel.
        poll_timeout: Seconds each listener poll waits for a message.
        reconnect_delay: Initial backoff after the listener fails.
        max_reconnect_delay: Backoff ceiling.
    """

    def __init__(
        self,
        client: Redis,
        listener: Redis,
        cache: ClientSideCacheProvider | None = None,
        *,
        channel: str = INVALIDATION_CHANNEL,
        poll_timeout: float = 1.0,
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 30.0,
    ):
        self._client = client
        self._listener = listener
        self.cache: ClientSideCacheProvider = cache if cache is not None else ClientSideCache()
        self.channel = channel
        self.poll_timeout = poll_timeout
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay

        self._pubsub: PubSub | None = None
        self._listener_id: int | None = None
        self._tracking_enabled = False
        self._listener_lost = False
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @classmethod
    def from_url(
        cls,
        url: str,
        cache: ClientSideCacheProvider | None = None,
        **kwargs: Any,
    ) -> TrackingRedisClient:
        """Create both connections from one Redis URL.

        Extra keyword arguments other than the listener options are passed to
        redis.asyncio.from_url for both clients.
        """
        options = {
            name: kwargs.pop(name)
            for name in ("channel", "poll_timeout", "reconnect_delay", "max_reconnect_delay")
            if name in kwargs
        }
        client = redis.from_url(url, single_connection_client=True, **kwargs)
        listener = redis.from_url(url, **kwargs)
        return cls(client, listener, cache, **options)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        cache: ClientSideCacheProvider | None = None,
    ) -> TrackingRedisClient:
        """Create a client (and, if needed, its cache) from Settings."""
        if cache is None:
            cache = ClientSideCache.from_settings(settings)
        return cls.from_url(
            settings.redis_url,
            cache,
            client_name=settings.client_name,
            channel=settings.invalidation_channel,
            poll_timeout=settings.listener_poll_timeout,
            reconnect_delay=settings.reconnect_delay,
            max_reconnect_delay=settings.max_reconnect_delay,
        )

    @property
    def raw(self) -> Redis:
        """Underlying command client, for operations the wrapper doesn't cover."""
        return self._client

    @property
    def tracking_enabled(self) -> bool:
        return self._tracking_enabled

    @property
    def listener_id(self) -> int | None:
        return self._listener_id

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Complete the tracking handshake and start the listener."""
        if self._running:
            return

        await self._client.initialize()
        if self._client.connection is not None:
            self._client.connection.register_connect_callback(self._on_command_reconnect)

        await self._enable_tracking()

        self._running = True
        self._task = asyncio.create_task(self._listen_loop())
        logger.info(f"Client-side caching enabled (invalidations via {self._listener_id})")

    async def close(self) -> None:
        """Stop the listener, close both connections and reset the cache."""
        self._running = False
        self._tracking_enabled = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        await self._drop_pubsub()
        await self._client.aclose()
        await self._listener.aclose()

        self.cache.on_close()
        logger.info("Closed tracking client")

    async def __aenter__(self) -> TrackingRedisClient:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _enable_tracking(self) -> None:
        """Open the listener, then point tracking on the command connection at it."""
        pubsub = self._listener.pubsub()
        self._pubsub = pubsub

        # CLIENT ID must be read before SUBSCRIBE puts the connection in
        # subscriber mode.
        await pubsub.connect()
        connection = pubsub.connection
        assert connection is not None
        await connection.send_command("CLIENT", "ID")
        self._listener_id = int(await connection.read_response())

        await pubsub.subscribe(self.channel)
        connection.register_connect_callback(self._on_listener_reconnect)
        self._listener_lost = False

        command = [*self.cache.tracking_on(), "REDIRECT", str(self._listener_id)]
        try:
            await self._client.execute_command(*command)
        except ResponseError as e:
            await self._drop_pubsub()
            raise TrackingError(f"Redis rejected {' '.join(command)}: {e}") from e

        self._tracking_enabled = True
        logger.debug(f"Tracking redirected to listener {self._listener_id}")

    async def _drop_pubsub(self) -> None:
        pubsub, self._pubsub = self._pubsub, None
        if pubsub is None:
            return
        try:
            await pubsub.unsubscribe(self.channel)
        except RedisError as e:
            logger.debug(f"Unsubscribe failed while dropping listener: {e}")
        await pubsub.aclose()

    def _on_listener_reconnect(self, connection: Connection) -> None:
        # redis-py reconnected the listener under a new client id, so the
        # REDIRECT target is gone. The listen loop redoes the handshake.
        self._tracking_enabled = False
        self._listener_lost = True

    async def _on_command_reconnect(self, connection: Connection) -> None:
        # Tracking state died with the old command connection.
        self._tracking_enabled = False
        self.cache.on_close()

        if self._listener_id is None or self._listener_lost:
            return

        command = [*self.cache.tracking_on(), "REDIRECT", str(self._listener_id)]
        try:
            await connection.send_command(*command)
            await connection.read_response()
        except RedisError as e:
            logger.error(f"Failed to re-enable tracking after reconnect: {e}")
            self._listener_lost = True
            return

        self._tracking_enabled = True
        logger.info("Re-enabled tracking after command connection reconnect")

    # -------------------------------------------------------------------------
    # Invalidation listener
    # -------------------------------------------------------------------------

    async def _listen_loop(self) -> None:
        """Receive invalidation messages until closed."""
        delay = self.reconnect_delay

        while self._running:
            try:
                if self._pubsub is None or self._listener_lost:
                    self.cache.on_error(None)
                    await self._drop_pubsub()
                    await self._client.execute_command("CLIENT", "TRACKING", "OFF")
                    await self._enable_tracking()
                    delay = self.reconnect_delay

                with LogContext(client_id=str(self._listener_id)):
                    message = await self._pubsub.get_message(  # type: ignore[union-attr]
                        ignore_subscribe_messages=True,
                        timeout=self.poll_timeout,
                    )

                    if message is None:
                        continue

                    if message["type"] == "message":
                        self._handle_message(message["data"])

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in invalidation listener: {e}")
                self._tracking_enabled = False
                self._listener_lost = True
                self.cache.on_error(e)
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.max_reconnect_delay)

    def _handle_message(self, data: Any) -> None:
        """Apply one invalidation push: a list of keys, or None for a flush."""
        if data is None:
            logger.debug("Received global invalidation")
            self.cache.invalidate(None)
        elif isinstance(data, (list, tuple)):
            logger.debug(f"Received invalidation for {len(data)} keys")
            for key in data:
                self.cache.invalidate(key)
        else:
            self.cache.invalidate(data)

    # -------------------------------------------------------------------------
    # Cached reads
    # -------------------------------------------------------------------------

    async def execute_cached(
        self,
        *args: Arg,
        keys: Sequence[Arg],
        transform_reply: ReplyTransform | None = None,
        type_mapping: Any = None,
    ) -> Any:
        """Run a read command through the cache.

        While tracking is down the command goes straight to Redis and its
        reply is not cached.
        """

        async def fetch() -> Any:
            return await self._client.execute_command(*args)

        if not self._tracking_enabled:
            reply = await fetch()
            return transform_reply(reply, type_mapping) if transform_reply else reply

        return await self.cache.handle_cache(args, keys, fetch, transform_reply, type_mapping)

    async def get(self, key: Arg) -> Any:
        return await self.execute_cached("GET", key, keys=[key])

    async def mget(self, *keys: Arg) -> list[Any]:
        return await self.execute_cached("MGET", *keys, keys=keys)  # type: ignore[no-any-return]

    async def strlen(self, key: Arg) -> int:
        return await self.execute_cached("STRLEN", key, keys=[key])  # type: ignore[no-any-return]

    async def exists(self, *keys: Arg) -> int:
        return await self.execute_cached("EXISTS", *keys, keys=keys)  # type: ignore[no-any-return]

    async def hget(self, key: Arg, field: Arg) -> Any:
        return await self.execute_cached("HGET", key, field, keys=[key])

    async def hmget(self, key: Arg, *fields: Arg) -> list[Any]:
        return await self.execute_cached(  # type: ignore[no-any-return]
            "HMGET", key, *fields, keys=[key]
        )

    async def hgetall(self, key: Arg) -> dict[Any, Any]:
        return await self.execute_cached("HGETALL", key, keys=[key])  # type: ignore[no-any-return]

    async def smembers(self, key: Arg) -> set[Any]:
        return await self.execute_cached("SMEMBERS", key, keys=[key])  # type: ignore[no-any-return]

    async def lrange(self, key: Arg, start: int, end: int) -> list[Any]:
        return await self.execute_cached(  # type: ignore[no-any-return]
            "LRANGE", key, start, end, keys=[key]
        )

    async def zrange(self, key: Arg, start: int, end: int) -> list[Any]:
        return await self.execute_cached(  # type: ignore[no-any-return]
            "ZRANGE", key, start, end, keys=[key]
        )

    # -------------------------------------------------------------------------
    # Uncached commands
    # -------------------------------------------------------------------------

    async def execute_command(self, *args: Any, **options: Any) -> Any:
        """Send a command without caching, e.g. a write."""
        return await self._client.execute_command(*args, **options)

    async def set(self, key: Arg, value: Arg) -> Any:
        return await self._client.set(key, value)

    async def delete(self, *keys: Arg) -> int:
        return await self._client.delete(*keys)  # type: ignore[no-any-return]

    async def incr(self, key: Arg, amount: int = 1) -> int:
        return await self._client.incr(key, amount)  # type: ignore[no-any-return]
