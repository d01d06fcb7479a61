"""Tests for the tracking Redis client, with Redis stubbed out."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from trackcache.cache.provider import ClientSideCache
from trackcache.client import INVALIDATION_CHANNEL, TrackingRedisClient
from trackcache.errors import TrackingError


class FakePubSub:
    """PubSub stand-in fed from a queue of messages."""

    def __init__(self, client_id: int = 42) -> None:
        self.connection = MagicMock()
        self.connection.send_command = AsyncMock()
        self.connection.read_response = AsyncMock(return_value=client_id)
        self.subscribed: list[str] = []
        self.messages: asyncio.Queue[Any] = asyncio.Queue()
        self.closed = False

    async def connect(self) -> None:
        pass

    async def subscribe(self, channel: str) -> None:
        self.subscribed.append(channel)

    async def unsubscribe(self, channel: str) -> None:
        self.subscribed.remove(channel)

    async def aclose(self) -> None:
        self.closed = True

    async def get_message(self, ignore_subscribe_messages: bool, timeout: float) -> Any:
        try:
            item = await asyncio.wait_for(self.messages.get(), timeout)
        except TimeoutError:
            return None
        if isinstance(item, BaseException):
            raise item
        return item


def invalidation(data: Any) -> dict[str, Any]:
    return {"type": "message", "channel": INVALIDATION_CHANNEL.encode(), "data": data}


@pytest.fixture
def pubsub() -> FakePubSub:
    return FakePubSub()


@pytest.fixture
def redis_stub(pubsub: FakePubSub) -> tuple[MagicMock, MagicMock]:
    command = MagicMock()
    command.initialize = AsyncMock()
    command.connection = MagicMock()
    command.execute_command = AsyncMock(return_value=b"OK")
    command.aclose = AsyncMock()
    command.set = AsyncMock(return_value=True)
    command.delete = AsyncMock(return_value=1)
    command.incr = AsyncMock(return_value=2)

    listener = MagicMock()
    listener.pubsub = MagicMock(return_value=pubsub)
    listener.aclose = AsyncMock()
    return command, listener


@pytest.fixture
def tracking_client(redis_stub) -> TrackingRedisClient:
    command, listener = redis_stub
    return TrackingRedisClient(
        command,
        listener,
        ClientSideCache(enable_statistics=True),
        poll_timeout=0.01,
        reconnect_delay=0.01,
    )


async def wait_for(predicate, timeout: float = 1.0) -> None:
    """Poll until predicate() is true, letting the listener loop run."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


class TestHandshake:
    """Test connecting and closing."""

    async def test_connect_redirects_tracking_to_listener(
        self, tracking_client: TrackingRedisClient, redis_stub, pubsub: FakePubSub
    ) -> None:
        command, _ = redis_stub

        await tracking_client.connect()
        try:
            pubsub.connection.send_command.assert_awaited_once_with("CLIENT", "ID")
            assert pubsub.subscribed == [INVALIDATION_CHANNEL]
            command.execute_command.assert_any_await(
                "CLIENT", "TRACKING", "ON", "REDIRECT", "42"
            )
            assert tracking_client.tracking_enabled
            assert tracking_client.listener_id == 42
        finally:
            await tracking_client.close()

    async def test_connect_is_idempotent(
        self, tracking_client: TrackingRedisClient, redis_stub
    ) -> None:
        command, _ = redis_stub
        await tracking_client.connect()
        await tracking_client.connect()
        await tracking_client.close()
        command.initialize.assert_awaited_once()

    async def test_rejected_tracking_raises(
        self, tracking_client: TrackingRedisClient, redis_stub, pubsub: FakePubSub
    ) -> None:
        command, _ = redis_stub
        command.execute_command.side_effect = ResponseError("unknown command 'CLIENT'")

        with pytest.raises(TrackingError):
            await tracking_client.connect()

        assert pubsub.closed
        assert not tracking_client.tracking_enabled

    async def test_close_resets_cache_and_connections(
        self, tracking_client: TrackingRedisClient, redis_stub, pubsub: FakePubSub
    ) -> None:
        command, listener = redis_stub
        command.execute_command.return_value = b"v"

        async with tracking_client:
            await tracking_client.get("k")
            assert tracking_client.cache.size() == 1

        assert tracking_client.cache.size() == 0
        assert pubsub.closed
        command.aclose.assert_awaited_once()
        listener.aclose.assert_awaited_once()


class TestCachedReads:
    """Test reads going through the cache."""

    async def test_get_hits_cache(
        self, tracking_client: TrackingRedisClient, redis_stub
    ) -> None:
        command, _ = redis_stub
        await tracking_client.connect()
        command.execute_command.reset_mock()
        command.execute_command.return_value = b"Alice"

        try:
            assert await tracking_client.get("user:1") == b"Alice"
            assert await tracking_client.get("user:1") == b"Alice"
        finally:
            await tracking_client.close()

        command.execute_command.assert_awaited_once_with("GET", "user:1")

    async def test_mget_indexes_every_key(
        self, tracking_client: TrackingRedisClient, redis_stub
    ) -> None:
        command, _ = redis_stub
        await tracking_client.connect()
        command.execute_command.return_value = [b"a", b"b"]

        try:
            await tracking_client.mget("user:1", "user:2")
            store = tracking_client.cache.store  # type: ignore[attr-defined]
            assert set(store.source_keys()) == {"user:1", "user:2"}
        finally:
            await tracking_client.close()

    async def test_reads_bypass_cache_without_tracking(
        self, tracking_client: TrackingRedisClient, redis_stub
    ) -> None:
        command, _ = redis_stub
        command.execute_command.return_value = b"v"

        await tracking_client.get("k")
        await tracking_client.get("k")

        assert command.execute_command.await_count == 2
        assert tracking_client.cache.size() == 0

    async def test_transform_applied_when_bypassing(
        self, tracking_client: TrackingRedisClient, redis_stub
    ) -> None:
        command, _ = redis_stub
        command.execute_command.return_value = b"7"

        value = await tracking_client.execute_cached(
            "GET", "n", keys=["n"], transform_reply=lambda reply, _: int(reply)
        )
        assert value == 7

    async def test_writes_pass_through(
        self, tracking_client: TrackingRedisClient, redis_stub
    ) -> None:
        command, _ = redis_stub
        assert await tracking_client.set("k", "v") is True
        assert await tracking_client.delete("k") == 1
        assert await tracking_client.incr("n") == 2
        command.incr.assert_awaited_once_with("n", 1)
        assert tracking_client.raw is command


class TestInvalidationListener:
    """Test messages arriving on the invalidation channel."""

    async def test_key_invalidation(
        self, tracking_client: TrackingRedisClient, redis_stub, pubsub: FakePubSub
    ) -> None:
        command, _ = redis_stub
        await tracking_client.connect()
        command.execute_command.return_value = b"v"
        events: list[Any] = []
        tracking_client.cache.on("invalidate", events.append)  # type: ignore[attr-defined]

        try:
            await tracking_client.get("user:1")
            await tracking_client.get("user:2")
            await pubsub.messages.put(invalidation([b"user:1"]))
            await wait_for(lambda: events == [b"user:1"])

            assert tracking_client.cache.size() == 1
        finally:
            await tracking_client.close()

    async def test_batched_keys(
        self, tracking_client: TrackingRedisClient, pubsub: FakePubSub
    ) -> None:
        await tracking_client.connect()
        events: list[Any] = []
        tracking_client.cache.on("invalidate", events.append)  # type: ignore[attr-defined]

        try:
            await pubsub.messages.put(invalidation([b"a", b"b"]))
            await wait_for(lambda: events == [b"a", b"b"])
        finally:
            await tracking_client.close()

    async def test_flush(
        self, tracking_client: TrackingRedisClient, redis_stub, pubsub: FakePubSub
    ) -> None:
        command, _ = redis_stub
        await tracking_client.connect()
        command.execute_command.return_value = b"v"
        events: list[Any] = []
        tracking_client.cache.on("invalidate", events.append)  # type: ignore[attr-defined]

        try:
            await tracking_client.get("a")
            await tracking_client.get("b")
            await pubsub.messages.put(invalidation(None))
            await wait_for(lambda: events == [None])

            assert tracking_client.cache.size() == 0
            assert tracking_client.cache.stats().evictions == 2
        finally:
            await tracking_client.close()

    def test_handle_single_key_payload(self, tracking_client: TrackingRedisClient) -> None:
        events: list[Any] = []
        tracking_client.cache.on("invalidate", events.append)  # type: ignore[attr-defined]
        tracking_client._handle_message(b"solo")
        assert events == [b"solo"]

    async def test_listener_failure_resets_and_reconnects(
        self, tracking_client: TrackingRedisClient, redis_stub
    ) -> None:
        command, listener = redis_stub
        first = FakePubSub(client_id=42)
        second = FakePubSub(client_id=43)
        listener.pubsub.side_effect = [first, second]

        await tracking_client.connect()
        command.execute_command.return_value = b"v"

        try:
            await tracking_client.get("k")
            assert tracking_client.cache.size() == 1

            await first.messages.put(RedisConnectionError("listener dropped"))
            await wait_for(lambda: tracking_client.listener_id == 43)

            assert tracking_client.cache.size() == 0
            assert first.closed
            assert tracking_client.tracking_enabled
            command.execute_command.assert_any_await("CLIENT", "TRACKING", "OFF")
            command.execute_command.assert_any_await(
                "CLIENT", "TRACKING", "ON", "REDIRECT", "43"
            )
        finally:
            await tracking_client.close()

    async def test_listener_reconnect_callback_forces_handshake(
        self, tracking_client: TrackingRedisClient, pubsub: FakePubSub
    ) -> None:
        tracking_client._on_listener_reconnect(pubsub.connection)
        assert not tracking_client.tracking_enabled

    async def test_command_reconnect_reenables_tracking(
        self, tracking_client: TrackingRedisClient, redis_stub, pubsub: FakePubSub
    ) -> None:
        command, _ = redis_stub
        await tracking_client.connect()
        command.execute_command.return_value = b"v"

        try:
            await tracking_client.get("k")
            connection = MagicMock()
            connection.send_command = AsyncMock()
            connection.read_response = AsyncMock(return_value=b"OK")

            await tracking_client._on_command_reconnect(connection)

            assert tracking_client.cache.size() == 0
            connection.send_command.assert_awaited_once_with(
                "CLIENT", "TRACKING", "ON", "REDIRECT", "42"
            )
            assert tracking_client.tracking_enabled
        finally:
            await tracking_client.close()


class TestFactories:
    """Test construction helpers."""

    def test_from_url_uses_single_connection_for_commands(self, monkeypatch) -> None:
        calls: list[dict[str, Any]] = []

        def fake_from_url(url: str, **kwargs: Any) -> MagicMock:
            calls.append({"url": url, **kwargs})
            return MagicMock()

        monkeypatch.setattr("trackcache.client.redis.from_url", fake_from_url)

        client = TrackingRedisClient.from_url("redis://example:6379/1", poll_timeout=0.5)

        assert calls[0]["single_connection_client"] is True
        assert "single_connection_client" not in calls[1]
        assert all(call["url"] == "redis://example:6379/1" for call in calls)
        assert client.poll_timeout == 0.5
        assert isinstance(client.cache, ClientSideCache)

    def test_from_settings(self, monkeypatch) -> None:
        from trackcache.config import Settings

        monkeypatch.setattr("trackcache.client.redis.from_url", lambda url, **kw: MagicMock())

        client = TrackingRedisClient.from_settings(
            Settings(enable_statistics=True, invalidation_channel="custom")
        )

        assert client.channel == "custom"
        assert client.cache.stats() is not None
        assert client.cache.statistics_enabled  # type: ignore[attr-defined]
