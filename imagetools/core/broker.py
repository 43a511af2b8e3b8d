"""Redis publish/subscribe client lifecycle.

Two handle kinds are handed out by :class:`Broker`:

- :class:`PublishHandle` can publish to any channel. Publishing before
  ``connect()`` connects implicitly.
- :class:`SubscribeHandle` owns a dedicated Redis client and at most one
  subscription. Messages are drained by a single reader task, in arrival
  order, into the ``on_message`` callback given to ``subscribe()``.

Awaited operations raise :class:`BrokerConnectionError`. Failures of the
background reader are reported through ``on_error`` and never raised into the
owner. Nothing here retries.

Redis pub/sub is at-most-once: a publish on a channel without a live
subscriber reaches nobody and is gone.
"""
from __future__ import annotations
import asyncio
from typing import Any, Callable, Optional
from urllib.parse import urlsplit, urlunsplit

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from .errors import BrokerConnectionError
from .logging import core_logger

ClientFactory = Callable[[str], Any]
MessageCallback = Callable[[bytes], None]
ErrorCallback = Callable[[BrokerConnectionError], None]


def _default_client_factory(url: str):
    return aioredis.from_url(url)


def redact_url(url: str) -> str:
    parts = urlsplit(url)
    if parts.password:
        netloc = parts.netloc.replace(f":{parts.password}@", ":***@")
        return urlunsplit(parts._replace(netloc=netloc))
    return url


class _Handle:
    kind = "broker"

    def __init__(self, url: str, client_factory: ClientFactory, on_error: Optional[ErrorCallback] = None):
        self.url = url
        self._client_factory = client_factory
        self._on_error = on_error
        self._client = None

    @property
    def connected(self) -> bool:
        return self._client is not None

    async def connect(self):
        if self._client is not None:
            return
        client = self._client_factory(self.url)
        try:
            await client.ping()
        except (RedisError, OSError) as e:
            await self._close_client(client)
            raise BrokerConnectionError(f"{self.kind} connect to {redact_url(self.url)} failed: {e}") from e
        self._client = client
        core_logger.debug("[broker] %s connected url=%s", self.kind, redact_url(self.url))

    async def disconnect(self):
        client, self._client = self._client, None
        if client is None:
            return
        await self._close_client(client)
        core_logger.debug("[broker] %s disconnected", self.kind)

    async def _close_client(self, client):
        try:
            await client.aclose()
        except (RedisError, OSError) as e:
            core_logger.warning("[broker] %s close failed: %s", self.kind, e)

    def _report(self, err: BrokerConnectionError):
        if self._on_error is not None:
            self._on_error(err)
        else:
            core_logger.error("[broker] %s error: %s", self.kind, err)


class PublishHandle(_Handle):
    kind = "publisher"

    async def publish(self, channel: str, data: bytes) -> int:
        """Publish ``data`` and return how many subscribers received it."""
        await self.connect()
        try:
            receivers = await self._client.publish(channel, data)
        except (RedisError, OSError) as e:
            raise BrokerConnectionError(f"publish to {channel} failed: {e}") from e
        if not receivers:
            core_logger.warning("[broker] no subscriber on %s; message dropped", channel)
        else:
            core_logger.debug("[broker] published %d bytes to %s receivers=%d", len(data), channel, receivers)
        return receivers


class SubscribeHandle(_Handle):
    kind = "subscriber"

    def __init__(self, url: str, client_factory: ClientFactory, on_error: Optional[ErrorCallback] = None):
        super().__init__(url, client_factory, on_error)
        self._pubsub = None
        self._channel: Optional[str] = None
        self._reader: Optional[asyncio.Task] = None

    @property
    def channel(self) -> Optional[str]:
        return self._channel

    async def subscribe(self, channel: str, on_message: MessageCallback):
        if self._channel is not None:
            raise BrokerConnectionError(f"handle already subscribed to {self._channel}")
        await self.connect()
        pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        try:
            await pubsub.subscribe(channel)
        except (RedisError, OSError) as e:
            raise BrokerConnectionError(f"subscribe to {channel} failed: {e}") from e
        self._pubsub = pubsub
        self._channel = channel
        self._reader = asyncio.create_task(self._read_loop(pubsub, channel, on_message), name=f"redis-sub:{channel}")
        core_logger.debug("[broker] subscribed %s", channel)

    async def _read_loop(self, pubsub, channel: str, on_message: MessageCallback):
        try:
            async for msg in pubsub.listen():
                if msg.get("type") != "message":
                    continue
                data = msg["data"]
                if isinstance(data, str):
                    data = data.encode("utf-8")
                on_message(data)
        except asyncio.CancelledError:
            raise
        except (RedisError, OSError) as e:
            self._report(BrokerConnectionError(f"subscription to {channel} lost: {e}"))
        except Exception as e:  # noqa: BLE001 - reader task boundary
            core_logger.exception("[broker] reader for %s crashed", channel)
            self._report(BrokerConnectionError(f"subscription to {channel} failed: {e}"))

    async def unsubscribe(self, channel: str):
        if self._channel != channel or self._pubsub is None:
            return
        reader, self._reader = self._reader, None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            await asyncio.wait({reader})
        pubsub, self._pubsub, self._channel = self._pubsub, None, None
        try:
            await pubsub.unsubscribe(channel)
        except (RedisError, OSError) as e:
            core_logger.warning("[broker] unsubscribe %s failed: %s", channel, e)
        try:
            await pubsub.aclose()
        except (RedisError, OSError) as e:
            core_logger.warning("[broker] pubsub close failed: %s", e)
        core_logger.debug("[broker] unsubscribed %s", channel)

    async def disconnect(self):
        if self._channel is not None:
            await self.unsubscribe(self._channel)
        await super().disconnect()


class Broker:
    """Factory for broker handles bound to one Redis URL."""

    def __init__(self, url: str, client_factory: Optional[ClientFactory] = None):
        self.url = url
        self.client_factory = client_factory or _default_client_factory

    def publisher(self, on_error: Optional[ErrorCallback] = None) -> PublishHandle:
        return PublishHandle(self.url, self.client_factory, on_error)

    def subscriber(self, on_error: Optional[ErrorCallback] = None) -> SubscribeHandle:
        return SubscribeHandle(self.url, self.client_factory, on_error)


__all__ = ["Broker", "PublishHandle", "SubscribeHandle", "redact_url"]
