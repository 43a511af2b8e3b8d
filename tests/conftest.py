import asyncio
import json
from typing import Dict, List, Optional, Tuple

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from imagetools.core.broker import Broker


class MockPubSub:
    """In-memory stand-in for redis.asyncio PubSub."""

    def __init__(self, server: "MockRedisServer"):
        self.server = server
        self.channels: set = set()
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue()

    async def subscribe(self, *channels):
        if self.server.down:
            raise RedisConnectionError("Connection refused")
        for ch in channels:
            self.server.channels.setdefault(ch, []).append(self)
            self.channels.add(ch)

    async def unsubscribe(self, *channels):
        for ch in channels or list(self.channels):
            self.server.detach(ch, self)
            self.channels.discard(ch)
        self._queue.put_nowait(None)

    async def listen(self):
        while True:
            msg = await self._queue.get()
            if msg is None:
                return
            if isinstance(msg, Exception):
                raise msg
            yield msg

    def fail(self, exc: Exception):
        self._queue.put_nowait(exc)

    async def aclose(self):
        for ch in list(self.channels):
            self.server.detach(ch, self)
        self.channels.clear()
        self.closed = True


class MockAsyncRedisClient:
    """In-memory stand-in for redis.asyncio.Redis (ping/publish/pubsub)."""

    def __init__(self, server: "MockRedisServer", url: str):
        self.server = server
        self.url = url
        self.closed = False

    async def ping(self):
        if self.server.down:
            raise RedisConnectionError("Connection refused")
        return True

    async def publish(self, channel: str, data: bytes) -> int:
        if self.server.down:
            raise RedisConnectionError("Connection refused")
        self.server.published.append((channel, data))
        return self.server.deliver(channel, data)

    def pubsub(self, ignore_subscribe_messages: bool = False):
        ps = MockPubSub(self.server)
        self.server.pubsubs.append(ps)
        return ps

    async def aclose(self):
        self.closed = True


class MockRedisServer:
    def __init__(self):
        self.channels: Dict[str, List[MockPubSub]] = {}
        self.published: List[Tuple[str, bytes]] = []
        self.clients: List[MockAsyncRedisClient] = []
        self.pubsubs: List[MockPubSub] = []
        self.down = False

    def client(self, url: str) -> MockAsyncRedisClient:
        c = MockAsyncRedisClient(self, url)
        self.clients.append(c)
        return c

    def deliver(self, channel: str, data: bytes) -> int:
        subs = list(self.channels.get(channel, []))
        for ps in subs:
            ps._queue.put_nowait({"type": "message", "pattern": None, "channel": channel.encode(), "data": data})
        return len(subs)

    def detach(self, channel: str, ps: MockPubSub):
        subs = self.channels.get(channel, [])
        if ps in subs:
            subs.remove(ps)
        if not subs:
            self.channels.pop(channel, None)

    def subscriber_count(self, channel: str) -> int:
        return len(self.channels.get(channel, []))

    def open_clients(self) -> List[MockAsyncRedisClient]:
        return [c for c in self.clients if not c.closed]

    def fail_subscribers(self, channel: str, exc: Optional[Exception] = None):
        for ps in list(self.channels.get(channel, [])):
            ps.fail(exc or RedisConnectionError("Connection lost"))


@pytest.fixture
def redis_server():
    return MockRedisServer()


@pytest.fixture
def broker(redis_server):
    return Broker("redis://localhost:6379", client_factory=redis_server.client)


def parse_frame(frame: str):
    """Split one SSE frame into (event, data)."""
    assert frame.endswith("\n\n"), frame
    lines = frame[:-2].split("\n")
    assert lines[0].startswith("event: ") and lines[1].startswith("data: "), frame
    return lines[0][len("event: "):], lines[1][len("data: "):]


def message_data(frame: str):
    event, data = parse_frame(frame)
    assert event == "message"
    return json.loads(data)
