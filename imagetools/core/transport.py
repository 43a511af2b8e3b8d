"""SSE transports reconciled through Redis pub/sub.

A client opens ``GET /sse`` and gets a :class:`SubscriberTransport`: it owns
the event stream, subscribes to the session channel and announces where
replies must be posted. Every ``POST /messages?sessionId=...`` gets its own
:class:`PublisherTransport`, which decodes one message, hands it to the
attached handler, publishes the reply on the same channel and tears itself
down. The two requests may land on different processes; the channel name is
the only thing they share.
"""
from __future__ import annotations
from abc import ABC, abstractmethod
import asyncio
import json
from typing import Any, AsyncIterator, Awaitable, Callable, Optional
from urllib.parse import quote

from fastapi.responses import StreamingResponse
from mcp.types import JSONRPCMessage
from starlette.requests import ClientDisconnect

from .broker import Broker, PublishHandle, SubscribeHandle
from .codec import CONTENT_TYPE_SSE, decode, encode, format_event, message_method, validate
from .errors import (
    BrokerConnectionError,
    StreamWriteError,
    TransportClosedError,
    TransportError,
)
from .logging import core_logger, summarize_for_log
from .session import Session

MessageHandler = Callable[[JSONRPCMessage], Awaitable[Optional[JSONRPCMessage]]]

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}

# Characters encodeURI leaves untouched besides alphanumerics and -_.~
_URI_SAFE = ";,/?:@&=+$!*'()#"

_CLOSE = object()


class Transport(ABC):
    """Common surface of both transport roles."""

    def __init__(self, endpoint: str, session: Session, broker: Broker):
        self.endpoint = endpoint
        self.session = session
        self.broker = broker
        self.on_message: Optional[MessageHandler] = None
        self._publisher: Optional[PublishHandle] = None
        self._closed = False

    @property
    def session_id(self) -> str:
        return self.session.id

    @property
    def channel(self) -> str:
        return self.session.channel

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def publisher_connected(self) -> bool:
        return self._publisher is not None and self._publisher.connected

    @abstractmethod
    async def start(self) -> None:
        """Connect the broker handles this role needs."""

    @abstractmethod
    async def send(self, message: JSONRPCMessage) -> None:
        """Deliver one message to the session channel."""

    @abstractmethod
    async def close(self) -> None:
        """Release every broker handle; idempotent."""

    async def _publish(self, message: JSONRPCMessage) -> int:
        if self._publisher is None:
            self._publisher = self.broker.publisher()
        return await self._publisher.publish(self.channel, encode(message))

    async def _disconnect_publisher(self):
        if self._publisher is not None:
            await self._publisher.disconnect()


class SubscriberTransport(Transport):
    """Owns one SSE stream and the Redis subscription feeding it."""

    def __init__(self, endpoint: str, broker: Broker, ping_interval: Optional[float] = 15.0):
        super().__init__(endpoint, Session.subscriber(), broker)
        self.ping_interval = ping_interval
        self.error: Optional[BrokerConnectionError] = None
        self._subscriber: Optional[SubscribeHandle] = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._started = False
        self._teardown: Optional[asyncio.Task] = None

    @property
    def endpoint_url(self) -> str:
        return f"{quote(self.endpoint, safe=_URI_SAFE)}?sessionId={self.session_id}"

    @property
    def started(self) -> bool:
        return self._started

    async def start(self):
        if self._closed:
            raise TransportClosedError(f"session {self.session_id} already closed")
        if self._started:
            return
        self._publisher = self.broker.publisher()
        self._subscriber = self.broker.subscriber(on_error=self._on_broker_error)
        try:
            await self._publisher.connect()
            await self._subscriber.connect()
            await self._subscriber.subscribe(self.channel, self._queue.put_nowait)
        except BrokerConnectionError:
            await self.close()
            raise
        self._started = True
        core_logger.info("[sse] session=%s subscribed channel=%s", self.session_id, self.channel)

    def _on_broker_error(self, err: BrokerConnectionError):
        core_logger.error("[sse] session=%s broker error: %s; closing stream", self.session_id, err)
        self.error = err
        self._queue.put_nowait(_CLOSE)

    def _message_frame(self, raw: bytes) -> Optional[str]:
        try:
            data = json.loads(raw)
        except ValueError as e:
            core_logger.error("[sse] session=%s dropping unparseable payload: %s", self.session_id, e)
            return None
        return format_event("message", json.dumps(data, separators=(",", ":"), ensure_ascii=False))

    async def events(self, request: Any = None) -> AsyncIterator[str]:
        """Yield SSE frames: the endpoint announcement, then broker messages.

        ``request`` only needs an async ``is_disconnected()``; it is checked
        after every message frame and on every idle poll, and the stream ends
        once it reports the peer gone. The transport is closed on every exit.
        """
        if not self._started:
            raise TransportError(f"session {self.session_id} not started")
        poll = self.ping_interval or 1.0
        try:
            yield format_event("endpoint", self.endpoint_url)
            while not self._closed:
                try:
                    item = await asyncio.wait_for(self._queue.get(), timeout=poll)
                except asyncio.TimeoutError:
                    if await self._peer_gone(request):
                        break
                    if self.ping_interval:
                        yield ": keepalive\n\n"
                    continue
                if item is _CLOSE:
                    break
                frame = self._message_frame(item)
                if frame is not None:
                    yield frame
                    if await self._peer_gone(request):
                        break
        finally:
            await self.close()

    async def _peer_gone(self, request: Any) -> bool:
        if request is None or not await request.is_disconnected():
            return False
        core_logger.info("[sse] session=%s peer disconnected", self.session_id)
        return True

    async def send(self, message: JSONRPCMessage):
        """Publish a server-initiated message onto this session's own channel."""
        if self._closed:
            raise StreamWriteError(f"session {self.session_id} stream is closed")
        await self._publish(message)

    async def close(self):
        """Release the subscription and both clients; idempotent.

        The release runs as its own task, so a caller cancelled mid-close
        (the peer dropping the stream) does not abort it. Every call waits
        for that same task.
        """
        if self._teardown is None:
            self._closed = True
            self._queue.put_nowait(_CLOSE)
            self._teardown = asyncio.create_task(self._release(), name=f"sse-close:{self.session_id}")
        await asyncio.shield(self._teardown)

    async def _release(self):
        if self._subscriber is not None:
            await self._subscriber.unsubscribe(self.channel)
            await self._subscriber.disconnect()
        await self._disconnect_publisher()
        core_logger.info("[sse] session=%s closed", self.session_id)


class PublisherTransport(Transport):
    """Single-shot transport: one inbound message, one publish, then closed."""

    def __init__(self, endpoint: str, session_id: str, broker: Broker):
        super().__init__(endpoint, Session.publisher(session_id), broker)

    async def start(self):
        if self._closed:
            raise TransportClosedError(f"publisher for {self.session_id} already used")
        if self._publisher is None:
            self._publisher = self.broker.publisher()
        await self._publisher.connect()

    def decode_inbound(self, body: Optional[bytes], content_type: Optional[str], parsed: Any = None) -> JSONRPCMessage:
        """Validate ``parsed`` when the caller already parsed the body, else decode ``body``."""
        try:
            if parsed is not None:
                message = validate(parsed)
            else:
                message = decode(body or b"", content_type)
        except TransportError as e:
            core_logger.warning("[messages] session=%s rejected: %s (cause: %r)", self.session_id, e, e.__cause__)
            raise
        core_logger.debug("[messages] session=%s inbound %s", self.session_id, summarize_for_log(message))
        return message

    async def handle_inbound(self, body: Optional[bytes], content_type: Optional[str], parsed: Any = None) -> JSONRPCMessage:
        message = self.decode_inbound(body, content_type, parsed)
        await self.dispatch(message)
        return message

    async def dispatch(self, message: JSONRPCMessage):
        """Run the handler and publish its reply; relay ``message`` when no handler is attached."""
        if self.on_message is None:
            await self.send(message)
            return
        try:
            reply = await self.on_message(message)
        except BaseException:
            await self.close()
            raise
        if reply is None:
            core_logger.debug("[messages] session=%s no reply for %s", self.session_id, message_method(message))
            await self.close()
            return
        await self.send(reply)

    async def send(self, message: JSONRPCMessage):
        if self._closed:
            raise TransportClosedError(f"publisher for {self.session_id} already used")
        try:
            await self._publish(message)
        finally:
            await self.close()

    async def close(self):
        if self._closed:
            return
        self._closed = True
        await self._disconnect_publisher()


class EventStreamResponse(StreamingResponse):
    """StreamingResponse that always tears its transport down.

    A broken write (peer gone) ends the stream like any other close signal.
    """

    def __init__(self, transport: SubscriberTransport, request: Any = None, on_close: Optional[Callable[[], Awaitable[None]]] = None):
        super().__init__(transport.events(request), media_type=CONTENT_TYPE_SSE, headers=SSE_HEADERS)
        self.transport = transport
        self._on_close = on_close

    async def __call__(self, scope, receive, send):
        try:
            await super().__call__(scope, receive, send)
        except (OSError, ClientDisconnect) as e:
            err = StreamWriteError(f"session {self.transport.session_id} stream broke: {e!r}")
            core_logger.info("[sse] %s", err)
        finally:
            # Shielded: the server cancels this task when the peer goes away.
            await asyncio.shield(self._finish())

    async def _finish(self):
        await self.transport.close()
        if self._on_close is not None:
            await self._on_close()


__all__ = [
    "SSE_HEADERS",
    "Transport",
    "SubscriberTransport",
    "PublisherTransport",
    "EventStreamResponse",
    "MessageHandler",
]
