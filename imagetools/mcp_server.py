"""MCP Server (FastAPI) exposing the SSE transport backed by Redis pub/sub.

Routes:
  GET  <sse_path>       event stream; first event announces the POST endpoint
  POST <messages_path>  one JSON-RPC message for ?sessionId=<id>
  GET  /health          liveness + open session count
  GET  /sessions        subscriber sessions open in this process

CLI will import this module and call create_app().
"""
from __future__ import annotations
from contextlib import asynccontextmanager
from functools import partial
from typing import List, Optional

import uvicorn
from fastapi import BackgroundTasks, FastAPI, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from mcp.types import JSONRPCMessage

from . import __version__
from .core.broker import Broker, redact_url
from .core.config_loader import Settings, load_settings
from .core.errors import BrokerConnectionError, ContentTypeError, MalformedMessageError, TransportError
from .core.logging import core_logger
from .core.registry import SessionRegistry
from .core.session import is_session_id
from .core.tool_base import ToolBase
from .core.transport import EventStreamResponse, PublisherTransport, SubscriberTransport
from .server import ToolServer
from .tools.image_generation import ImageGenerationTool


class ImageToolsServer(uvicorn.Server):
    """uvicorn server that ends every open event stream when it starts exiting.

    uvicorn waits for open connections before running lifespan shutdown, and
    an event stream never ends by itself, so the sessions are swept here.
    """

    def __init__(self, config: uvicorn.Config, sessions: SessionRegistry):
        super().__init__(config)
        self.sessions = sessions

    async def shutdown(self, sockets=None):
        await self.sessions.close_all()
        await super().shutdown(sockets=sockets)


async def _dispatch(transport: PublisherTransport, message: JSONRPCMessage):
    try:
        await transport.dispatch(message)
    except TransportError as e:
        core_logger.error("[messages] session=%s delivery failed: %s", transport.session_id, e)


def create_app(
    settings: Optional[Settings] = None,
    broker: Optional[Broker] = None,
    tools: Optional[List[ToolBase]] = None,
):
    settings = settings or load_settings()
    broker = broker or Broker(settings.redis_url)
    if tools is None:
        tools = [ImageGenerationTool.from_settings(settings)]
    tool_server = ToolServer(tools=tools)
    sessions = SessionRegistry()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        core_logger.info(
            "Server starting sse=%s messages=%s redis=%s tools=%s",
            settings.sse_path,
            settings.messages_path,
            redact_url(settings.redis_url),
            ", ".join(t.name for t in tools),
        )
        try:
            yield
        finally:
            await sessions.close_all()
            for tool in tools:
                await tool.aclose()

    app = FastAPI(title="imagetools-mcp", version=__version__, lifespan=lifespan)

    @app.get(settings.sse_path)
    async def sse(request: Request):
        core_logger.info("Received connection")
        transport = SubscriberTransport(settings.messages_path, broker, ping_interval=settings.ping_interval or None)
        try:
            await tool_server.connect(transport)
        except BrokerConnectionError as e:
            raise HTTPException(status_code=503, detail=str(e))
        sessions.register(transport)
        return EventStreamResponse(transport, request, on_close=partial(sessions.close, transport.session_id))

    @app.post(settings.messages_path)
    async def messages(request: Request, background_tasks: BackgroundTasks, sessionId: str = Query(...)):
        core_logger.info("Received message session=%s", sessionId)
        if not is_session_id(sessionId):
            raise HTTPException(status_code=400, detail="Invalid sessionId")
        transport = PublisherTransport(settings.messages_path, sessionId, broker)
        parsed = getattr(request.state, "parsed_body", None)
        body = None if parsed is not None else await request.body()
        try:
            message = transport.decode_inbound(body, request.headers.get("content-type"), parsed)
        except ContentTypeError as e:
            raise HTTPException(status_code=415, detail=str(e))
        except MalformedMessageError as e:
            raise HTTPException(status_code=400, detail=str(e))
        try:
            await tool_server.connect(transport)
        except BrokerConnectionError as e:
            await transport.close()
            raise HTTPException(status_code=503, detail=str(e))
        background_tasks.add_task(_dispatch, transport, message)
        return PlainTextResponse("Accepted", status_code=202)

    @app.get("/health")
    def health():
        return {"status": "ok", "sessions": len(sessions)}

    @app.get("/sessions")
    def list_sessions():
        return {"sessions": [t.session.to_payload() for t in sessions.list()]}

    # Expose references for instrumentation/introspection
    app.state.settings = settings
    app.state.broker = broker
    app.state.tool_server = tool_server
    app.state.sessions = sessions

    return app

__all__ = ["ImageToolsServer", "create_app"]
