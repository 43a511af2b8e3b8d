"""Stateless MCP request dispatcher.

Every inbound message is answered from scratch, without per-connection
session state, so whichever process receives a POST can answer it.
"""
from __future__ import annotations
from typing import Any, Dict, Iterable, List, Optional

from mcp.shared.exceptions import McpError
from mcp.shared.version import SUPPORTED_PROTOCOL_VERSIONS
from mcp.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    LATEST_PROTOCOL_VERSION,
    METHOD_NOT_FOUND,
    EmptyResult,
    ErrorData,
    Implementation,
    InitializeResult,
    JSONRPCError,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    ListToolsResult,
    ServerCapabilities,
    Tool,
    ToolsCapability,
)
from pydantic import BaseModel

from .core.errors import ToolNotFoundError
from .core.logging import get_logger, summarize_for_log
from .core.tool_base import ToolBase
from .core.transport import Transport

logger = get_logger("imagetools.server")


def _invalid_params(message: str) -> McpError:
    return McpError(ErrorData(code=INVALID_PARAMS, message=message))


class ToolServer:
    def __init__(self, name: str = "dalle-mcp-sse", version: str = "0.1.0", tools: Optional[Iterable[ToolBase]] = None):
        self.info = Implementation(name=name, version=version)
        self._tools: Dict[str, ToolBase] = {}
        for tool in tools or []:
            self.add_tool(tool)

    def add_tool(self, tool: ToolBase):
        if tool.name in self._tools:
            raise ValueError(f"Duplicate tool name: {tool.name}")
        self._tools[tool.name] = tool

    def list_tools(self) -> List[Tool]:
        return [t.to_tool() for t in self._tools.values()]

    async def connect(self, transport: Transport):
        """Attach this server as the transport's handler and start it."""
        transport.on_message = self.handle_message
        await transport.start()

    async def handle_message(self, message: JSONRPCMessage) -> Optional[JSONRPCMessage]:
        root = message.root
        if isinstance(root, JSONRPCNotification):
            logger.debug("notification %s", root.method)
            return None
        if not isinstance(root, JSONRPCRequest):
            # Client responses have no pending server request to complete here.
            logger.debug("ignoring client %s id=%s", type(root).__name__, root.id)
            return None
        if root.method == "tools/call":
            logger.info("Received call request %s", summarize_for_log(root.params))
        try:
            result = await self._handle_request(root.method, root.params or {})
        except McpError as e:
            return self._error(root.id, e.error.code, e.error.message)
        except ToolNotFoundError as e:
            return self._error(root.id, METHOD_NOT_FOUND, str(e))
        except Exception as e:  # noqa: BLE001 - reported to the peer as an error response
            logger.exception("request %s id=%s failed", root.method, root.id)
            return self._error(root.id, INTERNAL_ERROR, str(e))
        return JSONRPCMessage(JSONRPCResponse(jsonrpc="2.0", id=root.id, result=result))

    async def _handle_request(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        if method == "initialize":
            return self._dump(self._initialize(params))
        if method == "ping":
            return self._dump(EmptyResult())
        if method == "tools/list":
            return self._dump(ListToolsResult(tools=self.list_tools()))
        if method == "tools/call":
            return await self._call_tool(params)
        raise McpError(ErrorData(code=METHOD_NOT_FOUND, message=f"Method not found: {method}"))

    def _initialize(self, params: Dict[str, Any]) -> InitializeResult:
        requested = params.get("protocolVersion")
        version = requested if requested in SUPPORTED_PROTOCOL_VERSIONS else LATEST_PROTOCOL_VERSION
        return InitializeResult(
            protocolVersion=version,
            capabilities=ServerCapabilities(tools=ToolsCapability(listChanged=False)),
            serverInfo=self.info,
        )

    async def _call_tool(self, params: Dict[str, Any]) -> Dict[str, Any]:
        name = params.get("name")
        if not isinstance(name, str) or not name:
            raise _invalid_params("tools/call requires a tool name")
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(f"Unknown tool: {name}")
        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise _invalid_params("arguments must be an object")
        missing = [a for a in tool.required_arguments if a not in arguments]
        if missing:
            raise _invalid_params(f"Missing required argument(s): {', '.join(missing)}")
        return self._dump(await tool.call(arguments))

    @staticmethod
    def _dump(model: BaseModel) -> Dict[str, Any]:
        return model.model_dump(by_alias=True, exclude_none=True)

    @staticmethod
    def _error(request_id: Any, code: int, message: str) -> JSONRPCMessage:
        return JSONRPCMessage(JSONRPCError(jsonrpc="2.0", id=request_id, error=ErrorData(code=code, message=message)))


__all__ = ["ToolServer"]
