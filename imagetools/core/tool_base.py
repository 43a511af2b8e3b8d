"""Minimal ToolBase abstraction for tools exposed over MCP."""
from __future__ import annotations
from typing import Any, Dict, List

from mcp.types import CallToolResult, Tool


class ToolBase:
    name: str = ""
    description: str = ""
    input_schema: Dict[str, Any] = {"type": "object", "properties": {}}

    @property
    def required_arguments(self) -> List[str]:
        return list(self.input_schema.get("required", []))

    def to_tool(self) -> Tool:
        return Tool(name=self.name, description=self.description, inputSchema=self.input_schema)

    async def call(self, arguments: Dict[str, Any]) -> CallToolResult:  # pragma: no cover - base
        raise NotImplementedError

    async def aclose(self):  # pragma: no cover - base
        pass

__all__ = ["ToolBase"]
