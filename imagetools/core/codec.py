"""JSON-RPC message codec and SSE framing.

Inbound bodies are validated against the MCP JSON-RPC schema
(``mcp.types.JSONRPCMessage``) before they reach the dispatcher or the broker.
"""
from __future__ import annotations
import codecs
import json
from typing import Any, Dict, Optional, Tuple

from mcp.types import JSONRPCMessage
from pydantic import BaseModel, ValidationError

from .errors import ContentTypeError, MalformedMessageError

CONTENT_TYPE_JSON = "application/json"
CONTENT_TYPE_SSE = "text/event-stream"
DEFAULT_CHARSET = "utf-8"


def parse_content_type(header: Optional[str]) -> Tuple[str, Dict[str, str]]:
    """Split ``type/subtype; k=v`` into a lowercased media type and params."""
    if not header:
        return "", {}
    parts = header.split(";")
    media_type = parts[0].strip().lower()
    params: Dict[str, str] = {}
    for part in parts[1:]:
        if "=" not in part:
            continue
        key, value = part.split("=", 1)
        params[key.strip().lower()] = value.strip().strip('"')
    return media_type, params


def validate(obj: Any) -> JSONRPCMessage:
    """Validate an already-parsed body against the JSON-RPC schema."""
    if isinstance(obj, JSONRPCMessage):
        return obj
    try:
        return JSONRPCMessage.model_validate(obj)
    except ValidationError as e:
        raise MalformedMessageError(f"Invalid JSON-RPC message: {e.error_count()} validation error(s)") from e


def decode(raw: bytes, content_type: Optional[str]) -> JSONRPCMessage:
    media_type, params = parse_content_type(content_type)
    if media_type != CONTENT_TYPE_JSON:
        raise ContentTypeError(f"Unsupported content type: {content_type or '<missing>'}")
    charset = params.get("charset", DEFAULT_CHARSET)
    try:
        codecs.lookup(charset)
    except LookupError as e:
        raise ContentTypeError(f"Unsupported charset: {charset}") from e
    try:
        text = raw.decode(charset)
    except UnicodeDecodeError as e:
        raise MalformedMessageError(f"Body is not valid {charset}") from e
    try:
        obj = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedMessageError(f"Body is not valid JSON: {e.msg}") from e
    return validate(obj)


def encode(message: BaseModel) -> bytes:
    return message.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")


def message_method(message: JSONRPCMessage) -> Optional[str]:
    return getattr(message.root, "method", None)


def format_event(event: str, data: str) -> str:
    return f"event: {event}\ndata: {data}\n\n"


__all__ = [
    "CONTENT_TYPE_JSON",
    "CONTENT_TYPE_SSE",
    "parse_content_type",
    "validate",
    "decode",
    "encode",
    "message_method",
    "format_event",
]
