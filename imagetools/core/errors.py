"""Centralized custom exception hierarchy for the transport and tools."""
from __future__ import annotations


class ImageToolsError(Exception):
    """Base class for all imagetools errors."""


class ConfigError(ImageToolsError):
    pass


class TransportError(ImageToolsError):
    """Base class for transport-layer errors."""


class ContentTypeError(TransportError):
    """Inbound body is not declared as application/json."""


class MalformedMessageError(TransportError):
    """Inbound body is not valid JSON or not a valid JSON-RPC message."""


class BrokerConnectionError(TransportError):
    """Connecting, publishing or subscribing against Redis failed."""


class StreamWriteError(TransportError):
    """Write attempted on a closed or broken event stream."""


class TransportClosedError(TransportError):
    pass


class ToolError(ImageToolsError):
    pass


class ToolNotFoundError(ToolError):
    pass


class ToolExecutionError(ToolError):
    pass
