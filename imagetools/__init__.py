"""
imagetools: an MCP image-generation server whose SSE transport is
reconciled across load-balanced processes through Redis pub/sub.
"""

__version__ = "0.1.0"

from .core.broker import Broker  # noqa: E402
from .core.session import channel_for, new_session_id  # noqa: E402
from .core.transport import PublisherTransport, SubscriberTransport  # noqa: E402
from .server import ToolServer  # noqa: E402

__all__ = [
    "__version__",
    "Broker",
    "channel_for",
    "new_session_id",
    "PublisherTransport",
    "SubscriberTransport",
    "ToolServer",
]
