"""Core transport components for imagetools.

Modules:
  session: Session identity and the session -> Redis channel naming scheme.
  codec: JSON-RPC message validation/serialization and SSE framing.
  broker: Redis publish/subscribe handles (publisher and dedicated subscriber).
  transport: Subscriber (SSE stream) and publisher (single POST) transports.
  registry: Per-process registry of open subscriber sessions.
  config_loader: Defaults + YAML + environment settings.
  tool_base: Base class for tools served over MCP.
  errors: Exception hierarchy.
  logging: Logger setup and payload summaries.
"""

from .broker import Broker  # noqa: F401
from .registry import SessionRegistry  # noqa: F401
from .session import channel_for, new_session_id  # noqa: F401
from .transport import PublisherTransport, SubscriberTransport  # noqa: F401
