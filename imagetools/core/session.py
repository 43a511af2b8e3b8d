"""Session identity and Redis channel naming.

A session id is minted once per SSE connection and names exactly one channel
for its whole lifetime: ``sse:channel:<id>``. Publishers and subscribers in
different processes rendezvous on that name and nothing else.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Literal
import time
import uuid

CHANNEL_PREFIX = "sse:channel"

SessionRole = Literal["subscriber", "publisher"]


def new_session_id() -> str:
    return str(uuid.uuid4())


def channel_for(session_id: str) -> str:
    return f"{CHANNEL_PREFIX}:{session_id}"


def is_session_id(value: str) -> bool:
    """Whether ``value`` has the form produced by :func:`new_session_id`."""
    try:
        return str(uuid.UUID(value)) == value
    except (ValueError, TypeError, AttributeError):
        return False


@dataclass
class Session:
    id: str
    role: SessionRole
    created_at: float = field(default_factory=time.time)

    @property
    def channel(self) -> str:
        return channel_for(self.id)

    @classmethod
    def subscriber(cls) -> "Session":
        return cls(id=new_session_id(), role="subscriber")

    @classmethod
    def publisher(cls, session_id: str) -> "Session":
        return cls(id=session_id, role="publisher")

    def to_payload(self) -> dict:
        return {"id": self.id, "role": self.role, "channel": self.channel, "created_at": self.created_at}


__all__ = ["CHANNEL_PREFIX", "Session", "new_session_id", "channel_for", "is_session_id"]
