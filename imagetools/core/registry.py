"""In-memory registry of the subscriber sessions open in this process."""
from __future__ import annotations
from typing import Dict, List, Optional

from .logging import core_logger
from .transport import SubscriberTransport


class SessionRegistry:
    def __init__(self):
        self._sessions: Dict[str, SubscriberTransport] = {}

    def register(self, transport: SubscriberTransport):
        if transport.session_id in self._sessions:
            raise ValueError(f"Duplicate session id: {transport.session_id}")
        self._sessions[transport.session_id] = transport

    def get(self, session_id: str) -> Optional[SubscriberTransport]:
        return self._sessions.get(session_id)

    def list(self) -> List[SubscriberTransport]:
        return list(self._sessions.values())

    def remove(self, session_id: str) -> Optional[SubscriberTransport]:
        return self._sessions.pop(session_id, None)

    async def close(self, session_id: str):
        transport = self.remove(session_id)
        if transport is not None:
            await transport.close()

    async def close_all(self) -> int:
        """Close every still-open session (process shutdown sweep)."""
        transports = list(self._sessions.values())
        self._sessions.clear()
        for t in transports:
            await t.close()
        if transports:
            core_logger.info("[sessions] closed %d open session(s) on shutdown", len(transports))
        return len(transports)

    def __len__(self) -> int:
        return len(self._sessions)


__all__ = ["SessionRegistry"]
