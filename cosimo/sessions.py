"""
Session registry for the HTTP+SSE transport.

A client opens an event stream, receives an ``endpoint`` event naming the
URL to POST JSON-RPC messages to, and reads responses back as ``message``
events. The registry is the only shared mutable state of the transport:
sessions are inserted when a stream opens and evicted exactly once when it
closes, from either side.
"""

import asyncio
import json
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

import structlog

from .models import Identity

logger = structlog.get_logger(__name__)

# Pushed onto a session queue to end its stream
_CLOSE = None


@dataclass
class Session:
    """One open event stream and the identity captured when it opened."""

    session_id: str
    identity: Identity
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)

    async def send(self, message: dict[str, Any]) -> None:
        """Queue a JSON-RPC message for delivery on the stream."""
        await self.queue.put(message)


class SessionRegistry:
    """Owns the session-id -> Session map."""

    def __init__(self):
        self._sessions: dict[str, Session] = {}

    def open(self, identity: Identity) -> Session:
        session = Session(session_id=uuid.uuid4().hex, identity=identity)
        self._sessions[session.session_id] = session
        logger.info("session_opened", session_id=session.session_id, user_id=identity.user_id)
        return session

    def get(self, session_id: str | None) -> Session | None:
        if not session_id:
            return None
        return self._sessions.get(session_id)

    def close(self, session_id: str) -> bool:
        """Evict a session and end its stream. Returns False if already gone."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.queue.put_nowait(_CLOSE)
        logger.info("session_closed", session_id=session_id, user_id=session.identity.user_id)
        return True

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions


def endpoint_url(messages_path: str, session: Session) -> str:
    return f"{messages_path}?session_id={session.session_id}"


async def session_events(
    registry: SessionRegistry,
    session: Session,
    messages_path: str,
) -> AsyncIterator[dict[str, str]]:
    """Event stream for one session, in sse-starlette's dict form.

    The first event is ``endpoint``; every queued message follows as a
    ``message`` event. The session is evicted when the stream ends,
    including when the client disconnects and the generator is cancelled.
    """
    try:
        yield {"event": "endpoint", "data": endpoint_url(messages_path, session)}
        while True:
            message = await session.queue.get()
            if message is _CLOSE:
                break
            yield {"event": "message", "data": json.dumps(message, ensure_ascii=False)}
    finally:
        registry.close(session.session_id)
