"""
Sessions for the streaming HTTP transports

A session is a token-identified logical connection: responses produced for it
are queued here and drained onto the client's event stream by the task that
owns that stream. Both the streamable HTTP endpoint and the legacy SSE
endpoint pair keep their sessions in a SessionRegistry.

Queues are bounded. When a session's queue is full, new responses are dropped
and logged rather than blocking the request that produced them.
"""

import asyncio
import time
import uuid
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 10


class SessionNotFoundError(LookupError):
    """No open session has the given token"""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class SessionClosedError(Exception):
    """The session was closed while waiting for messages"""


@dataclass
class Session:
    """An open session and its pending responses"""
    session_id: str
    queue: asyncio.Queue
    created_at: float = field(default_factory=time.time)
    closed: asyncio.Event = field(default_factory=asyncio.Event)
    # Held while one request is routed and its response queued
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def is_closed(self) -> bool:
        return self.closed.is_set()

    def push(self, message: dict[str, Any]) -> bool:
        """Queue a message for delivery. Returns False if it was dropped."""
        if self.is_closed:
            logger.warning(f"Dropping message for closed session {self.session_id}")
            return False
        try:
            self.queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(f"Response queue full for session {self.session_id}, dropping message")
            return False
        return True

    async def next_message(self, timeout: Optional[float] = None) -> Optional[dict[str, Any]]:
        """
        Wait for the next queued message.

        Returns None if ``timeout`` elapses first and raises SessionClosedError
        once the session is closed.
        """
        if self.is_closed:
            raise SessionClosedError(self.session_id)

        get_task = asyncio.ensure_future(self.queue.get())
        closed_task = asyncio.ensure_future(self.closed.wait())
        try:
            done, _ = await asyncio.wait(
                {get_task, closed_task},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (get_task, closed_task):
                if not task.done():
                    task.cancel()

        if get_task in done:
            return get_task.result()
        if closed_task in done:
            raise SessionClosedError(self.session_id)
        return None

    def close(self) -> bool:
        """Mark the session closed. Returns False if it already was."""
        if self.is_closed:
            return False
        self.closed.set()
        return True


class SessionRegistry:
    """
    Open sessions by token.

    All lookups and changes go through one lock, so a response is never
    queued on a session that is concurrently being removed.
    """

    def __init__(self, prefix: str = "http", queue_size: int = DEFAULT_QUEUE_SIZE):
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()
        self._prefix = prefix
        self._queue_size = queue_size
        self._session_counter = 0
        logger.debug(f"SessionRegistry initialized (prefix={prefix}, queue_size={queue_size})")

    def _generate_session_id(self, prefix: str) -> str:
        self._session_counter += 1
        return f"{prefix}_{self._session_counter}_{uuid.uuid4().hex[:12]}"

    async def create(self, prefix: Optional[str] = None) -> Session:
        """Open a new session with a fresh token"""
        async with self._lock:
            session = Session(
                session_id=self._generate_session_id(prefix or self._prefix),
                queue=asyncio.Queue(maxsize=self._queue_size),
            )
            self._sessions[session.session_id] = session
        logger.info(f"Session opened: {session.session_id} (active: {len(self._sessions)})")
        return session

    async def get(self, session_id: str) -> Optional[Session]:
        async with self._lock:
            return self._sessions.get(session_id)

    async def deliver(self, session_id: str, message: dict[str, Any]) -> bool:
        """Queue ``message`` on a session. Returns False if it was dropped."""
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            return session.push(message)

    async def remove(self, session_id: str) -> bool:
        """Close and forget a session. Unknown tokens are ignored."""
        async with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.close()
        logger.info(f"Session closed: {session_id} (active: {len(self._sessions)})")
        return True

    async def close_all(self) -> int:
        """Close every open session, e.g. on shutdown"""
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()
        if sessions:
            logger.info(f"Closed {len(sessions)} session(s)")
        return len(sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
