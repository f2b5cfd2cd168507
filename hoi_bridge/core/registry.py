"""In-memory registry of live device sessions.

Every authenticated House-of-IoT server gets one :class:`Session` record
holding its outbound channel, credentials, pending actions, in-flight flag
and cancellation event. The record is inserted and removed as a unit under a
single reader/writer lock, so no task can ever observe a session that is half
registered or half torn down.

Design decisions:
- Pure in-memory storage; sessions do not survive a restart.
- One lock for the whole store. Session counts are small and every critical
  section is a handful of dictionary operations.
- Removal sets the session's cancellation event and closes its channel, which
  is what stops the relay loop and the passive poller.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Optional

from .channel import SessionChannel
from .locks import ReadWriteLock
from .models import ActionRequest, Credentials

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class Session:
    """All sub-state owned by one authenticated session."""

    session_id: str
    credentials: Credentials
    channel: SessionChannel
    cancelled: asyncio.Event = field(default_factory=asyncio.Event)
    actions: Deque[ActionRequest] = field(default_factory=deque)
    action_in_flight: bool = False

    @property
    def outside_name(self) -> str:
        return self.credentials.outside_name


class SessionRegistry:
    """Shared store of every live session.

    Usage:
        registry = SessionRegistry()

        session_id = await registry.register(credentials, SessionChannel())
        await registry.enqueue_action(session_id, action)
        if await registry.try_begin_action(session_id):
            ...
            await registry.complete_action(session_id)

        await registry.remove(session_id)  # stops the session's tasks
    """

    def __init__(self, *, id_factory: Optional[Callable[[], str]] = None) -> None:
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self._lock = ReadWriteLock()
        self._sessions: Dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    async def register(self, credentials: Credentials, channel: SessionChannel) -> str:
        """Mint a session id and install all of its sub-state atomically."""

        async with self._lock.write():
            session_id = self._id_factory()
            while session_id in self._sessions:
                session_id = self._id_factory()
            self._sessions[session_id] = Session(
                session_id=session_id,
                credentials=credentials,
                channel=channel,
            )

        LOGGER.info(
            "Registered session %s for %s (%d active)",
            session_id,
            credentials.outside_name,
            len(self._sessions),
        )
        return session_id

    async def get(self, session_id: str) -> Optional[Session]:
        async with self._lock.read():
            return self._sessions.get(session_id)

    async def contains(self, session_id: str) -> bool:
        async with self._lock.read():
            return session_id in self._sessions

    async def session_ids(self) -> list[str]:
        async with self._lock.read():
            return list(self._sessions)

    async def lookup_handle(self, session_id: str) -> Optional[SessionChannel]:
        """Return the outbound channel of a live session, if any."""

        async with self._lock.read():
            session = self._sessions.get(session_id)
            return session.channel if session is not None else None

    async def enqueue_action(self, session_id: str, action: ActionRequest) -> bool:
        """Append an action to the session's queue.

        Returns False, dropping the action, when the session is unknown or its
        device stream has already closed.
        """

        async with self._lock.write():
            session = self._sessions.get(session_id)
            if session is None or session.channel.closed:
                LOGGER.debug(
                    "Dropping action %s for unknown or closed session %s",
                    action.action,
                    session_id,
                )
                return False
            session.actions.append(action)
            return True

    async def try_begin_action(self, session_id: str) -> bool:
        """Set the in-flight flag if it is clear. Exactly one caller wins."""

        async with self._lock.write():
            session = self._sessions.get(session_id)
            if session is None or session.action_in_flight:
                return False
            session.action_in_flight = True
            return True

    async def begin_next_action(self, session_id: str) -> Optional[ActionRequest]:
        """Dequeue the next pending action and mark it in flight.

        Returns None when the session is unknown, already has an action in
        flight, or has nothing queued.
        """

        async with self._lock.write():
            session = self._sessions.get(session_id)
            if session is None or session.action_in_flight or not session.actions:
                return None
            session.action_in_flight = True
            return session.actions.popleft()

    async def complete_action(self, session_id: str) -> None:
        async with self._lock.write():
            session = self._sessions.get(session_id)
            if session is not None:
                session.action_in_flight = False

    async def remove(self, session_id: str) -> Optional[Session]:
        """Delete the session and signal its background tasks to stop.

        Returns the removed session, or None when the id was not registered.
        """

        async with self._lock.write():
            session = self._sessions.pop(session_id, None)
            if session is None:
                return None
            session.cancelled.set()
            session.channel.close()

        LOGGER.info(
            "Removed session %s for %s (%d pending actions dropped, %d active)",
            session_id,
            session.outside_name,
            len(session.actions),
            len(self._sessions),
        )
        return session

    async def clear(self) -> list[Session]:
        """Remove every session, signalling all of their tasks."""

        async with self._lock.write():
            sessions = list(self._sessions.values())
            self._sessions.clear()
            for session in sessions:
                session.cancelled.set()
                session.channel.close()
        return sessions
