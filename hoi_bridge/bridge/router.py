"""Routing of control-bus messages to the session bridge."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Optional

from ..core.messages import (
    ActionCommand,
    ConnectRequest,
    ControlMessage,
    DisconnectRequest,
    Ignored,
    decode_control_message,
)
from ..core.registry import SessionRegistry
from .dispatcher import ActionDispatcher
from .handshake import Handshake
from .publisher import EventPublisher

LOGGER = logging.getLogger(__name__)


class MessageRouter:
    """Consumes control-bus messages one at a time and acts on them.

    Broker callbacks hand raw payloads to :meth:`submit`; a single task started
    by :meth:`start` decodes and handles them in arrival order. Every message
    is consumed exactly once, whether it is acted on or ignored.
    """

    def __init__(
        self,
        *,
        registry: SessionRegistry,
        handshake: Handshake,
        dispatcher: ActionDispatcher,
        publisher: EventPublisher,
        notify_disconnect: bool = True,
    ) -> None:
        self._registry = registry
        self._handshake = handshake
        self._dispatcher = dispatcher
        self._publisher = publisher
        self._notify_disconnect = notify_disconnect
        self._inbox: asyncio.Queue[bytes] = asyncio.Queue()
        self._task: Optional[asyncio.Task[None]] = None
        self.processed = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def submit(self, topic: str, payload: bytes) -> None:
        """Broker message handler: queue a raw payload for routing."""

        self._inbox.put_nowait(payload)

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._consume(), name="control-router")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def join(self) -> None:
        """Wait until every submitted message has been handled."""

        await self._inbox.join()

    async def _consume(self) -> None:
        while True:
            payload = await self._inbox.get()
            try:
                await self.route(payload)
            except asyncio.CancelledError:
                raise
            except Exception:
                LOGGER.exception("Failed to route control message")
            finally:
                self.processed += 1
                self._inbox.task_done()

    async def route(self, payload: bytes | str) -> ControlMessage:
        message = decode_control_message(payload)
        await self.dispatch(message)
        return message

    async def dispatch(self, message: ControlMessage) -> None:
        if isinstance(message, ConnectRequest):
            await self._handshake.run(message.credentials)
        elif isinstance(message, DisconnectRequest):
            await self._disconnect(message.server_id)
        elif isinstance(message, ActionCommand):
            accepted = await self._dispatcher.submit(message.action)
            if not accepted:
                LOGGER.info(
                    "Ignoring action %s for unknown or closed session %s",
                    message.action.action,
                    message.action.server_id,
                )
        elif isinstance(message, Ignored):
            LOGGER.debug(
                "Ignoring control message (category=%r): %s",
                message.category,
                message.reason,
            )

    async def _disconnect(self, server_id: str) -> None:
        session = await self._registry.remove(server_id)
        if session is None:
            LOGGER.debug("Disconnect for unknown session %s ignored", server_id)
            return

        if session.actions:
            # queued actions are dropped with the session
            LOGGER.warning(
                "Session %s disconnected with %d queued actions",
                server_id,
                len(session.actions),
            )

        if self._notify_disconnect:
            await self._publisher.publish_disconnected(server_id)
