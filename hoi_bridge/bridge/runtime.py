"""Background tasks spawned for authenticated sessions."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

from .. import constants
from ..adapters.device import DeviceConnection
from ..core.registry import Session
from .dispatcher import ActionDispatcher
from .poller import PassivePoller
from .publisher import EventPublisher
from .relay import RelayLoop

LOGGER = logging.getLogger(__name__)


class SessionRuntime:
    """Starts a relay loop and a passive poller per session and keeps them alive.

    Tasks are held here until they finish so they are not garbage collected
    mid-flight. Stopping a single session is the registry's job (removal sets
    the cancellation event both tasks wait on); :meth:`stop` is only for
    shutdown. Each live session's connection is kept next to its relay task so
    shutdown can close it even when the relay never got to run.
    """

    def __init__(
        self,
        publisher: EventPublisher,
        dispatcher: ActionDispatcher,
        *,
        passive_interval_seconds: float = 5.0,
        passive_trigger: str = constants.DEFAULT_PASSIVE_TRIGGER,
        telemetry_key: str = constants.DEFAULT_TELEMETRY_KEY,
    ) -> None:
        self._publisher = publisher
        self._dispatcher = dispatcher
        self.passive_interval_seconds = passive_interval_seconds
        self.passive_trigger = passive_trigger
        self.telemetry_key = telemetry_key
        self._tasks: set[asyncio.Task[None]] = set()
        self._live: Dict[str, tuple[Session, DeviceConnection]] = {}

    @property
    def task_count(self) -> int:
        return len(self._tasks)

    def launch(self, session: Session, connection: DeviceConnection) -> None:
        relay = RelayLoop(
            session,
            connection,
            self._publisher,
            on_action_response=self._dispatcher.on_action_response,
            on_closed=self._dispatcher.on_session_closed,
            telemetry_key=self.telemetry_key,
        )
        poller = PassivePoller(
            session,
            interval_seconds=self.passive_interval_seconds,
            trigger=self.passive_trigger,
        )

        session_id = session.session_id
        self._live[session_id] = (session, connection)
        relay_task = self._track(relay.run(), f"relay-{session_id}")
        relay_task.add_done_callback(lambda _: self._live.pop(session_id, None))
        self._track(poller.run(), f"poller-{session_id}")

    async def stop(self, timeout: float = 5.0) -> None:
        """Stop every session task, closing each device connection.

        Sessions are first signalled through their cancellation events so the
        relays exit through their own cleanup. Tasks still running after
        ``timeout`` seconds are cancelled.
        """

        live = list(self._live.values())
        for session, _ in live:
            session.cancelled.set()

        tasks = list(self._tasks)
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        for session, connection in live:
            try:
                await connection.close()
            except Exception:
                LOGGER.warning(
                    "Failed to close device connection for session %s",
                    session.session_id,
                    exc_info=True,
                )

        self._live.clear()
        self._tasks.clear()

    def _track(self, coro, name: str) -> asyncio.Task[None]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Session task %s crashed", task.get_name(), exc_info=exc)
