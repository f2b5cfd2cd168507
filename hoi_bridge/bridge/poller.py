"""Periodic passive-data requests for one session."""

from __future__ import annotations

import asyncio
import logging

from .. import constants
from ..core.channel import SessionClosedError
from ..core.registry import Session

LOGGER = logging.getLogger(__name__)


class PassivePoller:
    """Sends the passive-data trigger onto a session channel at a fixed interval.

    Stops as soon as the session's cancellation event is set, or when a send
    fails because the channel has been closed.
    """

    def __init__(
        self,
        session: Session,
        *,
        interval_seconds: float = 5.0,
        trigger: str = constants.DEFAULT_PASSIVE_TRIGGER,
    ) -> None:
        self._session = session
        self.interval_seconds = max(interval_seconds, 0.01)
        self.trigger = trigger
        self.sent = 0

    async def run(self) -> None:
        while not self._session.cancelled.is_set():
            if await self._wait_interval():
                break

            try:
                self._session.channel.send(self.trigger)
            except SessionClosedError:
                LOGGER.debug(
                    "Passive poller for session %s stopping: channel closed",
                    self._session.session_id,
                )
                break
            self.sent += 1

        LOGGER.debug(
            "Passive poller for session %s stopped after %d requests",
            self._session.session_id,
            self.sent,
        )

    async def _wait_interval(self) -> bool:
        """Sleep one interval; True when the session was cancelled meanwhile."""

        try:
            await asyncio.wait_for(
                self._session.cancelled.wait(), timeout=self.interval_seconds
            )
        except asyncio.TimeoutError:
            return False
        return True
