"""Per-session relay between the control bus and a device server."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

from .. import constants
from ..adapters.device import DeviceConnection, DeviceConnectionError
from ..core.models import PayloadError, TelemetrySnapshot
from ..core.registry import Session
from .publisher import EventPublisher

LOGGER = logging.getLogger(__name__)

ACTION_OUTCOMES = frozenset(
    {constants.ACTION_SUCCESS_TOKEN, constants.ACTION_ISSUE_TOKEN}
)

SessionCallback = Callable[[str], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class ActionOutcome:
    token: str


@dataclass(frozen=True, slots=True)
class PassiveData:
    snapshot: TelemetrySnapshot


@dataclass(frozen=True, slots=True)
class Unrecognised:
    reason: str


DeviceFrame = Union[ActionOutcome, PassiveData, Unrecognised]


def classify_frame(
    frame: str, *, telemetry_key: str = constants.DEFAULT_TELEMETRY_KEY
) -> DeviceFrame:
    """Work out what a text frame received from a device server means."""

    if frame in ACTION_OUTCOMES:
        return ActionOutcome(frame)

    try:
        data = json.loads(frame)
    except json.JSONDecodeError:
        return Unrecognised("not JSON")

    if not isinstance(data, dict) or telemetry_key not in data:
        return Unrecognised("no telemetry list")

    try:
        return PassiveData(TelemetrySnapshot.from_list(data[telemetry_key]))
    except PayloadError as exc:
        return Unrecognised(f"bad telemetry: {exc}")


class RelayLoop:
    """Forwards frames both ways until the session ends.

    The loop stops when the device closes the stream, when the session channel
    is closed, or when the session's cancellation event is set by the
    registry. On the way out it closes the transport and the channel and sets
    the cancellation event, so the session's poller stops as well, then calls
    ``on_closed`` so the action slot is released.
    """

    def __init__(
        self,
        session: Session,
        connection: DeviceConnection,
        publisher: EventPublisher,
        *,
        on_action_response: Optional[SessionCallback] = None,
        on_closed: Optional[SessionCallback] = None,
        telemetry_key: str = constants.DEFAULT_TELEMETRY_KEY,
    ) -> None:
        self._session = session
        self._connection = connection
        self._publisher = publisher
        self._on_action_response = on_action_response
        self._on_closed = on_closed
        self._telemetry_key = telemetry_key

    @property
    def session_id(self) -> str:
        return self._session.session_id

    async def run(self) -> None:
        tasks = {
            asyncio.create_task(
                self._pump_to_device(), name=f"relay-out-{self.session_id}"
            ),
            asyncio.create_task(
                self._pump_from_device(), name=f"relay-in-{self.session_id}"
            ),
            asyncio.create_task(
                self._session.cancelled.wait(), name=f"relay-cancel-{self.session_id}"
            ),
        }

        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    LOGGER.error(
                        "Relay task %s for session %s failed",
                        task.get_name(),
                        self.session_id,
                        exc_info=task.exception(),
                    )
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

            self._session.channel.close()
            self._session.cancelled.set()
            await self._connection.close()
            await self._notify(self._on_closed, "Session close handler")
            LOGGER.info("Relay for session %s stopped", self.session_id)

    async def _pump_to_device(self) -> None:
        channel = self._session.channel
        while True:
            frame = await channel.receive()
            if frame is None:
                return
            try:
                await self._connection.send(frame)
            except DeviceConnectionError as exc:
                LOGGER.warning("Session %s: %s", self.session_id, exc)
                return

    async def _pump_from_device(self) -> None:
        async for frame in self._connection:
            await self.handle_frame(frame)
        LOGGER.info("Device server closed the stream for session %s", self.session_id)

    async def handle_frame(self, frame: str) -> None:
        classified = classify_frame(frame, telemetry_key=self._telemetry_key)

        if isinstance(classified, ActionOutcome):
            await self._publisher.publish_action_response(
                classified.token, self.session_id
            )
            await self._notify(self._on_action_response, "Action completion handler")
            return

        if isinstance(classified, PassiveData):
            await self._publisher.publish_passive_data(
                classified.snapshot, self.session_id
            )
            return

        LOGGER.debug(
            "Dropping frame from session %s (%s)", self.session_id, classified.reason
        )

    async def _notify(self, callback: Optional[SessionCallback], label: str) -> None:
        if callback is None:
            return
        try:
            await callback(self.session_id)
        except asyncio.CancelledError:
            raise
        except Exception:
            LOGGER.exception("%s failed for session %s", label, self.session_id)
