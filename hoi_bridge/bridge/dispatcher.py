"""Single-in-flight execution of queued device actions."""

from __future__ import annotations

import logging

from .. import constants
from ..core.channel import SessionClosedError
from ..core.models import ActionRequest
from ..core.registry import SessionRegistry

LOGGER = logging.getLogger(__name__)


def action_frames(
    action: ActionRequest, *, opcode: str = constants.DEFAULT_ACTION_OPCODE
) -> tuple[str, str, str]:
    return (opcode, action.bot_name, action.action)


class ActionDispatcher:
    """Drains each session's action queue one action at a time.

    An action is sent when the session has something queued and nothing in
    flight. It stays in flight until the relay loop sees the device's
    ``success``/``issue`` reply and calls :meth:`on_action_response`, which
    releases the slot and sends the next queued action.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        *,
        opcode: str = constants.DEFAULT_ACTION_OPCODE,
    ) -> None:
        self._registry = registry
        self.opcode = opcode

    async def submit(self, action: ActionRequest) -> bool:
        """Queue an action for its session and kick the drain."""

        if not await self._registry.enqueue_action(action.server_id, action):
            return False
        await self.drain(action.server_id)
        return True

    async def drain(self, session_id: str) -> None:
        while True:
            action = await self._registry.begin_next_action(session_id)
            if action is None:
                return

            channel = await self._registry.lookup_handle(session_id)
            try:
                if channel is None:
                    raise SessionClosedError("session no longer registered")
                channel.send_many(*action_frames(action, opcode=self.opcode))
            except SessionClosedError as exc:
                LOGGER.warning(
                    "Dropping action %s for %s on session %s: %s",
                    action.action,
                    action.bot_name,
                    session_id,
                    exc,
                )
                await self._registry.complete_action(session_id)
                continue

            LOGGER.debug(
                "Sent action %s for %s on session %s",
                action.action,
                action.bot_name,
                session_id,
            )
            return

    async def on_action_response(self, session_id: str) -> None:
        await self._registry.complete_action(session_id)
        await self.drain(session_id)

    async def on_session_closed(self, session_id: str) -> None:
        """Release the action slot of a session whose device stream ended.

        Actions still queued are dropped by the drain, since the session's
        channel is already closed.
        """

        await self._registry.complete_action(session_id)
        await self.drain(session_id)
