"""Connection and authentication handshake with a device server."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from .. import constants
from ..adapters.device import DeviceConnection, DeviceConnectionError
from ..core.channel import SessionChannel
from ..core.models import AuthResult, Credentials
from ..core.registry import Session, SessionRegistry
from .publisher import EventPublisher

LOGGER = logging.getLogger(__name__)


class HandshakeState(str, Enum):
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    REJECTED = "rejected"
    FAILED = "failed"
    """The transport could not be opened; nothing was sent or published."""


@dataclass(slots=True)
class HandshakeOutcome:
    state: HandshakeState
    session_id: Optional[str] = None
    detail: Optional[str] = None


class DeviceConnector(Protocol):
    async def connect(self, address: str) -> DeviceConnection: ...


class SessionLauncher(Protocol):
    def launch(self, session: Session, connection: DeviceConnection) -> None: ...


async def authenticate(
    connection: DeviceConnection, credentials: Credentials, *, timeout: float
) -> tuple[bool, str]:
    """Run the three-frame exchange and wait for a single reply.

    Returns whether the server accepted the credentials together with a short
    description of the reply for logging.
    """

    try:
        await connection.send(credentials.password)
        await connection.send(credentials.name_and_type)
        await connection.send(credentials.outside_name)
    except DeviceConnectionError as exc:
        return False, f"send failed: {exc}"

    try:
        async with asyncio.timeout(timeout):
            reply = await connection.receive()
    except asyncio.TimeoutError:
        return False, f"no reply within {timeout:.1f}s"

    if reply is None:
        return False, "stream ended before reply"
    if reply == constants.AUTH_SUCCESS_TOKEN:
        return True, reply
    return False, f"reply {reply[:40]!r}"


class Handshake:
    """Turns a connect request into a registered, running session."""

    def __init__(
        self,
        *,
        transport: DeviceConnector,
        registry: SessionRegistry,
        publisher: EventPublisher,
        launcher: SessionLauncher,
        auth_timeout: float = 10.0,
    ) -> None:
        self._transport = transport
        self._registry = registry
        self._publisher = publisher
        self._launcher = launcher
        self.auth_timeout = auth_timeout

    async def run(self, credentials: Credentials) -> HandshakeOutcome:
        outside_name = credentials.outside_name

        LOGGER.info(
            "Handshake %s: connecting to %s for %s",
            HandshakeState.CONNECTING.value,
            credentials.connection_str,
            outside_name,
        )
        try:
            connection = await self._transport.connect(credentials.connection_str)
        except DeviceConnectionError as exc:
            LOGGER.warning("Could not reach device server for %s: %s", outside_name, exc)
            return HandshakeOutcome(HandshakeState.FAILED, detail=str(exc))

        LOGGER.debug("Handshake %s for %s", HandshakeState.AUTHENTICATING.value, outside_name)
        try:
            passed, detail = await authenticate(
                connection, credentials, timeout=self.auth_timeout
            )
        except BaseException:
            await connection.close()
            raise

        if not passed:
            LOGGER.info("Device server rejected %s (%s)", outside_name, detail)
            await connection.close()
            await self._publisher.publish_auth_result(
                AuthResult(outside_name=outside_name, passed_auth=False)
            )
            return HandshakeOutcome(HandshakeState.REJECTED, detail=detail)

        channel = SessionChannel()
        session_id = await self._registry.register(credentials, channel)
        session = await self._registry.get(session_id)

        await self._publisher.publish_auth_result(
            AuthResult(outside_name=outside_name, passed_auth=True, server_id=session_id)
        )

        if session is None:
            # removed between registration and launch
            await connection.close()
        else:
            self._launcher.launch(session, connection)

        LOGGER.info("Authenticated %s as session %s", outside_name, session_id)
        return HandshakeOutcome(HandshakeState.AUTHENTICATED, session_id=session_id)
