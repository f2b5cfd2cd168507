"""Websocket transport to House-of-IoT device servers."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Optional
from urllib.parse import urlparse

import aiohttp

LOGGER = logging.getLogger(__name__)

_SUPPORTED_SCHEMES = {"ws", "wss", "http", "https"}


class DeviceConnectionError(RuntimeError):
    """Raised when a device server cannot be reached."""


class DeviceConnection:
    """One open text-frame stream to a device server."""

    def __init__(self, address: str, ws: aiohttp.ClientWebSocketResponse) -> None:
        self.address = address
        self._ws = ws

    @property
    def closed(self) -> bool:
        return self._ws.closed

    async def send(self, frame: str) -> None:
        if self._ws.closed:
            raise DeviceConnectionError(f"connection to {self.address} is closed")
        try:
            await self._ws.send_str(frame)
        except (aiohttp.ClientError, ConnectionResetError) as exc:
            raise DeviceConnectionError(
                f"failed to send frame to {self.address}: {exc}"
            ) from exc

    async def receive(self) -> Optional[str]:
        """Return the next text frame, or None once the stream has ended.

        Binary and control frames are skipped.
        """

        while True:
            message = await self._ws.receive()
            if message.type == aiohttp.WSMsgType.TEXT:
                return message.data
            if message.type in (
                aiohttp.WSMsgType.CLOSE,
                aiohttp.WSMsgType.CLOSING,
                aiohttp.WSMsgType.CLOSED,
            ):
                return None
            if message.type == aiohttp.WSMsgType.ERROR:
                LOGGER.warning(
                    "Device websocket error from %s: %s",
                    self.address,
                    self._ws.exception(),
                )
                return None
            # BINARY, PING and PONG carry nothing for the bridge

    async def close(self) -> None:
        if not self._ws.closed:
            await self._ws.close()

    def __aiter__(self) -> AsyncIterator[str]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str]:
        while True:
            frame = await self.receive()
            if frame is None:
                return
            yield frame


class DeviceTransport:
    """Opens websocket connections to device servers over a shared session."""

    def __init__(
        self,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        connect_timeout: float = 10.0,
    ) -> None:
        self.connect_timeout = connect_timeout
        self._session: Optional[aiohttp.ClientSession] = session
        self._owns_session = session is None

    async def connect(self, address: str) -> DeviceConnection:
        """Open a websocket to ``address``.

        Raises:
            DeviceConnectionError: If the address is invalid, the server is
                unreachable, or the connect does not finish within
                ``connect_timeout`` seconds.
        """

        ws_url = _normalise_address(address)
        session = await self._ensure_session()

        try:
            async with asyncio.timeout(self.connect_timeout):
                ws = await session.ws_connect(ws_url, autoping=True)
        except asyncio.TimeoutError as exc:
            raise DeviceConnectionError(
                f"timed out after {self.connect_timeout:.1f}s connecting to {ws_url}"
            ) from exc
        except (aiohttp.ClientError, OSError, ValueError) as exc:
            raise DeviceConnectionError(f"failed to connect to {ws_url}: {exc}") from exc

        LOGGER.info("Connected to device server at %s", ws_url)
        return DeviceConnection(ws_url, ws)

    async def aclose(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=None)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session


def _normalise_address(address: str) -> str:
    parsed = urlparse(address.strip())
    if parsed.scheme not in _SUPPORTED_SCHEMES or not parsed.netloc:
        raise DeviceConnectionError(f"invalid device address: {address!r}")

    if parsed.scheme == "http":
        parsed = parsed._replace(scheme="ws")
    elif parsed.scheme == "https":
        parsed = parsed._replace(scheme="wss")
    return parsed.geturl()
