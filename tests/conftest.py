"""Shared fakes and fixtures for the hoi-bridge test suite."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Iterable, Optional

import pytest

from hoi_bridge.adapters.device import DeviceConnectionError
from hoi_bridge.adapters.mqtt import MQTTConnectionError
from hoi_bridge.bridge import EventPublisher
from hoi_bridge.core import Credentials


class FakeBroker:
    """Records publishes; the first ``fail_times`` publishes raise."""

    def __init__(self, *, fail_times: int = 0) -> None:
        self.fail_times = fail_times
        self.attempts = 0
        self.published: list[tuple[str, bytes, int, bool]] = []

    def publish(
        self, topic: str, payload: bytes, qos: int = 1, retain: bool = False
    ) -> None:
        self.attempts += 1
        if self.fail_times > 0:
            self.fail_times -= 1
            raise MQTTConnectionError("broker unavailable")
        self.published.append((topic, payload, qos, retain))

    def messages(self) -> list[Any]:
        return [json.loads(payload.decode("utf-8")) for _, payload, _, _ in self.published]

    def categories(self) -> list[str]:
        return [
            message.get("category")
            for message in self.messages()
            if isinstance(message, dict) and "category" in message
        ]


class FakeDeviceConnection:
    """In-memory stand-in for a device websocket connection."""

    def __init__(
        self,
        address: str = "ws://device.local",
        *,
        replies: Iterable[str] = (),
        fail_send: bool = False,
    ) -> None:
        self.address = address
        self.sent: list[str] = []
        self.fail_send = fail_send
        self.close_calls = 0
        self._closed = False
        self._incoming: asyncio.Queue[Optional[str]] = asyncio.Queue()
        self.sent_event = asyncio.Event()
        for reply in replies:
            self._incoming.put_nowait(reply)

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, frame: str) -> None:
        self._incoming.put_nowait(frame)

    def end_stream(self) -> None:
        self._incoming.put_nowait(None)

    async def send(self, frame: str) -> None:
        if self._closed or self.fail_send:
            raise DeviceConnectionError("connection is closed")
        self.sent.append(frame)
        self.sent_event.set()

    async def receive(self) -> Optional[str]:
        if self._closed and self._incoming.empty():
            return None
        return await self._incoming.get()

    async def close(self) -> None:
        self.close_calls += 1
        if not self._closed:
            self._closed = True
            self._incoming.put_nowait(None)

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        while True:
            frame = await self.receive()
            if frame is None:
                return
            yield frame

    async def wait_for_sent(self, count: int, timeout: float = 1.0) -> list[str]:
        async with asyncio.timeout(timeout):
            while len(self.sent) < count:
                self.sent_event.clear()
                await self.sent_event.wait()
        return list(self.sent)


class FakeTransport:
    """Hands out prepared connections, or fails when none are queued."""

    def __init__(self, *connections: FakeDeviceConnection) -> None:
        self._connections = list(connections)
        self.addresses: list[str] = []

    async def connect(self, address: str) -> FakeDeviceConnection:
        self.addresses.append(address)
        if not self._connections:
            raise DeviceConnectionError(f"failed to connect to {address}")
        return self._connections.pop(0)

    async def aclose(self) -> None:
        return None


class RecordingLauncher:
    """Session launcher that only records what it was asked to start."""

    def __init__(self) -> None:
        self.launched: list[tuple[Any, Any]] = []

    def launch(self, session, connection) -> None:
        self.launched.append((session, connection))


@pytest.fixture
def make_credentials() -> Callable[..., Credentials]:
    def factory(outside_name: str = "kitchen") -> Credentials:
        return Credentials(
            connection_str="ws://device.local",
            name_and_type="bot1:lamp",
            password="p1",
            outside_name=outside_name,
        )

    return factory


@pytest.fixture
def credentials(make_credentials) -> Credentials:
    return make_credentials()


@pytest.fixture
def make_broker() -> Callable[..., FakeBroker]:
    return FakeBroker


@pytest.fixture
def broker(make_broker) -> FakeBroker:
    return make_broker()


@pytest.fixture
def publisher(broker: FakeBroker) -> EventPublisher:
    return EventPublisher(broker, "hoi/bridge/events", backoff_initial=0.0)


@pytest.fixture
def make_connection() -> Callable[..., FakeDeviceConnection]:
    return FakeDeviceConnection


@pytest.fixture
def make_transport() -> Callable[..., FakeTransport]:
    return FakeTransport


@pytest.fixture
def launcher() -> RecordingLauncher:
    return RecordingLauncher()


@pytest.fixture
def connect_data() -> dict[str, str]:
    """Connect payload exactly as an orchestrator sends it."""

    return {
        "connection_str": "ws://device.local",
        "password": "p1",
        "name_and_type": "bot1:lamp",
        "outside_name": "kitchen",
    }


@pytest.fixture
def control_message() -> Callable[..., bytes]:
    def build(category: str, data: Any = "", server_id: str = "") -> bytes:
        if not isinstance(data, str):
            data = json.dumps(data)
        return json.dumps(
            {"category": category, "data": data, "server_id": server_id}
        ).encode("utf-8")

    return build
