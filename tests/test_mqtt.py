"""Tests for the MQTT adapter."""

import asyncio
from types import SimpleNamespace

import paho.mqtt.client as mqtt
import pytest
import pytest_asyncio

from hoi_bridge.adapters import MQTTClient, MQTTConnectionError
from hoi_bridge.config import BrokerConfig


class FakeMqttClient:
    """Minimal fake paho-mqtt client speaking the v2 callback API."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        events: dict,
        *,
        rc_connect: int = 0,
        rc_disconnect: int = 0,
        publish_rc: int = mqtt.MQTT_ERR_SUCCESS,
        subscribe_rc: int = mqtt.MQTT_ERR_SUCCESS,
        **kwargs,
    ):
        self._loop = loop
        self._events = events
        self._rc_connect = rc_connect
        self._rc_disconnect = rc_disconnect
        self._publish_rc = publish_rc
        self._subscribe_rc = subscribe_rc
        events["client_kwargs"] = kwargs

        self.on_connect = None
        self.on_disconnect = None
        self.on_message = None

    def enable_logger(self, logger):
        self._events.setdefault("logger_enabled", True)

    def username_pw_set(self, username, password=None):
        self._events["auth"] = (username, password)

    def connect_async(self, host, port, keepalive):
        self._events["connect_args"] = (host, port, keepalive)
        if self.on_connect:
            self._loop.call_soon(
                self.on_connect, self, None, None, self._rc_connect, None
            )

    def loop_start(self):
        self._events["loop_start"] = self._events.get("loop_start", 0) + 1

    def loop_stop(self):
        self._events["loop_stop"] = self._events.get("loop_stop", 0) + 1

    def disconnect(self):
        self._events["disconnect_called"] = True
        if self.on_disconnect:
            self._loop.call_soon(
                self.on_disconnect, self, None, None, self._rc_disconnect, None
            )

    def publish(self, topic, payload, qos=0, retain=False):
        self._events.setdefault("published", []).append((topic, payload, qos, retain))
        return SimpleNamespace(rc=self._publish_rc)

    def subscribe(self, topic, qos=0):
        self._events.setdefault("subscribed", []).append((topic, qos))
        return self._subscribe_rc, 1


def _install_fake(monkeypatch, events: dict, **options) -> None:
    loop = asyncio.get_running_loop()

    def factory(*args, **kwargs):
        return FakeMqttClient(loop, events, **options, **kwargs)

    monkeypatch.setattr("hoi_bridge.adapters.mqtt.mqtt.Client", factory)


@pytest_asyncio.fixture
async def mqtt_client(monkeypatch):
    events: dict = {}
    _install_fake(monkeypatch, events)

    config = BrokerConfig(
        host="broker.hoi.local",
        port=1883,
        username="bridge",
        password="secret",
    )

    client = MQTTClient(config, client_id="hoi-bridge-1")
    await client.connect()

    yield client, events

    await client.disconnect()


@pytest.mark.asyncio
async def test_connect_configures_client(mqtt_client):
    _, events = mqtt_client

    assert events["connect_args"] == ("broker.hoi.local", 1883, 60)
    assert events["auth"] == ("bridge", "secret")
    assert events["loop_start"] == 1
    assert events["client_kwargs"]["client_id"] == "hoi-bridge-1"
    assert (
        events["client_kwargs"]["callback_api_version"]
        == mqtt.CallbackAPIVersion.VERSION2
    )


@pytest.mark.asyncio
async def test_publish_delegates_to_client(mqtt_client):
    client, events = mqtt_client

    client.publish("hoi/bridge/events", b"payload", qos=1)

    assert events["published"] == [("hoi/bridge/events", b"payload", 1, False)]


@pytest.mark.asyncio
async def test_subscribe_records_topics(mqtt_client):
    client, events = mqtt_client

    client.subscribe("hoi/bridge/control", qos=2)

    assert events["subscribed"] == [("hoi/bridge/control", 2)]


@pytest.mark.asyncio
async def test_message_handler_dispatches_async(monkeypatch):
    events: dict = {}
    _install_fake(monkeypatch, events)

    client = MQTTClient(BrokerConfig(host="broker.hoi.local"), client_id="hoi-2")
    message_event = asyncio.Event()

    async def handler(topic: str, payload: bytes) -> None:
        events["handled"] = (topic, payload)
        message_event.set()

    client.set_message_handler(handler)
    await client.connect()

    message = SimpleNamespace(topic="hoi/bridge/control", payload=b"data")
    client._on_message(client._client, None, message)  # type: ignore[arg-type]

    await asyncio.wait_for(message_event.wait(), timeout=1.0)
    await client.disconnect()

    assert events["handled"] == ("hoi/bridge/control", b"data")


@pytest.mark.asyncio
async def test_publish_failure_raises(monkeypatch):
    events: dict = {}
    _install_fake(monkeypatch, events, publish_rc=mqtt.MQTT_ERR_NO_CONN)

    client = MQTTClient(BrokerConfig(host="broker.hoi.local"), client_id="hoi-3")
    await client.connect()

    with pytest.raises(MQTTConnectionError):
        client.publish("hoi/bridge/events", b"payload")

    await client.disconnect()


@pytest.mark.asyncio
async def test_publish_without_connection_raises():
    client = MQTTClient(BrokerConfig(), client_id="hoi-4")

    with pytest.raises(MQTTConnectionError):
        client.publish("hoi/bridge/events", b"payload")


@pytest.mark.asyncio
async def test_disconnect_handler_invoked(monkeypatch):
    events: dict = {}
    _install_fake(monkeypatch, events, rc_disconnect=7)

    client = MQTTClient(BrokerConfig(host="broker.hoi.local"), client_id="hoi-5")
    disconnect_event = asyncio.Event()

    def _handler(rc: int) -> None:
        events["disconnect_rc"] = rc
        disconnect_event.set()

    client.register_disconnect_handler(_handler)

    await client.connect()
    await client.disconnect()

    await asyncio.wait_for(disconnect_event.wait(), timeout=1.0)
    assert events.get("disconnect_rc") == 7
    with pytest.raises(MQTTConnectionError):
        client.publish("hoi/bridge/events", b"payload")


@pytest.mark.asyncio
async def test_connect_failure_raises(monkeypatch):
    events: dict = {}
    _install_fake(monkeypatch, events, rc_connect=5)

    client = MQTTClient(BrokerConfig(host="broker.hoi.local"), client_id="hoi-6")

    with pytest.raises(MQTTConnectionError):
        await client.connect()

    assert events["loop_stop"] == 1
    with pytest.raises(MQTTConnectionError):
        client.subscribe("hoi/bridge/control")
