"""Tests for the control-bus event publisher."""

import asyncio
import json

import pytest

from hoi_bridge.bridge import EventPublisher
from hoi_bridge.core import AuthResult, TelemetrySnapshot


@pytest.mark.asyncio
async def test_publish_event_shapes_envelope(broker, publisher):
    assert await publisher.publish_action_response("success", "abc")

    topic, payload, qos, retain = broker.published[0]
    assert topic == "hoi/bridge/events"
    assert qos == 1
    assert retain is False
    assert json.loads(payload) == {
        "category": "action_response",
        "data": "success",
        "server_id": "abc",
    }


@pytest.mark.asyncio
async def test_publish_auth_result_is_bare_object(broker, publisher):
    await publisher.publish_auth_result(
        AuthResult(outside_name="kitchen", passed_auth=True, server_id="abc")
    )

    assert broker.messages() == [
        {"outside_name": "kitchen", "passed_auth": True, "server_id": "abc"}
    ]


@pytest.mark.asyncio
async def test_publish_passive_data_stringifies_snapshot(broker, publisher):
    snapshot = TelemetrySnapshot.from_list(
        [{"active_status": True, "device_name": "lamp", "device_type": "light"}]
    )

    await publisher.publish_passive_data(snapshot, "abc")

    message = broker.messages()[0]
    assert message["category"] == "passive_data"
    assert json.loads(message["data"]) == [
        {"active_status": True, "device_name": "lamp", "device_type": "light"}
    ]


@pytest.mark.asyncio
async def test_publish_disconnected_has_empty_data(broker, publisher):
    await publisher.publish_disconnected("abc")

    assert broker.messages() == [
        {"category": "disconnected", "data": "", "server_id": "abc"}
    ]


@pytest.mark.asyncio
async def test_publish_retries_then_succeeds(make_broker):
    broker = make_broker(fail_times=2)
    publisher = EventPublisher(broker, "events", retry_attempts=3, backoff_initial=0.0)

    assert await publisher.publish("{}") is True

    assert broker.attempts == 3
    assert len(broker.published) == 1
    assert publisher.consecutive_failures == 0
    assert publisher.failures.empty()


@pytest.mark.asyncio
async def test_exhausted_publish_lands_on_failure_queue(make_broker):
    broker = make_broker(fail_times=10)
    publisher = EventPublisher(broker, "events", retry_attempts=2, backoff_initial=0.0)

    assert await publisher.publish('{"category": "x"}') is False

    assert broker.attempts == 2
    assert publisher.consecutive_failures == 1
    failure = publisher.failures.get_nowait()
    assert failure.topic == "events"
    assert failure.payload == '{"category": "x"}'
    assert failure.attempts == 2
    assert "broker unavailable" in failure.error


@pytest.mark.asyncio
async def test_failure_queue_drops_oldest_when_full(make_broker):
    broker = make_broker(fail_times=10)
    publisher = EventPublisher(
        broker, "events", retry_attempts=1, backoff_initial=0.0, failure_queue_size=2
    )

    for index in range(3):
        await publisher.publish(str(index))

    payloads = [publisher.failures.get_nowait().payload for _ in range(2)]
    assert payloads == ["1", "2"]


@pytest.mark.asyncio
async def test_concurrent_publishes_are_serialised():
    class OverlapBroker:
        """Broker that notices overlapping publish calls."""

        def __init__(self) -> None:
            self.active = 0
            self.overlapped = False
            self.payloads: list[str] = []

        def publish(self, topic, payload, qos=1, retain=False):
            self.active += 1
            if self.active > 1:
                self.overlapped = True
            self.payloads.append(json.loads(payload))
            self.active -= 1

    broker = OverlapBroker()
    publisher = EventPublisher(broker, "events")

    await asyncio.gather(*(publisher.publish(f'"{index}"') for index in range(10)))

    assert not broker.overlapped
    assert broker.payloads == [str(index) for index in range(10)]
