"""Outbound path from the bridge to the control bus."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Protocol

from ..core.messages import EventCategory
from ..core.models import AuthResult, BusMessage, TelemetrySnapshot

LOGGER = logging.getLogger(__name__)


class BrokerPublisher(Protocol):
    def publish(
        self, topic: str, payload: bytes, qos: int = 1, retain: bool = False
    ) -> None: ...


@dataclass(slots=True)
class PublishFailure:
    """A control-bus message that could not be delivered to the broker."""

    topic: str
    payload: str
    attempts: int
    error: str
    failed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class EventPublisher:
    """Serialises every publish to the control bus behind one lock.

    A failed publish is retried with exponential backoff. When the retry
    budget is exhausted the message is recorded on :attr:`failures` and
    :meth:`publish` returns False; it never raises for broker errors, so a
    flaky broker cannot take down a session's tasks or the router.
    """

    def __init__(
        self,
        broker: BrokerPublisher,
        topic: str,
        *,
        qos: int = 1,
        retry_attempts: int = 3,
        backoff_initial: float = 0.5,
        backoff_max: float = 5.0,
        failure_queue_size: int = 100,
    ) -> None:
        self._broker = broker
        self.topic = topic
        self.qos = qos
        self.retry_attempts = max(1, retry_attempts)
        self.backoff_initial = backoff_initial
        self.backoff_max = backoff_max
        self._lock = asyncio.Lock()
        self.consecutive_failures = 0
        self.failures: asyncio.Queue[PublishFailure] = asyncio.Queue(
            maxsize=failure_queue_size
        )

    async def publish(self, payload: str) -> bool:
        async with self._lock:
            return await self._publish_locked(payload)

    async def publish_event(
        self, category: EventCategory, data: str, server_id: str
    ) -> bool:
        message = BusMessage(category=category.value, data=data, server_id=server_id)
        return await self.publish(message.to_json())

    async def publish_auth_result(self, result: AuthResult) -> bool:
        return await self.publish(result.to_json())

    async def publish_action_response(self, outcome: str, server_id: str) -> bool:
        return await self.publish_event(EventCategory.ACTION_RESPONSE, outcome, server_id)

    async def publish_passive_data(
        self, snapshot: TelemetrySnapshot, server_id: str
    ) -> bool:
        return await self.publish_event(
            EventCategory.PASSIVE_DATA, snapshot.to_json(), server_id
        )

    async def publish_disconnected(self, server_id: str) -> bool:
        return await self.publish_event(EventCategory.DISCONNECTED, "", server_id)

    async def _publish_locked(self, payload: str) -> bool:
        encoded = payload.encode("utf-8")
        backoff = self.backoff_initial
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.retry_attempts + 1):
            try:
                self._broker.publish(self.topic, encoded, qos=self.qos)
                self.consecutive_failures = 0
                return True
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                last_error = exc
                if attempt == self.retry_attempts:
                    break
                LOGGER.warning(
                    "Publish to %s failed (attempt %d/%d): %s",
                    self.topic,
                    attempt,
                    self.retry_attempts,
                    exc,
                )
                await asyncio.sleep(random.uniform(0, backoff))
                backoff = min(backoff * 2, self.backoff_max)

        self.consecutive_failures += 1
        LOGGER.error(
            "Giving up on publish to %s after %d attempts: %s",
            self.topic,
            self.retry_attempts,
            last_error,
        )
        self._record_failure(
            PublishFailure(
                topic=self.topic,
                payload=payload,
                attempts=self.retry_attempts,
                error=str(last_error),
            )
        )
        return False

    def _record_failure(self, failure: PublishFailure) -> None:
        if self.failures.full():
            dropped = self.failures.get_nowait()
            LOGGER.warning(
                "Publish failure queue full; discarding failure from %s",
                dropped.failed_at.isoformat(timespec="seconds"),
            )
        self.failures.put_nowait(failure)
