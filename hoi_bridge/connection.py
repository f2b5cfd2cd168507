"""Broker connection supervision and reconnection management.

The control bus is only useful while the bridge is subscribed to its control
topic. This module owns the initial connect, keeps the subscription in place
across reconnects and retries with jittered exponential backoff when the
broker goes away.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

if TYPE_CHECKING:
    from .adapters.mqtt import MQTTClient
    from .config import ResilienceConfig

LOGGER = logging.getLogger(__name__)

# CONNACK "not authorized" under MQTT 3.1.1 and 5
_AUTH_FAILURE_CODES = {5, 135}


class ReconnectReason(str, Enum):
    """Reason for requesting a reconnection."""

    CONNECTION_LOST = "connection_lost"
    """The broker connection dropped unexpectedly."""

    AUTH_FAILURE = "auth_failure"
    """The broker refused our credentials."""


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


StateCallback = Callable[[ConnectionState, Optional[str]], Awaitable[None] | None]


class BrokerSupervisor:
    """Keeps the bridge connected and subscribed to the control topic.

    Key responsibilities:
    - Initial connection with backoff
    - Subscribing the control topic after every successful connect
    - Serialised reconnection when paho reports a lost connection
    """

    def __init__(
        self,
        *,
        mqtt_client: MQTTClient,
        topic: str,
        resilience_config: ResilienceConfig,
        qos: int = 1,
        max_attempts: int = 10,
    ) -> None:
        self._mqtt_client = mqtt_client
        self._topic = topic
        self._qos = qos
        self._resilience = resilience_config
        self._max_attempts = max(1, max_attempts)

        self._state = ConnectionState.DISCONNECTED
        self._reconnect_lock = asyncio.Lock()
        self._reconnect_event = asyncio.Event()
        self._pending_reason: Optional[ReconnectReason] = None
        self._stop_event = asyncio.Event()
        self._supervisor_task: Optional[asyncio.Task[None]] = None
        self._state_callbacks: list[StateCallback] = []

        mqtt_client.register_disconnect_handler(self._on_disconnect)

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    def register_state_callback(self, callback: StateCallback) -> None:
        self._state_callbacks.append(callback)

    async def connect(self) -> bool:
        """Connect and subscribe, retrying with backoff.

        Returns:
            True once subscribed, False if every attempt failed or the
            supervisor was stopped.
        """

        await self._set_state(ConnectionState.CONNECTING)
        if await self._connect_with_backoff():
            await self._set_state(ConnectionState.CONNECTED)
            return True

        await self._set_state(ConnectionState.DISCONNECTED, "all connection attempts failed")
        return False

    def request_reconnect(self, reason: ReconnectReason) -> None:
        if self._stop_event.is_set():
            return

        # our own disconnect during a reconnect reports CONNECTION_LOST
        if (
            reason == ReconnectReason.CONNECTION_LOST
            and self._state == ConnectionState.RECONNECTING
        ):
            return

        if self._pending_reason is None or reason == ReconnectReason.AUTH_FAILURE:
            self._pending_reason = reason
        LOGGER.debug("Reconnect requested: %s", self._pending_reason.value)
        self._reconnect_event.set()

    def start(self) -> None:
        if self._supervisor_task is not None and not self._supervisor_task.done():
            LOGGER.warning("Supervisor already running")
            return

        self._stop_event.clear()
        self._supervisor_task = asyncio.create_task(
            self._supervision_loop(), name="broker-supervisor"
        )

    async def stop(self) -> None:
        self._stop_event.set()
        self._reconnect_event.set()

        if self._supervisor_task is not None:
            self._supervisor_task.cancel()
            try:
                await self._supervisor_task
            except asyncio.CancelledError:
                pass
            self._supervisor_task = None

        self._state = ConnectionState.DISCONNECTED
        await self._mqtt_client.disconnect()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _on_disconnect(self, rc: int) -> None:
        if self._stop_event.is_set():
            return
        if rc in _AUTH_FAILURE_CODES:
            self.request_reconnect(ReconnectReason.AUTH_FAILURE)
        else:
            self.request_reconnect(ReconnectReason.CONNECTION_LOST)

    async def _supervision_loop(self) -> None:
        while not self._stop_event.is_set():
            await self._reconnect_event.wait()
            self._reconnect_event.clear()

            if self._stop_event.is_set():
                break

            async with self._reconnect_lock:
                reason = self._pending_reason
                self._pending_reason = None
                if reason is None:
                    continue
                await self._execute_reconnect(reason)

    async def _execute_reconnect(self, reason: ReconnectReason) -> None:
        LOGGER.info("Executing broker reconnection (reason=%s)", reason.value)
        await self._set_state(ConnectionState.RECONNECTING, reason.value)

        try:
            await self._mqtt_client.disconnect()
        except Exception:
            pass  # the old connection is already gone

        if await self._connect_with_backoff():
            await self._set_state(ConnectionState.CONNECTED)
        else:
            await self._set_state(ConnectionState.DISCONNECTED, "reconnect failed")
            LOGGER.error("Failed to reconnect to broker after all attempts")

    async def _connect_with_backoff(self) -> bool:
        delay = max(0.05, self._resilience.reconnect_initial_seconds)
        max_delay = max(delay, self._resilience.reconnect_max_seconds)
        jitter_ratio = max(0.0, min(1.0, self._resilience.reconnect_jitter_ratio))

        attempt = 0
        while not self._stop_event.is_set() and attempt < self._max_attempts:
            attempt += 1
            try:
                await self._mqtt_client.connect()
                self._mqtt_client.subscribe(self._topic, qos=self._qos)
                LOGGER.info("Subscribed to control topic %s", self._topic)
                return True
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                LOGGER.warning(
                    "Broker connection attempt %d failed: %s, retrying in %.1fs",
                    attempt,
                    exc,
                    delay,
                )
                with contextlib.suppress(Exception):
                    await self._mqtt_client.disconnect()

            sleep_for = delay
            if jitter_ratio > 0.0:
                jitter = delay * jitter_ratio
                sleep_for = random.uniform(max(0.01, delay - jitter), delay + jitter)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=sleep_for)
                break
            except asyncio.TimeoutError:
                pass

            delay = min(delay * 2, max_delay)

        return False

    async def _set_state(
        self, state: ConnectionState, detail: Optional[str] = None
    ) -> None:
        self._state = state
        for callback in list(self._state_callbacks):
            try:
                result = callback(state, detail)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                LOGGER.warning("Connection state callback failed", exc_info=True)
