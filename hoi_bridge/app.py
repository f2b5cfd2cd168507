"""Main application entry-point for hoi-bridge."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from enum import Enum
from typing import Optional

from . import constants
from .adapters import DeviceTransport, MQTTClient
from .bridge import (
    ActionDispatcher,
    EventPublisher,
    Handshake,
    MessageRouter,
    SessionRuntime,
)
from .config import BridgeAppConfig, load_config
from .connection import BrokerSupervisor, ConnectionState
from .core import SessionRegistry
from .health import HealthReporter, HealthServer
from .logging import configure_logging

LOGGER = logging.getLogger(__name__)

_PUBLISHER_CHECK_SECONDS = 5.0


class BridgeState(str, Enum):
    COLD_START = "cold_start"
    AWAITING_BROKER = "awaiting_broker"
    ACTIVE = "active"
    DEGRADED = "degraded"
    STOPPING = "stopping"


class HoiBridgeApp:
    """Coordinates bridge startup and shutdown.

    This class wires the session bridge together:
    - MQTT connectivity and control-topic subscription
    - The event publisher, session registry and action dispatcher
    - Handshakes, per-session relay/poller tasks and the message router
    - Health reporting and the bridge state machine

    The broker client and device transport can be injected for testing.
    """

    def __init__(
        self,
        config: Optional[BridgeAppConfig] = None,
        *,
        mqtt_client: Optional[MQTTClient] = None,
        transport: Optional[DeviceTransport] = None,
    ) -> None:
        self._config = config or load_config()
        bridge = self._config.bridge
        self._mqtt_client = mqtt_client or MQTTClient(
            self._config.broker, client_id=_build_client_id(self._config.broker.client_id)
        )
        self._transport = transport or DeviceTransport(
            connect_timeout=bridge.connect_timeout_seconds
        )
        self._registry = SessionRegistry()
        self._health = HealthReporter(session_count=lambda: len(self._registry))
        self._health_server: Optional[HealthServer] = None
        self._supervisor: Optional[BrokerSupervisor] = None
        self._publisher: Optional[EventPublisher] = None
        self._dispatcher: Optional[ActionDispatcher] = None
        self._runtime: Optional[SessionRuntime] = None
        self._router: Optional[MessageRouter] = None
        self._failure_monitor: Optional[asyncio.Task[None]] = None
        self._shutdown_event: Optional[asyncio.Event] = None
        self._state = BridgeState.COLD_START
        self._state_detail: Optional[str] = None

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    @property
    def router(self) -> Optional[MessageRouter]:
        return self._router

    @property
    def state(self) -> BridgeState:
        return self._state

    @property
    def health(self) -> HealthReporter:
        return self._health

    async def run(self) -> None:
        """Run the bridge until cancelled or :meth:`request_shutdown` is called."""

        self._shutdown_event = asyncio.Event()

        LOGGER.info("hoi-bridge starting with config: %s", self._config.path)
        started = await self._start_services()
        if not started:
            LOGGER.warning("Service startup incomplete; running in degraded mode")

        try:
            await self._idle_loop()
        except asyncio.CancelledError:
            LOGGER.info("hoi-bridge received shutdown signal")
            raise
        finally:
            await self._stop_services()

    def request_shutdown(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    @classmethod
    def start(cls, config: Optional[BridgeAppConfig] = None) -> None:
        instance = cls(config=config)
        configure_logging(
            instance._config.logging.level,
            log_path=instance._config.logging.path,
            log_network=instance._config.logging.log_network,
        )
        try:
            asyncio.run(instance.run())
        except KeyboardInterrupt:
            LOGGER.info("hoi-bridge received shutdown signal")

    async def _idle_loop(self) -> None:
        LOGGER.info("hoi-bridge active; awaiting shutdown signal")
        if self._shutdown_event is None:
            self._shutdown_event = asyncio.Event()
        await self._shutdown_event.wait()

    async def _transition_state(
        self, state: BridgeState, *, detail: Optional[str] = None
    ) -> None:
        if state == self._state and detail == self._state_detail:
            return

        previous = self._state
        self._state = state
        self._state_detail = detail

        message_detail = detail or state.value
        LOGGER.info(
            "Bridge state transition %s -> %s (%s)",
            previous.value,
            state.value,
            message_detail,
        )
        await self._health.set_bridge_state(
            state.value,
            healthy=state == BridgeState.ACTIVE,
            detail=message_detail,
        )

    async def _start_services(self) -> bool:
        await self._transition_state(BridgeState.COLD_START, detail="initialising")

        broker = self._config.broker
        bridge = self._config.bridge
        resilience = self._config.resilience

        await self._health.update("mqtt", False, "initialising")
        await self._health.update("router", False, "awaiting mqtt connectivity")
        await self._health.update("publisher", True, None)

        self._publisher = EventPublisher(
            self._mqtt_client,
            broker.publish_topic,
            qos=broker.qos,
            retry_attempts=resilience.publish_retry_attempts,
            backoff_initial=resilience.publish_backoff_initial_seconds,
            backoff_max=resilience.publish_backoff_max_seconds,
        )
        self._dispatcher = ActionDispatcher(
            self._registry, opcode=bridge.action_opcode
        )
        self._runtime = SessionRuntime(
            self._publisher,
            self._dispatcher,
            passive_interval_seconds=bridge.passive_interval_seconds,
            passive_trigger=bridge.passive_trigger,
            telemetry_key=bridge.telemetry_key,
        )
        handshake = Handshake(
            transport=self._transport,
            registry=self._registry,
            publisher=self._publisher,
            launcher=self._runtime,
            auth_timeout=bridge.auth_timeout_seconds,
        )
        self._router = MessageRouter(
            registry=self._registry,
            handshake=handshake,
            dispatcher=self._dispatcher,
            publisher=self._publisher,
        )

        self._mqtt_client.set_message_handler(self._router.submit)
        self._router.start()
        self._failure_monitor = asyncio.create_task(
            self._monitor_publish_failures(), name="publish-failure-monitor"
        )

        self._supervisor = BrokerSupervisor(
            mqtt_client=self._mqtt_client,
            topic=broker.consume_topic,
            resilience_config=resilience,
            qos=broker.qos,
        )
        self._supervisor.register_state_callback(self._on_connection_state)

        await self._transition_state(
            BridgeState.AWAITING_BROKER, detail="connecting to mqtt broker"
        )

        connected = await self._supervisor.connect()
        await self._start_health_server()
        self._supervisor.start()

        if not connected:
            await self._transition_state(BridgeState.DEGRADED, detail="mqtt unavailable")
            return False

        await self._health.update("router", True, None)
        await self._transition_state(BridgeState.ACTIVE, detail="bridge ready")
        return True

    async def _start_health_server(self) -> None:
        resilience = self._config.resilience
        if not resilience.health_enabled or resilience.health_port <= 0:
            return

        self._health_server = HealthServer(
            self._health, resilience.health_host, resilience.health_port
        )
        try:
            await self._health_server.start()
        except OSError as exc:
            LOGGER.error("Failed to start health endpoint: %s", exc)
            self._health_server = None

    async def _on_connection_state(
        self, state: ConnectionState, detail: Optional[str]
    ) -> None:
        if state == ConnectionState.CONNECTED:
            await self._health.update("mqtt", True, None)
            if self._state == BridgeState.DEGRADED:
                await self._transition_state(
                    BridgeState.ACTIVE, detail="mqtt connection restored"
                )
            return

        await self._health.update("mqtt", False, detail or state.value)
        if state in (ConnectionState.RECONNECTING, ConnectionState.DISCONNECTED):
            if self._state == BridgeState.ACTIVE:
                await self._transition_state(
                    BridgeState.DEGRADED, detail=f"mqtt {state.value}"
                )

    async def _monitor_publish_failures(self) -> None:
        publisher = self._publisher
        if publisher is None:
            return

        while True:
            try:
                failure = await asyncio.wait_for(
                    publisher.failures.get(), timeout=_PUBLISHER_CHECK_SECONDS
                )
            except asyncio.TimeoutError:
                if publisher.consecutive_failures == 0:
                    status = await self._health.component("publisher")
                    if status is not None and not status.healthy:
                        await self._health.update("publisher", True, "recovered")
                continue

            LOGGER.error(
                "Dropped control-bus message after %d attempts (%s): %.200s",
                failure.attempts,
                failure.error,
                failure.payload,
            )
            await self._health.update(
                "publisher",
                False,
                f"{publisher.consecutive_failures} consecutive failed publishes",
            )

    async def _stop_services(self) -> None:
        await self._transition_state(BridgeState.STOPPING, detail="shutdown requested")

        if self._router is not None:
            await self._router.stop()

        sessions = await self._registry.clear()
        if sessions:
            LOGGER.info("Closing %d active sessions", len(sessions))

        if self._runtime is not None:
            await self._runtime.stop()

        if self._failure_monitor is not None:
            self._failure_monitor.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._failure_monitor
            self._failure_monitor = None

        if self._health_server is not None:
            await self._health_server.stop()
            self._health_server = None

        await self._transport.aclose()

        self._mqtt_client.set_message_handler(None)
        if self._supervisor is not None:
            await self._supervisor.stop()
            self._supervisor = None
        await self._health.update("mqtt", False, "shutdown")

        if self._shutdown_event is not None:
            self._shutdown_event.set()


def _build_client_id(configured: Optional[str]) -> str:
    if configured:
        return configured
    return f"{constants.APP_NAME}-{os.getpid()}"
