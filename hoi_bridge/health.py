"""Health reporting for hoi-bridge."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from aiohttp import web

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ComponentStatus:
    name: str
    healthy: bool
    detail: Optional[str] = None
    updated_at: datetime = field(default_factory=_utcnow)

    def as_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "healthy": self.healthy,
            "detail": self.detail,
            "updatedAt": self.updated_at.isoformat(timespec="seconds"),
        }


class HealthReporter:
    """Tracks component health, the bridge state and the live session count.

    The overall status is ``ok`` only while every component and the bridge
    state are healthy.
    """

    def __init__(self, *, session_count: Optional[Callable[[], int]] = None) -> None:
        self._components: Dict[str, ComponentStatus] = {}
        self._bridge_state: Optional[ComponentStatus] = None
        self._session_count = session_count
        self._lock = asyncio.Lock()

    async def update(
        self, name: str, healthy: bool, detail: Optional[str] = None
    ) -> None:
        async with self._lock:
            self._components[name] = ComponentStatus(name, healthy, detail)

    async def set_bridge_state(
        self, state: str, *, healthy: bool, detail: Optional[str] = None
    ) -> None:
        async with self._lock:
            self._bridge_state = ComponentStatus(state, healthy, detail)

    async def component(self, name: str) -> Optional[ComponentStatus]:
        async with self._lock:
            return self._components.get(name)

    async def snapshot(self) -> Dict[str, object]:
        async with self._lock:
            components = [status.as_dict() for status in self._components.values()]
            bridge_state = self._bridge_state

        healthy = all(item["healthy"] for item in components)
        if bridge_state is not None:
            healthy = healthy and bridge_state.healthy

        payload: Dict[str, object] = {
            "status": "ok" if healthy else "degraded",
            "components": components,
        }
        if bridge_state is not None:
            payload["bridgeState"] = {
                "state": bridge_state.name,
                "detail": bridge_state.detail,
                "healthy": bridge_state.healthy,
                "updatedAt": bridge_state.updated_at.isoformat(timespec="seconds"),
            }
        if self._session_count is not None:
            payload["sessions"] = self._session_count()
        return payload


class HealthServer:
    """Serves the reporter's snapshot on ``GET /healthz`` (200 ok, 503 degraded)."""

    def __init__(self, reporter: HealthReporter, host: str, port: int) -> None:
        self._reporter = reporter
        self._host = host
        self._port = port
        self._runner: Optional[web.AppRunner] = None

    async def start(self) -> None:
        app = web.Application()
        app.router.add_get("/healthz", self._handle_health)

        runner = web.AppRunner(app, access_log=None)
        await runner.setup()
        try:
            await web.TCPSite(runner, self._host, self._port).start()
        except OSError:
            await runner.cleanup()
            raise

        self._runner = runner
        LOGGER.info(
            "Health endpoint listening on http://%s:%s/healthz", self._host, self._port
        )

    async def stop(self) -> None:
        runner, self._runner = self._runner, None
        if runner is not None:
            await runner.cleanup()

    async def _handle_health(self, request: web.Request) -> web.Response:
        snapshot = await self._reporter.snapshot()
        status = 200 if snapshot["status"] == "ok" else 503
        return web.json_response(snapshot, status=status)
