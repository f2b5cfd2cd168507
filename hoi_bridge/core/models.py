"""Data model shared by the session bridge."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import Any, Mapping, Optional


class PayloadError(ValueError):
    """Raised when a JSON payload does not match the expected schema."""


def _require_str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise PayloadError(f"{key} must be a string")
    return value


def _optional_str(data: Mapping[str, Any], key: str, default: str = "") -> str:
    value = data.get(key, default)
    if value is None:
        return default
    if not isinstance(value, str):
        raise PayloadError(f"{key} must be a string")
    return value


def load_json_object(raw: str | bytes) -> dict[str, Any]:
    """Decode ``raw`` as JSON and require a top-level object."""

    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise PayloadError("payload is not valid UTF-8") from exc

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise PayloadError("payload is not valid JSON") from exc

    if not isinstance(data, dict):
        raise PayloadError("payload must be a JSON object")
    return data


@dataclass(frozen=True, slots=True)
class Credentials:
    """Connection details for a House-of-IoT server, as sent by the orchestrator."""

    connection_str: str
    name_and_type: str
    password: str
    outside_name: str
    admin_password: str = ""

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Credentials":
        return cls(
            connection_str=_require_str(data, "connection_str"),
            name_and_type=_require_str(data, "name_and_type"),
            password=_require_str(data, "password"),
            admin_password=_optional_str(data, "admin_password"),
            outside_name=_require_str(data, "outside_name"),
        )


@dataclass(frozen=True, slots=True)
class ActionRequest:
    server_id: str
    bot_name: str
    action: str

    @classmethod
    def from_mapping(
        cls, data: Mapping[str, Any], *, default_server_id: str = ""
    ) -> "ActionRequest":
        server_id = data.get("server_id", default_server_id) or default_server_id
        if not isinstance(server_id, str) or not server_id:
            raise PayloadError("server_id must be a non-empty string")
        return cls(
            server_id=server_id,
            bot_name=_require_str(data, "bot_name"),
            action=_require_str(data, "action"),
        )


@dataclass(frozen=True, slots=True)
class TelemetryRecord:
    active_status: bool
    device_name: str
    device_type: str

    @classmethod
    def from_mapping(cls, data: Any) -> "TelemetryRecord":
        if not isinstance(data, Mapping):
            raise PayloadError("telemetry record must be an object")
        active_status = data.get("active_status")
        if not isinstance(active_status, bool):
            raise PayloadError("active_status must be a boolean")
        return cls(
            active_status=active_status,
            device_name=_require_str(data, "device_name"),
            device_type=_require_str(data, "device_type"),
        )

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class TelemetrySnapshot:
    """Ordered list of device-unit status records reported by one server."""

    records: tuple[TelemetryRecord, ...]

    @classmethod
    def from_list(cls, items: Any) -> "TelemetrySnapshot":
        if not isinstance(items, list):
            raise PayloadError("telemetry list must be an array")
        return cls(records=tuple(TelemetryRecord.from_mapping(item) for item in items))

    def to_json(self) -> str:
        return json.dumps([record.as_dict() for record in self.records])


@dataclass(frozen=True, slots=True)
class AuthResult:
    outside_name: str
    passed_auth: bool
    server_id: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps(
            {
                "outside_name": self.outside_name,
                "passed_auth": self.passed_auth,
                "server_id": self.server_id,
            }
        )


@dataclass(frozen=True, slots=True)
class BusMessage:
    """Envelope of every categorised message carried on the control bus."""

    category: str
    data: str
    server_id: str

    @classmethod
    def from_payload(cls, raw: str | bytes) -> "BusMessage":
        data = load_json_object(raw)
        category = _require_str(data, "category")
        body = data.get("data", "")
        if body is None:
            body = ""
        if not isinstance(body, str):
            # tolerate producers that inline the payload instead of stringifying it
            body = json.dumps(body)
        server_id = data.get("server_id", "")
        if server_id is None:
            server_id = ""
        if not isinstance(server_id, str):
            raise PayloadError("server_id must be a string")
        return cls(category=category, data=body, server_id=server_id)

    def to_json(self) -> str:
        return json.dumps(
            {"category": self.category, "data": self.data, "server_id": self.server_id}
        )
