"""Control-bus message kinds, decoded once at the boundary."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union

from .models import (
    ActionRequest,
    BusMessage,
    Credentials,
    PayloadError,
    load_json_object,
)


class MessageKind(str, Enum):
    """Categories the bridge consumes from the control bus."""

    CONNECT = "connect_hoi"
    DISCONNECT = "disconnect_hoi"
    ACTION = "action_hoi"


class EventCategory(str, Enum):
    """Categories the bridge emits on the control bus."""

    ACTION_RESPONSE = "action_response"
    PASSIVE_DATA = "passive_data"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True, slots=True)
class ConnectRequest:
    credentials: Credentials


@dataclass(frozen=True, slots=True)
class DisconnectRequest:
    server_id: str


@dataclass(frozen=True, slots=True)
class ActionCommand:
    action: ActionRequest


@dataclass(frozen=True, slots=True)
class Ignored:
    """A consumed message that triggers nothing (unknown kind or bad payload)."""

    reason: str
    category: str = ""


ControlMessage = Union[ConnectRequest, DisconnectRequest, ActionCommand, Ignored]


def decode_control_message(raw: str | bytes) -> ControlMessage:
    """Decode a raw control-bus payload into one of the known message kinds.

    Never raises for bad input: anything that cannot be interpreted becomes
    :class:`Ignored` carrying a short reason for diagnostics.
    """

    try:
        envelope = BusMessage.from_payload(raw)
    except PayloadError as exc:
        return Ignored(reason=f"invalid envelope: {exc}")

    try:
        kind = MessageKind(envelope.category)
    except ValueError:
        return Ignored(reason="unknown category", category=envelope.category)

    try:
        if kind is MessageKind.CONNECT:
            return ConnectRequest(
                credentials=Credentials.from_mapping(load_json_object(envelope.data))
            )
        if kind is MessageKind.DISCONNECT:
            return DisconnectRequest(server_id=_disconnect_target(envelope))
        return ActionCommand(
            action=ActionRequest.from_mapping(
                load_json_object(envelope.data),
                default_server_id=envelope.server_id,
            )
        )
    except PayloadError as exc:
        return Ignored(reason=f"malformed {kind.value} payload: {exc}", category=kind.value)


def _disconnect_target(envelope: BusMessage) -> str:
    if envelope.server_id:
        return envelope.server_id

    data = load_json_object(envelope.data)
    server_id = data.get("server_id")
    if not isinstance(server_id, str) or not server_id:
        raise PayloadError("server_id must be a non-empty string")
    return server_id
