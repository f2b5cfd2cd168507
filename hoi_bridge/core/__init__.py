"""Core primitives for hoi-bridge."""

from .channel import SessionChannel, SessionClosedError
from .locks import ReadWriteLock
from .messages import (
    ActionCommand,
    ConnectRequest,
    ControlMessage,
    DisconnectRequest,
    EventCategory,
    Ignored,
    MessageKind,
    decode_control_message,
)
from .models import (
    ActionRequest,
    AuthResult,
    BusMessage,
    Credentials,
    PayloadError,
    TelemetryRecord,
    TelemetrySnapshot,
)
from .registry import Session, SessionRegistry

__all__ = [
    "ActionCommand",
    "ActionRequest",
    "AuthResult",
    "BusMessage",
    "ConnectRequest",
    "ControlMessage",
    "Credentials",
    "DisconnectRequest",
    "EventCategory",
    "Ignored",
    "MessageKind",
    "PayloadError",
    "ReadWriteLock",
    "Session",
    "SessionChannel",
    "SessionClosedError",
    "SessionRegistry",
    "TelemetryRecord",
    "TelemetrySnapshot",
    "decode_control_message",
]
