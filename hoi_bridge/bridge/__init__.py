"""Session bridge between House-of-IoT device servers and the control bus."""

from .dispatcher import ActionDispatcher, action_frames
from .handshake import Handshake, HandshakeOutcome, HandshakeState, authenticate
from .poller import PassivePoller
from .publisher import EventPublisher, PublishFailure
from .relay import (
    ActionOutcome,
    DeviceFrame,
    PassiveData,
    RelayLoop,
    Unrecognised,
    classify_frame,
)
from .router import MessageRouter
from .runtime import SessionRuntime

__all__ = [
    "ActionDispatcher",
    "ActionOutcome",
    "DeviceFrame",
    "EventPublisher",
    "Handshake",
    "HandshakeOutcome",
    "HandshakeState",
    "MessageRouter",
    "PassiveData",
    "PassivePoller",
    "PublishFailure",
    "RelayLoop",
    "SessionRuntime",
    "Unrecognised",
    "action_frames",
    "authenticate",
    "classify_frame",
]
