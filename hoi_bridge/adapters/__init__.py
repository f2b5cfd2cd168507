"""Adapter modules for external integrations."""

from .device import DeviceConnection, DeviceConnectionError, DeviceTransport
from .mqtt import MQTTClient, MQTTConnectionError

__all__ = [
    "DeviceConnection",
    "DeviceConnectionError",
    "DeviceTransport",
    "MQTTClient",
    "MQTTConnectionError",
]
