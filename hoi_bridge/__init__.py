"""Bridge between House-of-IoT device servers and an MQTT control bus."""

__version__ = "0.1.0"
