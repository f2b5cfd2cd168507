"""Constants used across the hoi-bridge package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "hoi-bridge"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / APP_NAME / DEFAULT_CONFIG_FILENAME

DEFAULT_LOG_PATH = Path.home() / ".local" / "state" / APP_NAME / f"{APP_NAME}.log"

DEFAULT_BROKER_HOST = "localhost"
DEFAULT_BROKER_PORT = 1883
DEFAULT_CONSUME_TOPIC = "hoi/bridge/control"
DEFAULT_PUBLISH_TOPIC = "hoi/bridge/events"

# Device protocol literals
AUTH_SUCCESS_TOKEN = "success"
ACTION_SUCCESS_TOKEN = "success"
ACTION_ISSUE_TOKEN = "issue"
DEFAULT_PASSIVE_TRIGGER = "passive_data"
DEFAULT_TELEMETRY_KEY = "bots"
DEFAULT_ACTION_OPCODE = "bot_control"
