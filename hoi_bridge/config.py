"""Configuration loader for hoi-bridge."""

from __future__ import annotations

from configparser import ConfigParser
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from . import constants


@dataclass(slots=True)
class BrokerConfig:
    host: str = constants.DEFAULT_BROKER_HOST
    port: int = constants.DEFAULT_BROKER_PORT
    username: Optional[str] = None
    password: Optional[str] = None
    client_id: Optional[str] = None
    consume_topic: str = constants.DEFAULT_CONSUME_TOPIC
    publish_topic: str = constants.DEFAULT_PUBLISH_TOPIC
    qos: int = 1
    keepalive: int = 60


@dataclass(slots=True)
class BridgeConfig:
    passive_interval_seconds: float = 5.0
    passive_trigger: str = constants.DEFAULT_PASSIVE_TRIGGER
    telemetry_key: str = constants.DEFAULT_TELEMETRY_KEY
    action_opcode: str = constants.DEFAULT_ACTION_OPCODE
    connect_timeout_seconds: float = 10.0
    auth_timeout_seconds: float = 10.0


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = constants.DEFAULT_LOG_PATH
    log_network: bool = False


@dataclass(slots=True)
class ResilienceConfig:
    publish_retry_attempts: int = 3
    publish_backoff_initial_seconds: float = 0.5
    publish_backoff_max_seconds: float = 5.0
    reconnect_initial_seconds: float = 1.0
    reconnect_max_seconds: float = 30.0
    reconnect_jitter_ratio: float = 0.5
    health_enabled: bool = False
    health_host: str = "127.0.0.1"
    health_port: int = 0


@dataclass(slots=True)
class BridgeAppConfig:
    broker: BrokerConfig
    bridge: BridgeConfig
    logging: LoggingConfig
    resilience: ResilienceConfig
    raw: ConfigParser
    path: Path


def load_config(path: Optional[Path] = None) -> BridgeAppConfig:
    """Load configuration from disk, applying defaults where necessary."""

    config_path = path or constants.DEFAULT_CONFIG_PATH
    parser = ConfigParser()
    parser.read_dict(
        {
            "broker": {
                "host": constants.DEFAULT_BROKER_HOST,
                "port": str(constants.DEFAULT_BROKER_PORT),
                "consume_topic": constants.DEFAULT_CONSUME_TOPIC,
                "publish_topic": constants.DEFAULT_PUBLISH_TOPIC,
                "qos": "1",
                "keepalive": "60",
            },
            "bridge": {
                "passive_interval_seconds": "5.0",
                "passive_trigger": constants.DEFAULT_PASSIVE_TRIGGER,
                "telemetry_key": constants.DEFAULT_TELEMETRY_KEY,
                "action_opcode": constants.DEFAULT_ACTION_OPCODE,
                "connect_timeout_seconds": "10.0",
                "auth_timeout_seconds": "10.0",
            },
            "logging": {
                "level": "INFO",
                "path": str(constants.DEFAULT_LOG_PATH),
                "log_network": "false",
            },
            "resilience": {
                "publish_retry_attempts": "3",
                "publish_backoff_initial_seconds": "0.5",
                "publish_backoff_max_seconds": "5.0",
                "reconnect_initial_seconds": "1.0",
                "reconnect_max_seconds": "30.0",
                "reconnect_jitter_ratio": "0.5",
                "health_enabled": "false",
                "health_host": "127.0.0.1",
                "health_port": "0",
            },
        }
    )

    if config_path.exists():
        parser.read(config_path)

    host_value = parser.get("broker", "host")
    port_value = parser.getint(
        "broker", "port", fallback=constants.DEFAULT_BROKER_PORT
    )

    if ":" in host_value:
        host_part, port_part = host_value.rsplit(":", 1)
        try:
            parsed_port = int(port_part)
        except ValueError:
            pass
        else:
            host_value = host_part
            port_value = parsed_port
            parser.set("broker", "host", host_part)
            parser.set("broker", "port", str(parsed_port))

    broker = BrokerConfig(
        host=host_value,
        port=port_value,
        username=parser.get("broker", "username", fallback=None),
        password=parser.get("broker", "password", fallback=None),
        client_id=parser.get("broker", "client_id", fallback=None) or None,
        consume_topic=parser.get("broker", "consume_topic"),
        publish_topic=parser.get("broker", "publish_topic"),
        qos=min(2, max(0, parser.getint("broker", "qos", fallback=1))),
        keepalive=max(5, parser.getint("broker", "keepalive", fallback=60)),
    )

    bridge_defaults = BridgeConfig()

    bridge = BridgeConfig(
        passive_interval_seconds=max(
            0.1,
            parser.getfloat(
                "bridge",
                "passive_interval_seconds",
                fallback=bridge_defaults.passive_interval_seconds,
            ),
        ),
        passive_trigger=parser.get("bridge", "passive_trigger").strip()
        or bridge_defaults.passive_trigger,
        telemetry_key=parser.get("bridge", "telemetry_key").strip()
        or bridge_defaults.telemetry_key,
        action_opcode=parser.get("bridge", "action_opcode").strip()
        or bridge_defaults.action_opcode,
        connect_timeout_seconds=max(
            0.1,
            parser.getfloat(
                "bridge",
                "connect_timeout_seconds",
                fallback=bridge_defaults.connect_timeout_seconds,
            ),
        ),
        auth_timeout_seconds=max(
            0.1,
            parser.getfloat(
                "bridge",
                "auth_timeout_seconds",
                fallback=bridge_defaults.auth_timeout_seconds,
            ),
        ),
    )

    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=Path(
            parser.get("logging", "path", fallback=str(constants.DEFAULT_LOG_PATH))
        ).expanduser(),
        log_network=parser.getboolean("logging", "log_network", fallback=False),
    )

    resilience = ResilienceConfig(
        publish_retry_attempts=max(
            1, parser.getint("resilience", "publish_retry_attempts", fallback=3)
        ),
        publish_backoff_initial_seconds=max(
            0.0,
            parser.getfloat(
                "resilience", "publish_backoff_initial_seconds", fallback=0.5
            ),
        ),
        publish_backoff_max_seconds=max(
            0.0,
            parser.getfloat("resilience", "publish_backoff_max_seconds", fallback=5.0),
        ),
        reconnect_initial_seconds=parser.getfloat(
            "resilience", "reconnect_initial_seconds", fallback=1.0
        ),
        reconnect_max_seconds=parser.getfloat(
            "resilience", "reconnect_max_seconds", fallback=30.0
        ),
        reconnect_jitter_ratio=max(
            0.0,
            min(
                1.0,
                parser.getfloat("resilience", "reconnect_jitter_ratio", fallback=0.5),
            ),
        ),
        health_enabled=parser.getboolean(
            "resilience", "health_enabled", fallback=False
        ),
        health_host=parser.get("resilience", "health_host", fallback="127.0.0.1"),
        health_port=parser.getint("resilience", "health_port", fallback=0),
    )

    return BridgeAppConfig(
        broker=broker,
        bridge=bridge,
        logging=logging_config,
        resilience=resilience,
        raw=parser,
        path=config_path,
    )


def save_config(config: BridgeAppConfig) -> None:
    """Persist the current configuration to disk."""

    config_path = config.path
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as stream:
        config.raw.write(stream)
