from pathlib import Path

from hoi_bridge import constants
from hoi_bridge.config import load_config, save_config


def test_load_config_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "hoi-bridge.cfg"
    config = load_config(config_path)

    assert config.path == config_path
    assert config.broker.host == "localhost"
    assert config.broker.port == 1883
    assert config.broker.consume_topic == constants.DEFAULT_CONSUME_TOPIC
    assert config.broker.publish_topic == constants.DEFAULT_PUBLISH_TOPIC
    assert config.broker.username is None
    assert config.bridge.passive_interval_seconds == 5.0
    assert config.bridge.passive_trigger == "passive_data"
    assert config.bridge.telemetry_key == "bots"
    assert config.bridge.action_opcode == "bot_control"
    assert config.bridge.auth_timeout_seconds == 10.0
    assert config.resilience.publish_retry_attempts == 3
    assert config.resilience.reconnect_initial_seconds == 1.0
    assert config.resilience.health_enabled is False
    assert config.resilience.health_port == 0
    assert config.logging.level == "INFO"


def test_load_config_parses_broker_host_with_port(tmp_path: Path) -> None:
    config_path = tmp_path / "hoi-bridge.cfg"
    config_path.write_text("[broker]\nhost = localhost:61198\n", encoding="utf-8")

    config = load_config(config_path)

    assert config.broker.host == "localhost"
    assert config.broker.port == 61198
    assert config.raw.get("broker", "host") == "localhost"
    assert config.raw.get("broker", "port") == "61198"


def test_load_config_overrides_bridge(tmp_path: Path) -> None:
    config_path = tmp_path / "hoi-bridge.cfg"
    config_path.write_text(
        """
[broker]
username = bridge
password = secret
consume_topic = home/control
qos = 5

[bridge]
passive_interval_seconds = 2.5
telemetry_key = devices
action_opcode = cmd
auth_timeout_seconds = 0

[resilience]
publish_retry_attempts = 0
reconnect_jitter_ratio = 3
        """.strip()
        + "\n",
        encoding="utf-8",
    )

    config = load_config(config_path)

    assert config.broker.username == "bridge"
    assert config.broker.password == "secret"
    assert config.broker.consume_topic == "home/control"
    assert config.broker.qos == 2
    assert config.bridge.passive_interval_seconds == 2.5
    assert config.bridge.telemetry_key == "devices"
    assert config.bridge.action_opcode == "cmd"
    assert config.bridge.auth_timeout_seconds == 0.1
    assert config.resilience.publish_retry_attempts == 1
    assert config.resilience.reconnect_jitter_ratio == 1.0


def test_save_config_round_trips(tmp_path: Path) -> None:
    config_path = tmp_path / "nested" / "hoi-bridge.cfg"
    config = load_config(config_path)
    config.raw.set("bridge", "telemetry_key", "devices")

    save_config(config)
    reloaded = load_config(config_path)

    assert config_path.exists()
    assert reloaded.bridge.telemetry_key == "devices"
