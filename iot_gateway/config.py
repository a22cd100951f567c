"""
Gateway configuration from environment variables.

Environment Variables:
    GATEWAY_HOST: Bind address (default: 0.0.0.0)
    GATEWAY_PORT: HTTP/WebSocket port (default: 8080)
    LOG_LEVEL: Logging level (default: INFO)
    MQTT_ENABLED: Start the MQTT bridge (default: true)
    MQTT_HOST: MQTT broker host (default: localhost)
    MQTT_PORT: MQTT broker port (default: 1883)
    MQTT_STATUS_TOPIC: Device status topic (default: esp32/iot/status)
    MQTT_COMMAND_TOPIC: Device command topic (default: esp32/iot/commands)
    GAS_DANGER_THRESHOLD: Gas ppm that triggers an alert (default: 700)
    ALERT_COOLDOWN_S: Seconds between alerts of one class (default: 30)
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")


@dataclass
class GatewayConfig:
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"
    mqtt_enabled: bool = True
    mqtt_host: str = "localhost"
    mqtt_port: int = 1883
    mqtt_status_topic: str = "esp32/iot/status"
    mqtt_command_topic: str = "esp32/iot/commands"
    gas_danger_threshold: int = 700
    alert_cooldown_s: float = 30.0

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> 'GatewayConfig':
        """
        Load configuration, falling back to defaults for unset variables.

        Raises:
            ValueError: a variable is set to an unparseable value
        """
        if env is None:
            env = os.environ
        defaults = cls()
        return cls(
            host=env.get("GATEWAY_HOST", defaults.host),
            port=_int(env, "GATEWAY_PORT", defaults.port),
            log_level=env.get("LOG_LEVEL", defaults.log_level).upper(),
            mqtt_enabled=_bool(env, "MQTT_ENABLED", defaults.mqtt_enabled),
            mqtt_host=env.get("MQTT_HOST", defaults.mqtt_host),
            mqtt_port=_int(env, "MQTT_PORT", defaults.mqtt_port),
            mqtt_status_topic=env.get("MQTT_STATUS_TOPIC", defaults.mqtt_status_topic),
            mqtt_command_topic=env.get("MQTT_COMMAND_TOPIC", defaults.mqtt_command_topic),
            gas_danger_threshold=_int(env, "GAS_DANGER_THRESHOLD", defaults.gas_danger_threshold),
            alert_cooldown_s=_float(env, "ALERT_COOLDOWN_S", defaults.alert_cooldown_s),
        )


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")
