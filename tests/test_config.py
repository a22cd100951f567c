"""Tests for environment configuration."""

import pytest

from iot_gateway.config import GatewayConfig


class TestGatewayConfig:

    def test_defaults(self):
        config = GatewayConfig.from_env({})
        assert config == GatewayConfig()
        assert config.port == 8080
        assert config.mqtt_status_topic == "esp32/iot/status"
        assert config.alert_cooldown_s == 30.0

    def test_overrides(self):
        config = GatewayConfig.from_env({
            "GATEWAY_PORT": "9000",
            "LOG_LEVEL": "debug",
            "MQTT_ENABLED": "off",
            "MQTT_HOST": "broker.emqx.io",
            "MQTT_COMMAND_TOPIC": "home/esp/cmd",
            "GAS_DANGER_THRESHOLD": "550",
            "ALERT_COOLDOWN_S": "12.5",
        })
        assert config.port == 9000
        assert config.log_level == "DEBUG"
        assert config.mqtt_enabled is False
        assert config.mqtt_host == "broker.emqx.io"
        assert config.mqtt_command_topic == "home/esp/cmd"
        assert config.gas_danger_threshold == 550
        assert config.alert_cooldown_s == 12.5

    def test_empty_value_uses_default(self):
        assert GatewayConfig.from_env({"MQTT_PORT": ""}).mqtt_port == 1883

    @pytest.mark.parametrize("env", [
        {"GATEWAY_PORT": "http"},
        {"MQTT_ENABLED": "maybe"},
        {"ALERT_COOLDOWN_S": "soon"},
    ])
    def test_invalid_values(self, env):
        with pytest.raises(ValueError, match=next(iter(env))):
            GatewayConfig.from_env(env)

    def test_reads_os_environ(self, monkeypatch):
        monkeypatch.setenv("GATEWAY_HOST", "127.0.0.1")
        assert GatewayConfig.from_env().host == "127.0.0.1"
