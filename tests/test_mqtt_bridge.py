"""Tests for the MQTT bridge with a mocked paho client."""

import json
from types import SimpleNamespace
from unittest.mock import MagicMock, Mock, patch

import pytest

from iot_gateway.mqtt_bridge import AsyncMQTTBridge, MQTTBridge


def _message(payload: bytes, topic: str = "esp32/iot/status"):
    return SimpleNamespace(topic=topic, payload=payload)


class TestMQTTBridge:

    def setup_method(self):
        self.on_status = Mock()
        self.bridge = MQTTBridge(on_status=self.on_status)

    def test_status_message_forwarded(self):
        self.bridge._on_message(None, None, _message(b'{"gas": 410, "fan": true}'))
        self.on_status.assert_called_once_with({"gas": 410, "fan": True})
        assert self.bridge.get_stats()["messages_received"] == 1

    @pytest.mark.parametrize("payload", [b"{broken", b"[1, 2]", b"\xff"])
    def test_invalid_status_dropped(self, payload):
        self.bridge._on_message(None, None, _message(payload))
        self.on_status.assert_not_called()

    def test_callback_error_is_contained(self):
        self.on_status.side_effect = RuntimeError("loop closed")
        self.bridge._on_message(None, None, _message(b'{"gas": 1}'))

    def test_on_connect_subscribes(self):
        client = MagicMock()
        self.bridge._on_connect(client, None, None, Mock(is_failure=False), None)
        client.subscribe.assert_called_once_with("esp32/iot/status")
        assert self.bridge.connected

    def test_on_connect_failure(self):
        client = MagicMock()
        self.bridge._on_connect(client, None, None, Mock(is_failure=True), None)
        client.subscribe.assert_not_called()
        assert not self.bridge.connected

    def test_on_disconnect(self):
        self.bridge._connected = True
        self.bridge._on_disconnect(None, None, None, Mock(is_failure=True), None)
        assert not self.bridge.connected

    def test_publish_requires_connection(self):
        assert self.bridge.publish_command({"fan": True}) is False

    def test_publish_command(self):
        self.bridge._client = MagicMock()
        self.bridge._connected = True

        assert self.bridge.publish_command({"servo": 120}) is True

        topic, payload = self.bridge._client.publish.call_args.args
        assert topic == "esp32/iot/commands"
        assert json.loads(payload) == {"servo": 120}
        assert self.bridge._client.publish.call_args.kwargs == {"qos": 0}
        assert self.bridge.get_stats()["messages_sent"] == 1

    def test_start_and_stop(self):
        with patch("iot_gateway.mqtt_bridge.mqtt.Client") as client_cls:
            client = client_cls.return_value

            def connect(*args, **kwargs):
                self.bridge._connected = True

            client.connect.side_effect = connect

            assert self.bridge.start() is True
            client.connect.assert_called_once_with("localhost", 1883, keepalive=60)
            client.loop_start.assert_called_once()

            self.bridge.stop()
            client.loop_stop.assert_called_once()
            client.disconnect.assert_called_once()
            assert not self.bridge.connected

    def test_start_connection_refused(self):
        with patch("iot_gateway.mqtt_bridge.mqtt.Client") as client_cls:
            client_cls.return_value.connect.side_effect = ConnectionRefusedError()
            assert self.bridge.start() is False


class TestAsyncMQTTBridge:

    @pytest.mark.asyncio
    async def test_publish_delegates(self):
        bridge = AsyncMQTTBridge(command_topic="home/cmd")
        bridge._bridge._client = MagicMock()
        bridge._bridge._connected = True

        assert await bridge.publish_command({"led": False}) is True
        assert bridge._bridge._client.publish.call_args.args[0] == "home/cmd"
        assert bridge.connected
