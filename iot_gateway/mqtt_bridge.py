"""
MQTT Bridge for ESP32 communication.

Handles:
- Subscribing to the device status topic and forwarding reports
- Publishing client commands to the device command topic
"""

import asyncio
import json
import logging
import time
from typing import Any, Callable, Dict, Optional

import paho.mqtt.client as mqtt

logger = logging.getLogger(__name__)


class MQTTBridge:
    """
    MQTT bridge between the gateway and the ESP32.

    Status reports arrive on paho's network thread and are handed to
    ``on_status`` there; callers are responsible for moving them onto
    their own event loop.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 1883,
        status_topic: str = "esp32/iot/status",
        command_topic: str = "esp32/iot/commands",
        on_status: Optional[Callable[[Dict[str, Any]], None]] = None,
    ):
        """
        Initialize MQTT bridge.

        Args:
            host: MQTT broker host
            port: MQTT broker port
            status_topic: Topic the device publishes sensor reports on
            command_topic: Topic the device listens for commands on
            on_status: Callback for decoded status reports
        """
        self.host = host
        self.port = port
        self.status_topic = status_topic
        self.command_topic = command_topic
        self.on_status = on_status

        # MQTT client
        self._client: Optional[mqtt.Client] = None
        self._connected = False
        self._running = False

        # Statistics
        self._messages_sent = 0
        self._messages_received = 0
        self._last_send_time: Optional[float] = None

    def start(self) -> bool:
        """
        Start the MQTT bridge.

        Returns:
            True if connection successful, False otherwise
        """
        if self._running:
            return True

        try:
            # Create client with unique ID
            client_id = f"iot_gateway_{int(time.time())}"
            self._client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id)

            # Set callbacks
            self._client.on_connect = self._on_connect
            self._client.on_disconnect = self._on_disconnect
            self._client.on_message = self._on_message

            # Connect
            logger.info(f"Connecting to MQTT broker at {self.host}:{self.port}")
            self._client.connect(self.host, self.port, keepalive=60)

            # Start loop in background thread
            self._running = True
            self._client.loop_start()

            # Wait for connection
            for _ in range(50):  # 5 second timeout
                if self._connected:
                    break
                time.sleep(0.1)

            if not self._connected:
                logger.warning("MQTT connection timeout - continuing without MQTT")
                return False

            return True

        except Exception as e:
            logger.error(f"Failed to connect to MQTT broker: {e}")
            return False

    def stop(self) -> None:
        """Stop the MQTT bridge."""
        if not self._running:
            return

        self._running = False

        if self._client:
            self._client.loop_stop()
            self._client.disconnect()
            self._client = None

        self._connected = False
        logger.info("MQTT bridge stopped")

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        """MQTT connection callback."""
        if reason_code.is_failure:
            logger.error(f"MQTT connection failed: {reason_code}")
            return

        self._connected = True
        logger.info("Connected to MQTT broker")

        client.subscribe(self.status_topic)
        logger.info(f"Subscribed to {self.status_topic}")

    def _on_disconnect(self, client, userdata, flags, reason_code, properties):
        """MQTT disconnection callback."""
        self._connected = False
        if reason_code.is_failure:
            logger.warning(f"Unexpected MQTT disconnection: {reason_code}")
        else:
            logger.info("Disconnected from MQTT broker")

    def _on_message(self, client, userdata, msg):
        """MQTT message callback."""
        self._messages_received += 1

        try:
            payload = json.loads(msg.payload.decode())
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Invalid status JSON on {msg.topic}: {e}")
            return

        if not isinstance(payload, dict):
            logger.warning(f"Ignoring non-object status payload on {msg.topic}")
            return

        logger.debug(f"Status received: {payload}")
        if self.on_status:
            try:
                self.on_status(payload)
            except Exception as e:
                logger.error(f"Error processing status report: {e}")

    def publish_command(self, command: Dict[str, Any]) -> bool:
        """
        Publish a command mapping to the device.

        Args:
            command: Field/value pairs, e.g. {"fan": True}

        Returns:
            True if published successfully
        """
        if not self._connected or not self._client:
            return False

        try:
            self._client.publish(
                self.command_topic,
                json.dumps(command),
                qos=0,  # Fire and forget
            )
            self._messages_sent += 1
            self._last_send_time = time.time()

            logger.debug(f"Published command: {command}")
            return True

        except Exception as e:
            logger.error(f"Failed to publish command: {e}")
            return False

    @property
    def connected(self) -> bool:
        """Check if connected to MQTT broker."""
        return self._connected

    def get_stats(self) -> dict:
        """Get bridge statistics."""
        return {
            "connected": self._connected,
            "messages_sent": self._messages_sent,
            "messages_received": self._messages_received,
            "last_send_time": self._last_send_time,
        }


class AsyncMQTTBridge:
    """
    Async wrapper for MQTTBridge.

    Provides async-compatible methods for use with asyncio.
    """

    def __init__(self, **kwargs):
        """Initialize with same arguments as MQTTBridge."""
        self._bridge = MQTTBridge(**kwargs)

    async def start(self) -> bool:
        """Start the MQTT bridge."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._bridge.start)

    async def stop(self) -> None:
        """Stop the MQTT bridge."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._bridge.stop)

    async def publish_command(self, command: Dict[str, Any]) -> bool:
        """Publish a command mapping."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._bridge.publish_command, command)

    @property
    def connected(self) -> bool:
        """Check if connected."""
        return self._bridge.connected

    def get_stats(self) -> dict:
        """Get statistics."""
        return self._bridge.get_stats()
