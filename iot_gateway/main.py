#!/usr/bin/env python3
"""
IoT Gateway - Main Entry Point

This server bridges an ESP32 that polls over HTTP with browser clients:
- Keeps the authoritative device-state snapshot
- Queues client commands until the device's next poll
- Pushes every state change to all WebSocket clients
- Optionally mirrors reports and commands over MQTT

Configuration is read from the environment, see iot_gateway.config.

Usage:
    export MQTT_HOST=broker.emqx.io
    python -m iot_gateway.main
"""

import asyncio
import logging
import signal
import sys
from concurrent.futures import Future
from typing import Any, Dict, Optional

import uvicorn

from .alerts import DangerAlertMonitor, PushDispatcher
from .broadcast import BroadcastHub
from .command_queue import CommandQueue
from .config import GatewayConfig
from .handlers import ClientCommandHandler, DeviceIngressHandler
from .mqtt_bridge import AsyncMQTTBridge
from .server import GatewayServer
from .state_store import StateStore

logger = logging.getLogger(__name__)


class IoTGateway:
    """
    Main gateway integrating HTTP, WebSocket and MQTT.

    Architecture:
        ESP32 -> POST /esp/status | MQTT status -> StateStore -> WebSocket clients
        Client -> POST /<field> | WebSocket -> StateStore + CommandQueue -> WebSocket clients
        ESP32 <- GET /esp/commands | MQTT commands
    """

    def __init__(
        self,
        config: GatewayConfig,
        dispatcher: Optional[PushDispatcher] = None,
    ):
        """
        Initialize gateway.

        Args:
            config: Gateway configuration
            dispatcher: Push notification service for danger alerts
        """
        self.config = config

        # Shared state, one instance per process
        self.store = StateStore()
        self.queue = CommandQueue()
        self.hub = BroadcastHub(self.store)
        self.alerts = DangerAlertMonitor(
            dispatcher=dispatcher,
            gas_threshold=config.gas_danger_threshold,
            cooldown_s=config.alert_cooldown_s,
        )

        # Components
        self.mqtt_bridge: Optional[AsyncMQTTBridge] = None
        self.ingress: Optional[DeviceIngressHandler] = None
        self.commands: Optional[ClientCommandHandler] = None
        self.server: Optional[GatewayServer] = None

        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def start(self) -> None:
        """Start all gateway components."""
        logger.info("Starting IoT Gateway...")
        self._loop = asyncio.get_running_loop()

        if self.config.mqtt_enabled:
            try:
                self.mqtt_bridge = AsyncMQTTBridge(
                    host=self.config.mqtt_host,
                    port=self.config.mqtt_port,
                    status_topic=self.config.mqtt_status_topic,
                    command_topic=self.config.mqtt_command_topic,
                    on_status=self._on_mqtt_status,
                )
                success = await self.mqtt_bridge.start()
                if success:
                    logger.info("MQTT bridge started")
                else:
                    logger.warning("MQTT bridge failed to connect")
            except Exception as e:
                logger.error(f"Failed to start MQTT bridge: {e}")
                logger.warning("Continuing without MQTT bridge")
                self.mqtt_bridge = None

        self.ingress = DeviceIngressHandler(self.store, self.hub, self.alerts)
        self.commands = ClientCommandHandler(
            self.store,
            self.queue,
            self.hub,
            publish_command=self._publish_command,
        )
        self.server = GatewayServer(
            self.store,
            self.queue,
            self.hub,
            self.ingress,
            self.commands,
            extra_stats=self._extra_stats,
        )

        logger.info(f"IoT Gateway started on {self.config.host}:{self.config.port}")

    async def stop(self) -> None:
        """Stop all gateway components."""
        logger.info("Stopping IoT Gateway...")

        if self.mqtt_bridge:
            await self.mqtt_bridge.stop()

        logger.info("IoT Gateway stopped")

    def _on_mqtt_status(self, payload: Dict[str, Any]) -> Optional[Future]:
        """Hand a report from the MQTT thread to the event loop."""
        if not self._loop or not self.ingress:
            return None
        future = asyncio.run_coroutine_threadsafe(
            self.ingress.handle_report(payload), self._loop
        )
        future.add_done_callback(_log_failure)
        return future

    async def _publish_command(self, command: Dict[str, Any]) -> bool:
        if self.mqtt_bridge and self.mqtt_bridge.connected:
            return await self.mqtt_bridge.publish_command(command)
        return False

    def _extra_stats(self) -> dict:
        return {
            "mqtt": self.mqtt_bridge.get_stats() if self.mqtt_bridge else {},
            "alerts": self.alerts.get_stats(),
        }

    def get_app(self):
        """Get the FastAPI application for uvicorn."""
        return self.server.app


def _log_failure(future: Future) -> None:
    if not future.cancelled() and future.exception():
        logger.error(f"MQTT status report failed: {future.exception()}")


async def run_server(gateway: IoTGateway) -> None:
    """Run the server with uvicorn."""
    config = uvicorn.Config(
        gateway.get_app(),
        host=gateway.config.host,
        port=gateway.config.port,
        log_level=gateway.config.log_level.lower(),
        access_log=True,
    )
    server = uvicorn.Server(config)
    await server.serve()


async def main_async(config: GatewayConfig) -> None:
    """Async main entry point."""
    gateway = IoTGateway(config)

    # Setup signal handlers
    loop = asyncio.get_running_loop()

    shutdown_event = asyncio.Event()

    def signal_handler():
        logger.info("Shutdown signal received")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await gateway.start()

        # Run server until shutdown
        server_task = asyncio.create_task(run_server(gateway))
        shutdown_task = asyncio.create_task(shutdown_event.wait())

        done, pending = await asyncio.wait(
            [server_task, shutdown_task],
            return_when=asyncio.FIRST_COMPLETED,
        )

        # Cancel pending tasks
        for task in pending:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    except Exception as e:
        logger.error(f"Server error: {e}")
    finally:
        await gateway.stop()


def main() -> None:
    """Main entry point."""
    try:
        config = GatewayConfig.from_env()
    except ValueError as e:
        logging.basicConfig(level=logging.INFO)
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    logging.basicConfig(
        level=config.log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        asyncio.run(main_async(config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    main()
