"""
HTTP and WebSocket front end of the gateway.

Handles:
- Device routes: POST /esp/status, GET /esp/commands
- Client routes: GET /status, POST /fan|/pump|/buzzer|/relay|/led|/servo
- WebSocket endpoint (/ and /ws) with state push and generic commands
- Open CORS and JSON 404s for everything else
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from .alerts import DangerAlertMonitor
from .broadcast import BroadcastHub
from .command_queue import CommandQueue
from .handlers import ClientCommandHandler, CommandPublisher, DeviceIngressHandler
from .models import SWITCH_FIELDS, MalformedPayload, decode_json_object
from .state_store import StateStore

logger = logging.getLogger(__name__)


@dataclass
class CommandMessage:
    """Generic command sent by a WebSocket client."""
    device: str
    value: Any

    @classmethod
    def from_json(cls, data: str) -> 'CommandMessage':
        """
        Parse from JSON string.

        Raises:
            ValueError: not a command message or missing device/value
        """
        d = json.loads(data)
        if not isinstance(d, dict) or not d.get("command"):
            raise ValueError("not a command message")
        device = d.get("device")
        if not isinstance(device, str) or not device:
            raise ValueError(f"invalid device: {device!r}")
        # null is a value; only a missing key is rejected
        if "value" not in d:
            raise ValueError("missing value")
        return cls(device=device, value=d["value"])


def _invalid_json() -> JSONResponse:
    return JSONResponse({"error": "Invalid JSON"}, status_code=400)


class GatewayServer:
    """
    FastAPI application wiring the shared state services to routes.

    The server owns no state itself; store, queue and hub are passed in so
    a single instance of each is shared by HTTP, WebSocket and MQTT paths.
    """

    def __init__(
        self,
        store: StateStore,
        queue: CommandQueue,
        hub: BroadcastHub,
        ingress: DeviceIngressHandler,
        commands: ClientCommandHandler,
        extra_stats: Optional[Callable[[], dict]] = None,
    ):
        self.store = store
        self.queue = queue
        self.hub = hub
        self.ingress = ingress
        self.commands = commands
        self.extra_stats = extra_stats

        self._client_counter = 0

        # Statistics
        self._total_messages = 0
        self._invalid_messages = 0

        # FastAPI app
        self.app = FastAPI(title="ESP32 IoT Gateway")

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        self._setup_error_handlers()
        self._setup_routes()

    def _setup_error_handlers(self):
        @self.app.exception_handler(StarletteHTTPException)
        async def http_error(request: Request, exc: StarletteHTTPException):
            # Wrong method on a known path is reported like an unknown route
            if exc.status_code in (404, 405):
                return JSONResponse({"error": "Not Found"}, status_code=404)
            return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code)

    def _setup_routes(self):
        """Set up FastAPI routes."""

        @self.app.get("/status")
        async def get_status():
            return self.store.get().to_dict()

        @self.app.post("/esp/status")
        async def esp_status(request: Request):
            body = await request.body()
            try:
                await self.ingress.handle_body(body)
            except MalformedPayload as e:
                logger.warning(f"Rejected device report: {e}")
                return _invalid_json()
            return {"success": True}

        @self.app.get("/esp/commands")
        async def esp_commands():
            return self.queue.drain_all()

        for field in SWITCH_FIELDS:
            self.app.add_api_route(
                f"/{field}",
                self._switch_endpoint(field),
                methods=["POST"],
                name=f"set_{field}",
            )

        @self.app.post("/servo")
        async def set_servo(request: Request):
            try:
                data = decode_json_object(await request.body())
            except MalformedPayload as e:
                logger.warning(f"Rejected servo request: {e}")
                return _invalid_json()
            if data.get("angle") is not None:
                await self.commands.set_servo(data["angle"])
            return {"success": True, "servo": self.store.get().servo}

        @self.app.get("/health")
        async def health_check():
            """Health check endpoint."""
            return {"status": "ok", **self.get_stats()}

        @self.app.options("/{path:path}")
        async def preflight(path: str):
            return Response(status_code=200)

        @self.app.websocket("/")
        async def websocket_root(websocket: WebSocket):
            await self._handle_websocket(websocket)

        @self.app.websocket("/ws")
        async def websocket_ws(websocket: WebSocket):
            await self._handle_websocket(websocket)

    def _switch_endpoint(self, field: str):
        async def set_switch(request: Request):
            try:
                data = decode_json_object(await request.body())
            except MalformedPayload as e:
                logger.warning(f"Rejected {field} request: {e}")
                return _invalid_json()
            state = await self.commands.set_switch(field, data.get("state"))
            return {"success": True, field: state}

        return set_switch

    async def _handle_websocket(self, websocket: WebSocket) -> None:
        """Handle incoming WebSocket connection."""
        await websocket.accept()

        self._client_counter += 1
        client_id = f"client_{self._client_counter}"
        logger.info(f"Client connected: {client_id} from {websocket.client}")

        try:
            async with self.hub.session(websocket):
                await self._receive_messages(websocket, client_id)
        except WebSocketDisconnect:
            logger.info(f"Client disconnected: {client_id}")
        except Exception as e:
            logger.error(f"Error handling client {client_id}: {e}")

    async def _receive_messages(self, websocket: WebSocket, client_id: str) -> None:
        """Receive and apply commands from a client."""
        while True:
            data = await websocket.receive_text()
            self._total_messages += 1

            try:
                msg = CommandMessage.from_json(data)
            except (json.JSONDecodeError, ValueError) as e:
                self._invalid_messages += 1
                logger.warning(f"Invalid message from {client_id}: {e}")
                continue

            logger.debug(f"Command from {client_id}: {msg.device}={msg.value!r}")
            try:
                await self.commands.apply_command(msg.device, msg.value)
            except Exception as e:
                logger.error(f"Error applying command from {client_id}: {e}")

    def get_stats(self) -> dict:
        """Get server statistics."""
        stats = {
            "ws": {
                **self.hub.get_stats(),
                "total_messages": self._total_messages,
                "invalid_messages": self._invalid_messages,
            },
            "commands": self.queue.get_stats(),
            "device_reports": self.ingress.report_count,
            "state_merges": self.store.merge_count,
        }
        if self.extra_stats:
            stats.update(self.extra_stats())
        return stats


def create_app(
    store: Optional[StateStore] = None,
    queue: Optional[CommandQueue] = None,
    alerts: Optional[DangerAlertMonitor] = None,
    publish_command: Optional[CommandPublisher] = None,
) -> Tuple[FastAPI, GatewayServer]:
    """
    Create FastAPI application with freshly wired handlers.

    Args:
        store: Device state store (new one if omitted)
        queue: Command queue (new one if omitted)
        alerts: Optional danger alert monitor
        publish_command: Optional MQTT publish callback

    Returns:
        Configured FastAPI application and its GatewayServer
    """
    if store is None:
        store = StateStore()
    if queue is None:
        queue = CommandQueue()
    hub = BroadcastHub(store)
    ingress = DeviceIngressHandler(store, hub, alerts)
    commands = ClientCommandHandler(store, queue, hub, publish_command)
    server = GatewayServer(store, queue, hub, ingress, commands)
    return server.app, server
