"""
WebSocket broadcast fan-out.

Handles:
- Tracking live WebSocket connections
- Initial snapshot push on connect
- Full-state broadcast after every mutation, isolated per connection
"""

import asyncio
import logging
import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from .state_store import StateStore

logger = logging.getLogger(__name__)


def is_open(websocket: WebSocket) -> bool:
    """Check that both ends of the connection are still connected."""
    return (
        websocket.client_state == WebSocketState.CONNECTED
        and websocket.application_state == WebSocketState.CONNECTED
    )


class BroadcastHub:
    """
    Set of live WebSocket connections kept in sync with a StateStore.

    Connections join through :meth:`session`, which guarantees they leave
    again when the connection closes or errors.
    """

    def __init__(self, store: StateStore):
        self._store = store
        # Keyed by id(); Starlette connections are Mappings
        self._connections: Dict[int, WebSocket] = {}
        self._lock = threading.Lock()

        # Statistics
        self._broadcasts = 0
        self._send_failures = 0

    async def register(self, websocket: WebSocket) -> None:
        """Add a connection and push the current snapshot to it."""
        with self._lock:
            self._connections[id(websocket)] = websocket
        logger.info(f"Client registered ({len(self)} connected)")
        await self._send(websocket, self._store.snapshot_json())

    def unregister(self, websocket: WebSocket) -> None:
        with self._lock:
            self._connections.pop(id(websocket), None)
        logger.info(f"Client unregistered ({len(self)} connected)")

    @asynccontextmanager
    async def session(self, websocket: WebSocket) -> AsyncIterator[None]:
        """Keep ``websocket`` registered for the duration of the block."""
        await self.register(websocket)
        try:
            yield
        finally:
            self.unregister(websocket)

    async def broadcast_current_state(self) -> int:
        """
        Send the current snapshot to every open connection.

        Returns:
            Number of connections the payload was delivered to
        """
        payload = self._store.snapshot_json()
        with self._lock:
            targets: List[WebSocket] = [ws for ws in self._connections.values() if is_open(ws)]
            self._broadcasts += 1

        if not targets:
            return 0

        results = await asyncio.gather(*(self._send(ws, payload) for ws in targets))
        delivered = sum(1 for ok in results if ok)
        logger.debug(f"Broadcast delivered to {delivered}/{len(targets)} clients")
        return delivered

    async def _send(self, websocket: WebSocket, payload: str) -> bool:
        try:
            await websocket.send_text(payload)
            return True
        except Exception as e:
            with self._lock:
                self._send_failures += 1
            logger.warning(f"Send to {websocket.client} failed: {e}")
            return False

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "connected_clients": len(self._connections),
                "broadcasts": self._broadcasts,
                "send_failures": self._send_failures,
            }
