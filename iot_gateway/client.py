#!/usr/bin/env python3
"""
Console client for the gateway WebSocket.

Connects to a running gateway, logs every state snapshot it pushes, and can
send generic commands after connecting.

Usage:
    python -m iot_gateway.client --server ws://127.0.0.1:8080/ws
    python -m iot_gateway.client --set fan=true --set servo=120 --once
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

logger = logging.getLogger(__name__)


def parse_assignment(text: str) -> Tuple[str, Any]:
    """
    Parse a ``field=value`` argument.

    The value is decoded as JSON when possible (``true``, ``120``,
    ``{"line1": "Hi"}``) and kept as a plain string otherwise.

    Raises:
        ValueError: no ``=`` or empty field name
    """
    field, sep, raw = text.partition("=")
    field = field.strip()
    if not sep or not field:
        raise ValueError(f"expected field=value, got {text!r}")
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        value = raw
    return field, value


def command_message(field: str, value: Any) -> str:
    """Encode a generic command for the gateway."""
    return json.dumps({"command": True, "device": field, "value": value})


def format_state(state: Dict[str, Any]) -> str:
    """One-line summary of a state snapshot."""
    switches = " ".join(
        f"{name}={'on' if state.get(name) else 'off'}"
        for name in ("fan", "pump", "buzzer", "relay", "led")
    )
    lcd = state.get("lcd") or {}
    return (
        f"gas={state.get('gas')} light={state.get('light')} {switches} "
        f"servo={state.get('servo')} lcd=[{lcd.get('line1', '')} | {lcd.get('line2', '')}]"
    )


class StateMonitorClient:
    """
    WebSocket client with automatic reconnection.

    Features:
    - Exponential backoff on connection failure (1s -> 30s max)
    - Pending commands sent once, on the first successful connection
    - Optional exit after the first snapshot
    """

    def __init__(
        self,
        server_url: str,
        commands: Sequence[Tuple[str, Any]] = (),
        once: bool = False,
        max_backoff_seconds: float = 30.0,
        initial_backoff_seconds: float = 1.0,
        on_state: Optional[Callable[[Dict[str, Any]], Awaitable[None]]] = None,
    ):
        """
        Initialize client.

        Args:
            server_url: Gateway WebSocket URL (e.g., ws://127.0.0.1:8080/ws)
            commands: (field, value) pairs to send after connecting
            once: Stop after the first snapshot has been received
            max_backoff_seconds: Maximum backoff time between reconnect attempts
            initial_backoff_seconds: Initial backoff time
            on_state: Callback for every snapshot received
        """
        self.server_url = server_url
        self.once = once
        self.max_backoff = max_backoff_seconds
        self.initial_backoff = initial_backoff_seconds
        self.on_state = on_state

        self._pending: List[Tuple[str, Any]] = list(commands)
        self._running = False
        self._current_backoff = initial_backoff_seconds

        # Statistics
        self.snapshots_received = 0
        self.reconnect_attempts = 0

    async def run(self) -> None:
        """Connect and keep reconnecting until stopped."""
        self._running = True
        while self._running:
            try:
                await self._connect()
                self._current_backoff = self.initial_backoff
            except (OSError, WebSocketException) as e:
                logger.error(f"Connection failed: {e}")

            if not self._running:
                break

            logger.info(f"Reconnecting in {self._current_backoff:.1f}s...")
            await asyncio.sleep(self._current_backoff)
            self._current_backoff = min(self._current_backoff * 2, self.max_backoff)
            self.reconnect_attempts += 1

    def stop(self) -> None:
        self._running = False

    async def _connect(self) -> None:
        logger.info(f"Connecting to {self.server_url}...")
        async with websockets.connect(
            self.server_url,
            ping_interval=20,
            ping_timeout=10,
            close_timeout=5,
        ) as ws:
            logger.info("WebSocket connected")

            while self._pending:
                field, value = self._pending.pop(0)
                await ws.send(command_message(field, value))
                logger.info(f"Sent command {field}={value!r}")

            try:
                async for message in ws:
                    await self._handle_message(message)
                    if self.once and self.snapshots_received:
                        self.stop()
                        return
            except ConnectionClosed:
                logger.warning("Connection closed by gateway")

    async def _handle_message(self, message) -> None:
        try:
            state = json.loads(message)
        except json.JSONDecodeError:
            logger.warning(f"Ignoring non-JSON message: {message!r}")
            return

        self.snapshots_received += 1
        logger.info(format_state(state))
        if self.on_state:
            await self.on_state(state)


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="IoT Gateway console client",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--server",
        type=str,
        default="ws://127.0.0.1:8080/ws",
        help="Gateway WebSocket URL",
    )
    parser.add_argument(
        "--set",
        dest="assignments",
        action="append",
        default=[],
        metavar="FIELD=VALUE",
        help="Command to send after connecting (repeatable)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Exit after the first state snapshot",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        commands = [parse_assignment(item) for item in args.assignments]
    except ValueError as e:
        parser.error(str(e))

    client = StateMonitorClient(args.server, commands=commands, once=args.once)
    try:
        asyncio.run(client.run())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    main()
