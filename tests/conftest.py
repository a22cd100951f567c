"""Shared fixtures for gateway tests."""

import pytest
from starlette.websockets import WebSocketState


class FakeWebSocket:
    """Stand-in for a Starlette WebSocket recording what it is sent."""

    def __init__(self, name: str = "fake", fail: bool = False):
        self.client = name
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.fail = fail
        self.sent = []

    def close(self):
        self.client_state = WebSocketState.DISCONNECTED

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise RuntimeError("connection reset")
        self.sent.append(data)


@pytest.fixture
def make_ws():
    """Factory for fake WebSocket connections."""
    return FakeWebSocket
