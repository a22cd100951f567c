"""Tests for the WebSocket broadcast hub."""

import asyncio
import json
import threading

import pytest

from iot_gateway.broadcast import BroadcastHub
from iot_gateway.models import DeviceStatePatch
from iot_gateway.state_store import StateStore


class TestBroadcastHub:

    def setup_method(self):
        self.store = StateStore()
        self.hub = BroadcastHub(self.store)

    @pytest.mark.asyncio
    async def test_register_pushes_current_snapshot(self, make_ws):
        self.store.merge(DeviceStatePatch(gas=321, led=True))
        ws = make_ws()

        await self.hub.register(ws)

        assert ws.sent == [self.store.snapshot_json()]
        assert len(self.hub) == 1

    @pytest.mark.asyncio
    async def test_broadcast_reaches_all_open_connections(self, make_ws):
        clients = [make_ws(f"c{i}") for i in range(3)]
        for ws in clients:
            await self.hub.register(ws)

        self.store.merge(DeviceStatePatch(fan=True))
        delivered = await self.hub.broadcast_current_state()

        assert delivered == 3
        for ws in clients:
            assert json.loads(ws.sent[-1])["fan"] is True
        # Identical payload for everyone
        assert len({ws.sent[-1] for ws in clients}) == 1

    @pytest.mark.asyncio
    async def test_closed_connection_is_skipped(self, make_ws):
        clients = [make_ws(f"c{i}") for i in range(4)]
        for ws in clients:
            await self.hub.register(ws)
        clients[1].close()

        delivered = await self.hub.broadcast_current_state()

        assert delivered == 3
        assert len(clients[1].sent) == 1  # initial snapshot only
        for ws in (clients[0], clients[2], clients[3]):
            assert len(ws.sent) == 2

    @pytest.mark.asyncio
    async def test_send_failure_is_isolated(self, make_ws):
        good = make_ws("good")
        bad = make_ws("bad")
        await self.hub.register(good)
        await self.hub.register(bad)
        bad.fail = True

        delivered = await self.hub.broadcast_current_state()

        assert delivered == 1
        assert len(good.sent) == 2
        assert self.hub.get_stats()["send_failures"] == 1

    def test_stats_counted_across_threads(self, make_ws):
        self.hub._connections[0] = make_ws("bad", fail=True)

        async def burst():
            for _ in range(50):
                await self.hub.broadcast_current_state()

        threads = [threading.Thread(target=asyncio.run, args=(burst(),)) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        stats = self.hub.get_stats()
        assert stats["broadcasts"] == 200
        assert stats["send_failures"] == 200

    @pytest.mark.asyncio
    async def test_broadcast_without_connections(self):
        assert await self.hub.broadcast_current_state() == 0

    @pytest.mark.asyncio
    async def test_session_unregisters_on_error(self, make_ws):
        ws = make_ws()

        with pytest.raises(RuntimeError):
            async with self.hub.session(ws):
                assert len(self.hub) == 1
                raise RuntimeError("socket error")

        assert len(self.hub) == 0

    @pytest.mark.asyncio
    async def test_unregistered_connection_gets_nothing(self, make_ws):
        ws = make_ws()
        await self.hub.register(ws)
        self.hub.unregister(ws)

        await self.hub.broadcast_current_state()

        assert len(ws.sent) == 1
