"""Tests for danger alert detection and cooldown."""

from unittest.mock import AsyncMock

import pytest

from iot_gateway.alerts import (
    ALERT_FIRE,
    ALERT_GAS,
    DangerAlertMonitor,
    LoggingPushDispatcher,
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestDangerAlertMonitor:

    def setup_method(self):
        self.clock = FakeClock()
        self.dispatcher = AsyncMock()
        self.dispatcher.send.return_value = True
        self.monitor = DangerAlertMonitor(
            dispatcher=self.dispatcher,
            gas_threshold=700,
            cooldown_s=30.0,
            clock=self.clock,
        )

    def test_classify(self):
        assert self.monitor.classify({"gas": 701}).kind == ALERT_GAS
        assert self.monitor.classify({"gas": 700}) is None
        assert self.monitor.classify({"gas": "n/a"}) is None
        assert self.monitor.classify({"isFire": True, "gas": 900}).kind == ALERT_FIRE
        assert self.monitor.classify({"isFire": "yes"}) is None
        assert self.monitor.classify({}) is None

    def test_gas_alert_content(self):
        alert = self.monitor.classify({"gas": 812, "lcd": {"line1": "x"}})
        assert "812 ppm" in alert.body
        assert alert.data == {"gas": "812"}

    @pytest.mark.asyncio
    async def test_cooldown_per_class(self):
        assert await self.monitor.check({"gas": 900}) is True
        self.clock.now += 10
        assert await self.monitor.check({"gas": 950}) is False
        # Fire has its own cooldown
        assert await self.monitor.check({"isFire": True}) is True

        assert self.dispatcher.send.await_count == 2
        assert self.monitor.get_stats() == {"dispatched": 2, "suppressed": 1}

    @pytest.mark.asyncio
    async def test_dispatch_again_after_cooldown(self):
        await self.monitor.check({"gas": 900})
        self.clock.now += 30
        assert await self.monitor.check({"gas": 900}) is True
        assert self.dispatcher.send.await_count == 2

    @pytest.mark.asyncio
    async def test_safe_report_dispatches_nothing(self):
        assert await self.monitor.check({"gas": 120}) is False
        self.dispatcher.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_dispatcher_error_is_contained(self):
        self.dispatcher.send.side_effect = RuntimeError("push service down")
        assert await self.monitor.check({"isFire": True}) is False
        # Cooldown still started, so the next report is suppressed
        assert await self.monitor.check({"isFire": True}) is False
        assert self.dispatcher.send.await_count == 1

    @pytest.mark.asyncio
    async def test_logging_dispatcher_is_default(self):
        monitor = DangerAlertMonitor()
        assert isinstance(monitor.dispatcher, LoggingPushDispatcher)
        assert await monitor.check({"gas": 1000}) is True
