"""
Danger alerts raised from device reports.

A fire flag or a gas reading above the threshold is forwarded to a push
notification service. Each alert class has its own cooldown so a sensor
stuck in the danger zone does not spam subscribers.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from .models import coerce_int

logger = logging.getLogger(__name__)

ALERT_FIRE = "fire"
ALERT_GAS = "gas"


@dataclass
class DangerAlert:
    """Notification payload handed to a PushDispatcher."""
    kind: str
    title: str
    body: str
    data: Dict[str, str] = field(default_factory=dict)
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))


class PushDispatcher:
    """Interface of the external push notification service."""

    async def send(self, alert: DangerAlert) -> bool:
        raise NotImplementedError


class LoggingPushDispatcher(PushDispatcher):
    """Dispatcher used when no push service is configured."""

    async def send(self, alert: DangerAlert) -> bool:
        logger.warning(f"[ALERT] {alert.title} {alert.body}")
        return True


class DangerAlertMonitor:
    """
    Inspects raw device reports and dispatches danger alerts.

    Fire takes precedence over gas; at most one alert is raised per report.
    """

    def __init__(
        self,
        dispatcher: Optional[PushDispatcher] = None,
        gas_threshold: int = 700,
        cooldown_s: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize monitor.

        Args:
            dispatcher: Push service; defaults to logging only
            gas_threshold: Gas reading (ppm) above which an alert is raised
            cooldown_s: Minimum seconds between two alerts of the same class
            clock: Monotonic time source
        """
        self.dispatcher = dispatcher or LoggingPushDispatcher()
        self.gas_threshold = gas_threshold
        self.cooldown_s = cooldown_s
        self._clock = clock
        self._last_sent: Dict[str, float] = {}

        # Statistics
        self._dispatched = 0
        self._suppressed = 0

    def classify(self, report: Dict[str, Any]) -> Optional[DangerAlert]:
        """Build the alert a report calls for, if any."""
        if report.get("isFire") is True:
            return DangerAlert(
                kind=ALERT_FIRE,
                title="FIRE DETECTED!",
                body="Sensor detected fire! Please check immediately!",
                data=_stringify(report),
            )

        gas = coerce_int(report.get("gas"))
        if gas is not None and gas > self.gas_threshold:
            return DangerAlert(
                kind=ALERT_GAS,
                title="GAS LEAK!",
                body=f"Gas level: {gas} ppm (danger threshold: {self.gas_threshold} ppm)",
                data=_stringify(report),
            )
        return None

    async def check(self, report: Dict[str, Any]) -> bool:
        """
        Dispatch an alert for ``report`` unless its class is cooling down.

        Returns:
            True if an alert was handed to the dispatcher successfully
        """
        alert = self.classify(report)
        if alert is None:
            return False

        now = self._clock()
        last = self._last_sent.get(alert.kind)
        if last is not None and now - last < self.cooldown_s:
            self._suppressed += 1
            remaining = self.cooldown_s - (now - last)
            logger.info(f"{alert.kind} alert cooldown active, {remaining:.0f}s remaining")
            return False

        self._last_sent[alert.kind] = now
        try:
            sent = await self.dispatcher.send(alert)
        except Exception as e:
            logger.error(f"Push dispatch for {alert.kind} alert failed: {e}")
            return False

        if sent:
            self._dispatched += 1
        return bool(sent)

    def get_stats(self) -> dict:
        return {
            "dispatched": self._dispatched,
            "suppressed": self._suppressed,
        }


def _stringify(report: Dict[str, Any]) -> Dict[str, str]:
    return {
        key: str(value)
        for key, value in report.items()
        if not isinstance(value, (dict, list))
    }
