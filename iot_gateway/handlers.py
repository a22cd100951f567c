"""
Request handlers that mutate device state.

DeviceIngressHandler takes sensor reports from the device;
ClientCommandHandler takes control requests from web clients. Both merge
through the same commit path, which always broadcasts the new snapshot.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from .alerts import DangerAlertMonitor
from .broadcast import BroadcastHub
from .command_queue import CommandQueue
from .models import (
    STATE_FIELDS,
    SWITCH_FIELDS,
    DeviceState,
    DeviceStatePatch,
    coerce_servo,
    coerce_switch,
    decode_json_object,
)
from .state_store import StateStore

logger = logging.getLogger(__name__)

CommandPublisher = Callable[[Dict[str, Any]], Awaitable[bool]]


class _StateWriter:
    """Shared merge-then-broadcast path."""

    def __init__(self, store: StateStore, hub: BroadcastHub):
        self.store = store
        self.hub = hub

    async def commit(self, patch: DeviceStatePatch) -> DeviceState:
        snapshot = self.store.merge(patch)
        await self.hub.broadcast_current_state()
        return snapshot


class DeviceIngressHandler(_StateWriter):
    """Applies sensor reports sent by the device."""

    def __init__(
        self,
        store: StateStore,
        hub: BroadcastHub,
        alerts: Optional[DangerAlertMonitor] = None,
    ):
        super().__init__(store, hub)
        self.alerts = alerts
        self._reports = 0

    async def handle_body(self, body: Union[bytes, str]) -> DeviceState:
        """
        Decode and apply a raw report body.

        Raises:
            MalformedPayload: body is not a JSON object; nothing is applied
        """
        return await self.handle_report(decode_json_object(body))

    async def handle_report(self, data: Dict[str, Any]) -> DeviceState:
        """Merge a decoded report; unknown and invalid fields are dropped."""
        patch = DeviceStatePatch.from_report(data)
        snapshot = await self.commit(patch)
        self._reports += 1
        logger.debug(f"Device report applied: {patch.present()}")

        if self.alerts:
            await self.alerts.check(data)
        return snapshot

    @property
    def report_count(self) -> int:
        return self._reports


class ClientCommandHandler(_StateWriter):
    """
    Applies control requests from web clients.

    Every accepted command is stored in the snapshot, queued for the next
    device poll, broadcast, and published over MQTT when a publisher is set.
    """

    def __init__(
        self,
        store: StateStore,
        queue: CommandQueue,
        hub: BroadcastHub,
        publish_command: Optional[CommandPublisher] = None,
    ):
        """
        Initialize handler.

        Args:
            store: Device state store
            queue: Pending commands for the polling device
            hub: Broadcast hub notified after each merge
            publish_command: Optional async callback forwarding {field: value}
                to the device's push channel
        """
        super().__init__(store, hub)
        self.queue = queue
        self.publish_command = publish_command

    async def set_switch(self, field: str, value: Any) -> bool:
        """Turn an actuator on or off; returns the stored state."""
        if field not in SWITCH_FIELDS:
            raise ValueError(f"Not a switch field: {field}")
        state = coerce_switch(value)
        await self._apply(field, state, DeviceStatePatch(**{field: state}))
        logger.info(f"[{field.upper()}] {'ON' if state else 'OFF'}")
        return state

    async def set_servo(self, value: Any) -> Optional[int]:
        """
        Move the servo.

        Returns:
            Clamped angle, or None if ``value`` is not numeric (no mutation)
        """
        angle = coerce_servo(value)
        if angle is None:
            logger.warning(f"Ignoring invalid servo angle: {value!r}")
            return None
        await self._apply("servo", angle, DeviceStatePatch(servo=angle))
        logger.info(f"[SERVO] Set to {angle}°")
        return angle

    async def apply_command(self, field: str, value: Any) -> bool:
        """
        Apply a generic ``{device, value}`` command.

        Field names outside the state schema are stored as extra snapshot
        fields with the value as sent, then queued, broadcast and published
        like any other command.

        Returns:
            True if the command was accepted
        """
        if field in SWITCH_FIELDS:
            await self.set_switch(field, value)
            return True
        if field == "servo":
            return await self.set_servo(value) is not None

        patch = DeviceStatePatch.for_field(field, value)
        if patch is None:
            logger.warning(f"Ignoring invalid value for {field}: {value!r}")
            return False
        if field == "lcd":
            queued = {
                name[len("lcd_"):]: text
                for name, text in patch.present().items()
            }
        elif field in STATE_FIELDS:
            queued = getattr(patch, field)
        else:
            logger.info(f"Storing extra field {field!r} = {value!r}")
            queued = value
        await self._apply(field, queued, patch)
        return True

    async def _apply(self, field: str, value: Any, patch: DeviceStatePatch) -> None:
        self.queue.enqueue(field, value)
        await self.commit(patch)
        await self._publish(field, value)

    async def _publish(self, field: str, value: Any) -> None:
        if not self.publish_command:
            return
        try:
            await self.publish_command({field: value})
        except Exception as e:
            logger.error(f"Failed to publish command {field}: {e}")
