"""
Device state schema and payload coercion.

Defines the device-state snapshot shared by the gateway, the optional-field
patch used for partial updates, and the coercion rules that turn decoded
JSON values into stored values.
"""

import json
import logging
import math
from copy import deepcopy
from dataclasses import dataclass, field, asdict, fields, replace
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)

SERVO_MIN = 0
SERVO_MAX = 180

# Actuators driven by POST /<field> and the web UI toggles
SWITCH_FIELDS = ("fan", "pump", "buzzer", "relay", "led")

# Fields the device itself is allowed to report
REPORT_FIELDS = ("gas", "light", "fan", "pump", "buzzer", "servo", "lcd")

STATE_FIELDS = ("gas", "light") + SWITCH_FIELDS + ("servo", "lcd")


class MalformedPayload(ValueError):
    """Request body could not be decoded into a JSON object."""


@dataclass
class LcdText:
    """Two-line character LCD contents."""
    line1: str = "ESP32 Ready"
    line2: str = "Waiting..."


@dataclass
class DeviceState:
    """
    Full device-state snapshot.

    Attributes:
        gas: Gas sensor reading (ppm)
        light: Light sensor reading
        fan, pump, buzzer, relay, led: Actuator on/off states
        servo: Servo angle in degrees, always within [0, 180]
        lcd: LCD text lines
        extra: Fields outside the fixed schema, set by generic client
            commands and serialized flat next to the fixed fields
    """
    gas: int = 0
    light: int = 0
    fan: bool = False
    pump: bool = False
    buzzer: bool = False
    relay: bool = False
    led: bool = False
    servo: int = 90
    lcd: LcdText = field(default_factory=LcdText)
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-ready dict with extra fields flattened in."""
        data = asdict(self)
        for name, value in data.pop("extra").items():
            # Schema fields always win
            data.setdefault(name, value)
        return data

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict())

    def copy(self) -> 'DeviceState':
        """Return an independent copy."""
        return replace(self, lcd=replace(self.lcd), extra=deepcopy(self.extra))


@dataclass
class DeviceStatePatch:
    """
    Partial device-state update.

    Every attribute is optional; ``None`` means the field is absent and is
    left untouched by :meth:`apply_to`. ``False`` and ``0`` are present values.
    Entries in ``extra`` are always present, a ``None`` value included.
    """
    gas: Optional[int] = None
    light: Optional[int] = None
    fan: Optional[bool] = None
    pump: Optional[bool] = None
    buzzer: Optional[bool] = None
    relay: Optional[bool] = None
    led: Optional[bool] = None
    servo: Optional[int] = None
    lcd_line1: Optional[str] = None
    lcd_line2: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def present(self) -> Dict[str, Any]:
        """Schema fields carried by this patch."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != "extra" and getattr(self, f.name) is not None
        }

    def is_empty(self) -> bool:
        return not self.present() and not self.extra

    def apply_to(self, state: DeviceState) -> None:
        """Write present fields into ``state`` in place."""
        for name, value in self.present().items():
            if name == "lcd_line1":
                state.lcd.line1 = value
            elif name == "lcd_line2":
                state.lcd.line2 = value
            elif name == "servo":
                state.servo = clamp_servo(value)
            else:
                setattr(state, name, value)
        state.extra.update(self.extra)

    @classmethod
    def from_report(cls, data: Dict[str, Any]) -> 'DeviceStatePatch':
        """
        Build a patch from a decoded device report.

        Only device-reportable fields are considered; unknown fields and
        values that fail coercion are dropped.
        """
        patch = cls()
        for name in REPORT_FIELDS:
            if name in data:
                _set_coerced(patch, name, data[name])
        return patch

    @classmethod
    def for_field(cls, name: str, value: Any) -> Optional['DeviceStatePatch']:
        """
        Build a single-field patch for a client command.

        Names outside the state schema become extra fields and keep ``value``
        as sent. Returns None if a schema field rejects ``value``.
        """
        if name not in STATE_FIELDS:
            return cls(extra={name: value})
        patch = cls()
        _set_coerced(patch, name, value)
        return None if patch.is_empty() else patch


def clamp_servo(angle: int) -> int:
    return max(SERVO_MIN, min(SERVO_MAX, int(angle)))


def coerce_switch(value: Any) -> bool:
    """Any truthy encoding turns a switch on."""
    return bool(value)


def coerce_int(value: Any) -> Optional[int]:
    """
    Parse an integer reading.

    Accepts ints, finite floats (truncated) and numeric strings. Booleans,
    NaN/Inf and anything else return None.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return int(value)
    return None


def coerce_servo(value: Any) -> Optional[int]:
    """Parse and clamp a servo angle; None if not numeric."""
    angle = coerce_int(value)
    if angle is None:
        return None
    return clamp_servo(angle)


def _set_coerced(patch: DeviceStatePatch, name: str, value: Any) -> None:
    if value is None:
        return
    if name in SWITCH_FIELDS:
        setattr(patch, name, coerce_switch(value))
    elif name == "servo":
        patch.servo = coerce_servo(value)
    elif name in ("gas", "light"):
        setattr(patch, name, coerce_int(value))
    elif name == "lcd":
        if not isinstance(value, dict):
            return
        if isinstance(value.get("line1"), str):
            patch.lcd_line1 = value["line1"]
        if isinstance(value.get("line2"), str):
            patch.lcd_line2 = value["line2"]


def decode_json_object(body: Union[bytes, str]) -> Dict[str, Any]:
    """
    Decode a request body that must be a JSON object.

    Raises:
        MalformedPayload: body is not valid JSON or not an object
    """
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedPayload(f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedPayload(f"Expected JSON object, got {type(data).__name__}")
    return data
