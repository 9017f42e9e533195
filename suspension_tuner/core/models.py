"""Domain models for telemetry, actuators and device settings.

Every payload coming off the device is decoded here, once. Missing or
malformed fields are replaced with the firmware defaults so that the rest of
the package never has to re-check the shape of a response.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple


class ActuatorKey(str, Enum):
    """The four suspension corners, named as the device names them."""

    FRONT_LEFT = "frontLeft"
    FRONT_RIGHT = "frontRight"
    REAR_LEFT = "rearLeft"
    REAR_RIGHT = "rearRight"


ACTUATOR_ORDER: Tuple[ActuatorKey, ...] = (
    ActuatorKey.FRONT_LEFT,
    ActuatorKey.FRONT_RIGHT,
    ActuatorKey.REAR_LEFT,
    ActuatorKey.REAR_RIGHT,
)

ACTUATOR_PARAMETERS = ("trim", "min", "max", "reversed")

DEFAULT_SERVO_MIN = 30
DEFAULT_SERVO_MAX = 150
DEFAULT_SERVO_TRIM = 0

BATTERY_SLOTS = 3
DEFAULT_BATTERY_CELL_COUNT = 3


def _coerce_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _coerce_int(value: Any, default: int) -> int:
    number = _coerce_float(value)
    if number is None:
        return default
    return int(number)


def _coerce_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    number = _coerce_float(value)
    if number is None:
        return default
    return number == 1


@dataclass(frozen=True, slots=True)
class TelemetrySample:
    """One orientation/battery observation from the device."""

    roll: Optional[float] = None
    pitch: Optional[float] = None
    yaw: Optional[float] = None
    vertical_accel: Optional[float] = None
    voltages: Tuple[Optional[float], ...] = ()
    captured_at: float = field(default_factory=time.monotonic)

    @classmethod
    def from_payload(
        cls, payload: Mapping[str, Any], *, captured_at: Optional[float] = None
    ) -> "TelemetrySample":
        raw_voltages = payload.get("voltages")
        if raw_voltages is None:
            raw_voltages = payload.get("batteries")
        if not isinstance(raw_voltages, (list, tuple)):
            raw_voltages = ()

        return cls(
            roll=_coerce_float(payload.get("roll")),
            pitch=_coerce_float(payload.get("pitch")),
            yaw=_coerce_float(payload.get("yaw")),
            vertical_accel=_coerce_float(payload.get("verticalAccel")),
            voltages=tuple(_coerce_float(item) for item in raw_voltages),
            captured_at=time.monotonic() if captured_at is None else captured_at,
        )

    def as_dict(self) -> Dict[str, object]:
        return {
            "roll": self.roll,
            "pitch": self.pitch,
            "yaw": self.yaw,
            "verticalAccel": self.vertical_accel,
            "voltages": list(self.voltages),
        }


@dataclass(slots=True)
class ActuatorState:
    key: ActuatorKey
    min: int = DEFAULT_SERVO_MIN
    max: int = DEFAULT_SERVO_MAX
    trim: int = DEFAULT_SERVO_TRIM
    reversed: bool = False

    @classmethod
    def from_payload(
        cls, key: ActuatorKey, payload: Optional[Mapping[str, Any]]
    ) -> "ActuatorState":
        payload = payload if isinstance(payload, Mapping) else {}
        return cls(
            key=key,
            min=_coerce_int(payload.get("min"), DEFAULT_SERVO_MIN),
            max=_coerce_int(payload.get("max"), DEFAULT_SERVO_MAX),
            trim=_coerce_int(payload.get("trim"), DEFAULT_SERVO_TRIM),
            reversed=_coerce_bool(payload.get("reversed")),
        )

    def copy(self, **changes: Any) -> "ActuatorState":
        return replace(self, **changes)


def decode_actuator_states(payload: Any) -> Dict[ActuatorKey, ActuatorState]:
    """Decode a ``/api/servo-config`` body into a state per corner."""

    source = payload if isinstance(payload, Mapping) else {}
    return {
        key: ActuatorState.from_payload(key, source.get(key.value))
        for key in ACTUATOR_ORDER
    }


@dataclass(slots=True)
class BatteryConfig:
    name: str = ""
    cell_count: int = DEFAULT_BATTERY_CELL_COUNT
    plug_assignment: int = 0  # 0 = none, 1..3 = plug A..C
    show_on_dashboard: bool = False

    @classmethod
    def from_payload(cls, payload: Any) -> "BatteryConfig":
        if not isinstance(payload, Mapping):
            return cls()
        name = payload.get("name")
        return cls(
            name=name if isinstance(name, str) else "",
            cell_count=_coerce_int(payload.get("cellCount"), DEFAULT_BATTERY_CELL_COUNT),
            plug_assignment=_coerce_int(payload.get("plugAssignment"), 0),
            show_on_dashboard=_coerce_bool(payload.get("showOnDashboard")),
        )


def decode_battery_configs(payload: Any) -> List[BatteryConfig]:
    """Decode any battery-config shape the device has produced.

    Accepts ``{"batteries": [...]}``, a bare list, or an object keyed by
    ``battery1``..``battery3`` (or by slot number). Always returns exactly
    ``BATTERY_SLOTS`` entries.
    """

    entries: List[Any]
    if isinstance(payload, list):
        entries = list(payload)
    elif isinstance(payload, Mapping) and isinstance(payload.get("batteries"), list):
        entries = list(payload["batteries"])
    elif isinstance(payload, Mapping):
        entries = []
        for slot in range(1, BATTERY_SLOTS + 1):
            entry = None
            for candidate in (f"battery{slot}", str(slot), slot):
                if candidate in payload:
                    entry = payload[candidate]
                    break
            entries.append(entry)
    else:
        entries = []

    entries = entries[:BATTERY_SLOTS]
    entries.extend([None] * (BATTERY_SLOTS - len(entries)))
    return [BatteryConfig.from_payload(entry) for entry in entries]


@dataclass(slots=True)
class DeviceSettings:
    """Decoded ``/api/config`` response."""

    reaction_speed: float = 1.0
    ride_height_offset: float = 90.0
    range_limit: float = 60.0
    damping: float = 0.8
    front_rear_balance: float = 0.5
    stiffness: float = 1.0
    sample_rate: int = 25
    mpu_orientation: int = 0
    servos: Dict[ActuatorKey, ActuatorState] = field(
        default_factory=lambda: decode_actuator_states({})
    )
    batteries: List[BatteryConfig] = field(
        default_factory=lambda: decode_battery_configs(None)
    )

    @classmethod
    def from_payload(cls, payload: Any) -> "DeviceSettings":
        source = payload if isinstance(payload, Mapping) else {}
        defaults = cls()

        def _number(key: str, default: float) -> float:
            value = _coerce_float(source.get(key))
            return default if value is None else value

        return cls(
            reaction_speed=_number("reactionSpeed", defaults.reaction_speed),
            ride_height_offset=_number("rideHeightOffset", defaults.ride_height_offset),
            range_limit=_number("rangeLimit", defaults.range_limit),
            damping=_number("damping", defaults.damping),
            front_rear_balance=_number("frontRearBalance", defaults.front_rear_balance),
            stiffness=_number("stiffness", defaults.stiffness),
            sample_rate=_coerce_int(source.get("sampleRate"), defaults.sample_rate),
            mpu_orientation=_coerce_int(
                source.get("mpuOrientation"), defaults.mpu_orientation
            ),
            servos=decode_actuator_states(source.get("servos")),
            batteries=decode_battery_configs(source.get("batteries")),
        )


# Writable keys of POST /api/config.
DEVICE_SETTING_KEYS = (
    "reactionSpeed",
    "rideHeightOffset",
    "rangeLimit",
    "damping",
    "frontRearBalance",
    "stiffness",
    "mpuOrientation",
)
