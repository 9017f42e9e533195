"""Core primitives for suspension-tuner."""

from .models import (
    ACTUATOR_ORDER,
    ACTUATOR_PARAMETERS,
    ActuatorKey,
    ActuatorState,
    BatteryConfig,
    DeviceSettings,
    TelemetrySample,
    decode_actuator_states,
    decode_battery_configs,
)
from .protocols import (
    ActuatorWriter,
    CallbackType,
    Calibrator,
    SleepType,
    SnapshotSource,
)

__all__ = [
    "ACTUATOR_ORDER",
    "ACTUATOR_PARAMETERS",
    "ActuatorKey",
    "ActuatorState",
    "ActuatorWriter",
    "BatteryConfig",
    "CallbackType",
    "Calibrator",
    "DeviceSettings",
    "SleepType",
    "SnapshotSource",
    "TelemetrySample",
    "decode_actuator_states",
    "decode_battery_configs",
]
