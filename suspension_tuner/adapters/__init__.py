"""Adapter modules for talking to the rig controller."""

from .actuators import ActuatorClient
from .device import DeviceClient
from .telemetry_channel import Subscription, TelemetryChannel

__all__ = [
    "ActuatorClient",
    "DeviceClient",
    "Subscription",
    "TelemetryChannel",
]
