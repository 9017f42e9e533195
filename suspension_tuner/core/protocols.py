"""Protocol definitions for the leveling collaborators."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol

from .models import ActuatorKey, ActuatorState, TelemetrySample

CallbackType = Callable[[dict[str, Any]], Awaitable[None] | None]

SleepType = Callable[[float], Awaitable[None]]


class SnapshotSource(Protocol):
    """Anything that can produce a fresh orientation reading."""

    async def snapshot(self) -> TelemetrySample:
        """Return the current orientation/battery sample."""
        ...


class ActuatorWriter(Protocol):
    """Minimal contract the auto-level controller drives."""

    async def write(self, actuator_key: str, parameter: str, value: Any) -> None:
        """Update a single actuator parameter on the device."""
        ...

    async def read_all(self) -> Mapping[ActuatorKey, ActuatorState]:
        """Return the device's current actuator configuration."""
        ...


class Calibrator(Protocol):
    """Zeroes the orientation sensor (or one actuator) on the device."""

    async def calibrate(self, servo: Optional[str] = None) -> None:
        ...
