"""Error taxonomy for device transport and auto-leveling."""

from __future__ import annotations

from typing import Optional


class SuspensionTunerError(RuntimeError):
    """Base class for all errors raised by suspension-tuner."""


class DeviceError(SuspensionTunerError):
    """Raised when talking to the rig controller fails."""


class TransportError(DeviceError):
    """Network-level failure; the caller may try again."""

    retryable = True


class TransportTimeout(TransportError):
    """The device did not answer within the request timeout."""


class TransportUnreachable(TransportError):
    """The device could not be reached (refused, reset, DNS, ...)."""


class ProtocolDecodeError(DeviceError):
    """A frame or response body could not be decoded."""


class DeviceAddressMissing(DeviceError):
    """Bridge mode is configured but no device address is known."""


class DeviceResponseError(DeviceError):
    """The device answered with a non-success status."""

    def __init__(self, message: str, *, status: int, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.status = status
        self.detail = detail


class ActuationRejected(DeviceResponseError):
    """The device refused a parameter write."""


class LevelingError(SuspensionTunerError):
    """Raised by the auto-level controller."""


class ConvergenceExhausted(LevelingError):
    """The rig did not reach level within the iteration budget."""


class SessionInProgress(LevelingError):
    """A leveling session or manual calibration is already running."""
