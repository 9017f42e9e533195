"""Single-parameter actuator writes."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ..core.models import ACTUATOR_PARAMETERS, ActuatorKey, ActuatorState
from .device import DeviceClient

LOGGER = logging.getLogger(__name__)


class ActuatorClient:
    """Issues one authoritative write per call.

    No retries and no bounds checks: the caller owns both.
    """

    def __init__(self, device: DeviceClient) -> None:
        self._device = device

    async def write(self, actuator_key: str, parameter: str, value: Any) -> None:
        key = ActuatorKey(actuator_key)
        if parameter not in ACTUATOR_PARAMETERS:
            raise ValueError(f"Unsupported actuator parameter: {parameter!r}")

        LOGGER.debug("Writing %s.%s = %r", key.value, parameter, value)
        await self._device.update_servo_param(key.value, parameter, value)

    async def read_all(self) -> Dict[ActuatorKey, ActuatorState]:
        return await self._device.fetch_servo_config()

    async def reset(self, actuator_key: Optional[str] = None) -> None:
        """Restore factory min/max/trim/reversed for one or all actuators."""

        if actuator_key is None:
            await self._device.reset_all_servos()
            return
        await self._device.reset_servo(ActuatorKey(actuator_key).value)
