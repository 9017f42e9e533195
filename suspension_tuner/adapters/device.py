"""HTTP client for the rig controller's REST surface."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional

import aiohttp

from .. import constants
from ..config import DeviceConfig
from ..core.models import (
    DEVICE_SETTING_KEYS,
    ActuatorKey,
    ActuatorState,
    BatteryConfig,
    DeviceSettings,
    TelemetrySample,
    decode_actuator_states,
    decode_battery_configs,
)
from ..errors import (
    ActuationRejected,
    DeviceAddressMissing,
    DeviceResponseError,
    TransportTimeout,
    TransportUnreachable,
)
from ..telemetry.codec import decode_json

LOGGER = logging.getLogger(__name__)


class DeviceClient:
    """Non-blocking access to the device's ``/api`` endpoints.

    In bridge mode (``DeviceConfig.bridge_url`` set) requests are sent to the
    bridge and the device address travels in the ``X-ESP32-IP`` header.
    """

    def __init__(
        self,
        config: DeviceConfig,
        *,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.config = config
        self._session: Optional[aiohttp.ClientSession] = session
        self._owns_session = session is None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def fetch_health(self) -> Dict[str, Any]:
        payload = await self._request("GET", "/api/health")
        return payload if isinstance(payload, dict) else {}

    async def fetch_config(self) -> DeviceSettings:
        payload = await self._request("GET", "/api/config")
        return DeviceSettings.from_payload(payload)

    async def update_config(self, **params: Any) -> None:
        """Partially update tuning parameters (``reactionSpeed=1.2`` ...)."""

        unknown = sorted(set(params) - set(DEVICE_SETTING_KEYS))
        if unknown:
            raise ValueError(f"Unsupported config parameter(s): {', '.join(unknown)}")
        if not params:
            return
        await self._request("POST", "/api/config", json=params, write=True)

    async def reset_config(self) -> None:
        await self._request("POST", "/api/reset", write=True)

    async def fetch_sensors(self) -> TelemetrySample:
        payload = await self._request("GET", "/api/sensors")
        if not isinstance(payload, Mapping):
            payload = {}
        return TelemetrySample.from_payload(payload)

    async def calibrate(self, servo: Optional[str] = None) -> None:
        """Re-zero the orientation sensor, or calibrate one actuator."""

        body: Dict[str, Any] = {}
        if servo is not None:
            body["servo"] = ActuatorKey(servo).value
        await self._request("POST", "/api/calibrate", json=body, write=True)

    async def fetch_servo_config(self) -> Dict[ActuatorKey, ActuatorState]:
        payload = await self._request("GET", "/api/servo-config")
        return decode_actuator_states(payload)

    async def update_servo_param(self, servo: str, param: str, value: Any) -> None:
        body = {"servo": servo, "param": param, "value": value}
        await self._request("POST", "/api/servo-config", json=body, write=True)

    async def reset_servo(self, servo: str) -> None:
        await self._request(
            "POST", "/api/servo-reset", json={"servo": servo}, write=True
        )

    async def reset_all_servos(self) -> None:
        await self._request("POST", "/api/servo-reset-all", write=True)

    async def fetch_battery_config(self) -> List[BatteryConfig]:
        payload = await self._request("GET", "/api/battery-config")
        return decode_battery_configs(payload)

    async def update_battery_param(self, battery: int, param: str, value: Any) -> None:
        if not 1 <= battery <= 3:
            raise ValueError(f"Battery slot must be 1-3, got {battery}")
        body = {"battery": battery, "param": param, "value": value}
        await self._request("POST", "/api/battery-config", json=body, write=True)

    async def aclose(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=None)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    def _headers(self) -> Dict[str, str]:
        if not self.config.bridge_url:
            return {}
        address = (self.config.address or "").strip()
        if not address:
            raise DeviceAddressMissing(
                "Bridge mode requires a device address; set one with set-address"
            )
        if self.config.port and self.config.port != constants.DEFAULT_DEVICE_PORT:
            address = f"{address}:{self.config.port}"
        return {constants.BRIDGE_ADDRESS_HEADER: address}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Mapping[str, Any]] = None,
        write: bool = False,
        timeout: Optional[float] = None,
    ) -> Any:
        headers = self._headers()
        session = await self._ensure_session()
        url = f"{self.config.base_url}{path}"
        limit = self.config.request_timeout if timeout is None else timeout

        try:
            async with asyncio.timeout(limit):
                async with session.request(
                    method, url, json=json, headers=headers
                ) as response:
                    text = await response.text()
                    if response.status >= 400:
                        error_type = ActuationRejected if write else DeviceResponseError
                        raise error_type(
                            f"{method} {path} failed with status {response.status}: {text.strip()}",
                            status=response.status,
                            detail=text.strip() or None,
                        )
        except asyncio.TimeoutError as exc:
            LOGGER.warning("%s %s timed out after %.1fs", method, url, limit)
            raise TransportTimeout(f"{method} {path} timed out after {limit:.1f}s") from exc
        except aiohttp.ClientError as exc:
            LOGGER.warning("%s %s failed: %s", method, url, exc)
            raise TransportUnreachable(f"{method} {path} failed: {exc}") from exc

        if not text.strip():
            return None
        return decode_json(text)
