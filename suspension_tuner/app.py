"""Application wiring for suspension-tuner."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .adapters import ActuatorClient, DeviceClient, TelemetryChannel
from .config import TunerConfig, load_config
from .core.models import TelemetrySample
from .errors import DeviceError
from .leveling import AutoLevelController, Session
from .logging import configure_logging
from .telemetry import SensorSnapshotAccessor

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class TunerApp:
    """Builds the transport stack once and hands it to each consumer.

    One :class:`TelemetryChannel`, one :class:`SensorSnapshotAccessor` and one
    :class:`AutoLevelController` exist per app; nothing is module-global.
    """

    def __init__(
        self,
        config: Optional[TunerConfig] = None,
        *,
        device: Optional[DeviceClient] = None,
        channel: Optional[TelemetryChannel] = None,
    ) -> None:
        self._config = config or load_config()

        self.device = device or DeviceClient(self._config.device)
        self.channel = channel or TelemetryChannel(
            self._config.device,
            reconnect_delay=self._config.telemetry.reconnect_delay_seconds,
        )
        self.accessor = SensorSnapshotAccessor(
            self.device.fetch_sensors,
            min_interval=self._config.snapshot.min_interval_seconds,
            timeout=self._config.snapshot.timeout_seconds,
        )
        self.actuators = ActuatorClient(self.device)
        self.controller = AutoLevelController(
            self.accessor,
            self.actuators,
            config=self._config.leveling,
            calibrator=self.device,
            on_update=self._log_session_update,
        )
        self._last_status: Optional[str] = None

    @property
    def config(self) -> TunerConfig:
        return self._config

    @classmethod
    def execute(
        cls,
        config: TunerConfig,
        action: Callable[["TunerApp"], Awaitable[T]],
    ) -> Optional[T]:
        """Configure logging and run ``action`` on a fresh event loop."""

        configure_logging(
            config.logging.level,
            log_path=config.logging.path,
            log_network=config.logging.log_network,
        )
        instance = cls(config=config)

        async def _runner() -> T:
            try:
                return await action(instance)
            finally:
                await instance.aclose()

        try:
            return asyncio.run(_runner())
        except KeyboardInterrupt:
            LOGGER.info("suspension-tuner received shutdown signal")
            return None

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    async def monitor(self, duration: Optional[float] = None) -> None:
        """Stream telemetry to the log until ``duration`` elapses (or forever)."""

        try:
            health = await self.device.fetch_health()
        except DeviceError as exc:
            LOGGER.warning("Device health check failed: %s", exc)
        else:
            LOGGER.info(
                "Device status=%s imu=%s",
                health.get("status", "unknown"),
                health.get("mpu6050", "unknown"),
            )

        unsubscribers = [
            self.channel.subscribe(channel_type, self._log_telemetry)
            for channel_type in self._config.telemetry.channels
        ]
        try:
            await self.channel.connect()
            if duration is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(duration)
        finally:
            for unsubscribe in unsubscribers:
                unsubscribe()

    async def auto_level(self) -> Session:
        return await self.controller.run()

    async def set_level(self, servo: Optional[str] = None) -> None:
        await self.controller.set_level(servo)

    async def write_actuator(self, actuator_key: str, parameter: str, value: Any) -> None:
        if self.controller.busy:
            LOGGER.warning("Auto level in progress; manual write may be overridden")
        await self.actuators.write(actuator_key, parameter, value)

    async def aclose(self) -> None:
        await self.controller.cancel()
        with contextlib.suppress(Exception):
            await self.channel.close()
        await self.device.aclose()

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------
    def _log_telemetry(self, message: dict[str, Any]) -> None:
        sample = TelemetrySample.from_payload(message)
        LOGGER.info(
            "%s roll=%s pitch=%s yaw=%s accel=%s voltages=%s",
            message.get("type"),
            _fmt(sample.roll),
            _fmt(sample.pitch),
            _fmt(sample.yaw),
            _fmt(sample.vertical_accel, digits=2),
            ",".join(_fmt(item, digits=2) for item in sample.voltages) or "-",
        )

    def _log_session_update(self, session: Session) -> None:
        if session.status_message != self._last_status:
            self._last_status = session.status_message
            LOGGER.info("Auto level: %s", session.status_message)


def _fmt(value: Optional[float], *, digits: int = 1) -> str:
    if value is None:
        return "-"
    return f"{value:.{digits}f}"
