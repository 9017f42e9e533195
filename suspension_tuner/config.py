"""Configuration loader for suspension-tuner."""

from __future__ import annotations

from configparser import ConfigParser
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Iterable, List, Optional

from . import constants

DEFAULT_TELEMETRY_CHANNELS = ["telemetry", "sensor", "battery"]

MIN_SNAPSHOT_TIMEOUT_SECONDS = 1.5
MAX_SNAPSHOT_TIMEOUT_SECONDS = 2.0


@dataclass(slots=True)
class DeviceConfig:
    address: str = constants.DEFAULT_DEVICE_ADDRESS
    port: int = constants.DEFAULT_DEVICE_PORT
    bridge_url: Optional[str] = None  # When set, requests go through the bridge proxy
    request_timeout: float = 5.0

    @property
    def base_url(self) -> str:
        if self.bridge_url:
            return self.bridge_url.rstrip("/")
        if self.port and self.port != 80:
            return f"http://{self.address}:{self.port}"
        return f"http://{self.address}"


@dataclass(slots=True)
class TelemetryConfig:
    reconnect_delay_seconds: float = 2.0
    channels: List[str] = field(
        default_factory=lambda: list(DEFAULT_TELEMETRY_CHANNELS)
    )


@dataclass(slots=True)
class SnapshotConfig:
    min_interval_seconds: float = 0.3
    timeout_seconds: float = 1.5


@dataclass(slots=True)
class LevelingConfig:
    test_movement: float = 10.0
    polarity_threshold: float = 1.0
    detection_settle_seconds: float = 0.8
    restore_settle_seconds: float = 0.3
    polarity_apply_settle_seconds: float = 0.5
    level_tolerance: float = 1.5
    adjustment_step: float = 2.0
    max_adjustment: float = 20.0
    max_iterations: int = 15
    converge_settle_seconds: float = 0.5
    success_display_seconds: float = 2.0
    failure_display_seconds: float = 3.0
    error_display_seconds: float = 2.0
    calibration_display_seconds: float = 2.0


_LEVELING_FIELDS = tuple(item.name for item in fields(LevelingConfig))


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = constants.DEFAULT_LOG_PATH
    log_network: bool = False


@dataclass(slots=True)
class TunerConfig:
    device: DeviceConfig
    telemetry: TelemetryConfig
    snapshot: SnapshotConfig
    leveling: LevelingConfig
    logging: LoggingConfig
    raw: ConfigParser
    path: Path


def _parse_list(value: str, *, default: Iterable[str]) -> List[str]:
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


def load_config(path: Optional[Path] = None) -> TunerConfig:
    """Load configuration from disk, applying defaults where necessary."""

    config_path = path or constants.DEFAULT_CONFIG_PATH
    leveling_defaults = LevelingConfig()
    parser = ConfigParser()
    parser.read_dict(
        {
            "device": {
                "address": constants.DEFAULT_DEVICE_ADDRESS,
                "port": str(constants.DEFAULT_DEVICE_PORT),
                "bridge_url": "",
                "request_timeout": "5.0",
            },
            "telemetry": {
                "reconnect_delay_seconds": "2.0",
                "channels": ",".join(DEFAULT_TELEMETRY_CHANNELS),
            },
            "snapshot": {
                "min_interval_seconds": "0.3",
                "timeout_seconds": "1.5",
            },
            "leveling": {
                name: str(getattr(leveling_defaults, name))
                for name in _LEVELING_FIELDS
            },
            "logging": {
                "level": "INFO",
                "path": str(constants.DEFAULT_LOG_PATH),
                "log_network": "false",
            },
        }
    )

    if config_path.exists():
        parser.read(config_path)

    address_value = parser.get("device", "address").strip()
    port_value = parser.getint(
        "device", "port", fallback=constants.DEFAULT_DEVICE_PORT
    )

    # "192.168.4.1:8080" is accepted as shorthand for address + port.
    if ":" in address_value:
        host_part, port_part = address_value.rsplit(":", 1)
        try:
            parsed_port = int(port_part)
        except ValueError:
            pass
        else:
            address_value = host_part
            port_value = parsed_port
            parser.set("device", "address", host_part)
            parser.set("device", "port", str(parsed_port))

    device = DeviceConfig(
        address=address_value,
        port=port_value,
        bridge_url=parser.get("device", "bridge_url", fallback="").strip() or None,
        request_timeout=max(
            0.1, parser.getfloat("device", "request_timeout", fallback=5.0)
        ),
    )

    telemetry = TelemetryConfig(
        reconnect_delay_seconds=max(
            0.0,
            parser.getfloat("telemetry", "reconnect_delay_seconds", fallback=2.0),
        ),
        channels=_parse_list(
            parser.get(
                "telemetry",
                "channels",
                fallback=",".join(DEFAULT_TELEMETRY_CHANNELS),
            ),
            default=DEFAULT_TELEMETRY_CHANNELS,
        ),
    )

    snapshot = SnapshotConfig(
        min_interval_seconds=max(
            0.0, parser.getfloat("snapshot", "min_interval_seconds", fallback=0.3)
        ),
        timeout_seconds=max(
            MIN_SNAPSHOT_TIMEOUT_SECONDS,
            min(
                MAX_SNAPSHOT_TIMEOUT_SECONDS,
                parser.getfloat("snapshot", "timeout_seconds", fallback=1.5),
            ),
        ),
    )

    leveling_values = {}
    for name in _LEVELING_FIELDS:
        default = getattr(leveling_defaults, name)
        if isinstance(default, int):
            leveling_values[name] = max(
                1, parser.getint("leveling", name, fallback=default)
            )
        else:
            leveling_values[name] = max(
                0.0, parser.getfloat("leveling", name, fallback=default)
            )
    leveling = LevelingConfig(**leveling_values)

    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=Path(
            parser.get("logging", "path", fallback=str(constants.DEFAULT_LOG_PATH))
        ).expanduser(),
        log_network=parser.getboolean("logging", "log_network", fallback=False),
    )

    return TunerConfig(
        device=device,
        telemetry=telemetry,
        snapshot=snapshot,
        leveling=leveling,
        logging=logging_config,
        raw=parser,
        path=config_path,
    )


def set_device_address(config: TunerConfig, address: str) -> None:
    """Point the configuration at a different device address."""

    address = address.strip()
    if not address:
        raise ValueError("Device address cannot be empty")

    config.device.address = address
    config.raw.set("device", "address", address)


def save_config(config: TunerConfig) -> None:
    """Persist the current configuration to disk."""

    config_path = config.path
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as stream:
        config.raw.write(stream)
