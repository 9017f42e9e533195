"""Command-line interface for suspension-tuner."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Optional

from . import constants
from .app import TunerApp
from .config import load_config, save_config, set_device_address
from .core.models import ACTUATOR_ORDER, ACTUATOR_PARAMETERS, DEVICE_SETTING_KEYS
from .errors import SuspensionTunerError

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="suspension-tuner",
        description="Remote tuning and auto-leveling for a four-corner suspension rig",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {constants.DEFAULT_CONFIG_PATH})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    monitor_parser = subparsers.add_parser("monitor", help="Log live telemetry")
    monitor_parser.add_argument(
        "--duration", type=float, default=None, help="Stop after this many seconds"
    )

    subparsers.add_parser("auto-level", help="Detect servo polarity and level the rig")

    level_parser = subparsers.add_parser(
        "set-level", help="Calibrate the current attitude as level"
    )
    level_parser.add_argument(
        "--servo",
        choices=[key.value for key in ACTUATOR_ORDER],
        default=None,
        help="Calibrate a single actuator instead of the orientation sensor",
    )

    servo_parser = subparsers.add_parser("servo", help="Write one actuator parameter")
    servo_parser.add_argument("actuator", choices=[key.value for key in ACTUATOR_ORDER])
    servo_parser.add_argument("parameter", choices=list(ACTUATOR_PARAMETERS))
    servo_parser.add_argument("value")

    tune_parser = subparsers.add_parser("tune", help="Update one tuning parameter")
    tune_parser.add_argument("parameter", choices=list(DEVICE_SETTING_KEYS))
    tune_parser.add_argument("value", type=float)

    address_parser = subparsers.add_parser(
        "set-address", help="Persist the device address"
    )
    address_parser.add_argument("address")

    subparsers.add_parser(
        "show-config", help="Print the resolved configuration and exit"
    )

    return parser


def parse_actuator_value(parameter: str, value: str) -> Any:
    if parameter == "reversed":
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
        raise ValueError(f"Expected a boolean for 'reversed', got {value!r}")
    return int(value)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config(args.config)

    if args.command == "show-config":
        print(f"Configuration loaded from {config.path!s}\n")
        for section in config.raw.sections():
            print(f"[{section}]")
            for key, value in config.raw[section].items():
                print(f"{key} = {value}")
            print()
        return 0

    if args.command == "set-address":
        try:
            set_device_address(config, args.address)
        except ValueError as exc:
            LOGGER.error("%s", exc)
            return 1
        save_config(config)
        print(f"Device address set to {config.device.address}")
        return 0

    try:
        if args.command == "monitor":
            TunerApp.execute(config, lambda app: app.monitor(args.duration))
            return 0

        if args.command == "auto-level":
            session = TunerApp.execute(config, lambda app: app.auto_level())
            if session is None:
                return 1
            print(session.status_message)
            return 0 if session.succeeded else 1

        if args.command == "set-level":
            TunerApp.execute(config, lambda app: app.set_level(args.servo))
            return 0

        if args.command == "servo":
            value = parse_actuator_value(args.parameter, args.value)
            TunerApp.execute(
                config,
                lambda app: app.write_actuator(args.actuator, args.parameter, value),
            )
            return 0

        if args.command == "tune":
            setting: Any = args.value
            if args.parameter == "mpuOrientation":
                setting = int(args.value)
            TunerApp.execute(
                config,
                lambda app: app.device.update_config(**{args.parameter: setting}),
            )
            return 0
    except (SuspensionTunerError, ValueError) as exc:
        LOGGER.error("%s failed: %s", args.command, exc)
        return 1

    LOGGER.error("Unknown command: %s", args.command)
    return 1


if __name__ == "__main__":
    sys.exit(main())
