"""Constants used across the suspension-tuner package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "suspension-tuner"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path.home() / f".{APP_NAME}" / DEFAULT_CONFIG_FILENAME

DEFAULT_LOG_PATH = Path.home() / f".{APP_NAME}" / f"{APP_NAME}.log"

# Access point address of the rig controller.
DEFAULT_DEVICE_ADDRESS = "192.168.4.1"
DEFAULT_DEVICE_PORT = 80

# Bridge proxies route on these instead of the request host.
BRIDGE_ADDRESS_HEADER = "X-ESP32-IP"
BRIDGE_ADDRESS_QUERY_PARAM = "ip"

STREAM_PATH = "/ws"
