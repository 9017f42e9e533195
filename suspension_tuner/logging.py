"""Logging setup for the command-line entry points."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# aiohttp logs every request and frame below WARNING.
NETWORK_LOGGERS = ("aiohttp.access", "aiohttp.client", "aiohttp.websocket")


def resolve_level(name: str) -> int:
    """Map a level name from the config file to a ``logging`` level."""

    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def _build_handlers(log_path: Optional[Path]) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))
    return handlers


def configure_logging(
    level: str = "INFO", *, log_path: Optional[Path] = None, log_network: bool = False
) -> None:
    """Send logs to stderr and, when ``log_path`` is given, to that file too.

    Handlers from a previous call are replaced. Unless ``log_network`` is set,
    the aiohttp loggers are held at WARNING so telemetry traffic does not
    drown out leveling progress.
    """

    logging.captureWarnings(True)
    logging.basicConfig(
        level=resolve_level(level),
        format=LOG_FORMAT,
        handlers=_build_handlers(log_path),
        force=True,
    )

    network_level = logging.NOTSET if log_network else logging.WARNING
    for name in NETWORK_LOGGERS:
        logging.getLogger(name).setLevel(network_level)
