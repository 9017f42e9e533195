import logging
from pathlib import Path

import pytest

from suspension_tuner.logging import NETWORK_LOGGERS, configure_logging, resolve_level


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
    for name in NETWORK_LOGGERS:
        logging.getLogger(name).setLevel(logging.NOTSET)


def test_resolve_level_falls_back_to_info() -> None:
    assert resolve_level("debug") == logging.DEBUG
    assert resolve_level(" warning ") == logging.WARNING
    assert resolve_level("chatty") == logging.INFO


def test_configure_logging_writes_file_and_quiets_network(
    tmp_path: Path, restore_root_logger
) -> None:
    log_path = tmp_path / "logs" / "suspension-tuner.log"

    configure_logging("DEBUG", log_path=log_path)
    logging.getLogger("suspension_tuner.leveling").info("Level achieved!")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert logging.getLogger().level == logging.DEBUG
    assert all(
        logging.getLogger(name).level == logging.WARNING for name in NETWORK_LOGGERS
    )
    contents = log_path.read_text(encoding="utf-8")
    assert "| INFO | suspension_tuner.leveling | Level achieved!" in contents


def test_configure_logging_replaces_handlers(restore_root_logger) -> None:
    configure_logging("INFO", log_network=True)
    configure_logging("INFO", log_network=True)

    assert len(logging.getLogger().handlers) == 1
    assert logging.getLogger("aiohttp.client").level == logging.NOTSET
