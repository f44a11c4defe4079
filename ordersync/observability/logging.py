from __future__ import annotations

import logging
import os
from typing import Final

_HANDLER_ATTACHED: bool = False
_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# SDK loggers that are chatty at INFO (gRPC channel setup, HTTP retries)
_NOISY_LOGGERS: Final[tuple[str, ...]] = ("google", "urllib3", "httpx", "grpc")


def _resolve_level(override: str | None = None) -> int:
    level_name = (override or os.getenv("ORDERSYNC_LOG_LEVEL", "INFO")).upper()
    return getattr(logging, level_name, logging.INFO)


def _attach_root_handler(level: int) -> None:
    global _HANDLER_ATTACHED

    root = logging.getLogger()
    if not _HANDLER_ATTACHED:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root.addHandler(handler)
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
        _HANDLER_ATTACHED = True
    root.setLevel(level)


def configure_logging(level: str | None = None) -> None:
    """Set the process-wide level (used by the API entry point)."""
    _attach_root_handler(_resolve_level(level))


def get_logger(name: str) -> logging.Logger:
    """Return a module logger; the first call installs the stream handler."""
    level = _resolve_level()
    _attach_root_handler(level)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    return logger
