from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

LogFunc = Callable[[str, str, str, Optional[str]], None]

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"

# Served through the root handlers instead of their own.
ROUTED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")

# Per-request connection chatter from requests' transport.
QUIET_LOGGERS = ("urllib3", "urllib3.connectionpool")


def setup_logging(level: str, logfile: str):
    """Send every drivesync logger to ``logfile`` and the console."""
    path = Path(logfile).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    log_level = getattr(logging, level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(log_level)
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(LOG_FORMAT)
    for handler in (logging.FileHandler(path, encoding="utf-8"), logging.StreamHandler()):
        handler.setLevel(log_level)
        handler.setFormatter(fmt)
        root.addHandler(handler)

    for name in ROUTED_LOGGERS:
        logger = logging.getLogger(name)
        logger.handlers.clear()
        logger.setLevel(log_level)
        logger.propagate = True

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    root.info("logging initialized file=%s level=%s", path, logging.getLevelName(log_level))


def make_log_func() -> LogFunc:
    """Bridge the engine's (level, module, message, detail) calls onto stdlib loggers."""

    def log_func(level: str, module: str, message: str, detail: Optional[str] = None):
        logging.getLogger(module).log(
            getattr(logging, level.upper(), logging.INFO),
            f"{message} {detail or ''}".strip(),
        )

    return log_func
