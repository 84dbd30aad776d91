"""Shared ``financeflow`` logger: one log file plus the console."""

import logging
import os
from pathlib import Path
from typing import List

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(module)s.%(funcName)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _handlers(log_path: Path) -> List[logging.Handler]:
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers: List[logging.Handler] = [
        logging.FileHandler(log_path, encoding="utf-8"),
        logging.StreamHandler(),
    ]
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def setup_logger(
    name: str = "financeflow",
    log_file: str = "output/financeflow.log",
    level: str | None = None,
) -> logging.Logger:
    """
    Return the named logger, attaching file and console handlers on first use.

    Args:
        name (str): Logger name.
        log_file (str): File the records are appended to; its directory is created.
        level (str | None): Level name; falls back to ``FINANCEFLOW_LOG_LEVEL``, then INFO.

    Returns:
        logging.Logger: The configured logger.
    """
    configured = logging.getLogger(name)
    if configured.handlers:
        return configured

    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    level_name = (level or os.getenv("FINANCEFLOW_LOG_LEVEL", "INFO")).upper()
    configured.setLevel(getattr(logging, level_name, logging.INFO))
    for handler in _handlers(log_path):
        configured.addHandler(handler)
    return configured


logger = setup_logger()
