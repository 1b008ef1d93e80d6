import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "NOTSET": logging.NOTSET,
}


def _resolve_level(log_level: Union[str, int, None]) -> int:
    if isinstance(log_level, int):
        return log_level
    if isinstance(log_level, str):
        name = log_level.strip().upper()
        if name.isdigit():
            return int(name)
        return _LEVELS.get(name, logging.INFO)
    return logging.INFO


def setup_logging(log_level: Union[str, int, None] = "INFO", log_file: Optional[str] = None) -> None:
    """Configure the root logger once: stdout always, plus a rotating file when log_file is set.

    Calling it again only adjusts the level (and adds the file handler if it
    was not configured before), so app.py and entrypoint.py can both call it.
    """
    root = logging.getLogger()
    formatter = logging.Formatter(LOG_FORMAT)

    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)
        root.addHandler(handler)
        logging.captureWarnings(True)

    if log_file and not any(isinstance(h, RotatingFileHandler) for h in root.handlers):
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    root.setLevel(_resolve_level(log_level))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
