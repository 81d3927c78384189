# utils/logger.py
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_DEFAULT_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
_DEFAULT_FILE = os.getenv("LOG_FILE", "logs/bot.log")
_MAX_BYTES = int(os.getenv("LOG_MAX_MB", "5")) * 1024 * 1024
_BACKUPS = int(os.getenv("LOG_BACKUPS", "5"))

# per-frame / per-request chatter from the transport libraries
_NOISY_LIBS = ("websockets", "asyncio", "aiohttp")


def _resolve_level(level: Union[str, int]) -> int:
    if isinstance(level, str):
        return getattr(logging, level.upper(), logging.INFO)
    return level


def _rotating_handler(path: str) -> RotatingFileHandler:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    return RotatingFileHandler(path, maxBytes=_MAX_BYTES, backupCount=_BACKUPS, encoding="utf-8")


def setup_logger(name: str,
                 level: Union[str, int] = _DEFAULT_LEVEL,
                 log_file: Optional[str] = _DEFAULT_FILE,
                 to_console: bool = True) -> logging.Logger:
    """
    Engine logger: rotating file (LOG_FILE) plus console.
    Calling it again with the same name returns the configured logger untouched.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    level = _resolve_level(level)
    logger.setLevel(level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    handlers = []
    if log_file:
        handlers.append(_rotating_handler(log_file))
    if to_console:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(level)
        logger.addHandler(handler)

    for lib in _NOISY_LIBS:
        logging.getLogger(lib).setLevel(logging.WARNING)

    return logger
