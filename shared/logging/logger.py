import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Dict

_LOGGERS: Dict[str, logging.Logger] = {}
_FILE_HANDLERS: Dict[str, logging.Handler] = {}

_FORMATTER = logging.Formatter(
    "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
)


def _log_dir() -> Path:
    path = Path(os.getenv("RELAY_LOG_DIR", "logs"))
    path.mkdir(parents=True, exist_ok=True)
    return path


def _console_level() -> int:
    level = logging.getLevelName(os.getenv("RELAY_LOG_LEVEL", "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def _file_handler(runtime: str) -> logging.Handler:
    """One log file per runtime per process, shared by all its loggers."""
    handler = _FILE_HANDLERS.get(runtime)
    if handler is None:
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        logfile = _log_dir() / f"{runtime}-{timestamp}.log"
        handler = logging.FileHandler(logfile, encoding="utf-8")
        handler.setFormatter(_FORMATTER)
        _FILE_HANDLERS[runtime] = handler
    return handler


def get_logger(
    name: str,
    *,
    runtime: str = "relay",
) -> logging.Logger:
    """
    Create or retrieve a named logger.

    Parameters:
    - name: logger namespace (e.g. oauth.store, youtube.watcher)
    - runtime: log file prefix (relay | poc | future runtimes)

    Environment:
    - RELAY_LOG_DIR: directory for log files (default: ./logs)
    - RELAY_LOG_LEVEL: console level (default: INFO; files always get DEBUG)
    - RELAY_LOG_FILE=0 disables file output
    """
    cache_key = f"{runtime}:{name}"
    if cache_key in _LOGGERS:
        return _LOGGERS[cache_key]

    logger = logging.getLogger(cache_key)
    logger.setLevel(logging.DEBUG)

    # ------------------------------
    # Console handler
    # ------------------------------
    console = logging.StreamHandler()
    console.setFormatter(_FORMATTER)
    console.setLevel(_console_level())
    logger.addHandler(console)

    # ------------------------------
    # File handler (one per run)
    # ------------------------------
    if os.getenv("RELAY_LOG_FILE", "1") != "0":
        logger.addHandler(_file_handler(runtime))

    logger.propagate = False
    _LOGGERS[cache_key] = logger

    return logger
