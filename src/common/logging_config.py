"""Logging setup for the srt-translate command and other engine hosts."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Union

from common.config import settings

# Package loggers the engine modules log through (logging.getLogger(__name__))
ENGINE_LOGGERS = ["common", "translator"]

# Libraries that are chatty at INFO (httpx logs every request URL)
THIRD_PARTY_LOGGERS = ["openai", "httpx", "httpcore", "asyncio"]

CONSOLE_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
FILE_FORMAT = (
    "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def resolve_level(level: Optional[str]) -> int:
    """Map a level name to its numeric value, falling back to INFO."""
    name = (level or settings.log_level).upper()
    value = logging.getLevelName(name)
    return value if isinstance(value, int) else logging.INFO


def _handlers_for(level: int, log_file: Optional[Union[str, Path]]) -> List[logging.Handler]:
    # Console goes to stderr; stdout carries progress lines and the report
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    handlers: List[logging.Handler] = [console]

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
        handlers.append(file_handler)

    for handler in handlers:
        handler.setLevel(level)
    return handlers


def setup_logging(
    service_name: str,
    log_file: Optional[Union[str, Path]] = None,
    log_level: Optional[str] = None,
) -> logging.Logger:
    """
    Attach console (and optionally file) handlers to a service logger.

    The engine package loggers get the same handlers, so batch, client and
    retry messages appear in the same stream as the host's own messages.
    Calling this again replaces the handlers instead of stacking them.

    Args:
        service_name: Logger name of the host (e.g., 'srt-translate')
        log_file: Optional log file path
        log_level: Level name; defaults to settings.log_level

    Returns:
        The service logger
    """
    level = resolve_level(log_level)
    handlers = _handlers_for(level, log_file)

    for name in dict.fromkeys([service_name, *ENGINE_LOGGERS]):
        target = logging.getLogger(name)
        target.setLevel(level)
        target.handlers[:] = handlers
        target.propagate = False

    return logging.getLogger(service_name)


def get_log_file_path(service_name: str, log_dir: Union[str, Path] = "logs") -> Path:
    """
    Daily log file for a service, e.g. logs/srt-translate_20240101.log.

    Args:
        service_name: Name used as the file prefix
        log_dir: Directory for log files

    Returns:
        Path to the log file (not created)
    """
    day = datetime.now(timezone.utc).strftime("%Y%m%d")
    return Path(log_dir) / f"{service_name}_{day}.log"


def quiet_third_party_loggers(level: str = "WARNING") -> None:
    """Raise the level of noisy library loggers."""
    value = resolve_level(level)
    for name in THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(value)


def setup_cli_logging(
    service_name: str = "srt-translate",
    log_level: Optional[str] = None,
    log_to_file: bool = False,
) -> logging.Logger:
    """
    Logging for command-line runs: quiet libraries, engine output on stderr.

    Args:
        service_name: Logger name of the command
        log_level: Level override (e.g. from --log-level)
        log_to_file: Also append to a daily file under ./logs/

    Returns:
        The command logger
    """
    quiet_third_party_loggers()
    log_file = get_log_file_path(service_name) if log_to_file else None
    return setup_logging(service_name, log_file=log_file, log_level=log_level)
