"""Logging setup for agentloop processes.

Library modules only call ``logging.getLogger(__name__)``; handlers are
installed by the CLI (or an embedding application) through
:func:`setup_logging`.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path

__all__ = [
    "setup_logging",
    "resolve_level",
    "get_logger",
    "get_log_path",
    "LOG_DIR_ENV",
    "LOG_LEVEL_ENV",
]

LOG_DIR_ENV = "AGENTLOOP_LOG_DIR"
LOG_LEVEL_ENV = "AGENTLOOP_LOG_LEVEL"
_DEFAULT_LOG_DIR = Path.home() / ".agentloop" / "logs"
_LOG_FILENAME = "agentloop.log"
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")
_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_CONFIGURED = False
_LOG_PATH: Path | None = None


def resolve_level(value: int | str | None, default: int = logging.INFO) -> int:
    """Turn ``"debug"``, ``"20"`` or ``logging.DEBUG`` into a level number.

    Falls back to ``AGENTLOOP_LOG_LEVEL`` and then ``default`` when ``value``
    is None; unknown names resolve to ``default``.
    """
    if value is None:
        value = os.environ.get(LOG_LEVEL_ENV)
    if value is None:
        return default
    if isinstance(value, int):
        return value
    text = value.strip()
    if text.isdigit():
        return int(text)
    level = logging.getLevelName(text.upper())
    return level if isinstance(level, int) else default


def setup_logging(
    level: int | str | None = None,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    log_file: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path | None:
    """Configure root logging with a rotating file and/or console handler.

    Args:
        level: Level number or name; see :func:`resolve_level`.
        log_dir: Directory for the rotating log file. Defaults to
            ``AGENTLOOP_LOG_DIR`` or ``~/.agentloop/logs``.
        console: Also log to stderr.
        log_file: Write the rotating log file.
        max_bytes: Rotation threshold.
        backup_count: Rotated files kept.
        force: Reconfigure even if logging was already set up.

    Returns:
        The log file path, or None when file logging is disabled.
    """
    global _CONFIGURED, _LOG_PATH
    if _CONFIGURED and not force:
        return _LOG_PATH

    resolved = resolve_level(level)
    formatter = logging.Formatter(fmt=_FORMAT, datefmt=_DATE_FORMAT)
    handlers: list[logging.Handler] = []

    log_path: Path | None = None
    if log_file:
        target_dir = _resolve_log_dir(log_dir)
        target_dir.mkdir(parents=True, exist_ok=True)
        log_path = target_dir / _LOG_FILENAME
        file_handler = logging.handlers.RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
        handlers.append(file_handler)

    if console:
        handlers.append(logging.StreamHandler())

    if not handlers:
        handlers.append(logging.NullHandler())

    for handler in handlers:
        handler.setLevel(resolved)
        handler.setFormatter(formatter)

    logging.basicConfig(level=resolved, handlers=handlers, force=True)
    logging.captureWarnings(True)
    _tune_external_loggers(resolved)

    _CONFIGURED = True
    _LOG_PATH = log_path
    return log_path


def get_logger(name: str) -> logging.Logger:
    """Return a module-specific logger."""

    return logging.getLogger(name)


def get_log_path() -> Path | None:
    """Return the currently configured log file if available."""

    return _LOG_PATH


def _resolve_log_dir(log_dir: Path | str | None) -> Path:
    env_override = os.environ.get(LOG_DIR_ENV)
    return Path(log_dir or env_override or _DEFAULT_LOG_DIR).expanduser()


def _tune_external_loggers(root_level: int) -> None:
    quiet_level = max(logging.WARNING, root_level)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(quiet_level)
