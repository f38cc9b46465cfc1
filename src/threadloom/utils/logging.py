"""Log file setup and one-line previews of message contents."""

from __future__ import annotations

import json
import logging
import logging.handlers
import os
from pathlib import Path

__all__ = ["setup_logging", "log_directory", "summarize", "EVENT_LOGGER_NAME"]

EVENT_LOGGER_NAME = "threadloom.services.event_logger"

_DEFAULT_LOG_DIR = Path.home() / ".threadloom" / "logs"
_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
# Third-party loggers that drown out the conversation trail below WARNING.
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")
_SUMMARY_LIMIT = 100
_LOG_PATH: Path | None = None


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    event_trail: bool = False,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Send threadloom logs to ``threadloom.log`` (and stderr when ``console``).

    With ``event_trail`` every bus event is also written at DEBUG to a
    separate ``events.log`` in the same directory, whatever ``level`` is.
    Repeated calls are no-ops unless ``force`` is set.

    Returns:
        Path of the main log file.
    """

    global _LOG_PATH
    if _LOG_PATH is not None and not force:
        return _LOG_PATH

    directory = log_directory(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(fmt=_LOG_FORMAT, datefmt=_DATE_FORMAT)

    log_path = directory / "threadloom.log"
    handlers: list[logging.Handler] = [_rotating_file(log_path, level, formatter, max_bytes, backup_count)]
    if console:
        stream = logging.StreamHandler()
        stream.setLevel(level)
        stream.setFormatter(formatter)
        handlers.append(stream)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    _configure_event_trail(directory if event_trail else None, formatter, max_bytes, backup_count)

    _LOG_PATH = log_path
    return log_path


def log_directory(log_dir: Path | str | None = None) -> Path:
    """``log_dir``, else ``$THREADLOOM_LOG_DIR``, else ``~/.threadloom/logs``."""
    return Path(log_dir or os.environ.get("THREADLOOM_LOG_DIR") or _DEFAULT_LOG_DIR).expanduser()


def summarize(value: object, limit: int = _SUMMARY_LIMIT) -> str:
    """Return a single-line preview of ``value`` for log output."""

    if value is None:
        return "<null>"
    if isinstance(value, str):
        text = value
    else:
        try:
            text = json.dumps(value, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            text = repr(value)
    if len(text) > limit:
        text = f"{text[:limit]}..."
    return text.replace("\n", "\\n")


def _rotating_file(
    path: Path,
    level: int,
    formatter: logging.Formatter,
    max_bytes: int,
    backup_count: int,
) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def _configure_event_trail(
    directory: Path | None,
    formatter: logging.Formatter,
    max_bytes: int,
    backup_count: int,
) -> None:
    event_logger = logging.getLogger(EVENT_LOGGER_NAME)
    for handler in list(event_logger.handlers):
        event_logger.removeHandler(handler)
        handler.close()
    if directory is None:
        event_logger.setLevel(logging.NOTSET)
        return
    event_logger.setLevel(logging.DEBUG)
    event_logger.addHandler(
        _rotating_file(directory / "events.log", logging.DEBUG, formatter, max_bytes, backup_count)
    )
