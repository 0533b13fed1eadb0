from __future__ import annotations

import logging
import os
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional

_FILE_HANDLER_NAME = "assessment_agent_file_handler"
_DEFAULT_TARGETS = ("", "uvicorn", "uvicorn.error", "assessment_agent")


def _project_root() -> Path:
    # assessment_agent/utils/logging_setup.py -> repo root
    return Path(__file__).resolve().parents[2]


def resolve_level(name: str | None) -> int:
    return getattr(logging, str(name or "INFO").upper(), logging.INFO)


def setup_file_logging(
    *,
    log_file_path: str,
    level: int,
    logger_names: Optional[list[str]] = None,
) -> Optional[Path]:
    """
    Attach a daily-rotating file handler to the given loggers.

    Relative paths resolve against the repo root. Calling this twice never
    attaches a second handler to the same logger. Returns the resolved path.
    """
    if not log_file_path:
        return None

    path = Path(log_file_path)
    if not path.is_absolute():
        path = _project_root() / path
    os.makedirs(path.parent, exist_ok=True)

    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    for name in logger_names or list(_DEFAULT_TARGETS):
        logger = logging.getLogger(name)
        if any(getattr(h, "name", None) == _FILE_HANDLER_NAME for h in logger.handlers):
            continue
        handler = TimedRotatingFileHandler(
            filename=str(path),
            when="midnight",
            backupCount=14,
            encoding="utf-8",
        )
        handler.name = _FILE_HANDLER_NAME
        handler.setLevel(level)
        handler.setFormatter(fmt)
        logger.addHandler(handler)
        if logger.level == logging.NOTSET or logger.level > level:
            logger.setLevel(level)
        # Named loggers now own a handler; stop the root from writing them twice.
        if name:
            logger.propagate = False
    return path


def silence_noisy_loggers() -> None:
    """HTTP client libraries log full request lines (incl. signed image URLs) at INFO."""
    for name in ("httpx", "httpcore", "urllib3"):
        logging.getLogger(name).setLevel(logging.WARNING)


def configure_logging(settings, *, log_file_path: str | None = None) -> None:
    """Console + optional file logging for the API process and the run worker."""
    level = resolve_level(settings.log_level)
    logging.basicConfig(level=level)
    silence_noisy_loggers()
    if settings.log_to_file:
        setup_file_logging(
            log_file_path=log_file_path or settings.log_file_path,
            level=level,
            logger_names=["", "assessment_agent"],
        )
