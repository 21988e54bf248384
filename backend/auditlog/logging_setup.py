# backend/auditlog/logging_setup.py
from __future__ import annotations

import logging
import os
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from flask import has_request_context, request

REPO_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_LOG_DIR = REPO_ROOT / "var" / "logs"

LOG_FORMAT = "%(asctime)s %(levelname)s [%(process)d] %(name)s {%(request)s}: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Marks handlers owned by start_log() so a second call only replaces its own.
_OWNED_MARKER = "_auditlog_owned"


class RequestContextFilter(logging.Filter):
    """Stamp each record with the HTTP method and path it was logged under, or ``-``."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            record.request = f"{request.method} {request.path}"
        else:
            record.request = "-"
        return True


class TimestampedLogFileHandler(RotatingFileHandler):
    """Size-capped log file; each rollover starts ``<prefix>-<timestamp>.log`` instead of renaming to ``.1``."""

    def __init__(self, directory: Path, prefix: str = "auditlog", max_bytes: int = 1_000_000):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.prefix = prefix
        super().__init__(
            self._next_path(),
            maxBytes=max_bytes,
            backupCount=0,
            encoding="utf-8",
            errors="replace",
        )

    def _next_path(self) -> str:
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")[:-3]
        candidate = self.directory / f"{self.prefix}-{stamp}.log"
        serial = 1
        while candidate.exists():
            candidate = self.directory / f"{self.prefix}-{stamp}-{serial}.log"
            serial += 1
        return os.fspath(candidate)

    def doRollover(self) -> None:
        # With backupCount=0 the base class only closes and reopens baseFilename.
        self.baseFilename = self._next_path()
        super().doRollover()


def resolve_level(level: Optional[str | int] = None) -> int:
    """Level from the argument, else ``LOG_LEVEL``; accepts names or numbers, INFO when unknown."""
    if level is None:
        level = os.getenv("LOG_LEVEL") or logging.INFO
    if isinstance(level, int):
        return level
    text = str(level).strip()
    if text.isdigit():
        return int(text)
    resolved = logging.getLevelName(text.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def resolve_log_dir(log_dir: Optional[str | Path] = None) -> Path:
    return Path(log_dir or os.getenv("LOG_DIR") or DEFAULT_LOG_DIR)


def _own(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _OWNED_MARKER, True)
    handler.addFilter(RequestContextFilter())
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    return handler


def start_log(
    *,
    app_name: str = "auditlog",
    log_dir: Optional[str | Path] = None,
    level: Optional[str | int] = None,
    to_console: bool = True,
    max_bytes: int = 1_000_000,
) -> logging.Logger:
    """
    Route every ``logging.getLogger(__name__)`` in the service to one place.

    The root logger gets a UTF-8 file under ``log_dir`` (``LOG_DIR`` or
    ``<repo>/var/logs``) that rolls over to a new timestamped file at
    ``max_bytes``, plus stderr when ``to_console`` is set. Lines logged while
    handling a request carry its method and path.

    Calling it again (dev reloader, CLI tools) swaps out the handlers it
    installed earlier and leaves any others alone.
    """
    directory = resolve_log_dir(log_dir)

    root = logging.getLogger()
    root.setLevel(resolve_level(level))

    for handler in list(root.handlers):
        if getattr(handler, _OWNED_MARKER, False):
            root.removeHandler(handler)
            handler.close()

    root.addHandler(_own(TimestampedLogFileHandler(directory, prefix=app_name, max_bytes=max_bytes)))
    if to_console:
        console = _own(logging.StreamHandler())
        console.setLevel(root.level)
        root.addHandler(console)

    root.info("Logging started app=%s dir=%s level=%s", app_name, directory, logging.getLevelName(root.level))
    return root
