"""Structured JSON logging for sonar-coord.

Writes JSONL to .sonar-coord/coord.log with rotation (5MB, 3 backups).
"""

from __future__ import annotations

import json
import logging
import os
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

_LOG_FILENAME = "coord.log"
_setup_lock = threading.Lock()
_MAX_BYTES = 5 * 1024 * 1024  # 5MB
_BACKUP_COUNT = 3


# (record attribute, JSON key). holder and group are top-level so a log can be
# filtered per worker or per claimed group without digging into args.
_EXTRA_FIELDS: tuple[tuple[str, str], ...] = (
    ("op", "op"),
    ("holder", "holder"),
    ("group", "group"),
    ("args_data", "args"),
    ("duration_ms", "duration_ms"),
    ("error", "error"),
)


class _JsonFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for attr, key in _EXTRA_FIELDS:
            value = getattr(record, attr, None)
            if value is not None:
                entry[key] = value
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = str(record.exc_info[1])
        return json.dumps(entry, default=str)


def setup_logging(coord_dir: Path) -> logging.Logger:
    """Set up structured JSON logging to .sonar-coord/coord.log.

    Returns the package logger; module loggers propagate into it.
    """
    logger = logging.getLogger("sonar_coord")
    log_path = coord_dir / _LOG_FILENAME
    target_filename = os.path.abspath(str(log_path))

    with _setup_lock:
        for h in logger.handlers[:]:
            if not isinstance(h, RotatingFileHandler):
                continue
            if h.baseFilename == target_filename:
                return logger
            # Different project dir: drop the stale handler.
            logger.removeHandler(h)
            h.close()

        handler = RotatingFileHandler(
            str(log_path),
            maxBytes=_MAX_BYTES,
            backupCount=_BACKUP_COUNT,
        )
        handler.setFormatter(_JsonFormatter())
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger
