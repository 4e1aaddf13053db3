# src/logging/logger.py — v2
"""Ledger log formatting and configuration.

JSON lines carry the active ledger coordinates (session_id, pipeline_type,
step, handler) as top-level keys, so an audit log can be filtered per
session with a plain ``jq 'select(.session_id == "chk_001")'``.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from checkout_ledger.logging.context import get_context

if TYPE_CHECKING:
    from checkout_ledger.config.settings import Settings

ROOT_LOGGER = "checkout_ledger"


def _record_time(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


def _has_exception(record: logging.LogRecord) -> bool:
    return bool(record.exc_info and record.exc_info[1] is not None)


class JsonFormatter(logging.Formatter):
    """One JSON object per line with the ledger context flattened in."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": _record_time(record).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            **get_context().as_dict(),
            "message": record.getMessage(),
        }
        data = getattr(record, "data", None)
        if data:
            entry["data"] = data
        if _has_exception(record):
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Console format: ``time LEVEL logger session/pipeline step@handler: msg``."""

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_context()
        line = (
            f"{_record_time(record):%Y-%m-%d %H:%M:%S} "
            f"{record.levelname:<8} {record.name}"
        )
        if ctx.session_id:
            line += f" {ctx.session_id}"
            if ctx.pipeline_type:
                line += f"/{ctx.pipeline_type}"
        if ctx.step:
            line += f" {ctx.step}"
            if ctx.handler:
                line += f"@{ctx.handler}"
        line += f": {record.getMessage()}"
        if _has_exception(record):
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    log_file: str | Path | None = None,
    rotation: str = "10MB",
    retention: int = 30,
) -> logging.Logger:
    """Configure the ``checkout_ledger`` logger and return it.

    Console output goes to stderr so command output on stdout stays
    machine-readable. Handlers from a previous call are closed and replaced.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        log_format: "json" or "text"; applies to console and file alike.
        log_file: Audit log path. None keeps logging on stderr only.
        rotation: Max file size before rotation (e.g. "10MB").
        retention: Number of rotated files to keep.
    """
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter: logging.Formatter = (
        JsonFormatter() if log_format == "json" else TextFormatter()
    )

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file:
        from checkout_ledger.logging.handlers import create_rotating_handler

        audit = create_rotating_handler(log_file, rotation=rotation, retention=retention)
        audit.setFormatter(formatter)
        root.addHandler(audit)

    return root


def configure_logging(settings: Settings, verbose: bool = False) -> logging.Logger:
    """Apply the ``log_*`` settings; ``verbose`` forces DEBUG."""
    return setup_logging(
        level="DEBUG" if verbose else settings.log_level,
        log_format=settings.log_format,
        log_file=settings.log_file,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )
