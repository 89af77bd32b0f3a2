"""Root logger setup with key=value text or JSON lines output."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime
from typing import Any, TextIO

_RESERVED = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}
_LEVEL_NAMES = ((logging.ERROR, "ERROR"), (logging.WARNING, "WARN"), (logging.INFO, "INFO"))


def _entry(formatter: logging.Formatter, record: logging.LogRecord) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "time": datetime.fromtimestamp(record.created).astimezone().isoformat(timespec="milliseconds"),
        "level": next((name for floor, name in _LEVEL_NAMES if record.levelno >= floor), "DEBUG"),
        "msg": record.getMessage(),
    }
    entry.update((k, v) for k, v in vars(record).items() if k not in _RESERVED)
    if record.exc_info:
        entry["exc"] = formatter.formatException(record.exc_info)
    return entry


class JsonFormatter(logging.Formatter):
    """Formats each record as one JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        return json.dumps(_entry(self, record), default=str)


class _TextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        def quoted(text: str) -> str:
            return json.dumps(text) if text == "" or any(c in text for c in ' ="\n\t') else text

        return " ".join(f"{key}={quoted(str(value))}" for key, value in _entry(self, record).items())


def init_logging(
    level: int = logging.INFO, fmt: str = "json", stream: TextIO | None = None
) -> logging.Handler:
    """Send all logging to one stream; "text" gives key=value lines, anything else JSON."""
    handler = logging.StreamHandler(sys.stdout if stream is None else stream)
    handler.setFormatter(_TextFormatter() if fmt == "text" else JsonFormatter())
    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)
    return handler