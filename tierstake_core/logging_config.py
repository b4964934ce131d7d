"""
Logging setup for a TierStake server.

Two output formats:
  - **human** – coloured, single-line, with audit fields appended
  - **json**  – newline-delimited JSON, audit record nested under ``audit``

Every committed mutation is logged once on ``tierstake_audit`` with the
record attached as ``extra={"audit": event.to_dict()}``, so shipping the
JSON stream to an aggregator is enough to rebuild the audit trail.

Usage:
    from tierstake_core.logging_config import setup_logging
    setup_logging(level="DEBUG", fmt="json", log_file="logs/tierstake.log")
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

_LEVEL_COLOURS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[1;31m",
}
_RESET = "\033[0m"

# third-party loggers that drown the ledger output at INFO
_CHATTY_LOGGERS = ("aiohttp.access", "asyncio")


def _audit_of(record: logging.LogRecord) -> Optional[dict[str, Any]]:
    audit = getattr(record, "audit", None)
    return audit if isinstance(audit, dict) else None


class _JSONFormatter(logging.Formatter):
    """One JSON object per record; amounts stay exact integers."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        audit = _audit_of(record)
        if audit is not None:
            entry["audit"] = audit
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class _HumanFormatter(logging.Formatter):
    def __init__(self, colour: bool = True):
        super().__init__()
        self.colour = colour

    def format(self, record: logging.LogRecord) -> str:
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"[{record.levelname:<7}]"
        if self.colour:
            level = f"{_LEVEL_COLOURS.get(record.levelname, '')}{level}{_RESET}"
        parts = [f"{clock} {level} {record.name}: {record.getMessage()}"]

        audit = _audit_of(record)
        if audit and audit.get("data"):
            parts.append("(" + " ".join(f"{k}={v}" for k, v in audit["data"].items()) + ")")
        text = " ".join(parts)
        if record.exc_info and record.exc_info[1]:
            text += "\n" + self.formatException(record.exc_info)
        return text


def setup_logging(
    level: str = "INFO",
    fmt: str = "human",
    log_file: Optional[str] = None,
) -> logging.Logger:
    """
    Replace the root logger's handlers.

    Unknown level names fall back to INFO.  The console uses *fmt*; the
    optional *log_file* is always JSON.  Colour is only used when stderr is
    a terminal.
    """
    root = logging.getLogger()
    numeric = logging.getLevelName(level.upper())
    root.setLevel(numeric if isinstance(numeric, int) else logging.INFO)
    root.handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        console.setFormatter(_JSONFormatter())
    else:
        console.setFormatter(_HumanFormatter(colour=sys.stderr.isatty()))
    root.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(str(path))
        file_handler.setFormatter(_JSONFormatter())
        root.addHandler(file_handler)

    quiet = logging.DEBUG if root.level <= logging.DEBUG else logging.WARNING
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(quiet)
    return root
