"""
Logging setup for StakeFlow processes.

Two console formats:
  - **human** – single line per record, coloured when attached to a TTY
  - **json**  – one JSON object per line for log shippers

Engine records (stake events, rate changes, issuance outcomes) are
logged with ``extra={"event": record.to_dict()}``.  Both formatters
render that payload: JSON nests it under ``"event"`` and lifts its
``tick`` to the top level, the human format appends ``key=value`` pairs.

Per-logger levels can be tuned independently of the root level, e.g.
keep ``stakeflow.pool`` at DEBUG while the API stays at INFO.

Usage:
    from stakeflow_core.logging_config import setup_logging
    setup_logging(level="INFO", fmt="json", log_file="logs/stakeflow.log",
                  levels={"stakeflow.pool": "DEBUG"})
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

# Raised to WARNING unless the root level is DEBUG.
_QUIET_BELOW_DEBUG = ("aiohttp.access",)


def _event_of(record: logging.LogRecord) -> dict | None:
    event = getattr(record, "event", None)
    return event if isinstance(event, dict) else None


class _JSONFormatter(logging.Formatter):
    """One JSON object per record, engine payload included."""

    def format(self, record: logging.LogRecord) -> str:
        out: dict = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        event = _event_of(record)
        if event is not None:
            out["event"] = event
            if "tick" in event:
                out["tick"] = event["tick"]
        if record.exc_info and record.exc_info[1]:
            out["exception"] = self.formatException(record.exc_info)
        return json.dumps(out, default=str)


class _HumanFormatter(logging.Formatter):
    """``HH:MM:SS [LEVEL  ] logger: message key=value ...``"""

    COLOURS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    def __init__(self, colour: bool = True):
        super().__init__()
        self.colour = colour

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"[{record.levelname:<7}]"
        if self.colour:
            level = f"{self.COLOURS.get(record.levelname, '')}{level}{self.RESET}"
        line = f"{ts} {level} {record.name}: {record.getMessage()}"
        event = _event_of(record)
        if event:
            line += " " + " ".join(f"{k}={v}" for k, v in event.items())
        if record.exc_info and record.exc_info[1]:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _level(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)


def setup_logging(
    level: str = "INFO",
    fmt: str = "human",
    log_file: Optional[str] = None,
    levels: Optional[dict[str, str]] = None,
) -> None:
    """
    Install StakeFlow's handlers on the root logger.

    Parameters
    ----------
    level : str
        Root level: DEBUG, INFO, WARNING, ERROR or CRITICAL.
    fmt : str
        ``"human"`` or ``"json"`` for the console handler.
    log_file : str, optional
        Additional JSON-lines file; parent directories are created.
    levels : dict, optional
        Per-logger overrides, ``{"stakeflow.pool": "DEBUG"}``.
    """
    root = logging.getLogger()
    root_level = _level(level)
    root.setLevel(root_level)
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
        fh = logging.FileHandler(str(path))
        fh.setFormatter(_JSONFormatter())
        root.addHandler(fh)

    if root_level > logging.DEBUG:
        for name in _QUIET_BELOW_DEBUG:
            logging.getLogger(name).setLevel(logging.WARNING)
    for name, lvl in (levels or {}).items():
        logging.getLogger(name).setLevel(_level(lvl))
