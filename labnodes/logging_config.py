"""Structured logging setup for node drivers.

Two output formats are supported, selected by ``settings.log_format``:

- ``json``: one JSON object per line, suitable for log shippers
- ``text``: human readable single-line records

Any non-standard attributes passed via ``extra=`` are collected into an
``extra`` mapping for the JSON formatter.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

from labnodes.config import settings

# Attributes present on every LogRecord; everything else came from extra=
_STANDARD_ATTRS = frozenset(
    logging.LogRecord(
        name="", level=0, pathname="", lineno=0, msg="", args=None, exc_info=None
    ).__dict__.keys()
) | {"message", "asctime"}


def _record_extras(record: logging.LogRecord) -> dict:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _STANDARD_ATTRS and not key.startswith("_")
    }


class LabnodesJSONFormatter(logging.Formatter):
    """Format records as JSON lines."""

    def __init__(self, topology: str = ""):
        super().__init__()
        self.topology = topology

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": "labnodes",
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.topology:
            payload["topology"] = self.topology
        extras = _record_extras(record)
        if extras:
            payload["extra"] = extras
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class LabnodesTextFormatter(logging.Formatter):
    """Format records as single human readable lines."""

    def __init__(self, topology: str = ""):
        super().__init__(
            fmt="%(asctime)s %(levelname)-8s [%(topology)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
        self.topology = topology

    def format(self, record: logging.LogRecord) -> str:
        record.topology = (self.topology or "-")[:16]
        return super().format(record)


def setup_logging(topology: str = "") -> None:
    """Configure the root logger from settings.

    Replaces handlers installed by a previous call so repeated setup does
    not duplicate output.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    for handler in list(root.handlers):
        if getattr(handler, "_labnodes_handler", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler._labnodes_handler = True
    if settings.log_format.lower() == "json":
        handler.setFormatter(LabnodesJSONFormatter(topology=topology))
    else:
        handler.setFormatter(LabnodesTextFormatter(topology=topology))
    root.addHandler(handler)

    # docker SDK request logging is noisy at debug level
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("docker").setLevel(logging.WARNING)
