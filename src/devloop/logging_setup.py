"""Progress logging configuration for the devloop CLI."""

from __future__ import annotations

import json
import logging
import sys
from typing import Any, TextIO

from devloop.config import LoggingSettings

ROOT_LOGGER_NAME = "devloop"


class BasicFormatter(logging.Formatter):
    """Render ``[section] message`` lines for terminals."""

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        section = getattr(record, "section", None)
        line = f"[{section}] {message}" if section else message
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class JsonLineFormatter(logging.Formatter):
    """Render one JSON object per log line.

    Task state changes carry ``taskMetadata`` with the task key, base key and
    status so tooling can follow a run from the log stream alone.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "msg": record.getMessage(),
            "level": record.levelname.lower(),
        }
        section = getattr(record, "section", None)
        if section:
            entry["section"] = section
        metadata = getattr(record, "task_metadata", None)
        if metadata:
            entry["taskMetadata"] = metadata
            if "durationMs" in metadata:
                entry["durationMs"] = metadata["durationMs"]
        if record.exc_info:
            entry["error"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(settings: LoggingSettings, *, stream: TextIO | None = None) -> logging.Logger:
    """Configure the ``devloop`` logger hierarchy and return its root logger."""

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, settings.level.upper()))
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = False

    if settings.logger_type == "quiet":
        logger.addHandler(logging.NullHandler())
        return logger

    handler = logging.StreamHandler(stream or sys.stderr)
    if settings.logger_type == "json":
        handler.setFormatter(JsonLineFormatter())
    else:
        handler.setFormatter(BasicFormatter())
    logger.addHandler(handler)
    return logger
