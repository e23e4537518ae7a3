#!/usr/bin/env python3
"""
Sprint Bot Logging Setup

Modules log through logging.getLogger(__name__) under the "sprintbot"
namespace; entry points call setup_logging() once. Console output goes to
stderr (stdout carries the MCP stdio transport). The optional log file gets
one JSON object per record.
"""

import json
import logging
from datetime import datetime
from pathlib import Path

ROOT_LOGGER = "sprintbot"

DETAILED_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(funcName)s:%(lineno)d - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JsonFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def setup_logging(level: str | int = logging.INFO, log_file: str | Path | None = None) -> logging.Logger:
    """Install console (and optional JSON file) handlers on the sprintbot logger."""
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)
    logger.handlers.clear()
    logger.propagate = False

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(logging.Formatter(fmt=DETAILED_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JsonFormatter())
        logger.addHandler(file_handler)

    logger.debug("Logging initialized at %s", logging.getLevelName(logger.level))
    return logger
