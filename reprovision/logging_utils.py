"""Logging setup for the CLI.

Console output goes through rich's handler on stderr so stdout stays free for
the JSON result envelope. An optional JSON-lines file log keeps one object
per record, including any ``extra`` fields.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER = "reprovision"

# Attributes every LogRecord has; anything else came in through ``extra``.
_RECORD_FIELDS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message"}


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": time.time(),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        for key, value in record.__dict__.items():
            if key in _RECORD_FIELDS or key.startswith("_") or key in payload:
                continue
            try:
                json.dumps(value)
            except TypeError:
                value = str(value)
            payload[key] = value
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(verbose: bool = False, log_file: Path | None = None) -> logging.Logger:
    """Attach console (and optionally file) handlers to the package logger.

    Safe to call more than once: handlers installed by an earlier call are
    replaced, not duplicated.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        if getattr(handler, "_reprovision", False):
            logger.removeHandler(handler)
            handler.close()

    console = RichHandler(
        console=Console(stderr=True),
        level=logging.DEBUG if verbose else logging.WARNING,
        show_path=False,
        markup=False,
    )
    console._reprovision = True
    logger.addHandler(console)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JsonLogFormatter())
        file_handler._reprovision = True
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger
