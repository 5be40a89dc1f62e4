"""Logging for the ``matterbuild`` logger tree, shared by the server and the CLI."""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone

LOGGER_NAME = "matterbuild"
_HANDLER_NAME = "matterbuild-stderr"


class JsonLogFormatter(logging.Formatter):
    """Single-line JSON records; background continuations are told apart by thread."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(env: dict[str, str] | None = None) -> logging.Logger:
    """Attach one stderr handler to the ``matterbuild`` logger.

    ``MATTERBUILD_LOG_LEVEL`` sets the level (INFO) and ``MATTERBUILD_LOG_FORMAT``
    picks ``json`` (default) or ``text``. Calling it again replaces the handler.
    """

    source = env if env is not None else os.environ
    level_name = (source.get("MATTERBUILD_LOG_LEVEL") or "INFO").strip().upper()
    log_format = (source.get("MATTERBUILD_LOG_FORMAT") or "json").strip().lower()

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    if log_format == "text":
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s")
        )
    else:
        handler.setFormatter(JsonLogFormatter())

    logger = logging.getLogger(LOGGER_NAME)
    for existing in list(logger.handlers):
        if existing.get_name() == _HANDLER_NAME:
            logger.removeHandler(existing)
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level_name, logging.INFO))
    logger.propagate = False
    return logger
