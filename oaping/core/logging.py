"""Structured JSON logging for OAPing.

Every OAPing logger lives under the ``oaping`` hierarchy. Records logged
on behalf of a job go through a JobLogAdapter, which prefixes the message
with the job's action name (``notify: ...``) and tags the record with a
``job`` field, so the same run can be followed in plain text and in JSON.
"""

import json
import logging
from collections.abc import MutableMapping
from datetime import UTC, datetime
from typing import Any

# Attributes every LogRecord has; anything else on a record came from extra={}
_RESERVED_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime"}

# Emitted right after the base fields, in this order, when present
_CONTEXT_FIELDS = ("job", "access_id", "offset", "status")


class JSONFormatter(logging.Formatter):
    """Render each record as one JSON object with a UTC timestamp."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = {k: v for k, v in vars(record).items() if k not in _RESERVED_ATTRS}
        for name in _CONTEXT_FIELDS:
            if name in context:
                entry[name] = context.pop(name)
        entry.update(context)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        try:
            return json.dumps(entry, default=str)
        except (TypeError, ValueError):
            return repr(entry)


class JobLogAdapter(logging.LoggerAdapter):
    """Logger adapter for code running on behalf of one job action.

    Args:
        logger: Underlying logger.
        job: Action name, e.g. "notify" or "legacy_notify".
    """

    def __init__(self, logger: logging.Logger, job: str) -> None:
        super().__init__(logger, {"job": job})

    @property
    def job(self) -> str:
        return self.extra["job"]

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return f"{self.job}: {msg}", kwargs


def get_logger(name: str = "oaping", level: int = logging.INFO) -> logging.Logger:
    """Get a logger that writes JSON lines to stderr.

    The handler is installed once per logger, and records do not propagate
    to the root logger.

    Args:
        name: The logger name. Defaults to "oaping".
        level: The logging level to set. Defaults to logging.INFO.
    """
    logger = logging.getLogger(name)
    if not any(isinstance(h.formatter, JSONFormatter) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger


def job_logger(name: str, job: str) -> JobLogAdapter:
    """Return an adapter tagging records of logger `name` with `job`."""
    return JobLogAdapter(logging.getLogger(name), job)
