"""Structured logging configuration.

Uses standard library logging with a JSON formatter. Records emitted while an
execution is running carry its ``execution_id`` (and the active ``branch``)
automatically, via context variables that follow asyncio tasks.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

_execution_id: ContextVar[str | None] = ContextVar("execution_id", default=None)
_branch: ContextVar[str | None] = ContextVar("branch", default=None)

_RESERVED_LOG_RECORD_ATTRS: set[str] = set(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime"}


@contextmanager
def bind_execution(execution_id: str, branch: str | None = None) -> Iterator[None]:
    """Attach an execution (and optionally a branch) to log records in this context."""

    id_token = _execution_id.set(execution_id)
    branch_token = _branch.set(branch)
    try:
        yield
    finally:
        _branch.reset(branch_token)
        _execution_id.reset(id_token)


def bind_branch(branch: str) -> None:
    """Set the branch for the current context (one asyncio task per branch)."""

    _branch.set(branch)


class ExecutionContextFilter(logging.Filter):
    """Copy the bound execution context onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        execution_id = _execution_id.get()
        if execution_id is not None and not hasattr(record, "execution_id"):
            record.execution_id = execution_id
        branch = _branch.get()
        if branch and not hasattr(record, "branch"):
            record.branch = branch
        return True


class JsonFormatter(logging.Formatter):
    """A minimal JSON formatter for logging records."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        execution_id = getattr(record, "execution_id", None)
        if execution_id is not None:
            payload["execution_id"] = execution_id

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_LOG_RECORD_ATTRS
            and key != "execution_id"
            and not key.startswith("_")
        }
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str) -> None:
    """Configure root logging with structured JSON output."""

    root = logging.getLogger()

    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonFormatter())
    handler.addFilter(ExecutionContextFilter())

    root.addHandler(handler)
    root.setLevel(level.upper())

    # HTTP client and access logs stay at INFO or above.
    for name in ("urllib3", "uvicorn.access"):
        logging.getLogger(name).setLevel(max(root.level, logging.INFO))
