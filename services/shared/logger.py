"""
Structured Logging for the Notification Processors
==================================================
Each processor writes one JSON object per line to its CloudWatch log group.
A failed email can be traced from either side of the Emails Queue with:

    fields @timestamp, service, message, error
    | filter message_id = "payment-success-u1-1700000000000"
    | sort @timestamp asc

Fields on a line, in order of precedence (later wins):
  timestamp, level, service, logger, message
  everything bound with log_context() for the record being processed
  everything passed as extra={...} on the call itself

`service` is SERVICE_NAME (set per function by the ProcessingStack), or the
top-level package of the logger when running outside Lambda.
"""
from __future__ import annotations

import json
import logging
import os
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator

# Attributes every LogRecord carries; anything else came in through extra={...}
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

_bound_fields: ContextVar[dict[str, Any]] = ContextVar("edumatch_log_fields", default={})

_root_configured = False


class _PipelineJsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created)),
            "level": record.levelname,
            "service": os.environ.get("SERVICE_NAME") or record.name.split(".")[0],
            "logger": record.name,
            "message": record.getMessage(),
            **_bound_fields.get(),
        }
        line.update((k, v) for k, v in vars(record).items() if k not in _RECORD_ATTRS)

        if record.exc_info:
            line["exception"] = self.formatException(record.exc_info)

        return json.dumps(line, default=str)


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Bind fields to every log line emitted inside the block."""
    token = _bound_fields.set({**_bound_fields.get(), **fields})
    try:
        yield
    finally:
        _bound_fields.reset(token)


def _configure_root() -> None:
    root = logging.getLogger()
    formatter = _PipelineJsonFormatter()
    # The Lambda runtime pre-installs a handler on the root logger
    if not root.handlers:
        root.addHandler(logging.StreamHandler())
    for h in root.handlers:
        h.setFormatter(formatter)
    root.setLevel(getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO))


def get_logger(name: str) -> logging.Logger:
    global _root_configured
    if not _root_configured:
        _configure_root()
        _root_configured = True
    return logging.getLogger(name)
