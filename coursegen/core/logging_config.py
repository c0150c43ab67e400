"""Structured logging configuration for coursegen.

Provides JSON-formatted logs in production and human-readable text in development.
While a worker processes a job, the job and worker identifiers are held in
contextvars and stamped on every JSON record.
"""

import contextvars
import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Optional


# Set by the worker around each job, read by the formatter.
job_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("job_id", default="")
worker_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("worker_id", default="")


class _JsonFormatter(logging.Formatter):
    """Emit each log record as a single JSON line.

    Merges any ``extra`` fields from the record into the top-level object
    so callers can do ``logger.info("msg", extra={"stage": "extract"})`` and
    get ``{"stage": "extract"}`` alongside the standard fields.
    """

    # Keys that belong to the LogRecord itself and should not leak into output.
    _RESERVED = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys())

    def format(self, record: logging.LogRecord) -> str:
        payload: dict = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        job_id = job_id_var.get("")
        if job_id:
            payload["job_id"] = job_id
        worker_id = worker_id_var.get("")
        if worker_id:
            payload["worker_id"] = worker_id

        for key, value in record.__dict__.items():
            if key not in self._RESERVED and key not in payload:
                payload[key] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


# ---------------------------------------------------------------------------
# Secret redaction: clone URLs and tool output can carry credentials
# ---------------------------------------------------------------------------

_SECRET_PATTERNS = [
    re.compile(r'\bgh[pousr]_[A-Za-z0-9]{20,}\b'),              # GitHub tokens
    re.compile(r'\bgithub_pat_[A-Za-z0-9_]{20,}\b'),            # GitHub fine-grained tokens
    re.compile(r'\bsk-[a-zA-Z0-9\-_]{20,}\b'),                  # Anthropic / OpenAI keys
    re.compile(r'(?i)(bearer\s+)[a-zA-Z0-9._\-]{20,}'),         # Bearer tokens
    re.compile(r'(https?://(?:[^/\s:@]+:)?)[^/\s:@]+(?=@)'),    # user:token@host in URLs
    re.compile(                                                 # key=value secrets
        r'(?i)((?:api_key|secret|password|token|authorization)[=:]\s*)[^\s,\'"@*]{8,}'
    ),
]

_REDACTED = "***REDACTED***"


class _SecretFilter(logging.Filter):
    """Redact potential secrets from log messages and exception text."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = self._redact(str(record.msg))
        if isinstance(record.args, tuple):
            record.args = tuple(
                self._redact(a) if isinstance(a, str) else a for a in record.args
            )
        if record.exc_text:
            record.exc_text = self._redact(record.exc_text)
        return True

    @staticmethod
    def _redact(text: str) -> str:
        for pattern in _SECRET_PATTERNS:
            text = pattern.sub(
                lambda m: m.group(1) + _REDACTED if m.lastindex else _REDACTED,
                text,
            )
        return text


def redact(text: str) -> str:
    """Redact secrets from arbitrary text (used before persisting tool output)."""
    return _SecretFilter._redact(text)


def setup_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Configure process-wide logging.

    Args:
        log_level: One of DEBUG, INFO, WARNING, ERROR, CRITICAL. Defaults to INFO.
        log_format: ``"json"`` for structured output, ``"text"`` for human-readable.
                    Defaults to ``"json"``.
    """
    level = (log_level or "INFO").upper()
    fmt = (log_format or "json").lower()

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(_SecretFilter())

    if fmt == "json":
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # Reduce noise from third-party libraries.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info("Logging configured", extra={"level": level, "format": fmt})
