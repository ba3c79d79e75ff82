"""
Structured JSON logging for the revenue kernel.

Every record is one JSON line.  The fields bound for the current ledger
operation (correlation id, customer, invoice, idempotency key, operation,
actor) ride along on every record logged inside ``LogContext.bind``.

Values are rendered for the ledger: Decimal amounts in fixed-point notation
(never ``1E+2``), UUIDs and timestamps as strings, enums by value.
"""

__all__ = [
    "CONTEXT_FIELDS",
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, TextIO
from uuid import UUID

_LOGGER_PREFIX = "revenue_kernel"

CONTEXT_FIELDS = (
    "correlation_id",
    "operation",
    "customer_id",
    "invoice_id",
    "idempotency_key",
    "actor_id",
)


def render_value(value: Any) -> Any:
    """JSON-safe form of a value found in a log record."""
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, Enum):
        return render_value(value.value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [render_value(v) for v in value]
    return value


class LogContext:
    """Fields of the ledger operation in progress, per thread or task."""

    _fields: ContextVar[Mapping[str, str]] = ContextVar("revenue_log_context", default={})

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[None]:
        """
        Add fields for the duration of the block.  None values are skipped;
        UUIDs are stored as strings.

        Raises:
            TypeError: For a field name outside CONTEXT_FIELDS.
        """
        unknown = set(fields) - set(CONTEXT_FIELDS)
        if unknown:
            raise TypeError(f"Unknown log context field(s): {sorted(unknown)}")
        merged = dict(cls._fields.get())
        merged.update({k: str(v) for k, v in fields.items() if v is not None})
        token = cls._fields.set(merged)
        try:
            yield
        finally:
            cls._fields.reset(token)

    @classmethod
    def current(cls) -> dict[str, str]:
        return dict(cls._fields.get())

    @classmethod
    def clear(cls) -> None:
        cls._fields.set({})


_RECORD_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


class StructuredFormatter(logging.Formatter):
    """Formats each record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.current())

        for key, value in vars(record).items():
            if key not in _RECORD_KEYS and key not in payload:
                payload[key] = render_value(value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    # ReconciliationError subclasses carry a code and their figures as attributes
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if not name.startswith("_") and name != "code":
            fields[f"exc_{name}"] = render_value(value)
    return fields


def get_logger(name: str) -> logging.Logger:
    """Logger under the revenue_kernel namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def configure_logging(*, level: int = logging.INFO, stream: TextIO | None = None) -> None:
    """
    Send revenue_kernel records to ``stream`` (stderr by default) as JSON
    lines.  Calling it again replaces the handler instead of adding one.
    """
    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    kernel_logger.handlers.clear()
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())
    kernel_logger.addHandler(handler)
    kernel_logger.setLevel(level)
    kernel_logger.propagate = False


def reset_logging() -> None:
    """Detach the kernel handler and hand records back to the root logger."""
    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    kernel_logger.handlers.clear()
    kernel_logger.setLevel(logging.NOTSET)
    kernel_logger.propagate = True
