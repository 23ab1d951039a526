"""
Structured JSON logging for the pharmacy inventory kernel.

Every module logs through ``get_logger`` with a snake_case event name as
the message and its fields in ``extra``. ``StructuredFormatter`` writes one
JSON object per record, merging the fields bound with ``LogContext.bind``
(the sale being committed, the terminal and pharmacist behind a request).
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator, Mapping
from contextlib import AbstractContextManager, contextmanager
from contextvars import ContextVar
from datetime import date, datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any

_LOGGER_PREFIX = "pharmacy_kernel"

_EMPTY: Mapping[str, str] = MappingProxyType({})
_bound: ContextVar[Mapping[str, str]] = ContextVar("pharmacy_log_context", default=_EMPTY)


class LogContext:
    """Request-scoped log fields, safe across threads and tasks."""

    FIELDS = frozenset({"correlation_id", "actor_id", "terminal_id", "sale_id"})

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_bound.get())

    @classmethod
    def clear(cls) -> None:
        _bound.set(_EMPTY)

    @classmethod
    def bind(cls, **fields: str | None) -> AbstractContextManager[type["LogContext"]]:
        """
        Bind ``fields`` for the duration of a ``with`` block.

        None values are skipped; an inner bind shadows the outer value and
        the outer one is back on exit.

        Raises:
            TypeError: a field outside ``FIELDS``.
        """
        unknown = set(fields) - cls.FIELDS
        if unknown:
            raise TypeError(f"Unknown log context fields: {sorted(unknown)}")
        return _bound_fields(cls, {k: v for k, v in fields.items() if v is not None})


@contextmanager
def _bound_fields(context: type[LogContext], fields: dict[str, str]) -> Iterator[type[LogContext]]:
    token = _bound.set(MappingProxyType({**_bound.get(), **fields}))
    try:
        yield context
    finally:
        _bound.reset(token)


# LogRecord attributes that are not caller-supplied ``extra`` fields.
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_value(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    # kernel errors carry their context as public attributes
    fields.update(
        (f"exc_{name}", value)
        for name, value in vars(exc).items()
        if not name.startswith("_") and name != "code"
    )
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON line per record; ``extra`` and bound context at top level."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_bound.get(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS:
                payload.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_value)


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``pharmacy_kernel`` namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False
_configure_lock = threading.Lock()


def configure_logging(*, level: int = logging.INFO, stream: Any = None) -> None:
    """Attach a JSON handler to the kernel logger. Later calls are no-ops."""
    global _configured
    with _configure_lock:
        if _configured:
            return
        _configured = True

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())
    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    kernel_logger.setLevel(level)
    kernel_logger.propagate = False
    kernel_logger.addHandler(handler)


def reset_logging() -> None:
    """Drop handlers so ``configure_logging`` applies again. Test use."""
    global _configured
    with _configure_lock:
        _configured = False
    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    kernel_logger.handlers.clear()
    kernel_logger.setLevel(logging.WARNING)
