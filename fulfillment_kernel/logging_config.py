"""
Module: fulfillment_kernel.logging_config
Responsibility: One JSON line per kernel event.  The event name is the log
    message (``order_placed``, ``stock_reserved``, ``payment_reversed``,
    ``transaction_rolled_back``); the fields of the request being served are
    attached from a context bound by FulfillmentService.handle.
Architecture position: Kernel, leaf module.  Imported by every layer; imports
    nothing from the kernel.

Invariants enforced:
    - Request fields come from a single context variable, so they follow the
      request across threads and asyncio tasks and unwind when bind() exits.
    - Only the names in REQUEST_FIELDS can be bound.  An event's own
      ``extra`` fields win over bound request fields of the same name.
    - Kernel errors are flattened into ``error_code``, ``error_type``,
      ``error_retryable`` and ``error_fields`` so log pipelines can filter on
      the same codes callers catch.

Failure modes:
    - ValueError from LogContext.bind() for an unknown field name.

Audit relevance:
    The log stream is operational, not the audit record (see AuditLogger),
    but correlation_id ties every line of one request together, including
    the rollback line of a failed transaction.
"""

from __future__ import annotations

__all__ = [
    "REQUEST_FIELDS",
    "LogContext",
    "StructuredFormatter",
    "bind_request",
    "configure_logging",
    "get_logger",
    "reset_logging",
]

import json
import logging
import sys
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterator, Mapping
from uuid import UUID, uuid4

REQUEST_FIELDS = ("correlation_id", "request_type", "order_id", "actor_id")

_LOGGER_PREFIX = "fulfillment_kernel"

_request_fields: ContextVar[Mapping[str, str]] = ContextVar(
    "fulfillment_request_fields", default={}
)


class LogContext:
    """Request-scoped fields attached to every log line."""

    @staticmethod
    def current() -> dict[str, str]:
        return dict(_request_fields.get())

    @staticmethod
    def clear() -> None:
        _request_fields.set({})

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[dict[str, str]]:
        """
        Add fields for the duration of the block.

        None values are skipped, so callers can pass optional ids directly.
        Fields bound by an outer block are restored on exit.
        """
        unknown = set(fields) - set(REQUEST_FIELDS)
        if unknown:
            raise ValueError(f"Unknown log context fields: {sorted(unknown)}")
        merged = dict(_request_fields.get())
        merged.update({k: str(v) for k, v in fields.items() if v is not None})
        token = _request_fields.set(merged)
        try:
            yield dict(merged)
        finally:
            _request_fields.reset(token)


def bind_request(request: Any):
    """
    Bind the log fields of a request envelope (PlaceOrder, CancelOrder, ...).

    A fresh correlation_id is minted per request.  order_id is taken from
    the envelope when it names one; actor_id from its actor, or from the
    buyer for a placement.
    """
    actor = getattr(request, "actor", None)
    actor_id = getattr(actor, "actor_id", None) or getattr(request, "user_id", None)
    return LogContext.bind(
        correlation_id=uuid4().hex,
        request_type=type(request).__name__,
        order_id=getattr(request, "order_id", None),
        actor_id=actor_id,
    )


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

# Attributes every LogRecord has; anything else on a record came from extra=
_RECORD_ATTRIBUTES = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}


def _to_json(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


def _error_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "error_type": type(exc).__name__,
        "error_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["error_code"] = code
        fields["error_retryable"] = bool(getattr(exc, "retryable", False))
    data = {k: v for k, v in vars(exc).items() if not k.startswith("_")}
    if data:
        fields["error_fields"] = data
    return fields


class StructuredFormatter(logging.Formatter):
    """Render a record as one JSON object keyed by ``event``."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        entry.update(_request_fields.get())
        entry.update(
            (k, v) for k, v in vars(record).items() if k not in _RECORD_ATTRIBUTES
        )

        if record.exc_info and record.exc_info[1] is not None:
            entry.update(_error_fields(record.exc_info[1]))
            entry["traceback"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=_to_json)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Logger under the fulfillment_kernel namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_setup_lock = threading.Lock()
_installed: logging.Handler | None = None


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Install one JSON handler on the kernel logger.

    Later calls are no-ops until reset_logging(); the kernel logger does not
    propagate to the root logger.
    """
    global _installed
    with _setup_lock:
        if _installed is not None:
            return
        _installed = handler or logging.StreamHandler(stream or sys.stderr)

    _installed.setFormatter(StructuredFormatter())
    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    kernel_logger.setLevel(level)
    kernel_logger.propagate = False
    kernel_logger.addHandler(_installed)


def reset_logging() -> None:
    """Remove kernel handlers and restore the default level (tests)."""
    global _installed
    with _setup_lock:
        _installed = None
    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    kernel_logger.handlers.clear()
    kernel_logger.setLevel(logging.WARNING)
