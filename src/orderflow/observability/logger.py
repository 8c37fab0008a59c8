"""Structured logging keyed to broker records and orders.

structlog renders JSON (or console output in development).  Each entry
carries a ``correlation_id``: the ``topic:partition:offset`` of the record
being processed, or a random id outside the consume path.  Entries emitted
inside ``order_context`` also carry ``order_id`` and ``sequence``.
"""

from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import IO, TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from orderflow.core.models import BrokerRecord

_correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")


def get_correlation_id() -> str:
    cid = _correlation_id.get()
    if not cid:
        cid = str(uuid.uuid4())
        _correlation_id.set(cid)
    return cid


def set_correlation_id(correlation_id: str) -> None:
    _correlation_id.set(correlation_id)


def correlate_record(record: BrokerRecord) -> str:
    """Use the record's log position as the correlation id and return it."""
    cid = f"{record.topic}:{record.partition}:{record.offset}"
    _correlation_id.set(cid)
    return cid


def _add_correlation_id(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    event_dict.setdefault("correlation_id", get_correlation_id())
    return event_dict


@contextmanager
def order_context(order_id: str, sequence: int | None = None) -> Iterator[None]:
    """Bind ``order_id`` (and ``sequence``) to every structlog entry in scope."""
    fields: dict[str, Any] = {"order_id": order_id}
    if sequence is not None:
        fields["sequence"] = sequence
    with structlog.contextvars.bound_contextvars(**fields):
        yield


def setup_logging(
    level: str = "INFO",
    format: str = "json",
    stream: IO[str] | None = None,
) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Log level name; unknown names fall back to INFO.
        format: "json" for production, "console" for development.
        stream: Where log lines go.  Defaults to stderr so that command
            output on stdout stays parseable.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    renderer: Any
    if format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            _add_correlation_id,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=stream or sys.stderr,
        level=log_level,
    )
    logging.getLogger("orderflow").setLevel(log_level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
