"""Correlation ids for booking and payment log records.

Orchestrator calls run under the caller's ``RequestContext.request_id``;
payment notifications run under ``WH-<event id>``. Background notification
tasks inherit the id of the call that queued them.

``load_config`` installs ``RequestIdFilter`` on the root handlers, so
``LOG_FORMAT`` can reference ``%(request_id)s`` for records from any logger,
including the Stripe and Resend clients.

Usage:
    from studio_booking.logging_context import get_request_logger, request_scope

    logger = get_request_logger(__name__)
    with request_scope("WH-evt_123"):
        logger.info("Confirming booking")  # ... [WH-evt_123]: Confirming booking
"""

import logging
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Iterable, Iterator

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s [%(request_id)s]: %(message)s"
NO_REQUEST_ID = "-"

_request_id: ContextVar[str] = ContextVar("request_id", default=NO_REQUEST_ID)


def set_request_id(request_id: str) -> Token:
    """Bind ``request_id`` to the current task until it is replaced."""
    return _request_id.set(request_id)


def get_request_id() -> str:
    return _request_id.get()


@contextmanager
def request_scope(request_id: str) -> Iterator[str]:
    """Bind ``request_id`` for the duration of the block, then restore the previous id."""
    token = _request_id.set(request_id)
    try:
        yield request_id
    finally:
        _request_id.reset(token)


class RequestIdFilter(logging.Filter):
    """Stamps ``request_id`` on records that do not carry one yet."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = _request_id.get()  # type: ignore[attr-defined]
        return True


def _attach(target, filter_: logging.Filter) -> None:
    if not any(isinstance(f, RequestIdFilter) for f in target.filters):
        target.addFilter(filter_)


def install_request_id_filter(handlers: Iterable[logging.Handler]) -> None:
    """Attach a ``RequestIdFilter`` to each handler that lacks one."""
    for handler in handlers:
        _attach(handler, RequestIdFilter())


def get_request_logger(name: str) -> logging.Logger:
    """Return a logger whose records always carry ``request_id``."""
    logger = logging.getLogger(name)
    _attach(logger, RequestIdFilter())
    return logger
