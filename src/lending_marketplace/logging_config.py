"""Structured logging for the marketplace API and its background jobs.

Outside development every entry is a JSON line stamped with the service name
and environment; while developing, entries render as colored console output.
Two context sources are merged into each entry:

    - request_id, bound by RequestIDMiddleware for the life of a request
    - job, bound by `job_context` while a background job runs

A job inherits the request_id of the request that scheduled it, so oracle
calls can be traced back to the HTTP call that caused them.

Usage:
    from lending_marketplace.logging_config import setup_logging, get_logger
    setup_logging(log_level="DEBUG", json_logs=False, environment="development")
    logger = get_logger(__name__)
    logger.info("escrow.created", escrow_id="abc-123", total_amount="10000.00")
"""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from collections.abc import Iterator, MutableMapping

SERVICE_NAME = "lending-marketplace"

# Chatty at INFO; only their warnings are worth keeping.
_QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "aiosqlite", "httpx", "httpcore")


def _service_stamper(environment: str | None):
    """Processor adding the service name (and environment) to every entry."""

    def stamp(
        _logger: object, _method: str, event_dict: MutableMapping[str, object]
    ) -> MutableMapping[str, object]:
        event_dict.setdefault("service", SERVICE_NAME)
        if environment:
            event_dict.setdefault("env", environment)
        return event_dict

    return stamp


def _renderer(json_logs: bool) -> structlog.types.Processor:
    if json_logs:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=True)


def _route_stdlib(level: int, renderer: structlog.types.Processor) -> None:
    """Send every stdlib record (ours and third-party) through one stdout handler."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_logging(
    log_level: str = "DEBUG",
    json_logs: bool = False,
    environment: str | None = None,
) -> None:
    """Configure structlog once at startup.

    Args:
        log_level: Standard Python log level name (DEBUG, INFO, WARNING, ...).
        json_logs: Render JSON lines when True, colored console otherwise.
        environment: Value of APP_ENV, stamped on JSON entries as `env`.
    """
    level = getattr(logging, log_level.upper(), logging.DEBUG)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _service_stamper(environment if json_logs else None),
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    _route_stdlib(level, _renderer(json_logs))


@contextmanager
def job_context(job: str, **fields: object) -> Iterator[None]:
    """Bind a background job's name (plus any ids) for the entries it logs."""
    with structlog.contextvars.bound_contextvars(job=job, **fields):
        yield


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
