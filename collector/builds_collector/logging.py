"""
structlog setup for the builds collector.

Every record is one JSON line on stdout. Workflow tasks bind their workflow
name and execution id with :func:`execution_context`, so activity, stage and
fan-out events of one execution share those keys.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator

import structlog
from structlog.contextvars import bound_contextvars, merge_contextvars

from .config import settings

SERVICE_NAME = "builds-collector"


def resolve_log_level(level: str | None, environment: str) -> int:
    """LOG_LEVEL wins; otherwise production logs INFO and everything else DEBUG."""
    name = (level or ("INFO" if environment.lower() == "production" else "DEBUG")).strip().upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(level: int) -> None:
    logging.basicConfig(level=level)
    structlog.configure(
        processors=[
            merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.EventRenamer("message"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


@contextmanager
def execution_context(**values: Any) -> Iterator[None]:
    """Bind ``values`` to every record logged from the current context."""
    with bound_contextvars(**values):
        yield


configure_logging(resolve_log_level(settings.log_level, settings.environment))

logger = structlog.get_logger(SERVICE_NAME).bind(
    service=SERVICE_NAME,
    environment=settings.environment,
)
