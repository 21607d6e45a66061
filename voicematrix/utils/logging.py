"""Structured logging setup and call-scoped loggers.

Events are snake_case names with keyword context, rendered as JSON lines in
production and through the console renderer when ``debug`` is on.
"""

import logging
import sys
from typing import Any, List, Optional

import structlog

# Chatty third-party loggers held at WARNING regardless of app level.
QUIET_LOGGERS = ("aiosqlite", "httpx", "httpcore", "sqlalchemy.engine")


def _processors(debug: bool) -> List[Any]:
    renderer = structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer()
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.format_exc_info,
        renderer,
    ]


def setup_logging(debug: bool = False, service: Optional[str] = None) -> None:
    """Configure structlog and the stdlib root logger.

    ``service`` is bound into the context so every event carries it.
    """
    level = logging.DEBUG if debug else logging.INFO

    structlog.configure(
        processors=_processors(debug),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    if service:
        structlog.contextvars.bind_contextvars(service=service)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


class CallLogger:
    """Logger with the provider call id bound to every event."""

    def __init__(self, external_call_id: str):
        self.external_call_id = external_call_id
        self.logger = get_logger("pipeline.call").bind(call_id=external_call_id)

    def log(self, event: str, **kwargs: Any) -> None:
        self.logger.info(event, **kwargs)

    def warning(self, event: str, **kwargs: Any) -> None:
        self.logger.warning(event, **kwargs)

    def error(self, event: str, **kwargs: Any) -> None:
        self.logger.error(event, **kwargs)

    def step_failed(self, step: str, exc: BaseException) -> None:
        """An enrichment step failed after the call record was committed."""
        self.logger.error(
            "call_enrichment_step_failed",
            step=step,
            error=str(exc),
            error_type=type(exc).__name__,
        )
