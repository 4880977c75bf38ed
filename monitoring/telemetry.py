"""Structured logging setup for the context cache."""

from __future__ import annotations

import logging
from typing import Any

import structlog

audit_logger = structlog.get_logger("audit")


def configure_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Configure structlog for JSON or console output."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.CallsiteParameterAdder(
            [structlog.processors.CallsiteParameter.MODULE]
        ),
    ]
    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO))
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        logger_factory=structlog.PrintLoggerFactory(),
    )


def audit_log(event: str, **kwargs: Any) -> None:
    """Record an audit log event, e.g. a key removed by eviction."""
    audit_logger.info(event, **kwargs)
