"""
Structured logging setup.

Provides the structlog processor chain and a per-document context value so
that pipeline instances running side by side produce separable logs.
"""
import logging
import sys
from contextvars import ContextVar
from typing import Any, Optional

import structlog

from luxgate.config import get_settings

# Context variable for the document being processed (thread-safe)
document_id: ContextVar[str] = ContextVar("document_id", default="")


def get_document_id() -> str:
    """Get the current pipeline run's document ID."""
    return document_id.get()


def add_document_id_processor(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Structlog processor that adds the document ID to all log entries."""
    doc_id = get_document_id()
    if doc_id:
        event_dict["document_id"] = doc_id
    return event_dict


def configure_logging(level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    """
    Configure structlog over the stdlib logging module.

    Args:
        level: Log level name, defaults to the configured one.
        json_logs: Render JSON lines instead of console output.
    """
    settings = get_settings()
    level = (level or settings.log_level).upper()
    if json_logs is None:
        json_logs = settings.json_logs

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level, logging.INFO),
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            add_document_id_processor,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
