"""Logging configuration for the application."""

from __future__ import annotations

import contextvars
import logging
from collections.abc import Iterator
from contextlib import contextmanager

from healthsync.config import settings

request_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id",
    default=None,
)
sync_stage_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "sync_stage",
    default=None,
)


@contextmanager
def sync_stage(label: str) -> Iterator[None]:
    """Tag log records emitted inside the block with a sync stage label."""
    token = sync_stage_var.set(label)
    try:
        yield
    finally:
        sync_stage_var.reset(token)


class ContextFilter(logging.Filter):
    """Attach request_id and sync_stage from contextvars to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = request_id_var.get() or "-"
        if not getattr(record, "sync_stage", None):
            record.sync_stage = sync_stage_var.get() or "-"
        return True


def configure_logging() -> None:
    """Configure structured logging for the service."""
    factory = logging.getLogRecordFactory()

    def record_factory(*args, **kwargs):
        record = factory(*args, **kwargs)
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get() or "-"
        if not hasattr(record, "sync_stage"):
            record.sync_stage = sync_stage_var.get() or "-"
        return record

    logging.setLogRecordFactory(record_factory)
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format=(
            "%(asctime)s %(levelname)s %(name)s [%(sync_stage)s] %(message)s "
            "request_id=%(request_id)s"
        ),
    )
    root_logger = logging.getLogger()
    root_logger.addFilter(ContextFilter())
    for handler in root_logger.handlers:
        handler.addFilter(ContextFilter())
