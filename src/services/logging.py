"""Logging configuration for billing batch jobs.

Provides dual output (stdout + file) with configurable level via LOG_LEVEL env var.
Default: INFO. Set LOG_LEVEL=WARNING for production, DEBUG for verbose output.

Every line carries the id of the batch job that emitted it, so the interleaved
output of concurrently billed accounts can be traced back to one run:

    [2024-02-01 06:00:03] [3f9c1a2e] src.services.batch_runner - INFO - Batch finished: ...
"""

import logging
import os
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Iterator

NO_BATCH = "-"

_batch_id: ContextVar[str] = ContextVar("billing_batch_id", default=NO_BATCH)


def current_batch_id() -> str | None:
    """Id of the batch job running in this context, if any."""
    batch_id = _batch_id.get()
    return None if batch_id == NO_BATCH else batch_id


@contextmanager
def batch_context(batch_id: str | None = None) -> Iterator[str]:
    """Tag log records emitted inside the block (and tasks it spawns) with a batch id."""
    batch_id = batch_id or uuid.uuid4().hex[:8]
    token = _batch_id.set(batch_id)
    try:
        yield batch_id
    finally:
        _batch_id.reset(token)


class BatchContextFilter(logging.Filter):
    """Stamp each record with the current batch id."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.batch = _batch_id.get()
        return True


def get_log_level(default: str = "INFO") -> int:
    """Get logging level from LOG_LEVEL environment variable.

    Returns:
        Logging level constant (default: INFO)
    """
    return _level_from_name(os.getenv("LOG_LEVEL", default))


def _level_from_name(name: str) -> int:
    return logging.getLevelNamesMapping().get(name.upper(), logging.INFO)


def setup_billing_logging(log_file: str = "logs/billing.log", level: str | None = None) -> None:
    """
    Configure root logger for billing jobs.

    Args:
        log_file: Path to log file (default: logs/billing.log)
        level: Level name; LOG_LEVEL env var when omitted
    """
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(
        fmt="[%(asctime)s] [%(batch)s] %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    batch_filter = BatchContextFilter()
    log_level = _level_from_name(level) if level else get_log_level()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    for handler in (logging.StreamHandler(sys.stdout), logging.FileHandler(log_path)):
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        handler.addFilter(batch_filter)
        root_logger.addHandler(handler)

    # SQL echo is noise at INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


__all__ = [
    "BatchContextFilter",
    "batch_context",
    "current_batch_id",
    "get_log_level",
    "setup_billing_logging",
]
