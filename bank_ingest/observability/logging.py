"""
Structured logging for the API and the import worker.

structlog renders through the stdlib root handler, so library records (uvicorn,
rq, SQLAlchemy) come out in the same JSON lines as ours. Per-job fields are
carried in structlog contextvars; see `job_context`.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Iterator, Optional

import structlog

from bank_ingest.config import settings

# Libraries that log every request or query at INFO
_QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "openai": logging.WARNING,
    "pdfminer": logging.WARNING,
    "rq.worker": logging.INFO,
}


def setup_logging(json_logs: Optional[bool] = None, log_level: Optional[str] = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    Defaults come from settings: console output when DEBUG, JSON lines otherwise.
    """
    if json_logs is None:
        json_logs = not settings.DEBUG
    level_name = (log_level or settings.LOG_LEVEL).upper()

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_logs:
        # Tracebacks become a string field instead of a multi-line dump
        render_processors = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        render_processors = [structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *render_processors,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level_name, logging.INFO))

    for name, level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.DB_ECHO else logging.WARNING
    )


@contextmanager
def job_context(job_id, **fields) -> Iterator[None]:
    """Bind job_id (and any extra fields) to every log line emitted while one job runs."""
    with structlog.contextvars.bound_contextvars(job_id=str(job_id), **fields):
        yield
