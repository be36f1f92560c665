"""Structured logging for the engagement workers.

structlog loggers and stdlib loggers share one handler and one renderer,
so the services' event logs and the workers' stdlib messages come out in
the same format. Every line carries the ``service`` bound at startup, and
lines emitted inside ``tick_context`` also carry the job and tick id.
"""

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TextIO

import structlog

from tarbiya.config import Settings

QUIET_LOGGERS = ("sqlalchemy.engine", "arq.worker", "asyncio")

_handler: logging.Handler | None = None


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
    ]


def setup_logging(settings: Settings, service: str = "tarbiya", stream: TextIO | None = None) -> None:
    """Configure structlog and the root stdlib logger for JSON or console output."""
    global _handler  # noqa: PLW0603
    json_output = settings.log_format == "json"
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    final: list[structlog.types.Processor] = [structlog.stdlib.ProcessorFormatter.remove_processors_meta]
    if json_output:
        final += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        final.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=[
            *_shared_processors(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(foreign_pre_chain=_shared_processors(), processors=final)
    )
    root = logging.getLogger()
    if _handler is not None:
        root.removeHandler(_handler)
    root.addHandler(handler)
    root.setLevel(level)
    _handler = handler

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=service, environment=settings.environment)


@contextmanager
def tick_context(job: str) -> Iterator[str]:
    """Bind ``job`` and a fresh ``tick_id`` for every log line inside the block."""
    tick_id = uuid.uuid4().hex[:12]
    with structlog.contextvars.bound_contextvars(job=job, tick_id=tick_id):
        yield tick_id
