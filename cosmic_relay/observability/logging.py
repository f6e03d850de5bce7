"""
Structured logging configuration using structlog.

Production renders one JSON object per line; development gets the
colored console renderer. Standard-library loggers (asyncpg, uvicorn,
the event bus) are routed through the same handler so every line shares
one format.

Context binding:
    bind_context(request_id=...)        # per HTTP request
    with crawl_context("iss-position"):  # per crawl run
        ...
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog
from structlog.types import Processor

from cosmic_relay.config.settings import get_settings

_QUIET_LOGGERS = ("asyncio", "uvicorn.access", "playwright", "asyncpg")


def setup_logging(json_logs: bool | None = None) -> None:
    """
    Configure structlog and the root stdlib logger.

    Args:
        json_logs: Force JSON (True) or console (False) output. Defaults
            to JSON in production only.
    """
    settings = get_settings()
    if json_logs is None:
        json_logs = settings.is_production

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if json_logs:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
        force=True,
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_context(**kwargs) -> None:
    """Bind key-value pairs to every log line emitted from the current context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


@contextmanager
def crawl_context(source_id: str) -> Iterator[None]:
    """Tag log lines emitted during one crawl run with its source id."""
    with structlog.contextvars.bound_contextvars(source_id=source_id):
        yield
