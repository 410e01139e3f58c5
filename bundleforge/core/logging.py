"""
Logging setup for bundleforge.

Build stages log through structlog so that every line of a cycle carries
its cycle id. Third-party libraries (uvicorn, prefect, httpx) log through the
standard library and are routed to a rich handler on stderr, leaving stdout
to the CLI's own tables.
"""

from __future__ import annotations

import logging
import sys
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING

import structlog
from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from .config import Config

# library loggers that are too chatty at INFO during a dev session
QUIET_LOGGERS = ("uvicorn.access", "httpx")


def _stdlib_handler(log_level: str) -> logging.Handler:
    return RichHandler(
        console=Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        tracebacks_show_locals=log_level == "DEBUG",
    )


def _renderer() -> structlog.types.Processor:
    if sys.stderr.isatty():
        return structlog.dev.ConsoleRenderer(colors=True)
    return structlog.processors.JSONRenderer()


def setup_logging(config: Config | None = None) -> None:
    """Configure structlog and the standard library root logger.

    Args:
        config: Process settings; INFO is used when omitted.
    """
    log_level = config.log_level if config else "INFO"
    level = logging.getLevelName(log_level)
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[_stdlib_handler(log_level)],
        force=True,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="%H:%M:%S"),
        structlog.dev.set_exc_info,
    ]
    if not sys.stderr.isatty():
        processors.append(structlog.processors.dict_tracebacks)
    processors.append(_renderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger, usually named after the calling module."""
    return structlog.get_logger(name)


def bound_context(**kwargs: object) -> AbstractContextManager[None]:
    """Bind context variables for the duration of a ``with`` block.

    Build cycles use this so that concurrent stage logs carry the cycle id
    without leaking it into the next cycle.
    """
    return structlog.contextvars.bound_contextvars(**kwargs)


def log_subprocess_line(logger: structlog.stdlib.BoundLogger, tool: str, stream: str, line: str) -> None:
    """Forward one line of external tool output to the log."""
    if stream == "stderr":
        logger.info(line, tool=tool, stream=stream)
    else:
        logger.debug(line, tool=tool, stream=stream)
