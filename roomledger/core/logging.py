"""
Structured logging configuration for RoomLedger.

Log lines go to stderr so CLI tables on stdout stay clean. The correlation
ID lives in structlog's context variables, so background refresh tasks
started by a view carry the ID of the command that started them.
"""

import logging
import sys
import uuid
from typing import Optional

import structlog
from rich.console import Console
from rich.logging import RichHandler

CORRELATION_KEY = "correlation_id"

# Third-party loggers that are only interesting when debugging
NOISY_LOGGERS = ("httpx", "httpcore")


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Bind a correlation ID (generated when omitted) to the current context."""
    correlation_id = correlation_id or uuid.uuid4().hex[:8]
    structlog.contextvars.bind_contextvars(**{CORRELATION_KEY: correlation_id})
    return correlation_id


def get_correlation_id() -> Optional[str]:
    return structlog.contextvars.get_contextvars().get(CORRELATION_KEY)


def clear_correlation_id() -> None:
    structlog.contextvars.unbind_contextvars(CORRELATION_KEY)


def setup_logging(debug: bool = False, rich_output: bool = True) -> None:
    """
    Configure structlog and the standard library root logger.

    Args:
        debug: Enable debug level logging, including HTTP client internals
        rich_output: Rich console rendering; JSON lines otherwise
    """
    level = logging.DEBUG if debug else logging.INFO

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="ISO"),
        structlog.dev.set_exc_info,
    ]

    if rich_output:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=True, exception_formatter=structlog.dev.rich_traceback
            )
        )
        handler: logging.Handler = RichHandler(
            console=Console(stderr=True, force_terminal=True), show_path=False
        )
    else:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
        handler = logging.StreamHandler(sys.stderr)

    logging.basicConfig(level=level, format="%(message)s", datefmt="[%X]", handlers=[handler])
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level if debug else logging.WARNING)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.WriteLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
