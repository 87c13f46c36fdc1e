"""
Logging Configuration

structlog setup shared by the CLI scripts. Library modules only call
get_logger(); pipeline runs bind their run id with bind_run_context() so
every event of a run can be correlated.
"""
import logging
import sys
from typing import Any, Optional

import structlog
from structlog.types import EventDict, Processor

from config.settings import settings

# HTTP client loggers that log every request at INFO/DEBUG
NOISY_LOGGERS = ("urllib3", "requests", "sodapy")


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["app"] = "propsignal"
    event_dict["environment"] = settings.environment
    return event_dict


def _renderer_processors(log_format: str) -> list[Processor]:
    if log_format == "json":
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.processors.ExceptionRenderer(), structlog.dev.ConsoleRenderer()]


def setup_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> structlog.BoundLogger:
    """
    Configure structlog on top of the standard library root logger.

    Args:
        level: Log level name (defaults to settings.log_level)
        log_format: "json" or "console" (defaults to settings.log_format)

    Returns:
        Root structlog logger
    """
    level_name = (level or settings.log_level).upper()
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level_name),
        force=True,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, getattr(logging, level_name)))

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        add_app_context,
        *_renderer_processors(log_format or settings.log_format),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger()


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """
    Get a logger for a module.

    Args:
        name: Logger name (typically __name__)
    """
    return structlog.get_logger(name) if name else structlog.get_logger()


def bind_run_context(**context: Any) -> None:
    """Bind key/value pairs (run id, stage) onto every log line of the current run."""
    structlog.contextvars.bind_contextvars(**context)


def clear_run_context() -> None:
    structlog.contextvars.clear_contextvars()
