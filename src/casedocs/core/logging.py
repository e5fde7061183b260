"""Structured logging for case document services.

Loggers come from ``get_logger(__name__)`` and log snake_case event names
with keyword context. Context bound with ``log_context`` (case, slot, batch
job) is merged into every event logged inside the block, including events
from tasks started there.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Iterator, Optional

import structlog

SERVICE_NAME = "casedocs"


def _parse_level(level: str) -> int:
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        raise ValueError(f"Unknown log level: {level}")
    return log_level


def _add_service(service: str):
    def processor(logger, method_name, event_dict):
        event_dict.setdefault("service", service)
        return event_dict

    return processor


def configure_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: Optional[str] = None,
    service: str = SERVICE_NAME,
) -> None:
    """Configure structured logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Emit one JSON object per line instead of console output
        log_file: Optional file path that also receives stdlib log records
        service: Value of the ``service`` key added to every event
    """
    log_level = _parse_level(level)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    processors: list = [
        structlog.contextvars.merge_contextvars,
        _add_service(service),
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_format:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        logging.getLogger().addHandler(file_handler)


@contextmanager
def log_context(**values) -> Iterator[None]:
    """Bind ``values`` to every event logged inside the block.

    None values are skipped.
    """
    bound = {key: value for key, value in values.items() if value is not None}
    with structlog.contextvars.bound_contextvars(**bound):
        yield


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically module name)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)
