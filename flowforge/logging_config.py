"""Structured logging configuration.

Modules keep using ``logging.getLogger(__name__)`` with ``extra={...}``
fields; this installs a root handler that renders those records (and
their extra fields) as JSON or as console lines through structlog.
"""

import logging
import sys

import structlog

from flowforge.config import LoggingSettings

_FORMATS = ("json", "console")


def configure_logging(settings: LoggingSettings) -> None:
    """Configure the root logger based on settings."""
    level = getattr(logging, settings.level.upper(), logging.INFO)
    log_format = settings.format if settings.format in _FORMATS else "json"

    pre_chain = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    processors = [structlog.stdlib.ProcessorFormatter.remove_processors_meta]
    if log_format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=False,
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=processors,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)
