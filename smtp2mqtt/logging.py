"""Structured logging for the bridge, aiosmtpd and uvicorn."""

from __future__ import annotations

import logging
import sys

import structlog

# Loggers owned by uvicorn; they install their own handlers unless told otherwise.
UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")

# aiosmtpd logs every SMTP command at INFO; uvicorn logs every health check request.
CHATTY_LOGGERS = ("mail.log", "uvicorn.access")


def _renderer(json: bool) -> structlog.types.Processor:
    if json:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer()


def setup_logging(*, json: bool = True, level: str = "INFO") -> None:
    """Route structlog and the stdlib loggers of aiosmtpd and uvicorn through one handler.

    Records from ``mail.log`` and uvicorn are plain stdlib records; they pass
    through the same pre-chain as structlog events, so every line on stdout
    carries the same keys and renderer.  ``mail.log`` and ``uvicorn.access``
    are held at WARNING unless *level* is stricter.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
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
            _renderer(json),
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())

    for name in UVICORN_LOGGERS:
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.propagate = True
        uvicorn_logger.setLevel(logging.NOTSET)

    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(root.level, logging.WARNING))
