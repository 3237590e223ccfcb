"""Structured logging configuration for clusterform.

Log lines go to stderr as JSON (or console output), with any context vars
bound by the caller merged in. Tracing binds ``trace_id`` this way, so every
entry written inside a span carries it.

Usage::

    from clusterform.observability.logging import configure_logging, get_logger

    configure_logging()  # once, at process startup
    logger = get_logger(__name__)
    logger.info("converger_apply_started", work_dir=Path("/srv/infra"))
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import PurePath
from typing import Any

import structlog

_configured = False

# Libraries that log every request at INFO/DEBUG.
_NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "httpx", "httpcore")


def _render_paths(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Render filesystem paths as plain strings."""
    for key, value in event_dict.items():
        if isinstance(value, PurePath):
            event_dict[key] = str(value)
    return event_dict


def _shared_processors() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        _render_paths,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def configure_logging(
    *,
    level: str | None = None,
    json_output: bool | None = None,
    force: bool = False,
) -> None:
    """Configure structlog and route stdlib logging through it.

    Args:
        level: Log level name. Defaults to the LOG_LEVEL env var or INFO.
        json_output: JSON lines when True, console output when False.
            Defaults to LOG_FORMAT == "json".
        force: Reconfigure even if logging was already configured.
    """
    global _configured
    if _configured and not force:
        return
    _configured = True

    level = level or os.environ.get("LOG_LEVEL", "INFO")
    if json_output is None:
        json_output = os.environ.get("LOG_FORMAT", "json") == "json"

    shared = _shared_processors()
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # stdout belongs to command output (the node inventory).
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger bound to the given name."""
    return structlog.get_logger(name)
