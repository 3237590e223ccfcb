"""Observability infrastructure for clusterform.

Quick start::

    from clusterform.observability import configure_logging, get_logger

    configure_logging()
    logger = get_logger(__name__)
"""

from .logging import configure_logging, get_logger

__all__ = [
    "configure_logging",
    "get_logger",
]
