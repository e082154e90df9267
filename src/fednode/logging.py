"""Logging configuration with structlog for JSON output in production."""

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog
from structlog.types import EventDict, Processor, WrappedLogger


def _add_node_identity(node_identity: str) -> Processor:
    def processor(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("node", node_identity)
        return event_dict

    return processor


def configure_logging(
    level: str,
    *,
    node_identity: str | None = None,
    json_output: bool | None = None,
) -> None:
    """Route stdlib and structlog records through one structlog renderer.

    Args:
        level: Log level string (DEBUG, INFO, WARNING, ERROR).
        node_identity: Peer identity stamped on every record as ``node``.
        json_output: Force JSON output. If None, JSON is used when APP_ENV=prod.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    if json_output is None:
        json_output = os.environ.get("APP_ENV", "dev") == "prod"

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if node_identity:
        shared_processors.append(_add_node_identity(node_identity))

    renderer: Processor = (
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Records from plain logging.getLogger() loggers pass through the same chain.
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level)
    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(max(log_level, logging.WARNING))


def bind_context(**kwargs: object) -> None:
    """Add key-value pairs to the context of the current log_context block."""
    structlog.contextvars.bind_contextvars(**kwargs)


@contextmanager
def log_context(**kwargs: object) -> Iterator[None]:
    """Bind context for the block and restore the enclosing context afterwards.

    Blocks nest: a dispatch inside a submission keeps the submission's
    event fields once the dispatch returns.
    """
    previous = structlog.contextvars.get_contextvars()
    structlog.contextvars.bind_contextvars(**kwargs)
    try:
        yield
    finally:
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(**previous)
