# src/forgeflow/core/logging.py
"""Logging for forgeflow: structlog in front, stdlib underneath.

Both structlog loggers and plain ``logging.getLogger(__name__)`` loggers
render through one ``ProcessorFormatter``, as console text or JSON lines.

Everything is written to stderr. In server mode stdout carries JSON-RPC
frames; in CLI mode it carries results meant for scripts (test IDs, JSON
listings). An engine's own stderr is forwarded to the same stream by the
engine client, so engine diagnostics interleave with forgeflow's.

Workflow-wide fields (``test_id``, ``tool``) are attached with
``log_context`` and show up on every event logged inside it, including
events from the engine client.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, TextIO

import structlog
from structlog.stdlib import ProcessorFormatter

# Clamped to WARNING at most: the MCP SDK logs every frame at DEBUG
_QUIET_LOGGERS: tuple[str, ...] = (
    "mcp",
    "mcp.client.stdio",
    "mcp.server.lowlevel.server",
    "mcp.shared.session",
    "anyio",
    "asyncio",
    "httpx",
    "httpcore",
)


def _drop_formatter_bookkeeping(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    # ProcessorFormatter adds both keys to every record it formats
    del event_dict["_record"]
    del event_dict["_from_structlog"]
    return event_dict


def _pre_chain() -> list[Any]:
    """Processors applied to structlog events and foreign stdlib records alike."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]


def _render_chain(json_output: bool) -> list[Any]:
    if json_output:
        return [
            _drop_formatter_bookkeeping,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    return [_drop_formatter_bookkeeping, structlog.dev.ConsoleRenderer(colors=False)]


def configure_logging(
    *,
    json_output: bool = False,
    level: str = "INFO",
    stream: TextIO | None = None,
) -> None:
    """Install the forgeflow logging pipeline on the root logger.

    Safe to call more than once; each call replaces the previous handler.

    Args:
        json_output: Render JSON lines instead of console text
        level: Root level name (DEBUG, INFO, WARNING, ERROR)
        stream: Destination, sys.stderr when omitted (looked up at call time)
    """
    log_level = logging.getLevelNamesMapping()[level.upper()]
    pre_chain = _pre_chain()

    structlog.configure(
        processors=[*pre_chain, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Tests reconfigure between cases
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(ProcessorFormatter(processors=_render_chain(json_output), foreign_pre_chain=pre_chain))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)

    quiet_level = max(log_level, logging.WARNING)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Module logger; call with ``__name__``."""
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Attach ``fields`` to every event logged in this context (and its threads)."""
    with structlog.contextvars.bound_contextvars(**fields):
        yield
