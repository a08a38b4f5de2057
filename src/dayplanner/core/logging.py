"""Structured logging for the planner, context-aware and configurable.

Plain ``logging.getLogger(__name__)`` loggers throughout the package are
rendered through structlog's ProcessorFormatter, so no call site needs to know
about structlog. Console output is either ``text`` (colored, for terminals)
or ``json`` (one object per line). Every record carries the active planner
profile and the current OpenTelemetry trace/span ids.

With ``log_root`` set, a JSON copy of every record also goes to
``{log_root}/{planner_name}.log`` regardless of the console format.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from pathlib import Path

import structlog
from opentelemetry import trace

_planner_context: ContextVar[str | None] = ContextVar("planner_name", default=None)

_ZERO_TRACE_ID = "0" * 32
_ZERO_SPAN_ID = "0" * 16

# Libraries that log per-query or per-callback chatter at DEBUG.
_NOISE_LOGGERS = (
    "asyncio",
    "asyncpg",
)


def set_planner_context(name: str) -> None:
    _planner_context.set(name)


def get_planner_context() -> str | None:
    return _planner_context.get()


def add_planner_context(logger, method_name: str, event_dict: dict) -> dict:  # noqa: ARG001
    """structlog processor: tag the record with the active planner profile."""
    event_dict["planner"] = get_planner_context()
    return event_dict


def add_otel_context(logger, method_name: str, event_dict: dict) -> dict:  # noqa: ARG001
    """structlog processor: tag the record with the current span's ids.

    Outside a recording span both ids are all zeros, so the keys are always
    present and log queries can rely on them.
    """
    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        event_dict["trace_id"] = trace.format_trace_id(span_context.trace_id)
        event_dict["span_id"] = trace.format_span_id(span_context.span_id)
    else:
        event_dict["trace_id"] = _ZERO_TRACE_ID
        event_dict["span_id"] = _ZERO_SPAN_ID
    return event_dict


def _pre_chain(timestamp_fmt: str) -> list[structlog.types.Processor]:
    """Processors applied to every record before rendering."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=timestamp_fmt),
        add_planner_context,
        add_otel_context,
        structlog.stdlib.ExtraAdder(),
    ]


def _formatter(
    pre_chain: list[structlog.types.Processor], renderer: structlog.types.Processor
) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=pre_chain,
    )


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_root: Path | None = None,
    planner_name: str | None = None,
) -> None:
    """Install the console (and optional file) handler on the root logger.

    Calling it again replaces the previous handlers.
    """
    if planner_name:
        set_planner_context(planner_name)

    if fmt == "json":
        pre_chain = _pre_chain("iso")
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        pre_chain = _pre_chain("%H:%M:%S")
        renderer = structlog.dev.ConsoleRenderer()

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(_formatter(pre_chain, renderer))
    root.addHandler(console)

    if log_root is not None:
        log_dir = Path(log_root)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / f"{planner_name or 'dayplanner'}.log")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            _formatter(_pre_chain("iso"), structlog.processors.JSONRenderer())
        )
        root.addHandler(file_handler)

    for name in _NOISE_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
