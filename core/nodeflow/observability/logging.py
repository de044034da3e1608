"""
Logging with run/node context.

The executor stamps a ContextVar with ``run_id``/``graph_id`` when a run
starts and with ``node_id`` inside each node task. asyncio copies context
into the tasks it creates, so every record logged below a node carries the
node it came from.
"""

import json
import logging
import os
import re
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

trace_context: ContextVar[dict[str, Any]] = ContextVar("trace_context", default={})

_ANSI = re.compile(r"\x1b\[[0-9;]*m")

# third-party loggers that should follow the root configuration
_ROUTED_LOGGERS = ("httpx", "httpcore")


def _plain(value: Any) -> Any:
    return _ANSI.sub("", value) if isinstance(value, str) else value


class StructuredFormatter(logging.Formatter):
    """One JSON object per line."""

    EXTRA_FIELDS = ("event", "node_id", "variable", "latency_ms")

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": _plain(record.getMessage()),
            **trace_context.get(),
        }
        # explicit extra= fields win over the ambient context
        entry.update(
            {
                name: _plain(getattr(record, name))
                for name in self.EXTRA_FIELDS
                if getattr(record, name, None) is not None
            }
        )
        if record.exc_info:
            entry["exception"] = _plain(self.formatException(record.exc_info))
        return json.dumps(entry, ensure_ascii=False, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Colored level, then ``[run:xxxxxxxx | node:id]`` when a run is active."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        trace = trace_context.get()
        tags = []
        if trace.get("run_id"):
            tags.append(f"run:{trace['run_id'][-8:]}")
        if trace.get("node_id"):
            tags.append(f"node:{trace['node_id']}")

        message = record.getMessage()
        if tags:
            message = f"[{' | '.join(tags)}] {message}"
        color = self.COLORS.get(record.levelname, "")
        message = f"{color}[{record.levelname:<8}]{self.RESET} {message}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return message


def _resolve_format(format: str) -> str:
    if format != "auto":
        return format
    if os.getenv("LOG_FORMAT", "").lower() == "json":
        return "json"
    return "json" if os.getenv("ENV", "development").lower() == "production" else "human"


def configure_logging(level: str = "INFO", format: str = "auto") -> None:
    """
    Install a single root handler.

    Args:
        level: Log level name
        format: "json", "human", or "auto" (JSON when LOG_FORMAT=json or
            ENV=production)
    """
    handler = logging.StreamHandler()
    if _resolve_format(format) == "json":
        handler.setFormatter(StructuredFormatter())
        os.environ["NO_COLOR"] = "1"
    else:
        handler.setFormatter(HumanReadableFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())

    for name in _ROUTED_LOGGERS:
        routed = logging.getLogger(name)
        routed.handlers.clear()
        routed.propagate = True


def set_trace_context(**fields: Any) -> None:
    """Merge ``fields`` into the context of the current task."""
    trace_context.set({**trace_context.get(), **fields})


def get_trace_context() -> dict[str, Any]:
    return dict(trace_context.get())


def clear_trace_context() -> None:
    trace_context.set({})
