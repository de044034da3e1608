"""
Observability for workflow runs.

Logging carries run and node context automatically:

    from nodeflow.observability import configure_logging
    configure_logging(level="INFO", format="auto")

Every record emitted while a run is active is tagged with its run_id, and
records emitted from inside a node task also carry the node_id.
"""

from nodeflow.observability.logging import (
    clear_trace_context,
    configure_logging,
    get_trace_context,
    set_trace_context,
)

__all__ = [
    "configure_logging",
    "get_trace_context",
    "set_trace_context",
    "clear_trace_context",
]
