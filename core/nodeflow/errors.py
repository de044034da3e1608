"""Exception hierarchy shared by the graph and storage halves."""

from __future__ import annotations


class NodeflowError(Exception):
    """Base for all nodeflow errors."""


class GraphValidationError(NodeflowError):
    """The graph cannot be run: no nodes, no entry point, or a cycle."""

    def __init__(
        self,
        errors: list[str],
        cycles: list[list[str]] | None = None,
    ):
        super().__init__("; ".join(errors) if errors else "invalid graph")
        self.errors = errors
        self.cycles = cycles or []


class NodeExecutionError(NodeflowError):
    """A node's execute() failed. Halts the branch below that node."""

    def __init__(self, node_id: str, message: str, *, cause: BaseException | None = None):
        super().__init__(f"[{node_id}] {message}")
        self.node_id = node_id
        self.cause = cause


class RunStoppedError(NodeflowError):
    """Cooperative cancellation: the run was stopped before this node started."""

    def __init__(self, node_id: str | None = None):
        message = "run stopped" if node_id is None else f"run stopped before node {node_id}"
        super().__init__(message)
        self.node_id = node_id


class VariableError(NodeflowError):
    """Unknown variable, readonly write, bad name, or type/size violation."""

    def __init__(self, message: str, name: str | None = None):
        super().__init__(message)
        self.name = name


class StorageBackendError(NodeflowError):
    """A storage tier is unavailable and no fallback tier applies."""


class InteractionCancelled(NodeflowError):
    """The user explicitly cancelled a prompt."""
