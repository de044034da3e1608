"""
nodeflow - run node graphs over a shared, tiered variable store.

The two halves:
- graph: dependency resolution, validation and the workflow executor
- storage: typed variables spread over ephemeral, session, persistent
  and large-object backends
"""

from nodeflow.errors import (
    GraphValidationError,
    InteractionCancelled,
    NodeExecutionError,
    NodeflowError,
    RunStoppedError,
    StorageBackendError,
    VariableError,
)
from nodeflow.graph import (
    AutoResponderGate,
    Connection,
    DependencyResolver,
    FunctionNode,
    GraphSpec,
    GraphValidator,
    InteractionGate,
    NodeSpec,
    PromptAction,
    PromptResult,
    WorkflowExecutor,
    WorkflowNode,
)
from nodeflow.schemas import ExecutionRun, RunStatus
from nodeflow.storage import StorageManager, TypeRegistry

__all__ = [
    # Errors
    "NodeflowError",
    "GraphValidationError",
    "NodeExecutionError",
    "RunStoppedError",
    "VariableError",
    "StorageBackendError",
    "InteractionCancelled",
    # Graph
    "Connection",
    "NodeSpec",
    "GraphSpec",
    "WorkflowNode",
    "FunctionNode",
    "DependencyResolver",
    "GraphValidator",
    "WorkflowExecutor",
    "InteractionGate",
    "AutoResponderGate",
    "PromptAction",
    "PromptResult",
    # Schemas
    "ExecutionRun",
    "RunStatus",
    # Storage
    "StorageManager",
    "TypeRegistry",
]
