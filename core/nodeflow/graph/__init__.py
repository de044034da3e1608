"""Graph structures, validation and execution."""

from nodeflow.graph.edge import Connection, GraphSpec
from nodeflow.graph.executor import RunContext, TaskState, WorkflowExecutor
from nodeflow.graph.gate import (
    AutoResponderGate,
    InteractionGate,
    PromptAction,
    PromptDirection,
    PromptRequest,
    PromptResult,
    QueuedInteractionGate,
    TerminalInteractionGate,
)
from nodeflow.graph.node import FunctionNode, NodeSpec, NodeStatus, WorkflowNode
from nodeflow.graph.output_parser import parse_output_value
from nodeflow.graph.resolver import DependencyResolver
from nodeflow.graph.validator import GraphValidator, ValidationResult
from nodeflow.graph.variable_io import VariableIO

__all__ = [
    # Structure
    "Connection",
    "GraphSpec",
    "NodeSpec",
    "NodeStatus",
    "WorkflowNode",
    "FunctionNode",
    # Analysis
    "DependencyResolver",
    "GraphValidator",
    "ValidationResult",
    # Execution
    "WorkflowExecutor",
    "RunContext",
    "TaskState",
    "VariableIO",
    "parse_output_value",
    # Interaction
    "InteractionGate",
    "AutoResponderGate",
    "QueuedInteractionGate",
    "TerminalInteractionGate",
    "PromptAction",
    "PromptDirection",
    "PromptRequest",
    "PromptResult",
]
