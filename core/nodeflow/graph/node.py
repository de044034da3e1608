"""
Node Protocol - the executable units of a workflow graph.

A node is described declaratively by a NodeSpec (what the canvas saves) and
run through a WorkflowNode implementation (what the executor calls). Nodes
exchange values through their ``inputs``/``outputs`` dicts; the executor
fills ``inputs`` before ``execute()`` and reads the returned output bag.
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from collections.abc import Callable
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class NodeStatus(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class NodeSpec(BaseModel):
    """
    Declarative description of a node.

    Example:
        NodeSpec(
            id="summarize",
            type="ai-chat",
            title="Summarize",
            inputs=["text"],
            outputs=["summary"],
            config={"prompt": "Summarize: {{text}}"},
        )
    """

    id: str
    type: str = "function"
    title: str = ""
    inputs: list[str] = Field(default_factory=list, description="Declared input names")
    outputs: list[str] = Field(default_factory=list, description="Declared output names")
    config: dict[str, Any] = Field(default_factory=dict)
    defaults: dict[str, Any] = Field(
        default_factory=dict, description="Fallback input values when nothing else supplies one"
    )

    model_config = {"extra": "allow"}


class WorkflowNode(ABC):
    """
    Base class for node implementations.

    Subclasses implement ``execute()``; everything else (status, input and
    output bags, reset between runs) is handled here.
    """

    def __init__(self, spec: NodeSpec | None = None):
        self.spec = spec or NodeSpec(id="")
        self.inputs: dict[str, Any] = {}
        self.outputs: dict[str, Any] = {}
        self.status = NodeStatus.IDLE

    @property
    def id(self) -> str:
        return self.spec.id

    @property
    def type(self) -> str:
        return self.spec.type

    @property
    def input_names(self) -> list[str]:
        return list(self.spec.inputs)

    @property
    def output_names(self) -> list[str]:
        return list(self.spec.outputs)

    @property
    def config(self) -> dict[str, Any]:
        return self.spec.config

    def bind_spec(self, spec: NodeSpec) -> None:
        """Attach the graph's description of this node (ids, ports, config)."""
        self.spec = spec

    def get_node_info(self) -> dict[str, Any]:
        return {
            "title": self.spec.title or self.spec.id,
            "inputs": self.input_names,
            "outputs": self.output_names,
        }

    def update_status(self, status: NodeStatus) -> None:
        self.status = NodeStatus(status)

    def reset(self) -> None:
        """Back to idle with empty input/output bags."""
        self.status = NodeStatus.IDLE
        self.inputs = {}
        self.outputs = {}

    @abstractmethod
    async def execute(self) -> dict[str, Any]:
        """Consume ``self.inputs`` and return the output bag."""


class FunctionNode(WorkflowNode):
    """
    Node backed by a plain function of the input bag.

    The function may be sync or async and must return a dict; sync functions
    run in a worker thread so they cannot block other branches.
    """

    def __init__(self, func: Callable[[dict[str, Any]], Any], spec: NodeSpec | None = None):
        super().__init__(spec)
        self.func = func

    async def execute(self) -> dict[str, Any]:
        if inspect.iscoroutinefunction(self.func):
            result = await self.func(dict(self.inputs))
        else:
            result = await asyncio.to_thread(self.func, dict(self.inputs))
        if result is None:
            return {}
        if not isinstance(result, dict):
            raise TypeError(
                f"Function node '{self.id}' returned {type(result).__name__}, expected dict"
            )
        return result
