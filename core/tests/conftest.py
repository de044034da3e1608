"""Shared fixtures: an in-memory storage manager and graph builders."""

from pathlib import Path

import pytest

from nodeflow.config import StorageConfig
from nodeflow.graph.edge import Connection, GraphSpec
from nodeflow.graph.node import NodeSpec
from nodeflow.observability import clear_trace_context
from nodeflow.storage.manager import StorageManager


def build_graph(edges: list[tuple[str, str, str, str]], nodes: list[NodeSpec] | None = None) -> GraphSpec:
    """
    Build a graph from (from_node, from_output, to_node, to_input) tuples.

    Nodes not given explicitly are created with the ports the edges use.
    """
    specs = {spec.id: spec for spec in (nodes or [])}
    for from_node, from_output, to_node, to_input in edges:
        source = specs.setdefault(from_node, NodeSpec(id=from_node))
        if from_output not in source.outputs:
            source.outputs.append(from_output)
        target = specs.setdefault(to_node, NodeSpec(id=to_node))
        if to_input not in target.inputs:
            target.inputs.append(to_input)

    return GraphSpec(
        id="test-graph",
        nodes=list(specs.values()),
        connections=[Connection(from_node=a, from_output=b, to_node=c, to_input=d) for a, b, c, d in edges],
    )


@pytest.fixture
def make_graph():
    return build_graph


@pytest.fixture
def storage_config(tmp_path: Path) -> StorageConfig:
    return StorageConfig(storage_dir=tmp_path, memory_budget=1024 * 1024)


@pytest.fixture
def storage(storage_config: StorageConfig):
    manager = StorageManager.in_memory(config=storage_config)
    yield manager
    manager.close()


@pytest.fixture(autouse=True)
def _reset_trace_context():
    yield
    clear_trace_context()
