"""
Connection Protocol - how nodes are wired together.

A connection binds one node's output to another node's input:

    (from_node, from_output) → (to_node, to_input)

The graph is a multigraph: any node may have many inbound and outbound
connections, including several between the same pair of nodes.
"""

from typing import Any

from pydantic import BaseModel, Field

from nodeflow.graph.node import NodeSpec


class Connection(BaseModel):
    """
    A directed, immutable edge between two node ports.

    Example:
        Connection(from_node="fetch", from_output="text", to_node="summarize", to_input="text")
    """

    from_node: str
    from_output: str
    to_node: str
    to_input: str

    model_config = {"frozen": True}

    @property
    def id(self) -> str:
        return f"{self.from_node}.{self.from_output}->{self.to_node}.{self.to_input}"


class GraphSpec(BaseModel):
    """
    Complete description of a workflow graph.

    Example:
        GraphSpec(
            id="greeting-flow",
            nodes=[NodeSpec(id="A", outputs=["text"]), NodeSpec(id="B", inputs=["greeting"])],
            connections=[Connection(from_node="A", from_output="text",
                                    to_node="B", to_input="greeting")],
        )
    """

    id: str = "workflow"
    name: str = ""
    version: str = "1.0.0"
    nodes: list[NodeSpec] = Field(default_factory=list)
    connections: list[Connection] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "allow"}

    @property
    def node_ids(self) -> list[str]:
        return [node.id for node in self.nodes]

    def get_node(self, node_id: str) -> NodeSpec | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_outgoing_connections(self, node_id: str) -> list[Connection]:
        return [c for c in self.connections if c.from_node == node_id]

    def get_incoming_connections(self, node_id: str) -> list[Connection]:
        return [c for c in self.connections if c.to_node == node_id]

    def get_connection_into(self, node_id: str, input_name: str) -> Connection | None:
        """First connection feeding ``node_id.input_name``, if any."""
        for connection in self.connections:
            if connection.to_node == node_id and connection.to_input == input_name:
                return connection
        return None

    def validate_structure(self) -> list[str]:
        """
        Check references inside the graph.

        Returns:
            Error strings for duplicate node ids and connections that point
            at nodes not in the graph
        """
        errors = []
        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                errors.append(f"Duplicate node id '{node.id}'")
            seen.add(node.id)

        for connection in self.connections:
            if connection.from_node not in seen:
                errors.append(f"Connection {connection.id} starts at unknown node '{connection.from_node}'")
            if connection.to_node not in seen:
                errors.append(f"Connection {connection.id} ends at unknown node '{connection.to_node}'")
        return errors
