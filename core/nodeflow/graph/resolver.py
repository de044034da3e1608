"""
Dependency Resolver - structural queries over a workflow graph.

Answers the scheduler's and validator's questions about a GraphSpec:
entry points, upstream/downstream neighbours, cycles, and a batch plan
for visualization.
"""

from nodeflow.graph.edge import GraphSpec


class DependencyResolver:
    """Graph queries. Cheap to construct; build one per graph."""

    def __init__(self, graph: GraphSpec):
        self.graph = graph
        self._next: dict[str, list[str]] = {node_id: [] for node_id in graph.node_ids}
        self._deps: dict[str, list[str]] = {node_id: [] for node_id in graph.node_ids}

        for connection in graph.connections:
            downstream = self._next.setdefault(connection.from_node, [])
            if connection.to_node not in downstream:
                downstream.append(connection.to_node)
            upstream = self._deps.setdefault(connection.to_node, [])
            if connection.from_node not in upstream:
                upstream.append(connection.from_node)

    def find_start_nodes(self) -> list[str]:
        """Nodes with no inbound connections, in graph order."""
        return [node_id for node_id in self.graph.node_ids if not self._deps.get(node_id)]

    def get_next_nodes(self, node_id: str) -> list[str]:
        """Distinct nodes fed by any output of ``node_id``."""
        return list(self._next.get(node_id, []))

    def get_node_dependencies(self, node_id: str) -> list[str]:
        """Distinct nodes feeding any input of ``node_id``."""
        return list(self._deps.get(node_id, []))

    def get_reachable_nodes(self, start_nodes: list[str]) -> set[str]:
        """Every node reachable from ``start_nodes`` (inclusive)."""
        reachable = set(start_nodes)
        frontier = list(start_nodes)
        while frontier:
            node_id = frontier.pop()
            for nxt in self._next.get(node_id, []):
                if nxt not in reachable:
                    reachable.add(nxt)
                    frontier.append(nxt)
        return reachable

    def is_isolated(self, node_id: str) -> bool:
        return not self._next.get(node_id) and not self._deps.get(node_id)

    def detect_cycles(self) -> list[list[str]]:
        """
        Depth-first search with an explicit recursion stack.

        When the search reaches a node already on the stack, the slice of
        the stack from that node to the current one is recorded as a cycle,
        so each loop member appears once, in discovery order.

        Returns:
            All cycles found; empty when the graph is acyclic
        """
        cycles: list[list[str]] = []
        visited: set[str] = set()

        for root in self.graph.node_ids:
            if root in visited:
                continue

            visited.add(root)
            path = [root]
            on_path = {root}
            iterators = [iter(self._next.get(root, []))]

            while iterators:
                nxt = next(iterators[-1], None)
                if nxt is None:
                    on_path.discard(path.pop())
                    iterators.pop()
                elif nxt in on_path:
                    cycles.append(path[path.index(nxt) :])
                elif nxt not in visited:
                    visited.add(nxt)
                    path.append(nxt)
                    on_path.add(nxt)
                    iterators.append(iter(self._next.get(nxt, [])))

        return cycles

    def get_execution_order(self, start_nodes: list[str] | None = None) -> list[list[str]]:
        """
        Group nodes into batches for planning.

        Batch 0 is the start set; each later batch holds the unplaced nodes
        whose every dependency sits in an earlier batch. Nodes that can
        never be placed (cycle members and their descendants) are left out.
        """
        start = list(start_nodes) if start_nodes is not None else self.find_start_nodes()
        if not start:
            return []

        batches = [start]
        placed = set(start)
        remaining = [node_id for node_id in self.graph.node_ids if node_id not in placed]

        while remaining:
            batch = [
                node_id
                for node_id in remaining
                if all(dep in placed for dep in self._deps.get(node_id, []))
            ]
            if not batch:
                break
            batches.append(batch)
            placed.update(batch)
            remaining = [node_id for node_id in remaining if node_id not in placed]

        return batches
