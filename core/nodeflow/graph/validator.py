"""
Graph validation before a run.

Errors block the run (no nodes, no entry point, cycles, dangling
connections). Warnings are reported but the run may proceed (isolated
nodes, node types missing required configuration).
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from nodeflow.graph.edge import GraphSpec
from nodeflow.graph.node import NodeSpec
from nodeflow.graph.resolver import DependencyResolver

logger = logging.getLogger(__name__)

# returns a list of problems; empty means the config is complete
ConfigCheck = Callable[[NodeSpec], list[str]]


def _require_text(key: str, label: str) -> ConfigCheck:
    def check(spec: NodeSpec) -> list[str]:
        value = spec.config.get(key)
        if not isinstance(value, str) or not value.strip():
            return [f"missing {label}"]
        return []

    return check


def _check_condition(spec: NodeSpec) -> list[str]:
    if spec.config.get("operator") in ("empty", "not_empty"):
        return []
    if not spec.config.get("condition"):
        return ["missing condition value"]
    return []


DEFAULT_CONFIG_CHECKS: dict[str, ConfigCheck] = {
    "ai-chat": _require_text("prompt", "prompt"),
    "ai-text-generation": _require_text("prompt", "prompt"),
    "ai-text-analysis": _require_text("prompt", "prompt"),
    "file-output": _require_text("filename", "output filename"),
    "http-request": _require_text("url", "request URL"),
    "condition": _check_condition,
}


@dataclass
class ValidationResult:
    """Outcome of validating a graph."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    cycles: list[list[str]] = field(default_factory=list)
    start_nodes: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def error(self) -> str:
        """Combined error message."""
        return "; ".join(self.errors)


class GraphValidator:
    """
    Validates a GraphSpec before execution.

    Per-type configuration requirements are pluggable:

        validator = GraphValidator()
        validator.register_config_check("email", lambda spec: [] if spec.config.get("to") else ["missing recipient"])
    """

    def __init__(self, config_checks: dict[str, ConfigCheck] | None = None):
        self.config_checks = dict(DEFAULT_CONFIG_CHECKS if config_checks is None else config_checks)

    def register_config_check(self, node_type: str, check: ConfigCheck) -> None:
        self.config_checks[node_type] = check

    def check_node_config(self, spec: NodeSpec) -> list[str]:
        check = self.config_checks.get(spec.type)
        return check(spec) if check else []

    def validate(self, graph: GraphSpec) -> ValidationResult:
        result = ValidationResult()

        if not graph.nodes:
            result.errors.append("Workflow has no nodes")
            return result

        result.errors.extend(graph.validate_structure())

        resolver = DependencyResolver(graph)
        result.start_nodes = resolver.find_start_nodes()
        if not result.start_nodes:
            result.errors.append("No start node: every node has an inbound connection")

        isolated = [n for n in graph.node_ids if resolver.is_isolated(n)] if len(graph.nodes) > 1 else []
        if isolated:
            result.warnings.append(f"Found {len(isolated)} isolated node(s): {', '.join(isolated)}")

        result.cycles = resolver.detect_cycles()
        for cycle in result.cycles:
            result.errors.append(f"Cycle detected: {' → '.join(cycle)}")

        for spec in graph.nodes:
            problems = self.check_node_config(spec)
            if problems:
                title = spec.title or spec.type
                result.warnings.append(
                    f"Node {title} ({spec.id}) configuration incomplete: {', '.join(problems)}"
                )

        if result.is_valid:
            logger.debug(f"Graph '{graph.id}' valid ({len(result.warnings)} warnings)")
        return result
