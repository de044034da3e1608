"""
Workflow Executor - runs workflow graphs.

The executor:
1. Validates the GraphSpec (entry points, cycles, node config)
2. Binds a node implementation to every NodeSpec
3. Runs the graph as a task graph: a node starts once every upstream node
   reachable from the start set has finished successfully
4. Feeds inputs from bound variables, connections and defaults; saves
   bound outputs back to the shared namespace
5. Records results and errors on an ExecutionRun and keeps a short history

Independent branches run concurrently on the event loop. A node failure
halts only the branch below it. stop_execution() is cooperative: running
nodes finish, nothing new starts.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from nodeflow.config import ExecutorConfig
from nodeflow.errors import GraphValidationError, NodeExecutionError, RunStoppedError
from nodeflow.graph.edge import GraphSpec
from nodeflow.graph.gate import AutoResponderGate, InteractionGate
from nodeflow.graph.node import FunctionNode, NodeSpec, NodeStatus, WorkflowNode
from nodeflow.graph.resolver import DependencyResolver
from nodeflow.graph.validator import GraphValidator, ValidationResult
from nodeflow.graph.variable_io import VariableIO
from nodeflow.observability import set_trace_context
from nodeflow.runtime.event_bus import EventBus
from nodeflow.schemas.run import ExecutionRun, NodeRunResult, RunStatus
from nodeflow.storage.manager import StorageManager
from nodeflow.storage.media import MediaLoader

logger = logging.getLogger(__name__)

NodeFactory = Callable[[NodeSpec], WorkflowNode]


class TaskState(StrEnum):
    """Where a node stands within one run."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"  # an upstream node failed or was skipped
    STOPPED = "stopped"  # the run was stopped before it started
    BLOCKED = "blocked"  # waiting on a dependency cycle


@dataclass
class NodeTask:
    """Scheduling record for one node in one run."""

    node_id: str
    state: TaskState = TaskState.RUNNING
    task: asyncio.Task | None = None
    result: NodeRunResult | None = None
    error: str | None = None


class RunContext:
    """
    Per-run scheduler.

    ``run_node`` is idempotent: the first call creates the node's task, later
    calls return the same task, so a node that several branches converge on
    executes exactly once per run.
    """

    def __init__(
        self,
        executor: WorkflowExecutor,
        graph: GraphSpec,
        run: ExecutionRun,
        nodes: dict[str, WorkflowNode],
    ):
        self.executor = executor
        self.graph = graph
        self.run = run
        self.nodes = nodes
        self.resolver = DependencyResolver(graph)
        self.tasks: dict[str, NodeTask] = {}
        self.created_variables: set[str] = set()
        self._reachable: set[str] = set()

    def get_state(self, node_id: str) -> TaskState | None:
        node_task = self.tasks.get(node_id)
        return node_task.state if node_task else None

    def run_node(self, node_id: str) -> asyncio.Task:
        """Start ``node_id`` unless it already started this run."""
        existing = self.tasks.get(node_id)
        if existing is not None and existing.task is not None:
            return existing.task

        node_task = NodeTask(node_id=node_id)
        node_task.task = asyncio.create_task(self._invoke(node_task), name=f"node:{node_id}")
        self.tasks[node_id] = node_task
        return node_task.task

    async def execute(self, start_nodes: list[str]) -> None:
        """Run every node reachable from ``start_nodes`` that can become ready."""
        self._reachable = self.resolver.get_reachable_nodes(start_nodes)
        in_flight = {self.run_node(node_id) for node_id in start_nodes}

        while in_flight:
            done, in_flight = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                node_id = task.get_name().removeprefix("node:")
                in_flight.update(self._settle(node_id))

        self._fail_blocked()

    def _predecessors(self, node_id: str) -> list[str]:
        return [
            dep for dep in self.resolver.get_node_dependencies(node_id) if dep in self._reachable
        ]

    def _settle(self, node_id: str) -> list[asyncio.Task]:
        """
        Called when ``node_id`` reached a final state. Starts successors whose
        predecessors all succeeded; marks successors of a failed, skipped or
        stopped node without running them.
        """
        started: list[asyncio.Task] = []
        frontier = [node_id]

        while frontier:
            current = frontier.pop()
            for nxt in self.resolver.get_next_nodes(current):
                if nxt not in self._reachable or nxt in self.tasks:
                    continue
                states = [self.get_state(dep) for dep in self._predecessors(nxt)]
                if any(state is None or state == TaskState.RUNNING for state in states):
                    continue

                if all(state == TaskState.SUCCEEDED for state in states):
                    started.append(self.run_node(nxt))
                    continue

                halted = TaskState.STOPPED if TaskState.STOPPED in states else TaskState.SKIPPED
                self.tasks[nxt] = NodeTask(node_id=nxt, state=halted)
                logger.info(f"Skipping {nxt}: upstream branch did not complete")
                frontier.append(nxt)

        return started

    def _fail_blocked(self) -> None:
        """Reachable nodes that never became ready sit behind a dependency cycle."""
        blocked = [
            node_id
            for node_id in self.graph.node_ids
            if node_id in self._reachable and node_id not in self.tasks
        ]
        if not blocked:
            return

        message = f"Dependency cycle blocks nodes: {', '.join(blocked)}"
        logger.error(f"✗ {message}")
        self.run.record_error(message)
        for node_id in blocked:
            self.tasks[node_id] = NodeTask(node_id=node_id, state=TaskState.BLOCKED, error=message)
            node = self.nodes.get(node_id)
            if node is not None:
                node.update_status(NodeStatus.ERROR)

    async def _invoke(self, node_task: NodeTask) -> NodeRunResult | None:
        node_id = node_task.node_id
        set_trace_context(node_id=node_id)

        try:
            if self.executor.stop_requested:
                raise RunStoppedError(node_id)
            node_task.result = await self._execute_node(node_id)
        except RunStoppedError as e:
            node_task.state = TaskState.STOPPED
            logger.info(f"⏹ {e}")
            return None
        except NodeExecutionError as e:
            node_task.state = TaskState.FAILED
            node_task.error = str(e)
            await self._record_failure(node_id, e)
            return None

        node_task.state = TaskState.SUCCEEDED
        return node_task.result

    async def _record_failure(self, node_id: str, error: NodeExecutionError) -> None:
        message = str(error.cause) if error.cause is not None else str(error)
        logger.error(f"✗ Node {node_id} failed: {message}")

        self.run.record_error(f"Node {node_id} failed: {message}", node_id=node_id)
        node = self.nodes.get(node_id)
        self.run.results[node_id] = NodeRunResult(
            node_id=node_id,
            inputs=dict(node.inputs) if node else {},
            status="error",
            error=message,
        )
        if self.executor.event_bus is not None:
            await self.executor.event_bus.emit_node_failed(self.run.id, node_id, message)

    async def _execute_node(self, node_id: str) -> NodeRunResult:
        node = self.nodes.get(node_id)
        if node is None:
            raise NodeExecutionError(node_id, "no implementation registered for this node")

        info = node.get_node_info()
        logger.info(f"▶ {info['title']} ({node.type})")
        node.update_status(NodeStatus.RUNNING)
        if self.executor.event_bus is not None:
            await self.executor.event_bus.emit_node_started(self.run.id, node_id)

        upstream = {
            nid: dict(other.outputs)
            for nid, other in self.nodes.items()
            if self.get_state(nid) == TaskState.SUCCEEDED
        }
        try:
            node.inputs = await self.executor.variable_io.resolve_inputs(node, self.graph, upstream)
            outputs = await node.execute()
            if outputs is not None and not isinstance(outputs, dict):
                raise TypeError(f"execute() returned {type(outputs).__name__}, expected a dict")
            node.outputs = dict(outputs or {})
            saved = await self.executor.variable_io.save_outputs(
                node, node.outputs, self.created_variables
            )
        except RunStoppedError:
            node.update_status(NodeStatus.IDLE)
            raise
        except Exception as e:
            node.update_status(NodeStatus.ERROR)
            raise NodeExecutionError(node_id, str(e), cause=e) from e

        node.update_status(NodeStatus.SUCCESS)

        result = NodeRunResult(
            node_id=node_id,
            inputs=dict(node.inputs),
            outputs=dict(node.outputs),
            saved_variables=saved,
        )
        self.run.results[node_id] = result
        logger.info(f"✓ {info['title']} completed")

        if self.executor.event_bus is not None:
            await self.executor.event_bus.emit_node_completed(
                self.run.id, node_id, outputs=list(node.outputs)
            )
        return result


@dataclass
class ExecutionStats:
    """Totals over the run history."""

    total_runs: int = 0
    completed: int = 0
    failed: int = 0
    stopped: int = 0
    success_rate: float = 0.0
    average_duration_ms: int = 0
    last_run_at: datetime | None = None
    by_status: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_runs": self.total_runs,
            "completed": self.completed,
            "failed": self.failed,
            "stopped": self.stopped,
            "success_rate": self.success_rate,
            "average_duration_ms": self.average_duration_ms,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "by_status": dict(self.by_status),
        }


class WorkflowExecutor:
    """
    Executes workflow graphs against a shared StorageManager.

    Example:
        executor = WorkflowExecutor(storage)
        executor.register_function("A", lambda inputs: {"text": "hello"})
        executor.register_function("B", lambda inputs: {"out": inputs["greeting"].upper()})
        run = await executor.execute_workflow(graph)
    """

    def __init__(
        self,
        storage: StorageManager,
        gate: InteractionGate | None = None,
        event_bus: EventBus | None = None,
        config: ExecutorConfig | None = None,
        validator: GraphValidator | None = None,
        media_loader: MediaLoader | None = None,
    ):
        self.storage = storage
        self.gate = gate or AutoResponderGate()
        self.event_bus = event_bus
        self.config = config or ExecutorConfig()
        self.validator = validator or GraphValidator()
        self.variable_io = VariableIO(
            storage,
            self.gate,
            event_bus=event_bus,
            media_loader=media_loader,
            download_media=self.config.download_media,
        )

        self._nodes: dict[str, WorkflowNode] = {}
        self._node_types: dict[str, NodeFactory] = {}
        self._running = False
        self._stop_requested = False
        self.current_run: ExecutionRun | None = None
        self.execution_history: list[ExecutionRun] = []

    # === REGISTRATION ===

    def register_node(self, node_id: str, node: WorkflowNode) -> None:
        """Use ``node`` for the graph node with id ``node_id``."""
        self._nodes[node_id] = node

    def register_function(self, node_id: str, func: Callable[[dict[str, Any]], Any]) -> None:
        """Shortcut: a FunctionNode for ``node_id``."""
        self._nodes[node_id] = FunctionNode(func)

    def register_node_type(self, node_type: str, factory: NodeFactory) -> None:
        """Build nodes of ``node_type`` that have no per-id registration."""
        self._node_types[node_type] = factory

    def _build_nodes(self, graph: GraphSpec) -> dict[str, WorkflowNode]:
        nodes: dict[str, WorkflowNode] = {}
        for spec in graph.nodes:
            node = self._nodes.get(spec.id)
            if node is None and spec.type in self._node_types:
                node = self._node_types[spec.type](spec)
                self._nodes[spec.id] = node
            if node is None:
                logger.warning(f"⚠ No implementation for node {spec.id} ({spec.type})")
                continue
            node.bind_spec(spec)
            node.reset()
            nodes[spec.id] = node
        return nodes

    # === STATE ===

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def get_node(self, node_id: str) -> WorkflowNode | None:
        return self._nodes.get(node_id)

    # === PLANNING ===

    def validate(self, graph: GraphSpec) -> ValidationResult:
        return self.validator.validate(graph)

    def get_execution_plan(self, graph: GraphSpec) -> list[list[str]]:
        """Batches of nodes in dependency order, for display only."""
        return DependencyResolver(graph).get_execution_order()

    def create_context(self, graph: GraphSpec, run: ExecutionRun | None = None) -> RunContext:
        """A fresh scheduler for ``graph`` with freshly reset nodes."""
        run = run or ExecutionRun(id=self._new_run_id(), graph_id=graph.id)
        return RunContext(self, graph, run, self._build_nodes(graph))

    @staticmethod
    def _new_run_id() -> str:
        return f"run_{datetime.now().strftime('%Y%m%dT%H%M%S')}_{uuid.uuid4().hex[:8]}"

    # === EXECUTION ===

    async def execute_workflow(self, graph: GraphSpec, validate: bool = True) -> ExecutionRun | None:
        """
        Run ``graph`` to completion.

        Args:
            graph: The workflow
            validate: Reject graphs that fail validation before running

        Returns:
            The finished ExecutionRun, or None if a run is already active

        Raises:
            GraphValidationError: the graph has no nodes, no start node, or a cycle
        """
        if self._running:
            logger.warning("⚠ A workflow is already running; ignoring start request")
            return None

        if validate:
            validation = self.validator.validate(graph)
            for warning in validation.warnings:
                logger.warning(f"⚠ {warning}")
            if not validation.is_valid:
                logger.error(f"✗ Graph validation failed: {validation.error}")
                raise GraphValidationError(validation.errors, validation.cycles)
            start_nodes = validation.start_nodes
        else:
            start_nodes = DependencyResolver(graph).find_start_nodes()
            if not start_nodes:
                raise GraphValidationError(["Workflow has no start node"])

        self._running = True
        self._stop_requested = False
        run = ExecutionRun(id=self._new_run_id(), graph_id=graph.id)
        self.current_run = run
        set_trace_context(run_id=run.id, graph_id=graph.id)

        logger.info(f"🚀 Starting workflow {graph.name or graph.id} ({len(graph.nodes)} nodes)")
        if self.event_bus is not None:
            await self.event_bus.emit_execution_started(run.id, graph.id, len(graph.nodes))

        status = RunStatus.ERROR
        try:
            context = self.create_context(graph, run)
            await context.execute(start_nodes)
            run.created_variables = sorted(context.created_variables)

            if self._stop_requested:
                status = RunStatus.STOPPED
            elif run.errors:
                status = RunStatus.ERROR
            else:
                status = RunStatus.COMPLETED
        except Exception as e:
            logger.exception(f"✗ Workflow run {run.id} aborted")
            run.record_error(f"Run aborted: {e}")
            raise
        finally:
            run.finish(status)
            self._running = False
            self.current_run = None
            self._remember(run)
            if self.event_bus is not None:
                await self.event_bus.emit_execution_finished(
                    run.id,
                    run.status.value,
                    errors=[e.message for e in run.errors],
                    duration_ms=run.duration_ms,
                )

        icon = {"completed": "✓", "stopped": "⏹"}.get(run.status.value, "✗")
        logger.info(f"{icon} Workflow {run.status.value} in {run.duration_ms}ms ({len(run.errors)} errors)")
        return run

    def stop_execution(self) -> bool:
        """Ask the active run to stop. Returns False when nothing is running."""
        if not self._running:
            return False
        self._stop_requested = True
        logger.info("⏹ Stop requested; running nodes will finish, no new nodes start")
        return True

    def _remember(self, run: ExecutionRun) -> None:
        self.execution_history.append(run)
        overflow = len(self.execution_history) - self.config.run_history
        if overflow > 0:
            del self.execution_history[:overflow]

    # === REPORTING ===

    def get_execution_stats(self) -> dict[str, Any]:
        stats = ExecutionStats(total_runs=len(self.execution_history))
        for run in self.execution_history:
            stats.by_status[run.status.value] = stats.by_status.get(run.status.value, 0) + 1
        stats.completed = stats.by_status.get(RunStatus.COMPLETED.value, 0)
        stats.failed = stats.by_status.get(RunStatus.ERROR.value, 0)
        stats.stopped = stats.by_status.get(RunStatus.STOPPED.value, 0)
        if self.execution_history:
            stats.success_rate = round(stats.completed / stats.total_runs, 4)
            durations = [run.duration_ms for run in self.execution_history]
            stats.average_duration_ms = sum(durations) // len(durations)
            stats.last_run_at = self.execution_history[-1].start_time
        return stats.to_dict()

    def export_results(self, run: ExecutionRun | None = None) -> dict[str, Any] | None:
        """Portable export of ``run`` (default: the most recent run)."""
        if run is None:
            if not self.execution_history:
                return None
            run = self.execution_history[-1]
        return run.to_export()
