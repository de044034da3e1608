"""
Tests for WorkflowExecutor.

Covers:
- Data flow through connections and bound variables
- Convergence (a node with several upstream branches runs once)
- Failure isolation (including storage faults and bad outputs), cooperative stop, single active run
- Fail-fast on dependency cycles when validation is skipped
- Interaction gate on variable reads and writes
- Image array outputs, run history, stats and export
"""

import asyncio
import base64

import pytest

from nodeflow.config import ExecutorConfig
from nodeflow.errors import GraphValidationError
from nodeflow.graph.executor import TaskState, WorkflowExecutor
from nodeflow.graph.gate import AutoResponderGate, InteractionGate, PromptAction, PromptResult
from nodeflow.graph.node import NodeSpec, NodeStatus, WorkflowNode
from nodeflow.observability import get_trace_context
from nodeflow.runtime.event_bus import EventBus, EventType
from nodeflow.schemas.run import RunStatus
from nodeflow.schemas.storage_item import PopupConfig


class HangingGate(InteractionGate):
    """A gate that never answers and ignores its own timeout."""

    def __init__(self) -> None:
        self.calls = 0

    async def show_input_prompt(self, node_id, variable_name, current_value, timeout_ms):
        self.calls += 1
        await asyncio.Event().wait()

    async def show_output_prompt(self, node_id, variable_name, candidate_value, timeout_ms):
        self.calls += 1
        await asyncio.Event().wait()


# === DATA FLOW ===


class TestDataFlow:
    """Values move along connections and through bound variables."""

    @pytest.mark.asyncio
    async def test_greeting_flows_from_a_to_b(self, storage, make_graph):
        graph = make_graph([("A", "text", "B", "greeting")])
        executor = WorkflowExecutor(storage)
        executor.register_function("A", lambda inputs: {"text": "hello"})
        executor.register_function("B", lambda inputs: {"out": inputs["greeting"].upper()})
        await storage.set_node_output_variable("A", "text", "greeting")

        run = await executor.execute_workflow(graph)

        assert run.status == RunStatus.COMPLETED
        assert run.errors == []
        assert run.results["B"].inputs == {"greeting": "hello"}
        assert run.results["B"].outputs == {"out": "HELLO"}
        assert run.results["A"].saved_variables == ["greeting"]
        assert run.created_variables == ["greeting"]
        assert await storage.get_item_value("greeting") == "hello"

    @pytest.mark.asyncio
    async def test_bound_input_variable_wins_over_connection(self, storage, make_graph):
        graph = make_graph([("A", "text", "B", "greeting")])
        await storage.create_item("salutation", "string", "bonjour")
        await storage.set_node_input_variable("B", "greeting", "salutation")

        executor = WorkflowExecutor(storage)
        executor.register_function("A", lambda inputs: {"text": "hello"})
        executor.register_function("B", lambda inputs: {"out": inputs["greeting"]})

        run = await executor.execute_workflow(graph)
        assert run.results["B"].outputs == {"out": "bonjour"}

    @pytest.mark.asyncio
    async def test_defaults_fill_unconnected_inputs(self, storage, make_graph):
        graph = make_graph(
            [("A", "text", "B", "greeting")],
            nodes=[NodeSpec(id="B", inputs=["greeting", "punctuation"], defaults={"punctuation": "!"})],
        )
        executor = WorkflowExecutor(storage)
        executor.register_function("A", lambda inputs: {"text": "hi"})
        executor.register_function("B", lambda inputs: {"out": inputs["greeting"] + inputs["punctuation"]})

        run = await executor.execute_workflow(graph)
        assert run.results["B"].outputs == {"out": "hi!"}

    @pytest.mark.asyncio
    async def test_unknown_bound_variable_falls_back_to_connection(self, storage, make_graph):
        graph = make_graph([("A", "text", "B", "greeting")])
        await storage.set_node_input_variable("B", "greeting", "does_not_exist")
        executor = WorkflowExecutor(storage)
        executor.register_function("A", lambda inputs: {"text": "hello"})
        executor.register_function("B", lambda inputs: {"out": inputs["greeting"]})

        run = await executor.execute_workflow(graph)
        assert run.results["B"].outputs == {"out": "hello"}

    @pytest.mark.asyncio
    async def test_output_parse_applies_before_saving(self, storage, make_graph):
        graph = make_graph([("A", "text", "B", "x")])
        await storage.set_node_output_variable(
            "A", "text", "score", parse={"mode": "regex", "config": r"score: (\d+)"}
        )
        executor = WorkflowExecutor(storage)
        executor.register_function("A", lambda inputs: {"text": "final score: 42 points"})
        executor.register_function("B", lambda inputs: {})

        await executor.execute_workflow(graph)
        assert await storage.get_item_value("score") == "42"

    @pytest.mark.asyncio
    async def test_no_output_sentinel_is_not_saved(self, storage, make_graph):
        graph = make_graph([("A", "text", "B", "x")])
        await storage.set_node_output_variable("A", "text", "__NO_OUTPUT__")
        executor = WorkflowExecutor(storage)
        executor.register_function("A", lambda inputs: {"text": "hello"})
        executor.register_function("B", lambda inputs: {})

        await executor.execute_workflow(graph)
        assert storage.names() == []

    @pytest.mark.asyncio
    async def test_trace_context_carries_run_and_node(self, storage, make_graph):
        seen = {}

        async def capture(inputs):
            seen.update(get_trace_context())
            return {"o": 1}

        graph = make_graph([("A", "o", "B", "i")])
        executor = WorkflowExecutor(storage)
        executor.register_function("A", capture)
        executor.register_function("B", lambda inputs: {})

        run = await executor.execute_workflow(graph)
        assert seen["run_id"] == run.id
        assert seen["node_id"] == "A"


# === SCHEDULING ===


class TestScheduling:
    """Task-graph scheduling semantics."""

    @pytest.mark.asyncio
    async def test_convergent_node_runs_once_with_all_inputs(self, storage, make_graph):
        calls = []
        graph = make_graph([("A", "o", "C", "a"), ("B", "o", "C", "b")])
        executor = WorkflowExecutor(storage)
        executor.register_function("A", lambda inputs: {"o": 1})
        executor.register_function("B", lambda inputs: {"o": 2})

        def combine(inputs):
            calls.append(dict(inputs))
            return {"sum": inputs["a"] + inputs["b"]}

        executor.register_function("C", combine)

        run = await executor.execute_workflow(graph)

        assert calls == [{"a": 1, "b": 2}]
        assert run.results["C"].outputs == {"sum": 3}

    @pytest.mark.asyncio
    async def test_run_node_is_idempotent(self, storage, make_graph):
        calls = []
        graph = make_graph([("A", "o", "B", "i")])
        executor = WorkflowExecutor(storage)
        executor.register_function("A", lambda inputs: calls.append("A") or {"o": 1})
        executor.register_function("B", lambda inputs: {})

        context = executor.create_context(graph)
        first = context.run_node("A")
        second = context.run_node("A")
        result = await first

        assert first is second
        assert calls == ["A"]
        assert result.outputs == {"o": 1}
        assert context.get_state("A") == TaskState.SUCCEEDED

    @pytest.mark.asyncio
    async def test_failure_halts_only_its_branch(self, storage, make_graph):
        graph = make_graph(
            [("S", "o", "A", "i"), ("S", "o", "B", "i"), ("A", "o", "C", "i"), ("B", "o", "D", "i")]
        )
        executor = WorkflowExecutor(storage)
        executor.register_function("S", lambda inputs: {"o": 1})

        def explode(inputs):
            raise ValueError("boom")

        executor.register_function("A", explode)
        executor.register_function("B", lambda inputs: {"o": 2})
        executor.register_function("C", lambda inputs: {})
        executor.register_function("D", lambda inputs: {"done": True})

        run = await executor.execute_workflow(graph)

        assert run.status == RunStatus.ERROR
        assert [(e.node_id, e.message) for e in run.errors] == [("A", "Node A failed: boom")]
        assert run.results["A"].status == "error"
        assert "C" not in run.results
        assert run.results["D"].outputs == {"done": True}
        assert executor.get_node("A").status == NodeStatus.ERROR
        assert executor.get_node("C").status == NodeStatus.IDLE

    @pytest.mark.asyncio
    async def test_missing_implementation_is_a_node_error(self, storage, make_graph):
        graph = make_graph([("A", "o", "B", "i")])
        executor = WorkflowExecutor(storage)
        executor.register_function("A", lambda inputs: {"o": 1})

        run = await executor.execute_workflow(graph)

        assert run.status == RunStatus.ERROR
        assert run.errors[0].node_id == "B"
        assert "no implementation" in run.errors[0].message

    @pytest.mark.asyncio
    async def test_non_dict_outputs_fail_the_node(self, storage, make_graph):
        class ListNode(WorkflowNode):
            async def execute(self):
                return ["not", "a", "dict"]

        graph = make_graph([("A", "o", "B", "i")])
        executor = WorkflowExecutor(storage)
        executor.register_node("A", ListNode())
        executor.register_function("B", lambda inputs: {})

        run = await executor.execute_workflow(graph)

        assert run.status == RunStatus.ERROR
        assert [(e.node_id, e.message) for e in run.errors] == [
            ("A", "Node A failed: execute() returned list, expected a dict")
        ]
        assert run.results["A"].status == "error"
        assert "B" not in run.results
        assert executor.get_node("A").status == NodeStatus.ERROR

    @pytest.mark.asyncio
    async def test_storage_fault_while_saving_fails_the_node(self, storage, make_graph, monkeypatch):
        async def broken_create(*args, **kwargs):
            raise RuntimeError("disk gone")

        monkeypatch.setattr(storage, "create_item", broken_create)
        await storage.set_node_output_variable("A", "o", "out")
        graph = make_graph([], nodes=[NodeSpec(id="A", outputs=["o"])])
        executor = WorkflowExecutor(storage)
        executor.register_function("A", lambda inputs: {"o": "value"})

        run = await executor.execute_workflow(graph)

        assert run.status == RunStatus.ERROR
        assert [(e.node_id, e.message) for e in run.errors] == [("A", "Node A failed: disk gone")]
        assert run.results["A"].status == "error"

    @pytest.mark.asyncio
    async def test_storage_fault_while_reading_inputs_fails_the_node(
        self, storage, make_graph, monkeypatch
    ):
        await storage.create_item("topic", "string", "cats")
        await storage.set_node_input_variable("B", "i", "topic")

        async def broken_read(name):
            raise RuntimeError("read failed")

        monkeypatch.setattr(storage, "get_item_value", broken_read)
        graph = make_graph([("A", "o", "B", "i"), ("B", "o", "C", "i")])
        executor = WorkflowExecutor(storage)
        executor.register_function("A", lambda inputs: {"o": 1})
        executor.register_function("B", lambda inputs: {"o": 2})
        executor.register_function("C", lambda inputs: {})

        run = await executor.execute_workflow(graph)

        assert [(e.node_id, e.message) for e in run.errors] == [("B", "Node B failed: read failed")]
        assert "C" not in run.results
        assert not any("cycle" in e.message for e in run.errors)

    @pytest.mark.asyncio
    async def test_unserializable_output_is_not_saved(self, storage, make_graph):
        await storage.set_node_output_variable("A", "o", "out")
        graph = make_graph([], nodes=[NodeSpec(id="A", outputs=["o"])])
        executor = WorkflowExecutor(storage)
        executor.register_function("A", lambda inputs: {"o": {"obj": object()}})

        run = await executor.execute_workflow(graph)

        assert run.status == RunStatus.COMPLETED
        assert run.results["A"].saved_variables == []
        assert not storage.has_item("out")

    @pytest.mark.asyncio
    async def test_node_type_factory(self, storage, make_graph):
        graph = make_graph(
            [("A", "o", "B", "i")],
            nodes=[NodeSpec(id="A", type="constant", config={"value": 7})],
        )
        executor = WorkflowExecutor(storage)

        def build_constant(spec):
            from nodeflow.graph.node import FunctionNode

            return FunctionNode(lambda inputs: {"o": spec.config["value"]})

        executor.register_node_type("constant", build_constant)
        executor.register_function("B", lambda inputs: {"got": inputs["i"]})

        run = await executor.execute_workflow(graph)
        assert run.results["B"].outputs == {"got": 7}

    @pytest.mark.asyncio
    async def test_validation_failure_raises(self, storage, make_graph):
        graph = make_graph([("S", "o", "A", "i"), ("A", "o", "B", "i"), ("B", "o", "A", "j")])
        executor = WorkflowExecutor(storage)

        with pytest.raises(GraphValidationError) as excinfo:
            await executor.execute_workflow(graph)

        assert excinfo.value.cycles == [["A", "B"]]
        assert not executor.is_running
        assert executor.execution_history == []

    @pytest.mark.asyncio
    async def test_cycle_without_validation_fails_fast(self, storage, make_graph):
        graph = make_graph([("S", "o", "A", "i"), ("A", "o", "B", "i"), ("B", "o", "A", "j")])
        executor = WorkflowExecutor(storage)
        for node_id in ("S", "A", "B"):
            executor.register_function(node_id, lambda inputs: {"o": 1})

        run = await asyncio.wait_for(executor.execute_workflow(graph, validate=False), timeout=2)

        assert run.status == RunStatus.ERROR
        assert "S" in run.results
        assert "A" not in run.results
        assert run.errors[0].message == "Dependency cycle blocks nodes: A, B"


# === CONTROL ===


class TestRunControl:
    """Stop and single-run guarantees."""

    @pytest.mark.asyncio
    async def test_stop_prevents_downstream_nodes(self, storage, make_graph):
        graph = make_graph([("A", "o", "B", "i"), ("B", "o", "C", "i")])
        executor = WorkflowExecutor(storage)
        executed = []

        async def stop_after_a(inputs):
            executed.append("A")
            assert executor.stop_execution() is True
            return {"o": 1}

        executor.register_function("A", stop_after_a)
        executor.register_function("B", lambda inputs: executed.append("B") or {"o": 2})
        executor.register_function("C", lambda inputs: executed.append("C") or {})

        run = await executor.execute_workflow(graph)

        assert run.status == RunStatus.STOPPED
        assert executed == ["A"]
        assert run.errors == []
        assert not executor.is_running

    def test_stop_without_active_run(self, storage):
        assert WorkflowExecutor(storage).stop_execution() is False

    @pytest.mark.asyncio
    async def test_second_start_while_running_is_ignored(self, storage, make_graph):
        release = asyncio.Event()

        async def wait_for_release(inputs):
            await release.wait()
            return {"o": 1}

        graph = make_graph([("A", "o", "B", "i")])
        executor = WorkflowExecutor(storage)
        executor.register_function("A", wait_for_release)
        executor.register_function("B", lambda inputs: {})

        first = asyncio.create_task(executor.execute_workflow(graph))
        while not executor.is_running:
            await asyncio.sleep(0)

        assert await executor.execute_workflow(graph) is None

        release.set()
        run = await first
        assert run.status == RunStatus.COMPLETED
        assert len(executor.execution_history) == 1

    @pytest.mark.asyncio
    async def test_shared_namespace_last_writer_wins(self, storage, make_graph):
        graph = make_graph([("X", "v", "Z", "a"), ("Y", "v", "Z", "b")])

        async def slow_writer(inputs):
            await asyncio.sleep(0.05)
            return {"v": "from-x"}

        async def fast_writer(inputs):
            return {"v": "from-y"}

        executor = WorkflowExecutor(storage)
        executor.register_function("X", slow_writer)
        executor.register_function("Y", fast_writer)
        executor.register_function("Z", lambda inputs: {})
        await storage.set_node_output_variable("X", "v", "shared")
        await storage.set_node_output_variable("Y", "v", "shared")

        run = await executor.execute_workflow(graph)

        assert run.status == RunStatus.COMPLETED
        assert await storage.get_item_value("shared") == "from-x"
        assert [entry.value for entry in storage.get_history("shared")] == ["from-y"]


# === INTERACTION GATE ===


class TestInteractionGate:
    """Popups on variable reads and writes."""

    @pytest.mark.asyncio
    async def test_input_popup_edit_is_used_and_persisted(self, storage, make_graph):
        await storage.create_item(
            "topic", "string", "cats", popup_config=PopupConfig(input_popup=True, timeout_ms=1000)
        )
        await storage.set_node_input_variable("A", "topic", "topic")
        gate = AutoResponderGate(
            responses={("input", "topic"): PromptResult(PromptAction.CONFIRM, "dogs")}
        )
        graph = make_graph([("A", "o", "B", "i")], nodes=[NodeSpec(id="A", inputs=["topic"])])
        executor = WorkflowExecutor(storage, gate=gate)
        executor.register_function("A", lambda inputs: {"o": inputs["topic"]})
        executor.register_function("B", lambda inputs: {})

        run = await executor.execute_workflow(graph)

        assert run.results["A"].outputs == {"o": "dogs"}
        assert await storage.get_item_value("topic") == "dogs"
        assert gate.requests[0].value == "cats"

    @pytest.mark.asyncio
    async def test_input_popup_skip_keeps_value(self, storage, make_graph):
        await storage.create_item(
            "topic", "string", "cats", popup_config=PopupConfig(input_popup=True, timeout_ms=1000)
        )
        await storage.set_node_input_variable("A", "topic", "topic")
        graph = make_graph([("A", "o", "B", "i")], nodes=[NodeSpec(id="A", inputs=["topic"])])
        executor = WorkflowExecutor(storage, gate=AutoResponderGate(PromptAction.SKIP))
        executor.register_function("A", lambda inputs: {"o": inputs["topic"]})
        executor.register_function("B", lambda inputs: {})

        run = await executor.execute_workflow(graph)
        assert run.results["A"].outputs == {"o": "cats"}

    @pytest.mark.asyncio
    async def test_output_popup_timeout_keeps_prior_value(self, storage, make_graph):
        await storage.create_item(
            "x", "string", "x", popup_config=PopupConfig(output_popup=True, timeout_ms=50)
        )
        await storage.set_node_output_variable("A", "o", "x")
        graph = make_graph([("A", "o", "B", "i")])
        executor = WorkflowExecutor(storage, gate=AutoResponderGate(PromptAction.TIMEOUT))
        executor.register_function("A", lambda inputs: {"o": "draft"})
        executor.register_function("B", lambda inputs: {})

        run = await executor.execute_workflow(graph)

        assert run.status == RunStatus.COMPLETED
        assert await storage.get_item_value("x") == "x"
        assert run.results["A"].saved_variables == []

    @pytest.mark.asyncio
    async def test_output_popup_confirm_and_clear(self, storage, make_graph):
        for name in ("kept", "cleared"):
            await storage.create_item(
                name, "string", "old", popup_config=PopupConfig(output_popup=True, timeout_ms=1000)
            )
        await storage.set_node_output_variable("A", "first", "kept")
        await storage.set_node_output_variable("A", "second", "cleared")
        gate = AutoResponderGate(
            responses={
                ("output", "kept"): PromptResult(PromptAction.CONFIRM, "edited"),
                ("output", "cleared"): PromptResult(PromptAction.CLEAR, ""),
            }
        )
        graph = make_graph([("A", "first", "B", "i")], nodes=[NodeSpec(id="A", outputs=["first", "second"])])
        executor = WorkflowExecutor(storage, gate=gate)
        executor.register_function("A", lambda inputs: {"first": "draft", "second": "draft"})
        executor.register_function("B", lambda inputs: {})

        await executor.execute_workflow(graph)

        assert await storage.get_item_value("kept") == "edited"
        assert await storage.get_item_value("cleared") == ""

    @pytest.mark.asyncio
    async def test_hanging_gate_is_bounded_by_timeout(self, storage, make_graph):
        await storage.create_item(
            "topic", "string", "cats", popup_config=PopupConfig(input_popup=True, timeout_ms=50)
        )
        await storage.set_node_input_variable("A", "topic", "topic")
        gate = HangingGate()
        graph = make_graph([("A", "o", "B", "i")], nodes=[NodeSpec(id="A", inputs=["topic"])])
        executor = WorkflowExecutor(storage, gate=gate)
        executor.register_function("A", lambda inputs: {"o": inputs["topic"]})
        executor.register_function("B", lambda inputs: {})

        loop = asyncio.get_running_loop()
        started = loop.time()
        run = await asyncio.wait_for(executor.execute_workflow(graph), timeout=2)

        assert loop.time() - started < 0.4
        assert gate.calls == 1
        assert run.results["A"].outputs == {"o": "cats"}


# === MEDIA OUTPUTS ===


class TestImageOutputs:
    """An ``images`` output is registered element by element."""

    @pytest.mark.asyncio
    async def test_image_array_with_revised_prompt(self, storage, make_graph):
        png = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32
        await storage.set_node_output_variable("gen", "images", "scene_images")
        graph = make_graph([("gen", "images", "B", "i")])
        executor = WorkflowExecutor(storage)
        executor.register_function(
            "gen",
            lambda inputs: {
                "images": [
                    {"b64_json": base64.b64encode(png).decode(), "revised_prompt": "a cat"},
                    {"url": "https://example.com/b.png"},
                ]
            },
        )
        executor.register_function("B", lambda inputs: {})

        run = await executor.execute_workflow(graph)

        assert run.status == RunStatus.COMPLETED
        images = await storage.get_item_value("scene_images")
        assert storage.get_item("scene_images").type == "array"
        assert images[0]["status"] == "downloaded"
        assert "b64_json" not in images[0]
        assert await storage.get_media(images[0]["media_id"]) == png
        assert images[1]["status"] == "referenced"
        assert images[1]["url"] == "https://example.com/b.png"
        assert images[1]["file_name"].startswith("scene_images_")
        assert await storage.get_item_value("scene_revised_prompt") == "a cat"
        assert sorted(run.created_variables) == ["scene_images", "scene_revised_prompt"]

    @pytest.mark.asyncio
    async def test_deleting_the_array_removes_owned_media(self, storage, make_graph):
        png = b"\x89PNG\r\n\x1a\n" + b"\x01" * 16
        await storage.set_node_output_variable("gen", "images", "pics")
        graph = make_graph([("gen", "images", "B", "i")])
        executor = WorkflowExecutor(storage)
        executor.register_function(
            "gen", lambda inputs: {"images": [{"b64_json": base64.b64encode(png).decode()}]}
        )
        executor.register_function("B", lambda inputs: {})

        await executor.execute_workflow(graph)
        media_id = (await storage.get_item_value("pics"))[0]["media_id"]
        await storage.delete_item("pics")

        assert await storage.blob_store.get_media(media_id) is None


# === HISTORY, STATS, EXPORT, EVENTS ===


class TestReporting:
    """Run bookkeeping."""

    @pytest.mark.asyncio
    async def test_history_is_capped(self, storage, make_graph):
        graph = make_graph([("A", "o", "B", "i")])
        executor = WorkflowExecutor(storage, config=ExecutorConfig(run_history=2))
        executor.register_function("A", lambda inputs: {"o": 1})
        executor.register_function("B", lambda inputs: {})

        runs = [await executor.execute_workflow(graph) for _ in range(3)]

        assert executor.execution_history == runs[1:]
        stats = executor.get_execution_stats()
        assert stats["total_runs"] == 2
        assert stats["completed"] == 2
        assert stats["failed"] == 0
        assert stats["success_rate"] == 1.0

    @pytest.mark.asyncio
    async def test_export_format(self, storage, make_graph):
        graph = make_graph([("A", "o", "B", "i")])
        executor = WorkflowExecutor(storage)
        executor.register_function("A", lambda inputs: {"o": 1})
        executor.register_function("B", lambda inputs: {"done": True})

        run = await executor.execute_workflow(graph)
        exported = executor.export_results()

        assert exported["execution"]["id"] == run.id
        assert exported["execution"]["status"] == "completed"
        assert exported["execution"]["endTime"] is not None
        assert exported["results"] == {"A": {"o": 1}, "B": {"done": True}}
        assert exported["errors"] == []

    def test_export_without_runs(self, storage):
        assert WorkflowExecutor(storage).export_results() is None

    def test_execution_plan(self, storage, make_graph):
        graph = make_graph([("A", "o", "B", "i"), ("A", "o", "C", "i"), ("B", "o", "D", "i")])
        assert WorkflowExecutor(storage).get_execution_plan(graph) == [["A"], ["B", "C"], ["D"]]

    @pytest.mark.asyncio
    async def test_lifecycle_events(self, storage, make_graph):
        bus = EventBus()
        graph = make_graph([("A", "o", "B", "i")])
        executor = WorkflowExecutor(storage, event_bus=bus)
        executor.register_function("A", lambda inputs: {"o": 1})

        def explode(inputs):
            raise RuntimeError("nope")

        executor.register_function("B", explode)

        run = await executor.execute_workflow(graph)
        types = [event.type for event in reversed(bus.get_history(run_id=run.id))]

        assert types == [
            EventType.EXECUTION_STARTED,
            EventType.NODE_STARTED,
            EventType.NODE_COMPLETED,
            EventType.NODE_STARTED,
            EventType.NODE_FAILED,
            EventType.EXECUTION_FAILED,
        ]
