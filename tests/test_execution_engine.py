"""Tests for the execution engine."""

import asyncio

import pytest

from nodeflow.core.execution_engine import ExecutionEngine
from nodeflow.executors.base import BaseNodeExecutor
from nodeflow.models.core import (
    DebugEventType,
    ExecutionOptions,
    ExecutionStatus,
    NodeResultStatus,
    NodeType,
)

from conftest import ECHO, FAIL, MANUAL, NO_OP, SLOW, EchoExecutor

IF = NodeType.IF.value
CODE = NodeType.CODE.value
HTTP = NodeType.HTTP_REQUEST.value
WEBHOOK = NodeType.WEBHOOK.value


class RaisesTimeoutExecutor(BaseNodeExecutor):

    async def execute(self, node, inputs, global_data, mock_mode, context):
        raise TimeoutError("upstream gave up")


def _statuses(record):
    return {result.node_id: result.status for result in record.data.node_results}


class TestSequentialExecution:

    @pytest.mark.asyncio
    async def test_linear_chain_runs_every_node_in_order(self, engine, build_graph):
        graph = build_graph(
            [("start", MANUAL), ("a", ECHO), ("b", ECHO), ("c", ECHO)],
            [("start", "a"), ("a", "b"), ("b", "c")],
        )

        record = await engine.execute_workflow(graph, ExecutionOptions(input_data={"order": 1}))

        assert record.status == ExecutionStatus.SUCCESS
        assert [r.node_id for r in record.data.node_results] == ["start", "a", "b", "c"]
        assert all(r.status == NodeResultStatus.SUCCESS for r in record.data.node_results)
        assert record.get_node_result("start").data == {"order": 1}
        assert record.get_node_result("b").data["inputs"] == [record.get_node_result("a").data]
        assert record.workflow_id == "wf-test"
        assert record.stopped_at is not None
        assert record.execution_time_ms >= 0

    @pytest.mark.asyncio
    async def test_diamond_join_runs_once_after_both_branches(self, engine, registry, build_graph):
        graph = build_graph(
            [("start", MANUAL), ("a", ECHO), ("b", ECHO), ("join", ECHO)],
            [("start", "a"), ("start", "b"), ("a", "join"), ("b", "join")],
        )
        echo = registry.get(ECHO)

        record = await engine.execute_workflow(graph)

        assert echo.calls == ["a", "b", "join"]
        join = record.get_node_result("join")
        assert [item["node"] for item in join.data["inputs"]] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_global_data_is_shared_between_nodes(self, engine, build_graph):
        graph = build_graph(
            [
                ("start", MANUAL),
                ("write", CODE, {"pythonCode": "global_data['visited'] = True"}),
                ("read", CODE, {"pythonCode": "result = {'visited': global_data.get('visited')}"}),
            ],
            [("start", "write"), ("write", "read")],
        )

        record = await engine.execute_workflow(graph, ExecutionOptions(input_data={"seed": 1}))

        assert record.get_node_result("read").data == {"visited": True}
        assert record.data.global_data == {"seed": 1, "visited": True}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("first_type", [WEBHOOK, NO_OP])
    async def test_recorded_result_is_not_changed_by_later_global_writes(self, engine, build_graph, first_type):
        graph = build_graph(
            [("first", first_type), ("write", CODE, {"pythonCode": "global_data['later'] = 1"})],
            [("first", "write")],
        )

        record = await engine.execute_workflow(graph, ExecutionOptions(input_data={"seed": 1}))

        assert record.status == ExecutionStatus.SUCCESS
        assert record.get_node_result("first").data == {"seed": 1}
        assert record.data.global_data == {"seed": 1, "later": 1}

    @pytest.mark.asyncio
    async def test_each_trigger_branch_finishes_before_the_next_trigger(self, engine, registry, build_graph):
        graph = build_graph(
            [("first", MANUAL), ("second", MANUAL), ("a", ECHO), ("b", ECHO), ("c", ECHO)],
            [("first", "a"), ("a", "b"), ("second", "c")],
        )

        record = await engine.execute_workflow(graph)

        assert record.status == ExecutionStatus.SUCCESS
        assert registry.get(ECHO).calls == ["a", "b", "c"]
        assert [r.node_id for r in record.data.node_results] == ["first", "a", "b", "second", "c"]

    @pytest.mark.asyncio
    async def test_mock_mode_makes_no_outside_calls(self, engine, build_graph):
        graph = build_graph(
            [("start", MANUAL), ("call", HTTP, {"url": "https://unreachable.invalid/api"})],
            [("start", "call")],
        )

        record = await engine.execute_workflow(graph, ExecutionOptions(mock_mode=True))

        assert record.status == ExecutionStatus.SUCCESS
        assert record.get_node_result("start").data == {"manual": True, "mock": True}
        assert record.get_node_result("call").data["body"]["mock"] is True

    @pytest.mark.asyncio
    async def test_concurrent_runs_are_independent(self, engine, build_graph):
        graph = build_graph([("start", MANUAL), ("a", ECHO)], [("start", "a")])

        first, second = await asyncio.gather(
            engine.execute_workflow(graph, ExecutionOptions(input_data={"run": 1})),
            engine.execute_workflow(graph, ExecutionOptions(input_data={"run": 2})),
        )

        assert first.id != second.id
        assert first.get_node_result("start").data == {"run": 1}
        assert second.get_node_result("start").data == {"run": 2}

    @pytest.mark.asyncio
    async def test_custom_executor_can_be_registered(self, engine, build_graph):
        echo = EchoExecutor()
        engine.register_node_executor("custom.echo", echo)
        graph = build_graph([("start", MANUAL), ("c", "custom.echo")], [("start", "c")])

        record = await engine.execute_workflow(graph)

        assert record.status == ExecutionStatus.SUCCESS
        assert echo.calls == ["c"]


class TestBranching:

    @pytest.mark.asyncio
    async def test_if_follows_only_the_decided_branch(self, engine, build_graph):
        conditions = [{"value1": "{{ $json.amount }}", "value2": 100, "operation": "larger", "dataType": "number"}]
        graph = build_graph(
            [
                ("start", MANUAL),
                ("check", IF, {"conditions": conditions}),
                ("big", ECHO),
                ("small", ECHO),
                ("after_big", ECHO),
            ],
            [("start", "check"), ("check", "big", 0), ("check", "small", 1), ("big", "after_big")],
        )

        record = await engine.execute_workflow(graph, ExecutionOptions(input_data={"amount": 50}))

        assert record.status == ExecutionStatus.SUCCESS
        assert _statuses(record) == {
            "start": NodeResultStatus.SUCCESS,
            "check": NodeResultStatus.SUCCESS,
            "big": NodeResultStatus.SKIPPED,
            "after_big": NodeResultStatus.SKIPPED,
            "small": NodeResultStatus.SUCCESS,
        }
        assert record.get_node_result("check").output_index == 1
        assert record.get_node_result("big").output_index == -1

    @pytest.mark.asyncio
    async def test_join_after_branch_runs_when_one_input_is_active(self, engine, build_graph):
        conditions = [{"value1": "{{ $json.flag }}", "value2": True, "operation": "equal", "dataType": "boolean"}]
        graph = build_graph(
            [("start", MANUAL), ("check", IF, {"conditions": conditions}), ("yes", ECHO), ("no", ECHO), ("join", ECHO)],
            [("start", "check"), ("check", "yes", 0), ("check", "no", 1), ("yes", "join"), ("no", "join")],
        )

        record = await engine.execute_workflow(graph, ExecutionOptions(input_data={"flag": True}))

        assert _statuses(record)["no"] == NodeResultStatus.SKIPPED
        join = record.get_node_result("join")
        assert join.status == NodeResultStatus.SUCCESS
        assert [item["node"] for item in join.data["inputs"]] == ["yes"]


class TestFailures:

    @pytest.mark.asyncio
    async def test_graph_without_trigger_never_runs(self, engine, build_graph):
        graph = build_graph([("a", NO_OP), ("b", NO_OP)], [("a", "b"), ("b", "a")])
        events = []
        engine.subscribe(events.append)

        record = await engine.execute_workflow(graph)

        assert record.status == ExecutionStatus.ERROR
        assert record.error.code == "NoTriggerNode"
        assert record.data.node_results == []
        assert not any(
            e.type == DebugEventType.STATE_CHANGE and e.data["status"] == "running" for e in events
        )

    @pytest.mark.asyncio
    async def test_unsupported_type_aborts_before_any_node_runs(self, engine, registry, build_graph):
        graph = build_graph(
            [("start", MANUAL), ("a", ECHO), ("x", "custom.unknown", {}, True)],
            [("start", "a"), ("a", "x")],
        )

        record = await engine.execute_workflow(graph)

        assert record.status == ExecutionStatus.ERROR
        assert record.error.code == "UnsupportedNodeType"
        assert record.error.node_id == "x"
        assert record.data.node_results == []
        assert registry.get(ECHO).calls == []

    @pytest.mark.asyncio
    async def test_cycle_reachable_from_trigger_is_rejected(self, engine, build_graph):
        graph = build_graph(
            [("start", MANUAL), ("a", NO_OP), ("b", NO_OP)],
            [("start", "a"), ("a", "b"), ("b", "a")],
        )

        record = await engine.execute_workflow(graph)

        assert record.status == ExecutionStatus.ERROR
        assert "cycle" in record.error.message

    @pytest.mark.asyncio
    async def test_node_failure_stops_the_run(self, engine, build_graph):
        graph = build_graph(
            [("start", MANUAL), ("a", FAIL, {"message": "disk full"}), ("b", ECHO)],
            [("start", "a"), ("a", "b")],
        )

        record = await engine.execute_workflow(graph)

        assert record.status == ExecutionStatus.ERROR
        assert record.error.code == "NodeExecutionFailure"
        assert record.error.node_id == "a"
        assert record.error.message == "disk full"
        assert record.get_node_result("a").status == NodeResultStatus.ERROR
        assert record.get_node_result("a").error == "disk full"
        assert record.get_node_result("b") is None
        assert any("About to fail in a" in line for line in record.data.logs)

    @pytest.mark.asyncio
    async def test_continue_on_fail_stops_only_the_failed_branch(self, engine, build_graph):
        graph = build_graph(
            [("start", MANUAL), ("a", FAIL, {}, True), ("b", ECHO), ("side", ECHO)],
            [("start", "a"), ("a", "b"), ("start", "side")],
        )

        record = await engine.execute_workflow(graph)

        assert record.status == ExecutionStatus.SUCCESS
        assert record.error is None
        assert record.get_node_result("a").status == NodeResultStatus.ERROR
        assert record.get_node_result("b") is None
        assert record.get_node_result("side").status == NodeResultStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_node_timeout(self, engine, registry, build_graph):
        graph = build_graph(
            [("start", MANUAL), ("slow", SLOW, {"seconds": 1}), ("after", ECHO)],
            [("start", "slow"), ("slow", "after")],
        )
        slow = registry.get(SLOW)

        record = await engine.execute_workflow(graph, ExecutionOptions(timeout_ms=50))

        assert record.status == ExecutionStatus.ERROR
        assert record.error.code == "Timeout"
        assert record.get_node_result("slow").status == NodeResultStatus.ERROR
        assert record.get_node_result("after") is None
        assert slow.started == 1
        assert slow.finished == 0

    @pytest.mark.asyncio
    async def test_timeout_with_continue_on_fail_stops_only_that_branch(self, engine, registry, build_graph):
        graph = build_graph(
            [("start", MANUAL), ("slow", SLOW, {"seconds": 1}, True), ("after", ECHO), ("side", ECHO)],
            [("start", "slow"), ("slow", "after"), ("start", "side")],
        )

        record = await engine.execute_workflow(graph, ExecutionOptions(timeout_ms=50))

        assert record.status == ExecutionStatus.SUCCESS
        assert record.get_node_result("slow").status == NodeResultStatus.ERROR
        assert "timed out after 50ms" in record.get_node_result("slow").error
        assert record.get_node_result("after") is None
        assert record.get_node_result("side").status == NodeResultStatus.SUCCESS
        assert registry.get(ECHO).calls == ["side"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("timeout_ms", [None, 1000])
    async def test_timeout_error_raised_by_a_node_is_a_plain_failure(self, engine, build_graph, timeout_ms):
        engine.register_node_executor("test.raises_timeout", RaisesTimeoutExecutor())
        graph = build_graph([("start", MANUAL), ("a", "test.raises_timeout")], [("start", "a")])

        record = await engine.execute_workflow(graph, ExecutionOptions(timeout_ms=timeout_ms))

        assert record.status == ExecutionStatus.ERROR
        assert record.error.code == "NodeExecutionFailure"
        assert record.error.message == "upstream gave up"


class TestCancellation:

    @pytest.mark.asyncio
    async def test_cancel_interrupts_running_node(self, engine, registry, build_graph, until):
        graph = build_graph(
            [("start", MANUAL), ("slow", SLOW, {"seconds": 5}), ("after", ECHO)],
            [("start", "slow"), ("slow", "after")],
        )
        slow = registry.get(SLOW)

        execution_id = engine.start_workflow(graph)
        await until(lambda: slow.started == 1)

        assert engine.cancel_execution(execution_id) is True
        record = await engine.wait_for_completion(execution_id, timeout=2)

        assert record.status == ExecutionStatus.CANCELED
        assert slow.finished == 0
        assert record.get_node_result("slow") is None
        assert record.get_node_result("after") is None
        assert engine.cancel_execution(execution_id) is False

    @pytest.mark.asyncio
    async def test_cancel_unknown_execution(self, engine):
        assert engine.cancel_execution("missing") is False

    @pytest.mark.asyncio
    async def test_shutdown_cancels_live_runs(self, engine, registry, build_graph, until):
        graph = build_graph([("start", MANUAL), ("slow", SLOW)], [("start", "slow")])
        slow = registry.get(SLOW)

        execution_id = engine.start_workflow(graph)
        await until(lambda: slow.started == 1)
        await engine.shutdown()

        assert engine.get_execution(execution_id).status == ExecutionStatus.CANCELED


class TestEvents:

    @pytest.mark.asyncio
    async def test_event_sequence_for_one_node(self, engine, build_graph):
        graph = build_graph([("start", MANUAL)])
        events = []
        engine.subscribe(events.append)

        await engine.execute_workflow(graph)

        types = [e.type for e in events]
        assert types == [
            DebugEventType.STATE_CHANGE,
            DebugEventType.NODE_START,
            DebugEventType.LOG,
            DebugEventType.NODE_COMPLETE,
            DebugEventType.STATE_CHANGE,
        ]
        assert events[0].data == {"status": "running", "previous": "new"}

    def test_subscribe_and_unsubscribe(self, engine):
        listener = engine.subscribe(lambda event: None)
        engine.subscribe(listener)
        assert engine.events.listener_count == 1

        assert engine.unsubscribe(listener) is True
        assert engine.unsubscribe(listener) is False
        assert engine.events.listener_count == 0
        assert events[-1].data == {"status": "success", "previous": "running"}

    @pytest.mark.asyncio
    async def test_result_is_recorded_before_node_complete(self, engine, build_graph):
        graph = build_graph([("start", MANUAL), ("a", ECHO)], [("start", "a")])
        seen = []

        def listener(event):
            if event.type == DebugEventType.NODE_COMPLETE:
                seen.append(engine.get_node_result(event.execution_id, event.node_id) is not None)

        engine.subscribe(listener)
        await engine.execute_workflow(graph)

        assert seen == [True, True]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_the_run(self, engine, build_graph):
        graph = build_graph([("start", MANUAL)])

        def broken(event):
            raise RuntimeError("listener bug")

        engine.subscribe(broken)
        record = await engine.execute_workflow(graph)

        assert record.status == ExecutionStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_node_error_event(self, engine, build_graph):
        graph = build_graph([("start", MANUAL), ("a", FAIL)], [("start", "a")])

        async with engine.events.stream() as subscription:
            await engine.execute_workflow(graph)
            events = subscription.drain()

        errors = [e for e in events if e.type == DebugEventType.NODE_ERROR]
        assert len(errors) == 1
        assert errors[0].node_id == "a"
        assert errors[0].data == {"error": "boom", "code": "NodeExecutionFailure"}


class TestDebugBundles:

    @pytest.mark.asyncio
    async def test_debug_mode_captures_inputs_outputs_and_logs(self, engine, build_graph):
        graph = build_graph([("start", MANUAL), ("a", ECHO)], [("start", "a")])

        record = await engine.execute_workflow(graph, ExecutionOptions(debug_mode=True, input_data={"x": 1}))

        start = record.get_node_result("start").debug_info
        assert start.input_data == []
        assert start.output_data == {"x": 1}
        assert start.logs[0].endswith("Executing trigger: start")
        assert start.memory_usage is None
        assert record.get_node_result("a").debug_info.input_data == [{"x": 1}]

    @pytest.mark.asyncio
    async def test_no_bundle_outside_debug_mode(self, engine, build_graph):
        record = await engine.execute_workflow(build_graph([("start", MANUAL)]))
        assert record.get_node_result("start").debug_info is None

    @pytest.mark.asyncio
    async def test_memory_sample_when_enabled(self, registry, config, build_graph):
        engine = ExecutionEngine(registry=registry, config=config.model_copy(update={"sample_memory": True}))

        record = await engine.execute_workflow(build_graph([("start", MANUAL)]), ExecutionOptions(debug_mode=True))

        assert record.get_node_result("start").debug_info.memory_usage > 0


class TestExecutionQueries:

    @pytest.mark.asyncio
    async def test_finished_run_is_persisted(self, registry, config, store, build_graph):
        engine = ExecutionEngine(registry=registry, config=config, execution_store=store)
        graph = build_graph([("start", MANUAL), ("a", ECHO)], [("start", "a")])

        record = await engine.execute_workflow(graph)
        stored = store.get_execution(record.id)

        assert stored.status == ExecutionStatus.SUCCESS
        assert [r.node_id for r in stored.data.node_results] == ["start", "a"]

    @pytest.mark.asyncio
    async def test_get_list_and_forget(self, engine, build_graph):
        record = await engine.execute_workflow(build_graph([("start", MANUAL)]))

        assert engine.get_execution(record.id).status == ExecutionStatus.SUCCESS
        assert [r.id for r in engine.list_executions()] == [record.id]
        assert engine.forget_execution(record.id) is True
        assert engine.get_execution_state(record.id) is None

    @pytest.mark.asyncio
    async def test_live_run_cannot_be_forgotten(self, engine, registry, build_graph, until):
        graph = build_graph([("start", MANUAL), ("slow", SLOW)], [("start", "slow")])
        slow = registry.get(SLOW)

        execution_id = engine.start_workflow(graph)
        await until(lambda: slow.started == 1)

        assert engine.forget_execution(execution_id) is False
        engine.cancel_execution(execution_id)
        await engine.wait_for_completion(execution_id, timeout=2)
