"""Tests for graph navigation."""

import pytest

from nodeflow.core.navigator import (
    count_incoming_edges,
    find_cycle,
    find_trigger_nodes,
    gather_inputs,
    is_trigger_type,
    next_nodes,
    predecessors,
    successors,
    validate_graph,
)
from nodeflow.models.core import NodeExecutionResult, NodeResultStatus, WorkflowGraph

from conftest import ECHO, MANUAL, NO_OP


def _result(node_id, data, status=NodeResultStatus.SUCCESS, output_index=0):
    return NodeExecutionResult(
        node_id=node_id, node_name=node_id, status=status, data=data, output_index=output_index
    )


class TestTriggerDiscovery:

    def test_nodes_without_incoming_edges_are_triggers(self, build_graph):
        graph = build_graph(
            [("start", MANUAL), ("other", ECHO), ("a", NO_OP)],
            [("start", "a"), ("other", "a")],
        )
        assert [node.id for node in find_trigger_nodes(graph)] == ["start", "other"]

    def test_graph_where_every_node_is_targeted_has_no_triggers(self, build_graph):
        graph = build_graph([("a", NO_OP), ("b", NO_OP)], [("a", "b"), ("b", "a")])
        assert find_trigger_nodes(graph) == []

    def test_trigger_type_membership(self):
        assert is_trigger_type("n8n-nodes-base.webhook")
        assert is_trigger_type("n8n-nodes-base.cron")
        assert not is_trigger_type("n8n-nodes-base.httpRequest")


class TestGatherInputs:

    def test_collects_successful_predecessor_data_in_connection_order(self, build_graph):
        graph = build_graph(
            [("s1", MANUAL), ("s2", MANUAL), ("join", NO_OP)],
            [("s2", "join"), ("s1", "join")],
        )
        results = {"s1": _result("s1", {"v": 1}), "s2": _result("s2", {"v": 2})}

        inputs = gather_inputs(graph.get_node_by_id("join"), graph, results, {"g": True})

        assert inputs == [{"v": 2}, {"v": 1}]

    def test_failed_and_missing_predecessors_are_ignored(self, build_graph):
        graph = build_graph(
            [("s1", MANUAL), ("s2", MANUAL), ("join", NO_OP)],
            [("s1", "join"), ("s2", "join")],
        )
        results = {"s1": _result("s1", None, status=NodeResultStatus.ERROR)}

        inputs = gather_inputs(graph.get_node_by_id("join"), graph, results, {"g": True})

        assert inputs == [{"g": True}]

    def test_only_edges_on_emitted_output_count(self, build_graph):
        graph = build_graph(
            [("start", MANUAL), ("branch", NO_OP), ("yes", NO_OP), ("no", NO_OP)],
            [("start", "branch"), ("branch", "yes", 0), ("branch", "no", 1)],
        )
        results = {"branch": _result("branch", {"decided": 1}, output_index=1)}

        assert gather_inputs(graph.get_node_by_id("no"), graph, results, {}) == [{"decided": 1}]
        assert gather_inputs(graph.get_node_by_id("yes"), graph, results, {"fallback": 1}) == [{"fallback": 1}]

    def test_trigger_without_inputs_gets_nothing(self, build_graph):
        graph = build_graph([("start", MANUAL)])
        assert gather_inputs(graph.get_node_by_id("start"), graph, {}, {"g": 1}) == []


class TestSuccessorResolution:

    def test_next_nodes_follows_requested_output_group(self, build_graph):
        graph = build_graph(
            [("if", NO_OP), ("t", NO_OP), ("f", NO_OP)],
            [("if", "t", 0), ("if", "f", 1)],
        )
        node = graph.get_node_by_id("if")

        assert [n.id for n in next_nodes(node, graph)] == ["t"]
        assert [n.id for n in next_nodes(node, graph, 1)] == ["f"]
        assert next_nodes(node, graph, 2) == []
        assert next_nodes(node, graph, -1) == []

    def test_successors_and_predecessors(self, build_graph):
        graph = build_graph(
            [("a", MANUAL), ("b", NO_OP), ("c", NO_OP)],
            [("a", "b", 0), ("a", "c", 1), ("b", "c")],
        )
        assert successors(graph.get_node_by_id("a"), graph) == ["b", "c"]
        assert predecessors(graph.get_node_by_id("c"), graph) == ["a", "b"]

    def test_duplicate_edges_count_once(self, build_graph):
        graph = build_graph([("a", MANUAL), ("b", NO_OP)], [("a", "b"), ("a", "b")])
        assert count_incoming_edges(graph) == {"a": 0, "b": 1}


class TestValidation:

    def test_cycle_detection(self, build_graph):
        graph = build_graph(
            [("start", MANUAL), ("a", NO_OP), ("b", NO_OP)],
            [("start", "a"), ("a", "b"), ("b", "a")],
        )
        cycle = find_cycle(graph)
        assert cycle is not None
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"a", "b"}

    def test_validate_reports_unsupported_types_and_cycles(self, build_graph, registry):
        graph = build_graph(
            [("start", MANUAL), ("a", "custom.unknown"), ("b", NO_OP), ("c", NO_OP)],
            [("start", "a"), ("b", "c"), ("c", "b")],
        )
        result = validate_graph(graph, registry)

        assert not result.is_valid
        assert any("custom.unknown" in error for error in result.errors)
        assert any("Cycle" in error for error in result.errors)

    def test_isolated_nodes_are_warnings(self, build_graph, registry):
        graph = build_graph([("start", MANUAL), ("a", NO_OP), ("lonely", MANUAL)], [("start", "a")])
        result = validate_graph(graph, registry)

        assert result.is_valid
        assert result.warnings == ["Isolated nodes detected: lonely"]


class TestGraphModel:

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValueError):
            WorkflowGraph.model_validate({
                "nodes": [
                    {"id": "1", "name": "A", "type": MANUAL},
                    {"id": "2", "name": "A", "type": NO_OP},
                ],
            })

    def test_connection_to_unknown_node_rejected(self):
        with pytest.raises(ValueError):
            WorkflowGraph.model_validate({
                "nodes": [{"id": "1", "name": "A", "type": MANUAL}],
                "connections": {"A": {"main": [[{"node": "Missing", "type": "main", "index": 0}]]}},
            })

    def test_n8n_document_loads_with_null_groups(self):
        graph = WorkflowGraph.model_validate({
            "nodes": [
                {"id": "1", "name": "Start", "type": MANUAL, "typeVersion": 1, "position": [0, 0]},
                {"id": "2", "name": "Check", "type": "n8n-nodes-base.if", "continueOnFail": True},
            ],
            "connections": {"Start": {"main": [None, [{"node": "Check", "type": "main", "index": 0}]]}},
        })

        assert graph.connections["Start"]["main"][0] == []
        assert graph.get_node_by_name("Check").continue_on_fail is True
