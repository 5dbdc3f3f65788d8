"""Tests for graph navigation and activation-time validation."""

from __future__ import annotations

import pytest

from litestar_flows.core.definition import Flow, FlowDefinition, Node
from litestar_flows.core.types import NodeType
from litestar_flows.engine.graph import FlowGraph
from litestar_flows.engine.validator import GraphValidator
from litestar_flows.exceptions import ConfigInvalidError, GraphInvalidError
from tests.conftest import chain, make_edge, make_node

TAG_BRANCH = [
    make_node("trigger", NodeType.TRIGGER_MESSAGE),
    make_node("is_vip", NodeType.CONDITION_TAG, tag="vip"),
    make_node("vip_msg", NodeType.ACTION_SEND_TEXT, message="Oi VIP"),
    make_node("msg", NodeType.ACTION_SEND_TEXT, message="Oi"),
    make_node("end", NodeType.ACTION_END),
]
TAG_BRANCH_EDGES = [
    make_edge("trigger", "is_vip"),
    make_edge("is_vip", "vip_msg", "true"),
    make_edge("is_vip", "msg", "false"),
    make_edge("vip_msg", "end"),
    make_edge("msg", "end"),
]


def definition(nodes: list[Node], edges: list) -> FlowDefinition:
    return FlowDefinition(flow=Flow(organization_id="org", name="f"), nodes=nodes, edges=edges)


def errors_for(nodes: list[Node], edges: list) -> list[str]:
    with pytest.raises(GraphInvalidError) as exc_info:
        GraphValidator().validate(definition(nodes, edges))
    return exc_info.value.errors


@pytest.mark.unit
class TestFlowGraph:
    """Tests for FlowGraph."""

    def test_resolve_by_handle(self) -> None:
        graph = FlowGraph(TAG_BRANCH, TAG_BRANCH_EDGES)
        assert graph.resolve("is_vip", "true") == "vip_msg"
        assert graph.resolve("is_vip", "false") == "msg"
        assert graph.resolve("msg", "default") == "end"
        assert graph.resolve("end", "default") is None

    def test_first_edge_wins_for_a_handle(self) -> None:
        nodes = [make_node("a", NodeType.TRIGGER_MESSAGE), make_node("b", NodeType.ACTION_END)]
        nodes.append(make_node("c", NodeType.ACTION_END))
        graph = FlowGraph(nodes, [make_edge("a", "b"), make_edge("a", "c")])
        assert graph.resolve("a", "default") == "b"

    def test_dangling_edges_are_set_aside(self) -> None:
        graph = FlowGraph(TAG_BRANCH[:2], [make_edge("trigger", "is_vip"), make_edge("is_vip", "ghost", "true")])
        assert [edge.target_node_id for edge in graph.dangling_edges] == ["ghost"]
        assert graph.resolve("is_vip", "true") is None

    def test_predecessors_and_reachability(self) -> None:
        graph = FlowGraph(TAG_BRANCH, TAG_BRANCH_EDGES)
        assert sorted(graph.predecessors("end")) == ["msg", "vip_msg"]
        assert graph.reachable_from("trigger") == {node.id for node in TAG_BRANCH}
        assert graph.reachable_from("msg") == {"msg", "end"}
        assert graph.reachable_from("missing") == set()

    def test_trigger(self) -> None:
        assert FlowGraph(TAG_BRANCH, TAG_BRANCH_EDGES).trigger.id == "trigger"
        assert FlowGraph(TAG_BRANCH[1:], []).trigger is None

    def test_find_cycle(self) -> None:
        nodes = [make_node(node_id, NodeType.ACTION_SEND_TEXT, message="x") for node_id in "abc"]
        graph = FlowGraph(nodes, [*chain("a", "b", "c"), make_edge("c", "a")])
        cycle = graph.find_cycle(lambda node: True)
        assert sorted(cycle) == ["a", "b", "c"]
        assert graph.find_cycle(lambda node: node.id != "b") is None


@pytest.mark.unit
class TestGraphValidator:
    """Tests for GraphValidator."""

    def test_valid_graph(self) -> None:
        graph = GraphValidator().validate(definition(TAG_BRANCH, TAG_BRANCH_EDGES))
        assert graph.resolve("is_vip", "true") == "vip_msg"

    def test_requires_exactly_one_trigger(self) -> None:
        errors = errors_for(TAG_BRANCH[1:], TAG_BRANCH_EDGES[1:])
        assert "Flow must have exactly one trigger node, found 0" in errors

        second = make_node("trigger2", NodeType.TRIGGER_KEYWORD, keywords=["oi"])
        errors = errors_for([*TAG_BRANCH, second], [*TAG_BRANCH_EDGES, make_edge("trigger2", "msg")])
        assert "Flow must have exactly one trigger node, found 2" in errors

    def test_trigger_cannot_have_incoming_edges(self) -> None:
        errors = errors_for(TAG_BRANCH, [*TAG_BRANCH_EDGES[:3], make_edge("vip_msg", "trigger"), make_edge("msg", "end")])
        assert "Trigger node 'trigger' cannot have incoming edges" in errors

    def test_orphan_and_unreachable_nodes(self) -> None:
        orphan = make_node("orphan", NodeType.ACTION_SEND_TEXT, message="x")
        errors = errors_for([*TAG_BRANCH, orphan], TAG_BRANCH_EDGES)
        assert "Node 'orphan' (action_send_text) has no incoming edge" in errors
        assert "Node 'orphan' is unreachable from the trigger" in errors

    def test_edges_must_reference_existing_nodes(self) -> None:
        edge = make_edge("msg", "ghost")
        errors = errors_for(TAG_BRANCH, [*TAG_BRANCH_EDGES, edge])
        assert f"Edge '{edge.id}' references missing node(s): ghost" in errors

    def test_condition_needs_both_outputs(self) -> None:
        errors = errors_for(TAG_BRANCH, [edge for edge in TAG_BRANCH_EDGES if edge.source_handle != "false"])
        assert "Node 'is_vip' is missing an edge for output 'false'" in errors

    def test_unknown_and_duplicate_outputs(self) -> None:
        edges = [*TAG_BRANCH_EDGES, make_edge("is_vip", "end", "maybe"), make_edge("is_vip", "end", "true")]
        errors = errors_for(TAG_BRANCH, edges)
        assert "Node 'is_vip' has an edge from unknown output 'maybe'" in errors
        assert "Node 'is_vip' has 2 edges leaving output 'true'" in errors

    def test_end_has_no_outgoing_edges(self) -> None:
        extra = make_node("after", NodeType.ACTION_SEND_TEXT, message="x")
        errors = errors_for([*TAG_BRANCH, extra], [*TAG_BRANCH_EDGES, make_edge("end", "after")])
        assert "Node 'end' (action_end) cannot have outgoing edges" in errors

    def test_button_condition_outputs(self) -> None:
        nodes = [
            make_node("trigger", NodeType.TRIGGER_BUTTON_CLICK),
            make_node(
                "choice",
                NodeType.CONDITION_BUTTON,
                conditions=[{"buttonText": "Sim", "output": "btn_0"}, {"buttonText": "Não", "output": "btn_1"}],
            ),
            make_node("yes", NodeType.ACTION_END),
            make_node("fallback", NodeType.ACTION_END),
        ]
        edges = [make_edge("trigger", "choice"), make_edge("choice", "yes", "btn_0")]
        errors = errors_for(nodes, [*edges, make_edge("choice", "fallback", "no_match")])
        assert errors == ["Node 'choice' is missing an edge for output 'btn_1'"]

        edges += [make_edge("choice", "fallback", "btn_1"), make_edge("choice", "fallback", "no_match")]
        GraphValidator().validate(definition(nodes, edges))

    def test_instant_cycle_is_rejected(self) -> None:
        nodes = [
            make_node("trigger", NodeType.TRIGGER_MESSAGE),
            make_node("tag", NodeType.ACTION_ADD_TAG, tag="loop"),
            make_node("check", NodeType.CONDITION_TAG, tag="done"),
            make_node("end", NodeType.ACTION_END),
        ]
        edges = [
            make_edge("trigger", "tag"),
            make_edge("tag", "check"),
            make_edge("check", "tag", "false"),
            make_edge("check", "end", "true"),
        ]
        errors = errors_for(nodes, edges)
        assert any(error.startswith("Cycle without a wait or delay:") for error in errors)

    def test_cycle_through_wait_is_allowed(self) -> None:
        nodes = [
            make_node("trigger", NodeType.TRIGGER_KEYWORD, keywords=["email"]),
            make_node("ask", NodeType.ACTION_SEND_TEXT, message="Qual seu email?"),
            make_node("wait", NodeType.ACTION_WAIT_REPLY, variable="email"),
            make_node("check", NodeType.CONDITION_FIELD, field="email", source="variable", operator="contains", value="@"),
            make_node("save", NodeType.ACTION_UPDATE_FIELD, field="email", value="{{vars.email}}"),
        ]
        edges = [
            *chain("trigger", "ask", "wait", "check"),
            make_edge("check", "save", "true"),
            make_edge("check", "ask", "false"),
        ]
        GraphValidator().validate(definition(nodes, edges))

    def test_template_wait_breaks_cycles(self) -> None:
        template = {
            "templateName": "menu",
            "waitForButtonResponse": True,
            "templateButtons": [{"id": "again", "text": "De novo"}, {"id": "stop", "text": "Parar"}],
        }
        nodes = [
            make_node("trigger", NodeType.TRIGGER_MESSAGE),
            make_node("menu", NodeType.ACTION_SEND_TEMPLATE, **template),
            make_node("note", NodeType.ACTION_ADD_TAG, tag="again"),
            make_node("end", NodeType.ACTION_END),
        ]
        edges = [
            make_edge("trigger", "menu"),
            make_edge("menu", "note", "again"),
            make_edge("menu", "end", "stop"),
            make_edge("note", "menu"),
        ]
        GraphValidator().validate(definition(nodes, edges))

    def test_invalid_configs_are_reported_before_structure(self) -> None:
        nodes = [
            make_node("trigger", NodeType.TRIGGER_KEYWORD, keywords=[]),
            make_node("send", NodeType.ACTION_SEND_TEXT),
            make_node("lonely", NodeType.ACTION_END),
        ]
        with pytest.raises(ConfigInvalidError) as exc_info:
            GraphValidator().validate(definition(nodes, [make_edge("trigger", "send")]))
        assert set(exc_info.value.errors) == {"trigger", "send"}

    def test_check_returns_every_error_without_raising(self) -> None:
        validator = GraphValidator()
        assert validator.check(definition(TAG_BRANCH, TAG_BRANCH_EDGES)) == []
        errors = validator.check(definition([make_node("send", NodeType.ACTION_SEND_TEXT)], []))
        assert errors == ["Node 'send': message: Field required"]
