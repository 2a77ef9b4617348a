import pytest
from pydantic import ValidationError

from shared.workflow_contracts import (
    ConditionNode,
    LoopConfig,
    ToolDefinition,
    TransformConfig,
    WorkflowEdge,
    WorkflowGraph,
)


def _graph(nodes, edges=None) -> WorkflowGraph:
    return WorkflowGraph.model_validate({"nodes": nodes, "edges": edges or []})


def test_graph_parses_tagged_nodes_and_camel_case_edges() -> None:
    graph = _graph(
        [
            {"id": "t", "kind": "trigger"},
            {
                "id": "c",
                "kind": "condition",
                "config": {"conditions": [{"field": "{x}", "operator": ">", "value": 1}], "operator": "or"},
            },
            {"id": "a", "kind": "action", "config": {"actionType": "Send Email", "emailTo": "a@b.c"}},
        ],
        [
            {"source": "t", "target": "c"},
            {"source": "c", "target": "a", "sourceHandle": "true"},
        ],
    )

    condition = graph.node("c")
    assert isinstance(condition, ConditionNode)
    assert condition.config.operator == "OR"
    assert condition.config.conditions[0].operator == "greater_than"
    assert graph.node("a").config.action_type == "send_email"
    assert graph.outgoing("c")[0].handle == "true"
    assert graph.trigger_node.id == "t"


def test_graph_rejects_unknown_node_kind() -> None:
    with pytest.raises(ValidationError):
        _graph([{"id": "t", "kind": "trigger"}, {"id": "x", "kind": "teleport"}], [{"from_node": "t", "to_node": "x"}])


def test_graph_requires_exactly_one_trigger() -> None:
    with pytest.raises(ValidationError, match="exactly one trigger"):
        _graph([{"id": "a", "kind": "action"}])
    with pytest.raises(ValidationError, match="exactly one trigger"):
        _graph([{"id": "t1", "kind": "trigger"}, {"id": "t2", "kind": "trigger"}])


def test_graph_rejects_duplicate_ids_and_dangling_edges() -> None:
    with pytest.raises(ValidationError, match="unique"):
        _graph([{"id": "t", "kind": "trigger"}, {"id": "t", "kind": "action"}])
    with pytest.raises(ValidationError, match="not found"):
        _graph([{"id": "t", "kind": "trigger"}], [{"from_node": "t", "to_node": "ghost"}])


def test_graph_rejects_cycles() -> None:
    with pytest.raises(ValidationError, match="cycles"):
        _graph(
            [{"id": "t", "kind": "trigger"}, {"id": "a", "kind": "action"}, {"id": "b", "kind": "action"}],
            [
                {"from_node": "t", "to_node": "a"},
                {"from_node": "a", "to_node": "b"},
                {"from_node": "b", "to_node": "a"},
            ],
        )


def test_graph_rejects_unreachable_nodes() -> None:
    with pytest.raises(ValidationError, match="not reachable"):
        _graph([{"id": "t", "kind": "trigger"}, {"id": "orphan", "kind": "action"}])


def test_condition_branch_targets_count_as_reachability() -> None:
    graph = _graph(
        [
            {"id": "t", "kind": "trigger"},
            {"id": "c", "kind": "condition", "config": {"true_node_id": "yes", "false_node_id": "no"}},
            {"id": "yes", "kind": "action"},
            {"id": "no", "kind": "action"},
        ],
        [{"from_node": "t", "to_node": "c"}],
    )
    assert graph.adjacency()["c"] == ["yes", "no"]


def test_edge_handle_defaults_when_blank() -> None:
    edge = WorkflowEdge.model_validate({"from_node": "a", "to_node": "b", "handle": ""})
    assert edge.handle == "default"


def test_loop_and_transform_configs_normalize_labels_and_validate() -> None:
    assert LoopConfig.model_validate({"loop_type": "For Each", "source": "{items}"}).loop_type == "for_each"
    assert TransformConfig.model_validate({"transform_type": "sort_data", "sortField": "n"}).transform_type == "sort"

    with pytest.raises(ValidationError, match="condition"):
        LoopConfig.model_validate({"loop_type": "while"})
    with pytest.raises(ValidationError, match="sort_field"):
        TransformConfig.model_validate({"transform_type": "sort"})
    with pytest.raises(ValidationError):
        TransformConfig.model_validate({"transform_type": "pivot"})


def test_api_node_requires_url() -> None:
    with pytest.raises(ValidationError):
        _graph([{"id": "t", "kind": "trigger"}, {"id": "h", "kind": "api", "config": {}}], [{"from_node": "t", "to_node": "h"}])


def test_tool_definition_parses_input_schema() -> None:
    tool = ToolDefinition.model_validate(
        {
            "tool_id": "t1",
            "code_kind": "custom",
            "code_ref": "a + b",
            "input_schema": {"a": {"type": "number", "required": True, "min": 0}},
        }
    )
    assert tool.input_schema["a"].required is True
    assert tool.input_schema["a"].min == 0
