import asyncio
import math

from execution.context import ExecutionContext
from runners.condition import ConditionRunner, compare, is_empty, loose_equals, to_number
from shared.workflow_contracts import ConditionNode


def _context(**variables) -> ExecutionContext:
    return ExecutionContext(workflow_id="wf", execution_id="ex-1", user_id="u1", variables=dict(variables))


def _node(config: dict) -> ConditionNode:
    return ConditionNode.model_validate({"id": "check", "kind": "condition", "config": config})


def test_to_number_follows_loose_numeric_coercion() -> None:
    assert to_number("5") == 5.0
    assert to_number(" ") == 0.0
    assert to_number(None) == 0.0
    assert to_number(True) == 1.0
    assert to_number([7]) == 7.0
    assert math.isnan(to_number("abc"))
    assert math.isnan(to_number({"a": 1}))


def test_loose_equals_coerces_numbers_and_strings() -> None:
    assert loose_equals(5, "5")
    assert loose_equals(True, "1")
    assert not loose_equals("abc", "ABC")
    assert not loose_equals(None, 0)
    assert loose_equals(None, None)


def test_is_empty_treats_falsy_values_and_empty_lists_as_empty() -> None:
    for value in (None, False, 0, 0.0, "", [], float("nan")):
        assert is_empty(value), value
    for value in ({}, "0", [0], 1, "text"):
        assert not is_empty(value), value


def test_compare_string_operators_use_template_text() -> None:
    assert compare("hello world", "contains", "world")
    assert compare(12345, "starts_with", 12)
    assert compare("report.csv", "ends_with", ".csv")
    assert compare("abc", "not_contains", "z")
    assert compare(10, "greater_than", "9")
    assert not compare("abc", "greater_than", 1)


def test_condition_runner_and_or_combination() -> None:
    async def _run() -> None:
        runner = ConditionRunner()
        context = _context(score=7, status="active")

        both = _node(
            {
                "conditions": [
                    {"field": "{score}", "operator": "greater_than", "value": 5},
                    {"field": "{status}", "operator": "equals", "value": "inactive"},
                ],
                "operator": "AND",
            }
        )
        result = await runner.execute(both, context)
        assert result.success is True
        assert result.output == {"condition_met": False, "evaluated_conditions": 2, "operator": "AND"}

        either = both.model_copy(update={"config": both.config.model_copy(update={"operator": "OR"})})
        result = await runner.execute(either, context)
        assert result.output["condition_met"] is True

    asyncio.run(_run())


def test_condition_runner_routes_to_branch_targets() -> None:
    async def _run() -> None:
        node = _node(
            {
                "conditions": [{"field": "{step.fetch.count}", "operator": "equals", "value": "3"}],
                "true_node_id": "notify",
                "false_node_id": "skip",
            }
        )
        context = _context()
        context.step_outputs["fetch"] = {"count": 3}
        result = await ConditionRunner().execute(node, context)
        assert result.next_node_ids == ["notify"]

        context.step_outputs["fetch"] = {"count": 4}
        result = await ConditionRunner().execute(node, context)
        assert result.next_node_ids == ["skip"]

    asyncio.run(_run())


def test_condition_with_zero_clauses() -> None:
    async def _run() -> None:
        context = _context()
        result_and = await ConditionRunner().execute(_node({"conditions": [], "operator": "AND"}), context)
        result_or = await ConditionRunner().execute(_node({"conditions": [], "operator": "OR"}), context)
        assert result_and.output["condition_met"] is True
        assert result_or.output["condition_met"] is False
        assert result_and.next_node_ids is None

    asyncio.run(_run())


def test_missing_field_is_treated_as_empty() -> None:
    async def _run() -> None:
        node = _node({"conditions": [{"field": "{nothing.here}", "operator": "is_empty"}]})
        result = await ConditionRunner().execute(node, _context())
        assert result.output["condition_met"] is True

    asyncio.run(_run())
