"""Condition node and the clause evaluator reused by loop/transform nodes."""

from __future__ import annotations

import math
from typing import Any

from execution.context import ExecutionContext
from runners.base import NodeExecutionResult, NodeRunner
from shared.variable_resolver import format_value
from shared.workflow_contracts import ConditionClause, ConditionNode


def to_number(value: Any) -> float:
    """Numeric coercion with JavaScript ``Number()`` semantics; NaN when unparsable."""
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            return float(text)
        except ValueError:
            return math.nan
    if isinstance(value, list):
        if not value:
            return 0.0
        if len(value) == 1:
            return to_number(value[0])
    return math.nan


def to_text(value: Any) -> str:
    return format_value(value)


def loose_equals(left: Any, right: Any) -> bool:
    """Coerced equality: ``5 == "5"`` and ``True == "1"`` hold, ``None`` equals only ``None``."""
    if left is None or right is None:
        return left is None and right is None
    if isinstance(left, (dict, list)) or isinstance(right, (dict, list)):
        return left == right
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    left_num, right_num = to_number(left), to_number(right)
    if math.isnan(left_num) or math.isnan(right_num):
        return False
    return left_num == right_num


def is_empty(value: Any) -> bool:
    """Empty means falsy (``None``, ``False``, ``0``, ``""``) or an empty list."""
    if value is None or value is False:
        return True
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value == 0 or math.isnan(value)
    if isinstance(value, str):
        return value == ""
    if isinstance(value, list):
        return len(value) == 0
    return False


def compare(actual: Any, operator: str, expected: Any) -> bool:
    if operator == "equals":
        return loose_equals(actual, expected)
    if operator == "not_equals":
        return not loose_equals(actual, expected)
    if operator == "greater_than":
        return to_number(actual) > to_number(expected)
    if operator == "less_than":
        return to_number(actual) < to_number(expected)
    if operator == "contains":
        return to_text(expected) in to_text(actual)
    if operator == "not_contains":
        return to_text(expected) not in to_text(actual)
    if operator == "starts_with":
        return to_text(actual).startswith(to_text(expected))
    if operator == "ends_with":
        return to_text(actual).endswith(to_text(expected))
    if operator == "is_empty":
        return is_empty(actual)
    if operator == "is_not_empty":
        return not is_empty(actual)
    raise ValueError(f"Unsupported condition operator: {operator}")


def evaluate_clause(clause: ConditionClause, context: ExecutionContext) -> bool:
    """Resolve both operands and compare; missing references count as absent."""
    actual = context.resolve_value(clause.field, default=None)
    expected = context.resolve_value(clause.value, default=None)
    return compare(actual, clause.operator, expected)


def evaluate_clauses(clauses: list[ConditionClause], combinator: str, context: ExecutionContext) -> bool:
    """Combine clauses left to right.

    ``AND`` over zero clauses is vacuously true; ``OR`` over zero clauses is false.
    """
    if combinator == "OR":
        return any(evaluate_clause(clause, context) for clause in clauses)
    return all(evaluate_clause(clause, context) for clause in clauses)


class ConditionRunner(NodeRunner):
    kind = "condition"

    async def run(self, node: ConditionNode, context: ExecutionContext) -> NodeExecutionResult:
        config = node.config
        condition_met = evaluate_clauses(config.conditions, config.operator, context)

        next_node_ids: list[str] = []
        if condition_met and config.true_node_id:
            next_node_ids.append(config.true_node_id)
        elif not condition_met and config.false_node_id:
            next_node_ids.append(config.false_node_id)

        context.log(node.id, "info", f"Condition evaluated to {condition_met}")
        return NodeExecutionResult.ok(
            {
                "condition_met": condition_met,
                "evaluated_conditions": len(config.conditions),
                "operator": config.operator,
            },
            next_node_ids=next_node_ids or None,
        )
