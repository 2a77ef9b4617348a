"""Transform node: map / filter / sort / aggregate / format over step data.

A non-array source for the collection transforms is a soft failure: the
node succeeds with ``{"error": ...}`` so downstream nodes can branch on it.
"""

from __future__ import annotations

import csv
import io
import json
import math
from typing import Any

from execution.context import ExecutionContext
from runners.base import NodeExecutionResult, NodeRunner
from runners.condition import evaluate_clause, to_number, to_text
from shared.variable_resolver import MISSING, get_nested_value
from shared.workflow_contracts import TransformConfig, TransformNode

ITEM_VARIABLE = "item"
NOT_AN_ARRAY = {"error": "Source data must be an array"}


class TransformRunner(NodeRunner):
    kind = "transform"

    async def run(self, node: TransformNode, context: ExecutionContext) -> NodeExecutionResult:
        config = node.config
        data = context.resolve_value(config.source)
        handler = getattr(self, f"_{config.transform_type}")
        output = handler(data, config, context)
        if isinstance(output, dict) and "error" in output:
            context.log(node.id, "warn", str(output["error"]))
        return NodeExecutionResult.ok(output)

    def _map(self, data: Any, config: TransformConfig, context: ExecutionContext) -> Any:
        if not isinstance(data, list):
            return dict(NOT_AN_ARRAY)
        mapped: list[dict[str, Any]] = []
        for item in data:
            with context.scoped_variables(**{ITEM_VARIABLE: item}):
                mapped.append({key: context.resolve_value(template) for key, template in config.mapping.items()})
        return mapped

    def _filter(self, data: Any, config: TransformConfig, context: ExecutionContext) -> Any:
        if not isinstance(data, list):
            return dict(NOT_AN_ARRAY)
        kept: list[Any] = []
        for item in data:
            with context.scoped_variables(**{ITEM_VARIABLE: item}):
                if config.condition is not None and evaluate_clause(config.condition, context):
                    kept.append(item)
        return kept

    def _sort(self, data: Any, config: TransformConfig, context: ExecutionContext) -> Any:
        if not isinstance(data, list):
            return dict(NOT_AN_ARRAY)

        present: list[tuple[Any, Any]] = []
        missing: list[Any] = []
        for item in data:
            value = get_nested_value(item, config.sort_field)
            if value is MISSING or value is None:
                missing.append(item)
            else:
                present.append((_sort_key(value), item))

        # sorted() is stable for reverse=True as well
        present.sort(key=lambda pair: pair[0], reverse=config.sort_order == "desc")
        return [item for _, item in present] + missing

    def _aggregate(self, data: Any, config: TransformConfig, context: ExecutionContext) -> Any:
        if not isinstance(data, list):
            return dict(NOT_AN_ARRAY)

        operation = config.operation
        if operation == "count":
            return {"count": len(data)}

        values = [_numeric_field(item, config.field) for item in data]
        if operation == "sum":
            return {"sum": _clean_number(sum(values))}
        if not values:
            return {operation: None}
        if operation == "average":
            return {"average": _clean_number(sum(values) / len(values))}
        if operation == "min":
            return {"min": _clean_number(min(values))}
        return {"max": _clean_number(max(values))}

    def _format(self, data: Any, config: TransformConfig, context: ExecutionContext) -> Any:
        if config.format == "json":
            return json.dumps(data, indent=2, ensure_ascii=False, default=str)
        if config.format == "csv":
            return _to_csv(data)
        if config.format == "uppercase":
            return to_text(data).upper()
        return to_text(data).lower()


def _sort_key(value: Any) -> tuple[int, Any]:
    """Numbers order numerically and before everything else, which orders as text."""
    if isinstance(value, (int, float)) and not isinstance(value, bool) and not math.isnan(value):
        return (0, float(value))
    return (1, to_text(value))


def _numeric_field(item: Any, field: str) -> float:
    value = get_nested_value(item, field) if field else item
    if value is MISSING:
        return 0.0
    number = to_number(value)
    return 0.0 if math.isnan(number) else number


def _clean_number(value: float) -> int | float:
    if math.isfinite(value) and float(value).is_integer():
        return int(value)
    return value


def _to_csv(data: Any) -> dict[str, str]:
    if not isinstance(data, list) or not data or not isinstance(data[0], dict):
        return {"error": "Invalid data for CSV format"}

    headers = list(data[0].keys())
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(headers)
    for row in data:
        source = row if isinstance(row, dict) else {}
        writer.writerow([_csv_cell(source.get(header)) for header in headers])
    return {"csv": buffer.getvalue().rstrip("\n")}


def _csv_cell(value: Any) -> str:
    if value is None:
        return ""
    return to_text(value) if not isinstance(value, str) else value
