import asyncio

from execution.context import ExecutionContext
from runners.transform import TransformRunner
from shared.workflow_contracts import TransformNode

ORDERS = [
    {"id": 1, "customer": "ana", "total": 30, "status": "paid"},
    {"id": 2, "customer": "bo", "total": 5.5, "status": "open"},
    {"id": 3, "customer": "cy", "total": "12", "status": "paid"},
]


def _context(**variables) -> ExecutionContext:
    return ExecutionContext(workflow_id="wf", execution_id="ex-1", user_id="u1", variables=dict(variables))


def _transform(config: dict, context: ExecutionContext):
    node = TransformNode.model_validate({"id": "shape", "kind": "transform", "config": config})
    return asyncio.run(TransformRunner().execute(node, context))


def test_map_resolves_mapping_per_item() -> None:
    context = _context(orders=ORDERS)
    result = _transform(
        {"transform_type": "map", "source": "{orders}", "mapping": {"who": "{item.customer}", "label": "#{item.id}"}},
        context,
    )
    assert result.output == [
        {"who": "ana", "label": "#1"},
        {"who": "bo", "label": "#2"},
        {"who": "cy", "label": "#3"},
    ]
    assert "item" not in context.variables


def test_filter_keeps_matching_items() -> None:
    result = _transform(
        {
            "transform_type": "filter",
            "source": "{orders}",
            "condition": {"field": "{item.status}", "operator": "equals", "value": "paid"},
        },
        _context(orders=ORDERS),
    )
    assert [order["id"] for order in result.output] == [1, 3]


def test_sort_orders_numbers_and_puts_missing_last() -> None:
    rows = [{"n": 3}, {"x": 0}, {"n": 1}, {"n": None}, {"n": 2}]
    ascending = _transform({"transform_type": "sort", "source": "{rows}", "sort_field": "n"}, _context(rows=rows))
    assert ascending.output == [{"n": 1}, {"n": 2}, {"n": 3}, {"x": 0}, {"n": None}]

    descending = _transform(
        {"transform_type": "sort", "source": "{rows}", "sortField": "n", "sortOrder": "desc"},
        _context(rows=rows),
    )
    assert descending.output[:3] == [{"n": 3}, {"n": 2}, {"n": 1}]


def test_sort_is_stable_for_equal_keys() -> None:
    rows = [{"k": 1, "tag": "a"}, {"k": 0, "tag": "b"}, {"k": 1, "tag": "c"}]
    result = _transform(
        {"transform_type": "sort", "source": "{rows}", "sort_field": "k", "sort_order": "desc"},
        _context(rows=rows),
    )
    assert [row["tag"] for row in result.output] == ["a", "c", "b"]


def test_aggregate_operations() -> None:
    context = _context(orders=ORDERS)

    def aggregate(operation: str):
        return _transform(
            {"transform_type": "aggregate", "source": "{orders}", "operation": operation, "field": "total"},
            context,
        ).output

    assert aggregate("count") == {"count": 3}
    assert aggregate("sum") == {"sum": 47.5}
    assert aggregate("min") == {"min": 5.5}
    assert aggregate("max") == {"max": 30}
    assert aggregate("average") == {"average": 47.5 / 3}


def test_aggregate_on_empty_source() -> None:
    context = _context(rows=[])
    total = _transform({"transform_type": "aggregate", "source": "{rows}", "operation": "sum", "field": "x"}, context)
    average = _transform(
        {"transform_type": "aggregate", "source": "{rows}", "operation": "average", "field": "x"}, context
    )
    assert total.output == {"sum": 0}
    assert average.output == {"average": None}


def test_non_array_source_is_a_soft_failure() -> None:
    context = _context(value="oops")
    result = _transform({"transform_type": "map", "source": "{value}"}, context)
    assert result.success is True
    assert result.output == {"error": "Source data must be an array"}
    assert context.logs[-1].level == "warn"


def test_format_json_csv_and_case() -> None:
    rows = [{"a": 1, "b": "x,y"}, {"a": 2, "b": None}]
    context = _context(rows=rows, name="Mixed Case")

    as_json = _transform({"transform_type": "format", "source": "{rows}", "format": "json"}, context)
    assert as_json.output.startswith("[\n  {")

    as_csv = _transform({"transform_type": "format", "source": "{rows}", "format": "csv"}, context)
    assert as_csv.output == {"csv": 'a,b\n1,"x,y"\n2,'}

    bad_csv = _transform({"transform_type": "format", "source": "{name}", "format": "csv"}, context)
    assert bad_csv.output == {"error": "Invalid data for CSV format"}

    upper = _transform({"transform_type": "format", "source": "{name}", "format": "uppercase"}, context)
    lower = _transform({"transform_type": "format", "source": "{name}", "format": "lowercase"}, context)
    assert upper.output == "MIXED CASE"
    assert lower.output == "mixed case"
