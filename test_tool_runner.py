import asyncio

from execution.context import ExecutionContext
from runners.tool import ToolRunner
from shared.workflow_contracts import ToolDefinition, ToolNode
from tools.builder import TemplateToolBuilder
from tools.catalog import InMemoryToolCatalog


def _context(**variables) -> ExecutionContext:
    return ExecutionContext(workflow_id="wf", execution_id="ex-1", user_id="u1", variables=dict(variables))


def _node(tool_id: str | None, mappings: list[dict] | None = None) -> ToolNode:
    return ToolNode.model_validate(
        {"id": "tool", "kind": "tool", "config": {"toolId": tool_id, "inputMappings": mappings or []}}
    )


def _catalog() -> InMemoryToolCatalog:
    return InMemoryToolCatalog(
        [
            ToolDefinition(tool_id="tips", title="Tip Calculator", code_kind="builtin", code_ref="tip-calculator"),
            ToolDefinition(tool_id="ghost", code_kind="builtin", code_ref="does-not-exist"),
            ToolDefinition.model_validate(
                {
                    "tool_id": "order-total",
                    "title": "Order Total",
                    "code_kind": "custom",
                    "code_ref": '{"total": inputs.price * inputs.quantity}',
                    "input_schema": {
                        "price": {"type": "number", "required": True, "min": 0},
                        "quantity": {"type": "number", "required": True, "min": 1},
                    },
                }
            ),
            ToolDefinition.model_validate(
                {
                    "tool_id": "greeter",
                    "title": "Greeter",
                    "code_kind": "config",
                    "builder_config": {
                        "inputConfig": [{"id": "name", "label": "Name", "required": True}],
                        "logicConfig": [{"id": "up", "type": "transform", "inputFieldId": "name", "transformType": "uppercase"}],
                        "outputConfig": {"type": "single_value", "sourceStepId": "up"},
                    },
                }
            ),
            ToolDefinition(tool_id="broken", code_kind="config", builder_config={"inputConfig": []}),
        ]
    )


def test_builtin_tool_maps_literal_and_node_reference_inputs() -> None:
    async def _run() -> None:
        context = _context(tip=20)
        context.step_outputs["bill"] = {"amount": 100}
        node = _node(
            "tips",
            [
                {"fieldId": "subtotal", "value": {"fromNode": "bill", "fieldName": "amount"}},
                {"fieldId": "tipPercentage", "value": "{tip}"},
                {"fieldId": "numberOfPeople", "value": 2},
            ],
        )

        result = await ToolRunner(_catalog()).execute(node, context)

        assert result.success is True
        assert result.output["tool_id"] == "tips"
        assert result.output["tool_name"] == "Tip Calculator"
        assert result.output["total"] == 120.0
        assert result.output["per_person"] == 60.0
        assert result.output["tool_outputs"]["tip_amount"] == 20.0

    asyncio.run(_run())


def test_missing_tool_selection_and_unknown_tool() -> None:
    async def _run() -> None:
        runner = ToolRunner(_catalog())
        no_tool = await runner.execute(_node(None), _context())
        assert no_tool.error == "No tool selected for this node"

        unknown = await runner.execute(_node("nope"), _context())
        assert unknown.error == "Tool not found: nope"

        no_resolver = await runner.execute(_node("ghost"), _context())
        assert no_resolver.error == "Resolver not found for tool: does-not-exist"

    asyncio.run(_run())


def test_builtin_validation_failure() -> None:
    async def _run() -> None:
        node = _node("tips", [{"fieldId": "subtotal", "value": -5}, {"fieldId": "tipPercentage", "value": 10}])
        result = await ToolRunner(_catalog()).execute(node, _context())
        assert result.success is False
        assert result.error.startswith("Tool input validation failed")

    asyncio.run(_run())


def test_custom_tool_validates_coerces_and_evaluates() -> None:
    async def _run() -> None:
        node = _node("order-total", [{"fieldId": "price", "value": "2.5"}, {"fieldId": "quantity", "value": "{qty}"}])
        result = await ToolRunner(_catalog()).execute(node, _context(qty="4"))
        assert result.success is True
        assert result.output["total"] == 10.0

        invalid = await ToolRunner(_catalog()).execute(
            _node("order-total", [{"fieldId": "price", "value": 1}, {"fieldId": "quantity", "value": 0}]),
            _context(),
        )
        assert invalid.error == 'Tool input validation failed: Field "quantity" must be >= 1'

    asyncio.run(_run())


def test_config_tool_runs_through_builder() -> None:
    async def _run() -> None:
        runner = ToolRunner(_catalog(), TemplateToolBuilder())
        result = await runner.execute(_node("greeter", [{"fieldId": "name", "value": "ana"}]), _context())
        assert result.success is True
        assert result.output["result"] == "ANA"

        missing = await runner.execute(_node("greeter"), _context())
        assert missing.success is False
        assert missing.error == 'Tool input validation failed: Required field "Name" is missing'

        broken = await runner.execute(_node("broken"), _context())
        assert broken.error == "Invalid tool configuration"

        no_builder = await ToolRunner(_catalog()).execute(_node("greeter", [{"fieldId": "name", "value": "x"}]), _context())
        assert no_builder.error == "Tool builder is not configured"

    asyncio.run(_run())


def test_reference_to_node_without_output_is_skipped() -> None:
    async def _run() -> None:
        node = _node("order-total", [{"fieldId": "price", "value": {"from_node": "missing", "field_name": "x"}}])
        result = await ToolRunner(_catalog()).execute(node, _context())
        assert result.error == 'Tool input validation failed: Field "price" is required'

    asyncio.run(_run())
