"""Tool node: invoke a marketplace tool with inputs mapped from the run."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from execution.context import ExecutionContext
from runners.base import NodeExecutionResult, NodeRunner
from shared.safe_eval import SafeExpressionError, evaluate_expression
from shared.variable_resolver import MISSING, get_nested_value
from shared.workflow_contracts import ToolDefinition, ToolInputMapping, ToolNode
from tools.builder import ToolBuilder
from tools.builtin import BUILTIN_RESOLVERS
from tools.catalog import ToolCatalog
from tools.schema import ToolInputValidationError, validate_and_coerce_inputs

logger = logging.getLogger(__name__)

_BUILDER_SECTIONS = {
    "input_config": ("input_config", "inputConfig"),
    "logic_config": ("logic_config", "logicConfig"),
    "output_config": ("output_config", "outputConfig"),
}


def _node_reference(value: Any) -> tuple[str, str] | None:
    if not isinstance(value, dict):
        return None
    from_node = value.get("from_node", value.get("fromNode"))
    if not from_node:
        return None
    return str(from_node), str(value.get("field_name", value.get("fieldName")) or "")


class ToolRunner(NodeRunner):
    kind = "tool"
    external = True

    def __init__(
        self,
        catalog: ToolCatalog | None = None,
        builder: ToolBuilder | None = None,
        *,
        timeout_seconds: float | None = None,
    ):
        super().__init__(timeout_seconds=timeout_seconds)
        self.catalog = catalog
        self.builder = builder

    async def run(self, node: ToolNode, context: ExecutionContext) -> NodeExecutionResult:
        tool_id = node.config.tool_id
        if not tool_id:
            return NodeExecutionResult.fail("No tool selected for this node")

        tool = self.catalog.get(tool_id) if self.catalog is not None else None
        if tool is None:
            return NodeExecutionResult.fail(f"Tool not found: {tool_id}")

        inputs = self._map_inputs(node.config.input_mappings, context)

        if tool.code_kind == "builtin":
            result = self._run_builtin(tool, inputs)
        elif tool.code_kind == "custom":
            result = self._run_custom(tool, inputs)
        else:
            result = await self._run_config(tool, inputs)

        if isinstance(result, NodeExecutionResult):
            return result

        outputs = result if isinstance(result, dict) else {"result": result}
        context.log(node.id, "info", f"Tool '{tool.title or tool.tool_id}' executed")
        return NodeExecutionResult.ok(
            {
                "tool_id": tool.tool_id,
                "tool_name": tool.title,
                "tool_outputs": outputs,
                **outputs,
            }
        )

    def _map_inputs(self, mappings: list[ToolInputMapping], context: ExecutionContext) -> dict[str, Any]:
        inputs: dict[str, Any] = {}
        for mapping in mappings:
            reference = _node_reference(mapping.value)
            if reference is None:
                inputs[mapping.field_id] = context.resolve_value(mapping.value)
                continue

            from_node, field_name = reference
            if from_node not in context.step_outputs:
                continue
            output = context.step_outputs[from_node]
            value = get_nested_value(output, field_name) if field_name else output
            if value is not MISSING:
                inputs[mapping.field_id] = value
        return inputs

    def _run_builtin(self, tool: ToolDefinition, inputs: dict[str, Any]) -> Any:
        resolver = BUILTIN_RESOLVERS.get(tool.code_ref)
        if resolver is None:
            return NodeExecutionResult.fail(f"Resolver not found for tool: {tool.code_ref}")
        try:
            return resolver(inputs)
        except ValidationError as e:
            return NodeExecutionResult.fail(f"Tool input validation failed: {e}")
        except ValueError as e:
            return NodeExecutionResult.fail(f"Tool execution failed: {e}")

    def _run_custom(self, tool: ToolDefinition, inputs: dict[str, Any]) -> Any:
        try:
            validated = validate_and_coerce_inputs(tool.input_schema, inputs)
        except ToolInputValidationError as e:
            return NodeExecutionResult.fail(f"Tool input validation failed: {e}")
        try:
            return evaluate_expression(tool.code_ref, {**validated, "inputs": validated})
        except (SafeExpressionError, ArithmeticError, TypeError, ValueError) as e:
            return NodeExecutionResult.fail(f"Tool execution failed: {e}")

    async def _run_config(self, tool: ToolDefinition, inputs: dict[str, Any]) -> Any:
        sections = self._builder_sections(tool.builder_config or {})
        if sections is None:
            return NodeExecutionResult.fail("Invalid tool configuration")
        if self.builder is None:
            return NodeExecutionResult.fail("Tool builder is not configured")

        try:
            validated = validate_and_coerce_inputs(tool.input_schema, inputs)
        except ToolInputValidationError as e:
            return NodeExecutionResult.fail(f"Tool input validation failed: {e}")
        try:
            return await self.builder.run_template(
                sections["input_config"],
                sections["logic_config"],
                sections["output_config"],
                validated,
            )
        except ToolInputValidationError as e:
            return NodeExecutionResult.fail(f"Tool input validation failed: {e}")
        except (ValidationError, RuntimeError, ValueError) as e:
            return NodeExecutionResult.fail(f"Tool execution failed: {e}")

    def _builder_sections(self, builder_config: dict[str, Any]) -> dict[str, Any] | None:
        sections: dict[str, Any] = {}
        for name, keys in _BUILDER_SECTIONS.items():
            value = next((builder_config[key] for key in keys if builder_config.get(key) is not None), None)
            if value is None:
                return None
            sections[name] = value
        return sections
