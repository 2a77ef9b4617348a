"""Declarative tool templates: input fields -> logic steps -> output sections.

Logic steps run in order against a flat context seeded with the inputs; each
step stores its result under ``step_<id>`` so later steps and output
sections can reference it.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Literal, Protocol

from pydantic import AliasChoices, BaseModel, Field

from shared.safe_eval import SafeExpressionError, evaluate_expression
from shared.variable_resolver import resolve_text
from tools.schema import ToolInputValidationError

logger = logging.getLogger(__name__)

MAX_NESTING_DEPTH = 10


class TemplateExecutionError(RuntimeError):
    """A logic step could not be evaluated."""


class ToolBuilder(Protocol):
    async def run_template(
        self,
        input_config: list[dict[str, Any]],
        logic_config: list[dict[str, Any]],
        output_config: dict[str, Any],
        inputs: dict[str, Any],
    ) -> dict[str, Any]:
        ...


class TemplateField(BaseModel):
    id: str
    label: str = Field(default="")
    type: str = Field(default="text")
    required: bool = Field(default=False)
    min: float | None = Field(default=None)
    max: float | None = Field(default=None)

    @property
    def display_name(self) -> str:
        return self.label or self.id


class CalculationVariable(BaseModel):
    name: str
    field_id: str = Field(validation_alias=AliasChoices("field_id", "fieldId"))


class LogicStep(BaseModel):
    id: str
    type: Literal["calculation", "transform", "condition"]
    title: str = Field(default="")
    formula: str = Field(default="")
    variables: list[CalculationVariable] = Field(default_factory=list)
    input_field_id: str = Field(default="", validation_alias=AliasChoices("input_field_id", "inputFieldId"))
    transform_type: Literal["uppercase", "lowercase", "trim"] = Field(
        default="trim", validation_alias=AliasChoices("transform_type", "transformType")
    )
    expression: str = Field(default="")
    then: list["LogicStep"] = Field(default_factory=list)
    otherwise: list["LogicStep"] = Field(default_factory=list, validation_alias=AliasChoices("otherwise", "else"))

    @property
    def display_name(self) -> str:
        return self.title or self.id


LogicStep.model_rebuild()


class OutputSection(BaseModel):
    type: str = Field(default="text")
    title: str = Field(default="")
    content: str = Field(default="")
    visible: bool = Field(default=True)


class OutputConfig(BaseModel):
    type: str = Field(default="sections")
    format: str = Field(default="text")
    source_step_id: str | None = Field(default=None, validation_alias=AliasChoices("source_step_id", "sourceStepId"))
    sections: list[OutputSection] = Field(default_factory=list)


class TemplateToolBuilder:
    """Interprets stored tool templates with the restricted expression evaluator."""

    async def run_template(
        self,
        input_config: list[dict[str, Any]],
        logic_config: list[dict[str, Any]],
        output_config: dict[str, Any],
        inputs: dict[str, Any],
    ) -> dict[str, Any]:
        fields = [TemplateField.model_validate(item) for item in input_config]
        steps = [LogicStep.model_validate(item) for item in logic_config]
        output = OutputConfig.model_validate(output_config)

        self._validate_inputs(fields, inputs)
        context = dict(inputs)
        self._run_steps(steps, context, depth=0)
        return self._format_output(output, context)

    def _validate_inputs(self, fields: list[TemplateField], inputs: dict[str, Any]) -> None:
        for field in fields:
            value = inputs.get(field.id)
            if value is None or value == "":
                if field.required:
                    raise ToolInputValidationError(field.id, f'Required field "{field.display_name}" is missing')
                continue
            if field.type != "number":
                continue
            try:
                number = float(value)
            except (TypeError, ValueError):
                raise ToolInputValidationError(field.id, f'Field "{field.display_name}" must be a number') from None
            if field.min is not None and number < field.min:
                raise ToolInputValidationError(field.id, f'Field "{field.display_name}" must be at least {field.min:g}')
            if field.max is not None and number > field.max:
                raise ToolInputValidationError(field.id, f'Field "{field.display_name}" must be at most {field.max:g}')

    def _run_steps(self, steps: list[LogicStep], context: dict[str, Any], depth: int) -> None:
        if depth > MAX_NESTING_DEPTH:
            raise TemplateExecutionError("Template logic is nested too deeply")
        for step in steps:
            if step.type == "calculation":
                context[f"step_{step.id}"] = self._calculate(step, context)
            elif step.type == "transform":
                context[f"step_{step.id}"] = self._transform(step, context)
            else:
                met = self._condition(step, context)
                context[f"step_{step.id}"] = {"branch": "then" if met else "else", "condition_met": met}
                self._run_steps(step.then if met else step.otherwise, context, depth + 1)

    def _calculate(self, step: LogicStep, context: dict[str, Any]) -> Any:
        if not step.formula.strip():
            raise TemplateExecutionError(f'Calculation step "{step.display_name}" has no formula defined')

        bindings: dict[str, Any] = {}
        for variable in step.variables:
            if variable.field_id not in context:
                raise TemplateExecutionError(f"Missing required value for calculation: {variable.name}")
            try:
                number = float(context[variable.field_id])
            except (TypeError, ValueError):
                raise TemplateExecutionError(
                    f'Variable "{variable.name}" must be a number for calculation'
                ) from None
            bindings[variable.name] = int(number) if number.is_integer() else number

        try:
            result = evaluate_expression(step.formula, {**context, **bindings})
        except (SafeExpressionError, ArithmeticError, TypeError) as e:
            raise TemplateExecutionError(f'Failed to evaluate formula "{step.formula}": {e}') from e
        if isinstance(result, float) and math.isfinite(result) and result.is_integer():
            return int(result)
        return result

    def _transform(self, step: LogicStep, context: dict[str, Any]) -> str:
        if step.input_field_id not in context:
            raise TemplateExecutionError(f'Input field "{step.input_field_id}" not found for transform operation')
        text = str(context[step.input_field_id])
        if step.transform_type == "uppercase":
            return text.upper()
        if step.transform_type == "lowercase":
            return text.lower()
        return text.strip()

    def _condition(self, step: LogicStep, context: dict[str, Any]) -> bool:
        try:
            return bool(evaluate_expression(step.expression, context))
        except (SafeExpressionError, ArithmeticError, TypeError) as e:
            raise TemplateExecutionError(f'Condition step "{step.display_name}" failed: {e}') from e

    def _format_output(self, output: OutputConfig, context: dict[str, Any]) -> dict[str, Any]:
        if output.type == "single_value" and output.source_step_id:
            return {"result": context.get(f"step_{output.source_step_id}")}
        return {
            "format": output.format,
            "sections": [
                {
                    "type": section.type,
                    "title": section.title,
                    "content": resolve_text(section.content, context),
                    "visible": section.visible,
                }
                for section in output.sections
            ],
        }
