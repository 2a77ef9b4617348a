"""Validate and coerce tool inputs against a declared field schema."""

from __future__ import annotations

import math
import re
from typing import Any, Mapping

from shared.workflow_contracts import ToolFieldSpec

_LIST_SPLIT = re.compile(r"\r?\n|,")
_TRUTHY = ("1", "true", "yes", "on")


class ToolInputValidationError(ValueError):
    """A tool input violates its declared schema; ``field`` names the offender."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field


def split_list(value: str) -> list[str]:
    return [part.strip() for part in _LIST_SPLIT.split(value) if part.strip()]


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def _coerce_number(key: str, spec: ToolFieldSpec, value: Any) -> Any:
    if _is_blank(value):
        if spec.required:
            raise ToolInputValidationError(key, f'Field "{key}" is required')
        return value

    if isinstance(value, bool):
        value = int(value)
    elif not isinstance(value, (int, float)):
        try:
            number = float(str(value).strip())
        except ValueError:
            raise ToolInputValidationError(key, f'Field "{key}" must be a number') from None
        value = int(number) if number.is_integer() else number

    if isinstance(value, float) and math.isnan(value):
        raise ToolInputValidationError(key, f'Field "{key}" must be a number')
    if spec.min is not None and value < spec.min:
        raise ToolInputValidationError(key, f'Field "{key}" must be >= {spec.min:g}')
    if spec.max is not None and value > spec.max:
        raise ToolInputValidationError(key, f'Field "{key}" must be <= {spec.max:g}')
    return value


def _coerce_boolean(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return bool(value)


def _coerce_list(key: str, spec: ToolFieldSpec, value: Any) -> list[str]:
    if isinstance(value, list):
        items = [str(item) for item in value if item is not None and str(item)]
    elif isinstance(value, str):
        items = split_list(value)
    elif value is None:
        items = []
    else:
        items = [str(value)]

    if spec.required and not items:
        raise ToolInputValidationError(key, f'Field "{key}" must include at least one item')
    return items


def validate_and_coerce_inputs(
    schema: Mapping[str, ToolFieldSpec] | None,
    inputs: Mapping[str, Any],
) -> dict[str, Any]:
    """Return a new dict holding exactly the schema's fields, coerced.

    An empty or missing schema passes the inputs through unchanged.
    """
    if not schema:
        return dict(inputs)

    result: dict[str, Any] = {}
    for key, spec in schema.items():
        value = inputs.get(key)
        field_type = spec.type.strip().lower()

        if field_type == "number":
            value = _coerce_number(key, spec, value)
        elif field_type == "boolean":
            value = _coerce_boolean(value)
        elif field_type == "list":
            value = _coerce_list(key, spec, value)
        elif _is_blank(value):
            if spec.required:
                raise ToolInputValidationError(key, f'Field "{key}" is required')
        elif field_type == "multiselect" and not isinstance(value, list):
            value = split_list(str(value))

        result[key] = value
    return result
