"""Variable Resolver: placeholder substitution shared by every node runner.

Recognized placeholder syntaxes (mixable within one template):
- ``{name}``
- ``{{name}}``
- ``${name}``

Each accepts a dotted path (``{user.profile.name}``, ``{items.0.title}``).
The reserved prefix ``step.<nodeId>.<path>`` reads from the step-output map
when that node has produced an output.

Unresolved placeholders are left untouched so template bugs stay visible.
"""

from __future__ import annotations

import json
import math
import re
from datetime import date, datetime
from typing import Any, Mapping

_PLACEHOLDER_PATTERN = re.compile(
    r"\$\{\s*(?P<dollar>[\w$.\-]+)\s*\}"
    r"|\{\{\s*(?P<mustache>[\w$.\-]+)\s*\}\}"
    r"|\{\s*(?P<simple>[\w$.\-]+)\s*\}"
)

STEP_PREFIX = "step"


class _Missing:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


def _placeholder_path(match: re.Match[str]) -> str:
    return match.group("dollar") or match.group("mustache") or match.group("simple") or ""


def get_nested_value(source: Any, path: str | list[str]) -> Any:
    """Walk ``source`` one segment at a time; return MISSING when any hop is absent."""
    segments = path.split(".") if isinstance(path, str) else list(path)
    current = source
    for segment in segments:
        if current is None:
            return MISSING
        if isinstance(current, Mapping):
            if segment not in current:
                return MISSING
            current = current[segment]
        elif isinstance(current, (list, tuple)):
            if not segment.lstrip("-").isdigit():
                return MISSING
            index = int(segment)
            if index < 0 or index >= len(current):
                return MISSING
            current = current[index]
        else:
            return MISSING
    return current


def lookup(
    path: str,
    variables: Mapping[str, Any],
    step_outputs: Mapping[str, Any] | None = None,
) -> Any:
    """Resolve a dotted path against variables, honoring the ``step.`` prefix."""
    key = path.strip()
    if not key:
        return MISSING

    segments = key.split(".")
    if segments[0] == STEP_PREFIX and len(segments) >= 2 and step_outputs:
        node_id = segments[1]
        if node_id in step_outputs:
            return get_nested_value(step_outputs[node_id], segments[2:])

    return get_nested_value(variables, segments)


def format_value(value: Any) -> str:
    """Render a resolved value as template text."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (dict, list, tuple)):
        try:
            return json.dumps(value, indent=2, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            return str(value)
    return str(value)


def resolve_text(
    template: Any,
    variables: Mapping[str, Any],
    step_outputs: Mapping[str, Any] | None = None,
) -> Any:
    """Substitute every placeholder in ``template`` in a single pass.

    Non-string input is returned unchanged.
    """
    if not isinstance(template, str):
        return template

    def _substitute(match: re.Match[str]) -> str:
        value = lookup(_placeholder_path(match), variables, step_outputs)
        if value is MISSING:
            return match.group(0)
        return format_value(value)

    return _PLACEHOLDER_PATTERN.sub(_substitute, template)


def whole_value_reference(template: Any) -> str | None:
    """Return the path when ``template`` is exactly one placeholder, else None."""
    if not isinstance(template, str):
        return None
    match = _PLACEHOLDER_PATTERN.fullmatch(template)
    if match is None:
        return None
    return _placeholder_path(match)


def resolve_value(
    template: Any,
    variables: Mapping[str, Any],
    step_outputs: Mapping[str, Any] | None = None,
    *,
    default: Any = MISSING,
) -> Any:
    """Resolve keeping the original type for whole-value references.

    ``"{{step.fetch.items}}"`` returns the list itself rather than its JSON text.
    An unresolved whole-value reference returns ``default`` when given,
    otherwise the template unchanged.
    """
    if not isinstance(template, str):
        return template

    path = whole_value_reference(template)
    if path is not None:
        value = lookup(path, variables, step_outputs)
        if value is MISSING:
            return template if default is MISSING else default
        return value

    return resolve_text(template, variables, step_outputs)


def resolve_structure(
    value: Any,
    variables: Mapping[str, Any],
    step_outputs: Mapping[str, Any] | None = None,
) -> Any:
    """Apply :func:`resolve_value` to every string nested in dicts and lists."""
    if isinstance(value, dict):
        return {k: resolve_structure(v, variables, step_outputs) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_structure(v, variables, step_outputs) for v in value]
    return resolve_value(value, variables, step_outputs)

