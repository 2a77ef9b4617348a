"""Restricted expression evaluator for custom tool bodies and tool templates.

Custom marketplace tools ship a single expression evaluated against their
validated inputs, e.g. ``{"total": inputs.price * inputs.quantity}``.
Supported: literals, names, dict attribute/subscript reads, arithmetic,
comparisons, conditionals, f-strings, a short list of pure builtins and
read-only string/dict methods. No imports, assignment, lambdas or
underscore-prefixed attribute access.
"""

from __future__ import annotations

import ast
import operator
from typing import Any, Callable, Mapping


class SafeExpressionError(ValueError):
    """Raised when an expression contains unsupported/unsafe constructs."""


MAX_EXPRESSION_LENGTH = 4000
MAX_SEQUENCE_LENGTH = 100_000

_LITERAL_NAMES = {
    "True": True,
    "False": False,
    "None": None,
    "true": True,
    "false": False,
    "null": None,
    "none": None,
}

_FUNCTIONS: dict[str, Callable[..., Any]] = {
    "len": len,
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
    "sum": sum,
    "sorted": sorted,
    "any": any,
    "all": all,
    "list": list,
}

_STR_METHODS = frozenset(
    "upper lower strip lstrip rstrip title capitalize split replace startswith endswith join count find".split()
)
_DICT_METHODS = frozenset({"get", "keys", "values", "items"})

_BINARY_OPERATORS: dict[type[ast.operator], Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_UNARY_OPERATORS: dict[type[ast.unaryop], Callable[[Any], Any]] = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

_COMPARISONS: dict[type[ast.cmpop], Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda left, right: left in right,
    ast.NotIn: lambda left, right: left not in right,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}


def _check_size(value: Any) -> Any:
    if isinstance(value, (str, list, tuple)) and len(value) > MAX_SEQUENCE_LENGTH:
        raise SafeExpressionError("Sequence result is too large")
    return value


def _check_repetition(left: Any, right: Any) -> None:
    for sequence, times in ((left, right), (right, left)):
        if isinstance(sequence, (str, list, tuple)) and isinstance(times, int):
            if len(sequence) * max(times, 0) > MAX_SEQUENCE_LENGTH:
                raise SafeExpressionError("Sequence repetition result is too large")


def _check_str_method(target: str, name: str, args: list[Any]) -> None:
    projected = 0
    if name == "replace" and len(args) >= 2 and isinstance(args[0], str) and isinstance(args[1], str):
        old, new = args[0], args[1]
        occurrences = target.count(old) if old else len(target) + 1
        if len(args) >= 3 and isinstance(args[2], int) and args[2] >= 0:
            occurrences = min(occurrences, args[2])
        projected = len(target) + occurrences * max(0, len(new) - len(old))
    elif name == "join" and args and isinstance(args[0], (list, tuple)):
        items = args[0]
        projected = len(target) * max(len(items) - 1, 0)
        projected += sum(len(item) for item in items if isinstance(item, str))
    if projected > MAX_SEQUENCE_LENGTH:
        raise SafeExpressionError("Sequence result is too large")


class _Evaluator:
    """Walks the parsed tree; each supported node type has a ``visit_<Type>`` method."""

    def __init__(self, context: Mapping[str, Any]):
        self.context = context

    def visit(self, node: ast.AST) -> Any:
        method = getattr(self, f"visit_{type(node).__name__}", None)
        if method is None:
            raise SafeExpressionError(f"Unsupported expression node: {type(node).__name__}")
        return method(node)

    def visit_Expression(self, node: ast.Expression) -> Any:
        return self.visit(node.body)

    def visit_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def visit_Name(self, node: ast.Name) -> Any:
        if node.id in _LITERAL_NAMES:
            return _LITERAL_NAMES[node.id]
        return self.context.get(node.id)

    def visit_Attribute(self, node: ast.Attribute) -> Any:
        if node.attr.startswith("_"):
            raise SafeExpressionError(f"Access to '{node.attr}' is not allowed")
        target = self.visit(node.value)
        return target.get(node.attr) if isinstance(target, dict) else None

    def visit_Subscript(self, node: ast.Subscript) -> Any:
        target = self.visit(node.value)
        key = self.visit(node.slice)
        if isinstance(target, dict):
            return target.get(key)
        if isinstance(target, (list, tuple, str)) and isinstance(key, int) and -len(target) <= key < len(target):
            return target[key]
        return None

    def visit_List(self, node: ast.List) -> list[Any]:
        return [self.visit(item) for item in node.elts]

    def visit_Tuple(self, node: ast.Tuple) -> tuple[Any, ...]:
        return tuple(self.visit(item) for item in node.elts)

    def visit_Dict(self, node: ast.Dict) -> dict[Any, Any]:
        if None in node.keys:
            raise SafeExpressionError("Dict unpacking is not allowed")
        return {self.visit(key): self.visit(value) for key, value in zip(node.keys, node.values)}

    def visit_JoinedStr(self, node: ast.JoinedStr) -> str:
        return _check_size("".join(str(self.visit(part)) for part in node.values))

    def visit_FormattedValue(self, node: ast.FormattedValue) -> Any:
        return self.visit(node.value)

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        stop_when = isinstance(node.op, ast.Or)
        result: Any = not stop_when
        for value in node.values:
            result = self.visit(value)
            if bool(result) is stop_when:
                return result
        return result

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        apply = _UNARY_OPERATORS.get(type(node.op))
        if apply is None:
            raise SafeExpressionError("Unsupported unary operator")
        return apply(self.visit(node.operand))

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        apply = _BINARY_OPERATORS.get(type(node.op))
        if apply is None:
            raise SafeExpressionError("Unsupported binary operator")
        left, right = self.visit(node.left), self.visit(node.right)
        if isinstance(node.op, ast.Mult):
            _check_repetition(left, right)
        return _check_size(apply(left, right))

    def visit_Compare(self, node: ast.Compare) -> bool:
        left = self.visit(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            compare = _COMPARISONS.get(type(op))
            if compare is None:
                raise SafeExpressionError(f"Unsupported comparison operator: {type(op).__name__}")
            right = self.visit(comparator)
            if not compare(left, right):
                return False
            left = right
        return True

    def visit_IfExp(self, node: ast.IfExp) -> Any:
        return self.visit(node.body if self.visit(node.test) else node.orelse)

    def visit_Call(self, node: ast.Call) -> Any:
        if any(keyword.arg is None for keyword in node.keywords):
            raise SafeExpressionError("Keyword unpacking is not allowed")
        args = [self.visit(arg) for arg in node.args]
        kwargs = {keyword.arg: self.visit(keyword.value) for keyword in node.keywords}

        if isinstance(node.func, ast.Name):
            fn = _FUNCTIONS.get(node.func.id)
            if fn is None:
                raise SafeExpressionError(f"Function '{node.func.id}' is not allowed")
            return fn(*args, **kwargs)

        if isinstance(node.func, ast.Attribute):
            target = self.visit(node.func.value)
            name = node.func.attr
            if isinstance(target, str) and name in _STR_METHODS:
                _check_str_method(target, name, args)
                return _check_size(getattr(target, name)(*args, **kwargs))
            if isinstance(target, dict) and name in _DICT_METHODS:
                result = getattr(target, name)(*args, **kwargs)
                return result if name == "get" else list(result)
            raise SafeExpressionError(f"Method '{name}' is not allowed")

        raise SafeExpressionError("Only direct safe function calls are allowed")


def evaluate_expression(expression: str, context: Mapping[str, Any]) -> Any:
    """Evaluate a constrained expression, raising on unsafe or invalid input."""
    source = str(expression or "").strip()
    if not source:
        raise SafeExpressionError("Expression is empty")
    if len(source) > MAX_EXPRESSION_LENGTH:
        raise SafeExpressionError(f"Expression exceeds {MAX_EXPRESSION_LENGTH} characters")
    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as exc:
        raise SafeExpressionError(f"Invalid expression syntax: {exc.msg}") from exc
    return _Evaluator(context).visit(tree)
