"""Safe expression evaluation for step conditions and query expressions.

Expressions are parsed with :mod:`ast` and interpreted node by node against an
explicit scope of named values. Only literals, names, dotted/indexed access,
boolean logic, comparisons, basic arithmetic and a few pure builtins are
allowed. There is no access to Python builtins, attributes of objects or
anything outside the scope mapping.

JavaScript-style operators (``&&``, ``||``, ``!``, ``===``, ``!==``) and the
literals ``true``, ``false`` and ``null`` are accepted so conditions written
for other scaffolding tools keep working. A condition may be wrapped in
``{{ }}``.
"""

import ast
import operator
import re
from collections.abc import Mapping
from typing import Any

MAX_EXPRESSION_LENGTH = 500
MAX_REPEAT_LENGTH = 10_000  # Longest string or list a `*` repetition may build

_STRING_LITERAL = re.compile(r"(\"(?:[^\"\\]|\\.)*\"|'(?:[^'\\]|\\.)*')")
_JS_REWRITES = [
    (re.compile(r"==="), "=="),
    (re.compile(r"!=="), "!="),
    (re.compile(r"&&"), " and "),
    (re.compile(r"\|\|"), " or "),
    (re.compile(r"!(?!=)"), " not "),
    (re.compile(r"\btrue\b"), "True"),
    (re.compile(r"\bfalse\b"), "False"),
    (re.compile(r"\b(?:null|undefined)\b"), "None"),
]

_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_COMPARE_OPS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}

def _check_repeat(sequence: Any, count: Any) -> None:
    if isinstance(sequence, (str, list, tuple)) and isinstance(count, int):
        if len(sequence) * count > MAX_REPEAT_LENGTH:
            raise ExpressionError(f"Repetition result too long (limit {MAX_REPEAT_LENGTH})")


_FUNCTIONS = {
    "len": len,
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "min": min,
    "max": max,
    "abs": abs,
    "lower": lambda s: str(s).lower(),
    "upper": lambda s: str(s).upper(),
}


class ExpressionError(Exception):
    """Raised when an expression cannot be parsed or evaluated."""

    pass


def _normalize(expression: str) -> str:
    """Strip ``{{ }}`` wrappers and rewrite JS-style operators outside string literals."""
    text = expression.strip()
    if text.startswith("{{") and text.endswith("}}"):
        text = text[2:-2].strip()

    parts = _STRING_LITERAL.split(text)
    for i in range(0, len(parts), 2):
        chunk = parts[i]
        for pattern, replacement in _JS_REWRITES:
            chunk = pattern.sub(replacement, chunk)
        parts[i] = chunk
    return "".join(parts).strip()


def _lookup(container: Any, key: Any) -> Any:
    if isinstance(container, Mapping):
        return container.get(key)
    if isinstance(container, (list, tuple, str)) and isinstance(key, int):
        try:
            return container[key]
        except IndexError:
            return None
    return None


class _Interpreter:
    def __init__(self, scope: Mapping[str, Any]):
        self.scope = scope

    def visit(self, node: ast.AST) -> Any:
        method = getattr(self, f"visit_{type(node).__name__}", None)
        if method is None:
            raise ExpressionError(f"Unsupported syntax: {type(node).__name__}")
        return method(node)

    def visit_Expression(self, node: ast.Expression) -> Any:
        return self.visit(node.body)

    def visit_Constant(self, node: ast.Constant) -> Any:
        if isinstance(node.value, (int, float)) and abs(node.value) > 1e15:
            raise ExpressionError("Numeric literal too large")
        return node.value

    def visit_Name(self, node: ast.Name) -> Any:
        if node.id in ("True", "False", "None"):
            return {"True": True, "False": False, "None": None}[node.id]
        # Unknown names evaluate to None so optional variables read as falsy
        return self.scope.get(node.id)

    def visit_Attribute(self, node: ast.Attribute) -> Any:
        if node.attr.startswith("_"):
            raise ExpressionError(f"Access to private name '{node.attr}' is not allowed")
        return _lookup(self.visit(node.value), node.attr)

    def visit_Subscript(self, node: ast.Subscript) -> Any:
        return _lookup(self.visit(node.value), self.visit(node.slice))

    def visit_List(self, node: ast.List) -> Any:
        return [self.visit(elt) for elt in node.elts]

    def visit_Tuple(self, node: ast.Tuple) -> Any:
        return tuple(self.visit(elt) for elt in node.elts)

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        if isinstance(node.op, ast.And):
            value: Any = True
            for operand in node.values:
                value = self.visit(operand)
                if not value:
                    return value
            return value
        value = False
        for operand in node.values:
            value = self.visit(operand)
            if value:
                return value
        return value

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        operand = self.visit(node.operand)
        if isinstance(node.op, ast.Not):
            return not operand
        if isinstance(node.op, ast.USub):
            return -operand
        if isinstance(node.op, ast.UAdd):
            return +operand
        raise ExpressionError(f"Unsupported operator: {type(node.op).__name__}")

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        op = _BIN_OPS.get(type(node.op))
        if op is None:
            raise ExpressionError(f"Unsupported operator: {type(node.op).__name__}")
        left = self.visit(node.left)
        right = self.visit(node.right)
        if isinstance(node.op, ast.Mult):
            _check_repeat(left, right)
            _check_repeat(right, left)
        try:
            return op(left, right)
        except (TypeError, ZeroDivisionError) as e:
            raise ExpressionError(str(e)) from e

    def visit_Compare(self, node: ast.Compare) -> Any:
        left = self.visit(node.left)
        for op_node, comparator in zip(node.ops, node.comparators):
            right = self.visit(comparator)
            op = _COMPARE_OPS[type(op_node)]
            try:
                if not op(left, right):
                    return False
            except TypeError as e:
                raise ExpressionError(str(e)) from e
            left = right
        return True

    def visit_IfExp(self, node: ast.IfExp) -> Any:
        return self.visit(node.body) if self.visit(node.test) else self.visit(node.orelse)

    def visit_Call(self, node: ast.Call) -> Any:
        if not isinstance(node.func, ast.Name) or node.func.id not in _FUNCTIONS:
            raise ExpressionError("Only len, str, int, float, bool, min, max, abs, lower and upper may be called")
        if node.keywords:
            raise ExpressionError("Keyword arguments are not supported")
        args = [self.visit(arg) for arg in node.args]
        try:
            return _FUNCTIONS[node.func.id](*args)
        except (TypeError, ValueError) as e:
            raise ExpressionError(str(e)) from e


def parse_expression(expression: str) -> ast.Expression:
    """Parse an expression, raising ExpressionError on syntax problems."""
    if len(expression) > MAX_EXPRESSION_LENGTH:
        raise ExpressionError(f"Expression too long ({len(expression)} > {MAX_EXPRESSION_LENGTH})")
    normalized = _normalize(expression)
    if not normalized:
        raise ExpressionError("Empty expression")
    try:
        return ast.parse(normalized, mode="eval")
    except SyntaxError as e:
        raise ExpressionError(f"Invalid expression '{expression}': {e.msg}") from e


def evaluate_expression(expression: str, scope: Mapping[str, Any]) -> Any:
    """Evaluate an expression against named values and return the raw result."""
    tree = parse_expression(expression)
    return _Interpreter(scope).visit(tree)


def evaluate_condition(expression: str | bool, scope: Mapping[str, Any]) -> bool:
    """Evaluate a condition to a boolean.

    Args:
        expression: Condition text, or a literal bool from YAML
        scope: Names visible to the expression

    Returns:
        Truthiness of the evaluated expression

    Raises:
        ExpressionError: If the expression is invalid
    """
    if isinstance(expression, bool):
        return expression
    return bool(evaluate_expression(str(expression), scope))
