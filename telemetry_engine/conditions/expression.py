"""
Boolean expression language used by alarm and validation conditions.

Sources use Python expression syntax plus the C-style aliases ``&&``, ``||``
and ``!`` and the literals ``true``/``false``/``null``:

    numericValue > 50 && numericValue < 80
    value.startsWith('ERR') || errorCode > 0

Only a whitelisted subset of the Python AST is compiled and evaluation runs
without builtins, so an expression can read its variables but cannot reach
the interpreter.
"""
from __future__ import annotations

import ast
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..core.exceptions import ExpressionError

logger = logging.getLogger(__name__)

_STRING_LITERAL = re.compile(r"""('(?:\\.|[^'\\])*'|"(?:\\.|[^"\\])*")""")
_OPERATOR_ALIASES = [
    (re.compile(r"&&"), " and "),
    (re.compile(r"\|\|"), " or "),
    (re.compile(r"!(?!=)"), " not "),
]
_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")

_LITERALS = {"true": True, "false": False, "null": None}

_SAFE_FUNCTIONS = {
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
    "len": len,
    "float": float,
    "int": int,
    "str": str,
    "bool": bool,
}

_STRING_METHODS = {
    "startswith": str.startswith,
    "startsWith": str.startswith,
    "endswith": str.endswith,
    "endsWith": str.endswith,
    "lower": str.lower,
    "toLowerCase": str.lower,
    "upper": str.upper,
    "toUpperCase": str.upper,
    "strip": str.strip,
    "trim": str.strip,
    "equalsIgnoreCase": lambda s, other: s.lower() == str(other).lower(),
    "isEmpty": lambda s: len(s) == 0,
}

_ALLOWED_NODES = (
    ast.Expression, ast.BoolOp, ast.And, ast.Or, ast.UnaryOp, ast.Not, ast.USub, ast.UAdd,
    ast.BinOp, ast.Add, ast.Sub, ast.Mult, ast.Div, ast.FloorDiv, ast.Mod,
    ast.Compare, ast.Eq, ast.NotEq, ast.Lt, ast.LtE, ast.Gt, ast.GtE,
    ast.In, ast.NotIn, ast.Is, ast.IsNot, ast.IfExp,
    ast.Name, ast.Load, ast.Constant, ast.Subscript, ast.Tuple, ast.List,
    ast.Call, ast.Attribute,
)


def _translate_aliases(source: str) -> str:
    """Rewrite &&, || and ! outside string literals."""
    parts = _STRING_LITERAL.split(source)
    for i in range(0, len(parts), 2):
        for pattern, replacement in _OPERATOR_ALIASES:
            parts[i] = pattern.sub(replacement, parts[i])
    return "".join(parts)


class _Validator(ast.NodeVisitor):
    def generic_visit(self, node):
        if not isinstance(node, _ALLOWED_NODES):
            raise ExpressionError(f"Syntax not allowed in expression: {type(node).__name__}")
        super().generic_visit(node)

    def visit_Name(self, node: ast.Name):
        if node.id.startswith("_"):
            raise ExpressionError(f"Name not allowed in expression: {node.id}")
        self.generic_visit(node)

    def visit_Attribute(self, node: ast.Attribute):
        if node.attr.startswith("_"):
            raise ExpressionError(f"Attribute not allowed in expression: {node.attr}")
        self.generic_visit(node)

    def visit_Call(self, node: ast.Call):
        if node.keywords:
            raise ExpressionError("Keyword arguments are not allowed in expressions")
        if isinstance(node.func, ast.Name):
            if node.func.id not in _SAFE_FUNCTIONS:
                raise ExpressionError(f"Function not allowed in expression: {node.func.id}")
        elif not isinstance(node.func, ast.Attribute):
            raise ExpressionError("Only named functions and value methods can be called")
        self.generic_visit(node)


class _Rewriter(ast.NodeTransformer):
    """Route attribute reads and method calls through the safe helpers."""

    def visit_Call(self, node: ast.Call):
        if isinstance(node.func, ast.Attribute):
            target = self.visit(node.func.value)
            args = [self.visit(arg) for arg in node.args]
            return ast.Call(
                func=ast.Name(id="__method__", ctx=ast.Load()),
                args=[target, ast.Constant(node.func.attr), *args],
                keywords=[],
            )
        return self.generic_visit(node)

    def visit_Attribute(self, node: ast.Attribute):
        return ast.Call(
            func=ast.Name(id="__attr__", ctx=ast.Load()),
            args=[self.visit(node.value), ast.Constant(node.attr)],
            keywords=[],
        )


def _attr(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj[name]
    if hasattr(obj, name):
        return getattr(obj, name)
    return getattr(obj, _CAMEL_BOUNDARY.sub("_", name).lower())


def _method(obj: Any, name: str, *args: Any) -> Any:
    if name == "contains":
        return args[0] in obj
    if isinstance(obj, str) and name in _STRING_METHODS:
        return _STRING_METHODS[name](obj, *args)
    raise ExpressionError(f"Method {name!r} not available on {type(obj).__name__}")


_EVAL_GLOBALS = {
    "__builtins__": {},
    "__attr__": _attr,
    "__method__": _method,
    **_SAFE_FUNCTIONS,
}


def compile_expression(source: str):
    """Parse, validate and compile an expression source; raises ExpressionError."""
    try:
        tree = ast.parse(_translate_aliases(source).strip(), mode="eval")
    except SyntaxError as e:
        raise ExpressionError(f"Invalid expression {source!r}: {e.msg}") from e
    _Validator().visit(tree)
    tree = ast.fix_missing_locations(_Rewriter().visit(tree))
    return compile(tree, "<expression>", "eval")


def to_bool(result: Any) -> bool:
    if isinstance(result, bool):
        return result
    if result is None:
        return False
    return str(result).strip().lower() == "true"


@dataclass
class Expression:
    """An expression source with a lazily compiled, memoized code object."""
    expression: Optional[str] = None
    description: Optional[str] = None
    _compiled: Any = field(default=None, init=False, repr=False, compare=False)
    _invalid: bool = field(default=False, init=False, repr=False, compare=False)

    def evaluate(self, variables: Optional[Dict[str, Any]] = None) -> bool:
        """Evaluate against ``variables``; any failure evaluates to False."""
        if not self.expression or not self.expression.strip() or self._invalid:
            return False

        if self._compiled is None:
            try:
                self._compiled = compile_expression(self.expression)
            except (ExpressionError, ValueError, RecursionError) as e:
                self._invalid = True
                logger.warning("Disabled expression %r: %s", self.expression, e)
                return False

        try:
            scope = dict(_LITERALS)
            scope.update(variables or {})
            return to_bool(eval(self._compiled, _EVAL_GLOBALS, scope))  # noqa: S307
        except Exception as e:
            logger.debug("Expression %r evaluated to false: %s", self.expression, e)
            return False

    @staticmethod
    def evaluate_static(source: str, variables: Optional[Dict[str, Any]] = None) -> bool:
        return Expression(source).evaluate(variables)

    # ---------- factory --------------------------------------------------- #
    @classmethod
    def from_row(cls, row: Any) -> Optional["Expression"]:
        if row is None:
            return None
        if isinstance(row, str):
            return cls(expression=row)
        return cls(expression=row.get("expression"), description=row.get("description"))

    def to_row(self) -> Dict[str, Any]:
        return {"expression": self.expression, "description": self.description}
