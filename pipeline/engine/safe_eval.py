"""Restricted evaluator for declarative ``run_if`` conditions

A condition is a single Python expression read against the run's context
namespace: seed values and successful step payloads by name.

    analyze_budget.is_low_budget
    collect_response_data["ready_for_scoring"] and tier != "cold"
    0 < analyze_budget.budget_amount < 1500

Allowed: comparisons (including chained and ``in``), ``and``/``or``/``not``,
literals and containers, ``+ - *``, conditional expressions, subscripts and
dot access on dict payloads. Everything else is rejected; nothing can call,
import or reach object attributes.
"""

from __future__ import annotations

import ast
import operator
from typing import Any, Callable, Dict, List, Set

from ..errors import PipelineError

MAX_EXPRESSION_LENGTH = 500

# Bare names that read as constants instead of context entries
LITERAL_NAMES: Dict[str, Any] = {
    "True": True,
    "true": True,
    "False": False,
    "false": False,
    "None": None,
    "none": None,
}

_COMPARISONS: Dict[type, Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
    ast.In: lambda item, container: item in container,
    ast.NotIn: lambda item, container: item not in container,
}

_ARITHMETIC: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
}

_UNARY: Dict[type, Callable[[Any], Any]] = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

# Constructs reported by static validation, with the message for each
_FORBIDDEN = (
    (ast.Call, "Function calls are not allowed in conditions"),
    (ast.Lambda, "Lambda expressions are not allowed"),
    ((ast.ListComp, ast.SetComp, ast.DictComp, ast.GeneratorExp), "Comprehensions are not allowed"),
    (ast.Await, "Await expressions are not allowed"),
    (ast.Starred, "Star expressions are not allowed"),
)


class SafeEvalError(PipelineError):
    """Raised when a condition cannot be parsed or evaluated."""


def parse_condition(expression: str) -> ast.Expression:
    if not expression or not expression.strip():
        raise SafeEvalError("Expression cannot be empty")
    source = expression.strip()
    if len(source) > MAX_EXPRESSION_LENGTH:
        raise SafeEvalError(f"Expression too long ({len(source)} chars, max {MAX_EXPRESSION_LENGTH})")
    try:
        return ast.parse(source, mode="eval")
    except SyntaxError as e:
        raise SafeEvalError(f"Invalid expression syntax: {e.msg}") from e


class _ConditionEvaluator:
    """Walks a parsed condition, dispatching on node type."""

    def __init__(self, namespace: Dict[str, Any]):
        self.namespace = namespace

    def eval(self, node: ast.AST) -> Any:
        handler = getattr(self, f"eval_{type(node).__name__}", None)
        if handler is None:
            raise SafeEvalError(f"Unsupported expression type: {type(node).__name__}")
        return handler(node)

    def eval_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def eval_Name(self, node: ast.Name) -> Any:
        if node.id in LITERAL_NAMES:
            return LITERAL_NAMES[node.id]
        try:
            return self.namespace[node.id]
        except KeyError:
            raise SafeEvalError(f"Unknown name: '{node.id}'") from None

    def eval_Attribute(self, node: ast.Attribute) -> Any:
        payload = self.eval(node.value)
        if not isinstance(payload, dict):
            raise SafeEvalError(
                f"Attribute access only supported on dict payloads, got {type(payload).__name__}"
            )
        if node.attr not in payload:
            raise SafeEvalError(f"Key '{node.attr}' not found in payload")
        return payload[node.attr]

    def eval_Subscript(self, node: ast.Subscript) -> Any:
        container = self.eval(node.value)
        key = self.eval(node.slice)
        try:
            return container[key]
        except (KeyError, IndexError, TypeError) as e:
            raise SafeEvalError(f"Subscript {key!r} not found: {e}") from e

    def eval_Compare(self, node: ast.Compare) -> bool:
        left = self.eval(node.left)
        for op, right_node in zip(node.ops, node.comparators):
            compare = _COMPARISONS.get(type(op))
            if compare is None:
                raise SafeEvalError(f"Unsupported comparison: {type(op).__name__}")
            right = self.eval(right_node)
            if not compare(left, right):
                return False
            left = right
        return True

    def eval_BoolOp(self, node: ast.BoolOp) -> bool:
        if isinstance(node.op, ast.And):
            return all(self.eval(value) for value in node.values)
        return any(self.eval(value) for value in node.values)

    def eval_UnaryOp(self, node: ast.UnaryOp) -> Any:
        apply = _UNARY.get(type(node.op))
        if apply is None:
            raise SafeEvalError(f"Unsupported unary op: {type(node.op).__name__}")
        return apply(self.eval(node.operand))

    def eval_BinOp(self, node: ast.BinOp) -> Any:
        apply = _ARITHMETIC.get(type(node.op))
        if apply is None:
            raise SafeEvalError(f"Unsupported binary op: {type(node.op).__name__}")
        return apply(self.eval(node.left), self.eval(node.right))

    def eval_IfExp(self, node: ast.IfExp) -> Any:
        return self.eval(node.body) if self.eval(node.test) else self.eval(node.orelse)

    def eval_List(self, node: ast.List) -> List[Any]:
        return [self.eval(item) for item in node.elts]

    def eval_Tuple(self, node: ast.Tuple) -> tuple:
        return tuple(self.eval(item) for item in node.elts)

    def eval_Dict(self, node: ast.Dict) -> Dict[Any, Any]:
        return {self.eval(k): self.eval(v) for k, v in zip(node.keys, node.values)}


def safe_eval(expression: str, namespace: Dict[str, Any]) -> Any:
    """Evaluate ``expression`` against ``namespace``.

    Unknown names and missing payload keys raise rather than defaulting to
    None, so a condition over data that is not there never silently passes.

    Raises:
        SafeEvalError: On empty, oversized or malformed expressions, unsupported
            constructs, unknown names, missing keys and operator type errors
    """
    tree = parse_condition(expression)
    try:
        return _ConditionEvaluator(namespace).eval(tree.body)
    except SafeEvalError:
        raise
    except (TypeError, ValueError, ArithmeticError) as e:
        raise SafeEvalError(f"Evaluation error: {e}") from e


def validate_condition_expression(expression: str) -> List[str]:
    """Static check of a condition; returns error messages (empty when valid)."""
    try:
        tree = parse_condition(expression)
    except SafeEvalError as e:
        return [str(e)]

    errors: List[str] = []
    for node in ast.walk(tree):
        for node_types, message in _FORBIDDEN:
            if isinstance(node, node_types):
                errors.append(message)
    return errors


def referenced_names(expression: str) -> Set[str]:
    """Context names the condition reads, without the literal names."""
    return {
        node.id
        for node in ast.walk(parse_condition(expression))
        if isinstance(node, ast.Name) and node.id not in LITERAL_NAMES
    }
