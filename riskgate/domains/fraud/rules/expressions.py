"""Sandboxed boolean expressions for rules that a single comparison cannot express.

Expressions are parsed with :mod:`ast` and walked by a small interpreter. Only
literals, context field names, boolean logic, comparisons and basic
arithmetic are accepted; calls, attribute access and subscripts are rejected
at parse time, so a rule can never run arbitrary code.
"""

import ast
import operator
from functools import lru_cache

from riskgate.shared.errors import ValidationError

from ..models import RULE_CONTEXT_FIELDS

MAX_EXPRESSION_LENGTH = 256

_COMPARATORS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda left, right: left in right,
    ast.NotIn: lambda left, right: left not in right,
}

_BINARY_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
}

_ALLOWED_NODES = (
    ast.Expression,
    ast.BoolOp,
    ast.And,
    ast.Or,
    ast.UnaryOp,
    ast.Not,
    ast.USub,
    ast.Compare,
    ast.BinOp,
    ast.Name,
    ast.Load,
    ast.Constant,
    ast.List,
    ast.Tuple,
    ast.Set,
    *_COMPARATORS,
    *_BINARY_OPERATORS,
)


class RuleExpression:
    """A parsed, whitelisted predicate over the rule context."""

    def __init__(self, source: str) -> None:
        if len(source) > MAX_EXPRESSION_LENGTH:
            raise ValidationError(
                f"Rule expression exceeds {MAX_EXPRESSION_LENGTH} characters"
            )
        try:
            tree = ast.parse(source.strip(), mode="eval")
        except SyntaxError as exc:
            raise ValidationError(f"Invalid rule expression: {exc.msg}") from exc

        names: set[str] = set()
        for node in ast.walk(tree):
            if not isinstance(node, _ALLOWED_NODES):
                raise ValidationError(
                    f"Unsupported syntax in rule expression: {type(node).__name__}"
                )
            if isinstance(node, ast.Name):
                if node.id not in RULE_CONTEXT_FIELDS:
                    raise ValidationError(f"Unknown field in rule expression: {node.id}")
                names.add(node.id)

        self.source = source
        self.names = frozenset(names)
        self._body = tree.body

    def evaluate(self, context: dict) -> bool:
        return bool(self._eval(self._body, context))

    def _eval(self, node: ast.AST, context: dict):
        if isinstance(node, ast.Constant):
            return node.value
        if isinstance(node, ast.Name):
            return context.get(node.id)
        if isinstance(node, (ast.List, ast.Tuple, ast.Set)):
            return [self._eval(elt, context) for elt in node.elts]
        if isinstance(node, ast.BoolOp):
            if isinstance(node.op, ast.And):
                return all(self._eval(value, context) for value in node.values)
            return any(self._eval(value, context) for value in node.values)
        if isinstance(node, ast.UnaryOp):
            operand = self._eval(node.operand, context)
            if isinstance(node.op, ast.Not):
                return not operand
            return -operand
        if isinstance(node, ast.BinOp):
            left = self._eval(node.left, context)
            right = self._eval(node.right, context)
            return _BINARY_OPERATORS[type(node.op)](left, right)
        if isinstance(node, ast.Compare):
            left = self._eval(node.left, context)
            for op, comparator in zip(node.ops, node.comparators, strict=True):
                right = self._eval(comparator, context)
                if not _COMPARATORS[type(op)](left, right):
                    return False
                left = right
            return True
        raise ValidationError(f"Unsupported syntax in rule expression: {type(node).__name__}")


@lru_cache(maxsize=256)
def compile_expression(source: str) -> RuleExpression:
    return RuleExpression(source)
