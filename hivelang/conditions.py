"""Default condition evaluator for ``if`` statements.

The interpreter itself never interprets conditions; it hands the raw text
to whatever evaluator the run context carries. This module provides the
standard one, backed by a small lark grammar (``conditions.lark``).
"""
from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from lark import Lark, Transformer
from lark.exceptions import LarkError

from .context import MISSING, RunContext, lookup_path
from .errors import ConditionError

GRAMMAR_PATH = Path(__file__).with_name("conditions.lark")

_parser = None


def _load_parser() -> Lark:
    global _parser
    if _parser is None:
        grammar = GRAMMAR_PATH.read_text(encoding="utf-8")
        _parser = Lark(grammar, start="start", parser="lalr")
    return _parser


def _number(v: Any) -> Optional[float]:
    if isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        return float(v)
    if isinstance(v, str):
        try:
            return float(v.strip())
        except ValueError:
            return None
    return None


def loose_equal(a: Any, b: Any) -> bool:
    if a == b:
        return True
    na, nb = _number(a), _number(b)
    if na is not None and nb is not None:
        return na == nb
    if isinstance(a, str) or isinstance(b, str):
        if a is None or b is None:
            return False
        return str(a).lower() == str(b).lower() if isinstance(a, bool) or isinstance(b, bool) else str(a) == str(b)
    return False


def compare(a: Any, op: str, b: Any) -> bool:
    if op == "==":
        return loose_equal(a, b)
    if op == "!=":
        return not loose_equal(a, b)
    if op == "contains":
        if a is None:
            return False
        if isinstance(a, str):
            return str(b) in a
        if isinstance(a, Mapping):
            return b in a
        if isinstance(a, (list, tuple, set)):
            return b in a or any(loose_equal(item, b) for item in a)
        return False
    na, nb = _number(a), _number(b)
    if na is not None and nb is not None:
        a, b = na, nb
    try:
        if op == ">":
            return a > b
        if op == "<":
            return a < b
        if op == ">=":
            return a >= b
        if op == "<=":
            return a <= b
    except TypeError:
        return False
    raise ConditionError(f"Unknown comparison operator {op}")


class _Evaluate(Transformer):
    def __init__(self, scope: Mapping[str, Any]):
        super().__init__()
        self.scope = scope

    def string(self, items):
        return str(items[0])[1:-1]

    def number(self, items):
        text = str(items[0])
        return float(text) if any(c in text for c in ".eE") else int(text)

    def true(self, _):
        return True

    def false(self, _):
        return False

    def null(self, _):
        return None

    def path(self, items):
        value = lookup_path(self.scope, ".".join(str(i) for i in items))
        return None if value is MISSING else value

    def compare(self, items):
        left, op, right = items
        return compare(left, str(op).lower(), right)

    def negate(self, items):
        return not bool(items[0])

    def conjunction(self, items):
        return all(bool(i) for i in items)

    def disjunction(self, items):
        return any(bool(i) for i in items)


def evaluate_expression(condition: str, scope: Mapping[str, Any]) -> Any:
    """Evaluate ``condition`` against ``scope`` and return the raw value."""
    if not condition or not condition.strip():
        raise ConditionError("Empty condition")
    try:
        tree = _load_parser().parse(condition)
        return _Evaluate(scope).transform(tree)
    except LarkError as e:
        raise ConditionError(f"Cannot evaluate condition '{condition}': {e}") from e


class ConditionEvaluator:
    """Callable plugged into :attr:`RunContext.evaluate`."""

    def __init__(self, extra_scope: Optional[Dict[str, Any]] = None):
        self.extra_scope = dict(extra_scope or {})

    def __call__(self, condition: str, ctx: RunContext) -> bool:
        scope = dict(self.extra_scope)
        scope.update(ctx.scope())
        return bool(evaluate_expression(condition, scope))
