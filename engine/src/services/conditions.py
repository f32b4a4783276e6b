"""
Step condition evaluation.

Conditions are a small subset of Python expressions, parsed with ``ast`` and
walked node by node (never passed to ``eval``):

    steps.build.status == 'success' and env != 'prod'
    steps['unit-tests'].exit_code in [0, 5]
    not vars.skip_deploy

Names resolve against the evaluation context (``steps``, ``vars`` and every
non-secret variable). Attribute access and subscripts both read mapping keys.
Unknown names and keys evaluate to None.
"""

import ast
import operator
from typing import Any, Dict, Mapping

from engine.src.errors import ConditionError

_COMPARISONS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda left, right: left in right,
    ast.NotIn: lambda left, right: left not in right,
}

_LITERAL_NAMES = {
    "true": True,
    "false": False,
    "null": None,
    "none": None,
}

class ConditionEvaluator:
    """Evaluate condition expressions against a fixed context."""

    def __init__(self, context: Mapping[str, Any]):
        self.context = context

    def evaluate(self, expression: str) -> bool:
        try:
            tree = ast.parse(expression.strip(), mode="eval")
        except SyntaxError as e:
            raise ConditionError(f"Invalid condition '{expression}': {e.msg}")

        try:
            return bool(self._eval(tree.body))
        except ConditionError:
            raise
        except TypeError as e:
            raise ConditionError(f"Cannot evaluate condition '{expression}': {e}")

    def _eval(self, node: ast.AST) -> Any:
        if isinstance(node, ast.Constant):
            return node.value

        if isinstance(node, ast.Name):
            if node.id in self.context:
                return self.context[node.id]
            return _LITERAL_NAMES.get(node.id.lower())

        if isinstance(node, ast.Attribute):
            return _lookup(self._eval(node.value), node.attr)

        if isinstance(node, ast.Subscript):
            return _lookup(self._eval(node.value), self._eval(node.slice))

        if isinstance(node, ast.BoolOp):
            if isinstance(node.op, ast.And):
                result: Any = True
                for value in node.values:
                    result = self._eval(value)
                    if not result:
                        return result
                return result
            result = False
            for value in node.values:
                result = self._eval(value)
                if result:
                    return result
            return result

        if isinstance(node, ast.UnaryOp) and isinstance(node.op, ast.Not):
            return not self._eval(node.operand)

        if isinstance(node, ast.Compare):
            left = self._eval(node.left)
            for op, comparator in zip(node.ops, node.comparators):
                right = self._eval(comparator)
                compare = _COMPARISONS.get(type(op))
                if compare is None:
                    raise ConditionError(f"Unsupported comparison: {type(op).__name__}")
                if not compare(left, right):
                    return False
                left = right
            return True

        if isinstance(node, (ast.List, ast.Tuple)):
            return [self._eval(element) for element in node.elts]

        raise ConditionError(f"Unsupported expression: {type(node).__name__}")

def _lookup(container: Any, key: Any) -> Any:
    if isinstance(container, Mapping):
        return container.get(key)
    if isinstance(container, (list, tuple)) and isinstance(key, int):
        return container[key] if -len(container) <= key < len(container) else None
    return None

def evaluate_condition(expression: str, context: Dict[str, Any]) -> bool:
    """Evaluate a condition expression. Raises ConditionError when invalid."""
    return ConditionEvaluator(context).evaluate(expression)
