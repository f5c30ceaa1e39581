"""
Restricted expression language for user-defined derived columns.

    body_mass_g / (flipper_length_mm / 1000) ** 2
    bill_length_mm > 45
    (bill_length_mm - bill_depth_mm) * 2

Text is parsed with :mod:`ast` in ``eval`` mode and walked against a
whitelist; it is never handed to ``eval``/``exec``. Allowed: numeric
literals, column names, ``+ - * / ** %``, unary ``+``/``-``, parentheses and
(chained) comparisons. Evaluation is vectorised over DataFrame columns.
"""
from __future__ import annotations

import ast
import operator
from typing import Callable, Dict, FrozenSet, Type

import pandas as pd

from morphometrics.errors import FormulaError

MAX_FORMULA_LENGTH = 500

_BINARY: Dict[Type[ast.operator], Callable] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Pow: operator.pow,
    ast.Mod: operator.mod,
}
_UNARY: Dict[Type[ast.unaryop], Callable] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}
_COMPARE: Dict[Type[ast.cmpop], Callable] = {
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
}


class Formula:
    """A validated expression; call ``evaluate(df)`` to get a Series."""

    def __init__(self, text: str, tree: ast.Expression):
        self.text = text
        self._tree = tree
        self.fields: FrozenSet[str] = frozenset(
            node.id for node in ast.walk(tree) if isinstance(node, ast.Name))

    def __repr__(self):
        return f"Formula({self.text!r})"

    def evaluate(self, df: pd.DataFrame) -> pd.Series:
        unknown = sorted(self.fields - set(df.columns))
        if unknown:
            raise FormulaError(self.text, f"unknown field(s) {unknown}")
        for field in sorted(self.fields):
            dtype = df[field].dtype
            if not (pd.api.types.is_numeric_dtype(dtype) or pd.api.types.is_bool_dtype(dtype)):
                raise FormulaError(self.text, f"field '{field}' is not numeric")
        try:
            value = self._eval(self._tree.body, df)
        except (OverflowError, ZeroDivisionError, TypeError) as e:
            raise FormulaError(self.text, str(e)) from None
        if not isinstance(value, pd.Series):
            value = pd.Series(value, index=df.index, dtype=float)
        return value

    def _eval(self, node: ast.AST, df: pd.DataFrame):
        if isinstance(node, ast.Constant):
            return float(node.value)
        if isinstance(node, ast.Name):
            return df[node.id]
        if isinstance(node, ast.BinOp):
            left = self._eval(node.left, df)
            right = self._eval(node.right, df)
            return _BINARY[type(node.op)](left, right)
        if isinstance(node, ast.UnaryOp):
            return _UNARY[type(node.op)](self._eval(node.operand, df))
        if isinstance(node, ast.Compare):
            left = self._eval(node.left, df)
            result = None
            for op, comp in zip(node.ops, node.comparators):
                right = self._eval(comp, df)
                step = _COMPARE[type(op)](left, right)
                result = step if result is None else (result & step)
                left = right
            return result
        raise FormulaError(self.text, f"unsupported element {type(node).__name__}")


def _check(node: ast.AST, text: str) -> None:
    if isinstance(node, ast.Expression):
        _check(node.body, text)
    elif isinstance(node, ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            raise FormulaError(text, f"only numeric literals are allowed, got {node.value!r}")
    elif isinstance(node, ast.Name):
        if node.id.startswith("__"):
            raise FormulaError(text, f"illegal name '{node.id}'")
    elif isinstance(node, ast.BinOp):
        if type(node.op) not in _BINARY:
            raise FormulaError(text, f"operator {type(node.op).__name__} is not allowed")
        _check(node.left, text)
        _check(node.right, text)
    elif isinstance(node, ast.UnaryOp):
        if type(node.op) not in _UNARY:
            raise FormulaError(text, f"operator {type(node.op).__name__} is not allowed")
        _check(node.operand, text)
    elif isinstance(node, ast.Compare):
        for op in node.ops:
            if type(op) not in _COMPARE:
                raise FormulaError(text, f"comparison {type(op).__name__} is not allowed")
        _check(node.left, text)
        for comp in node.comparators:
            _check(comp, text)
    else:
        raise FormulaError(text, f"{type(node).__name__} is not allowed")


def compile_formula(text: str) -> Formula:
    if not isinstance(text, str) or not text.strip():
        raise FormulaError(str(text), "empty formula")
    if len(text) > MAX_FORMULA_LENGTH:
        raise FormulaError(text[:40] + "...", f"longer than {MAX_FORMULA_LENGTH} characters")
    try:
        tree = ast.parse(text.strip(), mode="eval")
    except SyntaxError as e:
        raise FormulaError(text, f"syntax error: {e.msg}") from None
    _check(tree, text)
    return Formula(text.strip(), tree)
