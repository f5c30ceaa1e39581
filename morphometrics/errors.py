"""
errors.py
-------------------------------------------------
Typed failures raised by the analysis stages.

Every error names the offending field / model / column so the caller can
report it; none of them is ever replaced by a default value.
"""
from __future__ import annotations

from typing import Iterable, Optional


class MorphometricsError(Exception):
    """Root of every error raised by the package."""


class ImputationImpossible(MorphometricsError, ValueError):
    def __init__(self, field: str, groups: Iterable, group_key: str):
        self.field = field
        self.group_key = group_key
        self.groups = list(groups)
        super().__init__(
            f"cannot impute '{field}': no non-null values in "
            f"{group_key} group(s) {self.groups}")


class InvalidResponseDomain(MorphometricsError, ValueError):
    def __init__(self, response: str, n_bad: int):
        self.response = response
        self.n_bad = n_bad
        super().__init__(
            f"log-transform of '{response}' needs strictly positive values "
            f"({n_bad} value(s) <= 0)")


class DegenerateDesignMatrix(MorphometricsError, ValueError):
    def __init__(self, message: str, model: Optional[str] = None,
                 term: Optional[str] = None):
        self.model = model
        self.term = term
        prefix = f"[{model}] " if model else ""
        super().__init__(prefix + message)


class ZeroVarianceColumn(MorphometricsError, ValueError):
    def __init__(self, column: str):
        self.column = column
        super().__init__(f"column '{column}' has zero variance; cannot standardize")


class InvalidClusterCount(MorphometricsError, ValueError):
    def __init__(self, k: int, n: int, message: Optional[str] = None):
        self.k = k
        self.n = n
        super().__init__(message or f"k={k} outside [1, {n}]")


class ComputationTimeout(MorphometricsError, TimeoutError):
    def __init__(self, step: str, seconds: float):
        self.step = step
        self.seconds = seconds
        super().__init__(f"[{step}] exceeded time budget of {seconds:.1f}s")


class FormulaError(MorphometricsError, ValueError):
    def __init__(self, formula: str, reason: str):
        self.formula = formula
        self.reason = reason
        super().__init__(f"invalid formula {formula!r}: {reason}")
