#!/usr/bin/env python3
"""
Stage 2: Group-wise Missing-Value Imputation

  • Numeric fields  → median of the non-null values in the same group.
  • Categorical     → most frequent non-null value in the same group; ties go
                      to the value seen first in record order.
  • A group with nulls but no observed value cannot be imputed and raises
    ImputationImpossible. Nothing is ever zero-filled.

All functions return a new DataFrame; inputs are never modified.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from morphometrics.errors import ImputationImpossible

log = logging.getLogger("stage2")


def _check_imputable(df: pd.DataFrame, field: str, group_key: str) -> None:
    if field not in df.columns:
        raise KeyError(f"field '{field}' not in frame")
    if group_key not in df.columns:
        raise KeyError(f"group key '{group_key}' not in frame")

    missing = df[field].isna()
    if not missing.any():
        return

    if df.loc[missing, group_key].isna().any():
        raise ImputationImpossible(field, [None], group_key)

    observed = set(df.loc[~missing, group_key].dropna().unique())
    empty = [g for g in df.loc[missing, group_key].unique() if g not in observed]
    if empty:
        raise ImputationImpossible(field, sorted(map(str, empty)), group_key)


def group_medians(df: pd.DataFrame, field: str, group_key: str) -> pd.Series:
    return df.groupby(group_key, sort=True)[field].median()


def group_modes(df: pd.DataFrame, field: str, group_key: str) -> pd.Series:
    """Per-group mode with first-encountered tie-break."""
    modes = {}
    for g, s in df.groupby(group_key, sort=True)[field]:
        vals = s.dropna()
        if vals.empty:
            continue
        # sort=False keeps first-appearance order; idxmax returns the first max
        counts = vals.groupby(vals, sort=False).size()
        modes[g] = counts.idxmax()
    return pd.Series(modes, dtype=object, name=field)


def impute_numeric(df: pd.DataFrame, field: str, group_key: str) -> pd.DataFrame:
    _check_imputable(df, field, group_key)
    out = df.copy()
    fill = out.groupby(group_key)[field].transform("median")
    out[field] = out[field].fillna(fill)
    return out


def impute_categorical(df: pd.DataFrame, field: str, group_key: str) -> pd.DataFrame:
    _check_imputable(df, field, group_key)
    out = df.copy()
    missing = out[field].isna()
    if missing.any():
        modes = group_modes(out, field, group_key)
        out[field] = out[field].astype(object)
        out.loc[missing, field] = out.loc[missing, group_key].map(modes)
    return out


class GroupImputer:
    """
    Parameters
    ----------
      group_key : str
          Column whose levels define the imputation groups.
      numeric_fields, categorical_fields : list of str
          Columns imputed with the group median / group mode.

    After ``transform`` the per-field decisions live in ``self.report``:
    ``{field: {"strategy", "n_filled", "fill_values": {group: value}}}``.
    """

    def __init__(self,
                 group_key: str,
                 numeric_fields: Optional[List[str]] = None,
                 categorical_fields: Optional[List[str]] = None):
        self.group_key = group_key
        self.numeric_fields = list(numeric_fields or [])
        self.categorical_fields = list(categorical_fields or [])
        self.report: Dict[str, Dict] = {}

    def _record(self, field, strategy, before, fills):
        self.report[field] = {
            "strategy": strategy,
            "n_filled": int(before),
            "fill_values": {str(g): (float(v) if isinstance(v, (int, float, np.number)) else v)
                            for g, v in fills.items()},
        }
        if before:
            log.info(f"  • {strategy} '{field}': filled {before} by {self.group_key}")

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        out = df
        self.report = {}
        for field in self.numeric_fields:
            n_missing = int(out[field].isna().sum())
            fills = group_medians(out, field, self.group_key).to_dict()
            out = impute_numeric(out, field, self.group_key)
            self._record(field, "median", n_missing, fills)
        for field in self.categorical_fields:
            n_missing = int(out[field].isna().sum())
            fills = group_modes(out, field, self.group_key).to_dict()
            out = impute_categorical(out, field, self.group_key)
            self._record(field, "mode", n_missing, fills)
        remaining = int(out[self.numeric_fields + self.categorical_fields].isna().sum().sum())
        log.info(f"impute done (remaining missing in imputed fields={remaining})")
        return out
