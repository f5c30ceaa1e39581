#!/usr/bin/env python3
"""
Stage 1: Ingestion

  • Reads the penguins CSV (R-style "NA" markers are nulls).
  • Normalises column names and categorical labels.
  • Validates the record model with a Pandera schema (lazy → all failures
    reported at once).
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Union

import janitor  # noqa: F401  (registers DataFrame.clean_names)
import pandas as pd
import pandera as pa

from morphometrics.config import CATEGORICAL_FIELDS, NUMERIC_FIELDS

log = logging.getLogger("stage1")

NA_VALUES = ["NA", "", "."]
SPECIES = ["Adelie", "Chinstrap", "Gentoo"]
ISLANDS = ["Biscoe", "Dream", "Torgersen"]
SEXES = ["female", "male"]


PENGUIN_SCHEMA = pa.DataFrameSchema(
    {
        "species": pa.Column(checks=pa.Check.isin(SPECIES), nullable=False),
        "island": pa.Column(checks=pa.Check.isin(ISLANDS), nullable=False),
        "sex": pa.Column(checks=pa.Check.isin(SEXES), nullable=True),
        "bill_length_mm": pa.Column(float, pa.Check.gt(0), nullable=True, coerce=True),
        "bill_depth_mm": pa.Column(float, pa.Check.gt(0), nullable=True, coerce=True),
        "flipper_length_mm": pa.Column(float, pa.Check.ge(0), nullable=True, coerce=True),
        "body_mass_g": pa.Column(float, pa.Check.gt(0), nullable=True, coerce=True),
        "year": pa.Column(int, nullable=False, coerce=True, required=False),
    },
    strict=False,
)


def normalise_labels(df: pd.DataFrame) -> pd.DataFrame:
    out = df.copy()
    for col in CATEGORICAL_FIELDS:
        if col in out.columns:
            s = out[col].astype("object")
            out[col] = s.where(s.isna(), s.astype(str).str.strip())
    if "sex" in out.columns:
        s = out["sex"]
        out["sex"] = s.where(s.isna(), s.str.lower())
    return out


def validate_penguins(df: pd.DataFrame) -> pd.DataFrame:
    missing = [c for c in CATEGORICAL_FIELDS + NUMERIC_FIELDS if c not in df.columns]
    if missing:
        raise ValueError(f"penguins table is missing columns {missing}")
    validated = PENGUIN_SCHEMA.validate(df, lazy=True)
    log.info(f"validated schema OK → {validated.shape}")
    return validated


def load_penguins(path: Union[str, Path]) -> pd.DataFrame:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Expected penguins CSV at {path}")
    df = pd.read_csv(path, na_values=NA_VALUES, keep_default_na=True)
    df = normalise_labels(df.clean_names(strip_underscores=True, remove_special=True))
    # R exports carry a row-number column
    df = df.drop(columns=[c for c in ("unnamed_0", "rowid") if c in df.columns])
    log.info(f"loaded {df.shape[0]} rows × {df.shape[1]} cols from {path}")
    return validate_penguins(df)
