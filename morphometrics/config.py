#!/usr/bin/env python3
"""
config.py

Hard-coded defaults for every stage, plus an optional YAML overlay.

    cfg = load_config("analysis.yaml")   # defaults ⊕ file
    cfg = default_config()               # defaults only
"""
from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

log = logging.getLogger("config")

# ─────────────────────────────────────────────────────────────────────────────
# 1) DEFAULTS
# ─────────────────────────────────────────────────────────────────────────────

RANDOM_STATE: int = 42

# — Record fields —
GROUP_KEY = "species"
CATEGORICAL_FIELDS = ["species", "island", "sex"]
NUMERIC_FIELDS = [
    "bill_length_mm",
    "bill_depth_mm",
    "flipper_length_mm",
    "body_mass_g",
]
COMPOSITE_FIELD = "bmi"

# — Regression: the three candidate models of the reports —
RESPONSE = "body_mass_g"
MODEL_SPECS: Dict[str, list] = {
    "flipper":             ["flipper_length_mm"],
    "flipper_species":     ["flipper_length_mm", "species"],
    "flipper_species_sex": ["flipper_length_mm", "species", "sex"],
}

# — PCA / clustering —
PCA_FIELDS = list(NUMERIC_FIELDS)
N_CLUSTERS: int = 3
N_START: int = 25
LINKAGE: str = "ward"
ELBOW_RANGE = [1, 10]          # inclusive bounds

# — Monitoring —
STEP_TIMEOUT: Optional[float] = 60.0   # seconds; None → no budget

# — Output —
REPORT_DIR = "reports"
MAKE_PLOTS = True


def default_config() -> Dict[str, Any]:
    return {
        "seed": RANDOM_STATE,
        "preparation": {
            "group_key": GROUP_KEY,
            "numeric_fields": list(NUMERIC_FIELDS),
            "categorical_fields": ["sex"],
            "composite_field": COMPOSITE_FIELD,
        },
        "regression": {
            "response": RESPONSE,
            "log_response": False,
            "models": copy.deepcopy(MODEL_SPECS),
        },
        "pca": {"fields": list(PCA_FIELDS)},
        "clustering": {
            "k": N_CLUSTERS,
            "n_start": N_START,
            "linkage": LINKAGE,
            "elbow_range": list(ELBOW_RANGE),
            "label_field": GROUP_KEY,
        },
        "timeout": STEP_TIMEOUT,
        "report_dir": REPORT_DIR,
        "plots": MAKE_PLOTS,
    }


# ─────────────────────────────────────────────────────────────────────────────
# 2) YAML OVERLAY
# ─────────────────────────────────────────────────────────────────────────────

def _merge(base: dict, override: dict) -> dict:
    out = copy.deepcopy(base)
    for key, val in override.items():
        if isinstance(val, dict) and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], val)
        else:
            out[key] = val
    return out


def load_yaml(path: Path) -> dict:
    try:
        return yaml.safe_load(Path(path).read_text()) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"invalid YAML in {path}: {e}") from e


def load_config(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Defaults deep-merged with the YAML file at *path* (if given).
    Unknown top-level keys are rejected so typos do not pass silently.
    """
    cfg = default_config()
    if path is None:
        return cfg

    override = load_yaml(Path(path))
    if not isinstance(override, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    unknown = sorted(set(override) - set(cfg))
    if unknown:
        raise ValueError(f"{path}: unknown config keys {unknown}")

    cfg = _merge(cfg, override)
    log.info(f"config loaded from {path}")
    return cfg
