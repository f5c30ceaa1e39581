import logging
from typing import Any, Dict

import numpy as np
import pandas as pd

from morphometrics.stage_2_preparation.group_imputer import GroupImputer

log = logging.getLogger("stage2")


def derive_composite(df: pd.DataFrame,
                     mass: str = "body_mass_g",
                     flipper: str = "flipper_length_mm",
                     out: str = "bmi") -> pd.DataFrame:
    """
    Body-mass-index-like ratio ``(mass kg) / (flipper m)**2``.

    Null where either input is null or the flipper length is zero.
    """
    df = df.copy()
    m = pd.to_numeric(df[mass], errors="coerce").astype(float)
    f = pd.to_numeric(df[flipper], errors="coerce").astype(float)
    denom = (f / 1000.0) ** 2
    valid = m.notna() & f.notna() & (f != 0)
    df[out] = np.where(valid, (m / 1000.0) / denom.where(valid, 1.0), np.nan)
    log.info(f"derived '{out}' for {int(valid.sum())}/{len(df)} rows")
    return df


def prepare(df: pd.DataFrame, cfg: Dict[str, Any]) -> pd.DataFrame:
    """
    Validated frame → group-wise imputation → composite feature.

    ``cfg`` is the ``preparation`` section of the run configuration.
    The fitted ``GroupImputer`` report is attached as ``df.attrs["imputation"]``.
    """
    imputer = GroupImputer(
        group_key=cfg["group_key"],
        numeric_fields=cfg.get("numeric_fields", []),
        categorical_fields=cfg.get("categorical_fields", []),
    )
    out = imputer.transform(df)
    out = derive_composite(out, out=cfg.get("composite_field", "bmi"))
    out.attrs["imputation"] = imputer.report
    return out
