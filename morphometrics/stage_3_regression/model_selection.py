#!/usr/bin/env python3
"""
Stage 3: Linear Models and Model Selection

  • fit_linear_model   – OLS (statsmodels) on continuous + dummy-coded
                         categorical predictors.
  • compare_models     – AIC / BIC / adjusted-R² table and one selected model.

Dummy coding: each categorical predictor drops its reference level, the
first level in sorted order, so ``species`` → ``species[T.Chinstrap]``,
``species[T.Gentoo]`` with Adelie as the baseline.

Information criteria use the Gaussian profile-likelihood form

    AIC = n·ln(RSS/n) + 2k        BIC = n·ln(RSS/n) + k·ln(n)

with k = p + 2 (p slopes, the intercept and the error variance). They
differ from ``statsmodels``' ``aic``/``bic`` by a constant for a fixed n, so
rankings are identical.

Selection rule (applied in ``select_model``):
  1. keep the models with the lowest AIC;
  2. among those prefer the ones that also have the lowest BIC; if none
     does, keep the lowest-AIC set as is;
  3. break remaining ties by highest adjusted R², then by name.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import statsmodels.api as sm

from morphometrics.errors import DegenerateDesignMatrix, InvalidResponseDomain

log = logging.getLogger("stage3")

INTERCEPT = "Intercept"


@dataclass(frozen=True, eq=False)
class FittedModel:
    name: str
    response: str
    predictors: Tuple[str, ...]
    log_response: bool
    coefficients: pd.Series
    std_errors: pd.Series
    t_values: pd.Series
    p_values: pd.Series
    fitted_values: pd.Series
    residuals: pd.Series
    n_obs: int
    n_params: int               # p: coefficients excluding the intercept
    df_resid: int
    rss: float
    r_squared: float
    adj_r_squared: float
    aic: float
    bic: float
    f_statistic: float
    f_pvalue: float
    reference_levels: Dict[str, str] = field(default_factory=dict)

    @property
    def formula(self) -> str:
        lhs = f"log({self.response})" if self.log_response else self.response
        rhs = " + ".join(self.predictors) if self.predictors else "1"
        return f"{lhs} ~ {rhs}"

    def coefficient_table(self) -> pd.DataFrame:
        return pd.DataFrame({
            "estimate": self.coefficients,
            "std_error": self.std_errors,
            "t_value": self.t_values,
            "p_value": self.p_values,
        })

    def summary(self) -> dict:
        return {
            "name": self.name,
            "formula": self.formula,
            "n_obs": self.n_obs,
            "df_resid": self.df_resid,
            "r_squared": self.r_squared,
            "adj_r_squared": self.adj_r_squared,
            "aic": self.aic,
            "bic": self.bic,
            "f_statistic": self.f_statistic,
            "f_pvalue": self.f_pvalue,
            "reference_levels": dict(self.reference_levels),
            "coefficients": self.coefficient_table().to_dict(orient="index"),
        }


# ─────────────────────────────────────────────────────────────────────────────
# design matrix
# ─────────────────────────────────────────────────────────────────────────────

def is_categorical(s: pd.Series) -> bool:
    if pd.api.types.is_bool_dtype(s):
        return True
    return not pd.api.types.is_numeric_dtype(s)


def build_design_matrix(df: pd.DataFrame,
                        predictors: Sequence[str],
                        model: Optional[str] = None) -> Tuple[pd.DataFrame, Dict[str, str]]:
    """
    Returns (X with leading Intercept column, {categorical term: reference level}).
    Raises DegenerateDesignMatrix for constant terms or collinear columns.
    """
    X = pd.DataFrame(index=df.index)
    X[INTERCEPT] = 1.0
    references: Dict[str, str] = {}

    for term in predictors:
        s = df[term]
        if is_categorical(s):
            labels = s.astype(str)
            levels = sorted(labels.unique())
            if len(levels) < 2:
                raise DegenerateDesignMatrix(
                    f"categorical predictor '{term}' has a single level {levels}",
                    model=model, term=term)
            references[term] = levels[0]
            for level in levels[1:]:
                X[f"{term}[T.{level}]"] = (labels == level).astype(float)
        else:
            vals = s.astype(float)
            if vals.nunique() < 2:
                raise DegenerateDesignMatrix(
                    f"continuous predictor '{term}' has no variation",
                    model=model, term=term)
            X[term] = vals

    n, width = X.shape
    if n - width <= 0:
        raise DegenerateDesignMatrix(
            f"{n} observations leave no residual degrees of freedom for {width} coefficients",
            model=model)
    rank = np.linalg.matrix_rank(X.values)
    if rank < width:
        raise DegenerateDesignMatrix(
            f"design matrix is rank deficient (rank {rank} < {width} columns); "
            f"predictors {list(predictors)} are collinear", model=model)
    return X, references


# ─────────────────────────────────────────────────────────────────────────────
# fitting
# ─────────────────────────────────────────────────────────────────────────────

def information_criteria(rss: float, n: int, p: int) -> Tuple[float, float]:
    k = p + 2
    if rss <= 0:
        return -math.inf, -math.inf
    base = n * math.log(rss / n)
    return base + 2 * k, base + k * math.log(n)


def adjusted_r_squared(r2: float, n: int, p: int) -> float:
    return 1.0 - (1.0 - r2) * (n - 1) / (n - p - 1)


def fit_linear_model(df: pd.DataFrame,
                     response: str,
                     predictors: Sequence[str],
                     name: Optional[str] = None,
                     log_response: bool = False) -> FittedModel:
    predictors = tuple(predictors)
    name = name or (f"{response}~" + "+".join(predictors or ("1",)))
    missing_cols = [c for c in (response, *predictors) if c not in df.columns]
    if missing_cols:
        raise KeyError(f"[{name}] columns not in frame: {missing_cols}")

    data = df[[response, *predictors]].dropna()
    dropped = len(df) - len(data)
    if dropped:
        log.warning(f"[{name}] dropped {dropped} row(s) with missing values")

    y = data[response].astype(float)
    if log_response:
        n_bad = int((y <= 0).sum())
        if n_bad:
            raise InvalidResponseDomain(response, n_bad)
        y = np.log(y)

    X, references = build_design_matrix(data, predictors, model=name)
    res = sm.OLS(y, X).fit()

    n = int(res.nobs)
    p = X.shape[1] - 1
    rss = float(res.ssr)
    r2 = float(res.rsquared) if p else 0.0
    aic, bic = information_criteria(rss, n, p)
    model = FittedModel(
        name=name,
        response=response,
        predictors=predictors,
        log_response=log_response,
        coefficients=res.params.copy(),
        std_errors=res.bse.copy(),
        t_values=res.tvalues.copy(),
        p_values=res.pvalues.copy(),
        fitted_values=res.fittedvalues.copy(),
        residuals=res.resid.copy(),
        n_obs=n,
        n_params=p,
        df_resid=int(res.df_resid),
        rss=rss,
        r_squared=r2,
        adj_r_squared=adjusted_r_squared(r2, n, p),
        aic=aic,
        bic=bic,
        f_statistic=float(res.fvalue) if p else float("nan"),
        f_pvalue=float(res.f_pvalue) if p else float("nan"),
        reference_levels=references,
    )
    log.info(f"[{name}] n={n}  adjR²={model.adj_r_squared:.4f}  AIC={aic:.2f}  BIC={bic:.2f}")
    return model


def fit_models(df: pd.DataFrame,
               response: str,
               specs: Mapping[str, Sequence[str]],
               log_response: bool = False) -> List[FittedModel]:
    return [fit_linear_model(df, response, preds, name=name, log_response=log_response)
            for name, preds in specs.items()]


# ─────────────────────────────────────────────────────────────────────────────
# comparison / selection
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True, eq=False)
class ModelComparison:
    table: pd.DataFrame
    selected: FittedModel
    rule: str               # "aic+bic" when the winner also has the lowest BIC, else "aic"
    models: Dict[str, FittedModel] = field(default_factory=dict)


def _same(a: float, b: float) -> bool:
    return math.isclose(a, b, rel_tol=1e-12, abs_tol=1e-9)


def select_model(models: Sequence[FittedModel]) -> Tuple[FittedModel, str]:
    if not models:
        raise ValueError("no models to select from")
    aic_min = min(m.aic for m in models)
    bic_min = min(m.bic for m in models)
    best_aic = [m for m in models if _same(m.aic, aic_min)]
    dominant = [m for m in best_aic if _same(m.bic, bic_min)]
    pool = dominant or best_aic
    winner = min(pool, key=lambda m: (-m.adj_r_squared, m.name))
    return winner, ("aic+bic" if dominant else "aic")


def compare_models(models: Union[Iterable[FittedModel], Mapping[str, FittedModel]]) -> ModelComparison:
    models = list(models.values()) if isinstance(models, Mapping) else list(models)
    if not models:
        raise ValueError("compare_models needs at least one model")
    names = [m.name for m in models]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise ValueError(f"duplicate model names {dupes}")

    if len({m.n_obs for m in models}) > 1:
        row_counts = {m.name: m.n_obs for m in models}
        log.warning(f"models were fitted on different row counts {row_counts}; "
                    "information criteria are not comparable")
    if len({m.log_response for m in models}) > 1:
        log.warning("mixing raw and log responses; information criteria are not comparable")

    winner, rule = select_model(models)
    table = pd.DataFrame([{
        "model": m.name,
        "formula": m.formula,
        "n_obs": m.n_obs,
        "p": m.n_params,
        "r_squared": m.r_squared,
        "adj_r_squared": m.adj_r_squared,
        "aic": m.aic,
        "bic": m.bic,
    } for m in models])
    table = table.sort_values(["aic", "model"], kind="mergesort").set_index("model")
    table["selected"] = table.index == winner.name
    log.info(f"selected model '{winner.name}' by {rule} rule")
    return ModelComparison(table=table, selected=winner, rule=rule,
                           models={m.name: m for m in models})
