#!/usr/bin/env python3
"""
Stage 4: PCA on the numeric measurements

  • standardize  – centre each column, divide by its sample (ddof=1) sd.
  • compute_pca  – full-rank PCA, components sorted by explained variance.

Sign convention: every component is oriented so that its largest-magnitude
loading is positive; the scores are flipped together with the loadings.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
import pandas as pd
from sklearn.decomposition import PCA

from morphometrics.errors import DegenerateDesignMatrix, ZeroVarianceColumn

log = logging.getLogger("stage4")


@dataclass(frozen=True, eq=False)
class PCAResult:
    loadings: pd.DataFrame          # feature × component
    scores: pd.DataFrame            # observation × component
    eigenvalues: pd.Series
    variance_ratio: pd.Series
    cumulative_ratio: pd.Series

    @property
    def n_components(self) -> int:
        return self.loadings.shape[1]

    def variance_table(self) -> pd.DataFrame:
        return pd.DataFrame({
            "eigenvalue": self.eigenvalues,
            "std_dev": np.sqrt(self.eigenvalues),
            "variance_ratio": self.variance_ratio,
            "cumulative_ratio": self.cumulative_ratio,
        })


def standardize(df: pd.DataFrame, columns: Optional[Sequence[str]] = None) -> pd.DataFrame:
    X = df[list(columns)] if columns is not None else df
    X = X.astype(float)
    if X.isna().any().any():
        bad = X.columns[X.isna().any()].tolist()
        raise ValueError(f"cannot standardize columns with missing values: {bad}")

    mean = X.mean()
    sd = X.std(ddof=1)
    for col in X.columns:
        if not np.isfinite(sd[col]) or sd[col] == 0:
            raise ZeroVarianceColumn(col)
    return (X - mean) / sd


def orient_components(components: np.ndarray) -> np.ndarray:
    """Row-wise signs (+1/-1) that make each row's largest |loading| positive."""
    idx = np.argmax(np.abs(components), axis=1)
    signs = np.sign(components[np.arange(components.shape[0]), idx])
    signs[signs == 0] = 1.0
    return signs


def compute_pca(standardized: pd.DataFrame) -> PCAResult:
    n, p = standardized.shape
    if n < 2 or n < p:
        raise DegenerateDesignMatrix(
            f"PCA needs at least as many observations as features and two rows (n={n}, p={p})")

    pca = PCA(n_components=p, svd_solver="full")
    raw_scores = pca.fit_transform(standardized.values)

    signs = orient_components(pca.components_)
    components = pca.components_ * signs[:, None]
    scores = raw_scores * signs[None, :]

    names = [f"PC{i + 1}" for i in range(p)]
    eigen = pd.Series(pca.explained_variance_, index=names, name="eigenvalue")
    ratio = pd.Series(eigen / eigen.sum(), name="variance_ratio")
    result = PCAResult(
        loadings=pd.DataFrame(components.T, index=standardized.columns, columns=names),
        scores=pd.DataFrame(scores, index=standardized.index, columns=names),
        eigenvalues=eigen,
        variance_ratio=ratio,
        cumulative_ratio=ratio.cumsum().rename("cumulative_ratio"),
    )
    log.info(f"PCA: {p} components, PC1 explains {ratio.iloc[0]:.3f}, "
             f"PC1+PC2 {result.cumulative_ratio.iloc[min(1, p - 1)]:.3f}")
    return result
