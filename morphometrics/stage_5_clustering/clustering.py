#!/usr/bin/env python3
"""
Stage 5: Clustering on the standardized measurements

  • kmeans                – best of ``n_start`` seeded Lloyd runs (lowest WSS).
  • hierarchical_cluster  – agglomerative linkage cut into exactly k groups.
  • silhouette_width      – per-point (b - a) / max(a, b); singletons score 0.
  • elbow_curve           – total within-cluster SS per k, for a human to read.
  • contingency_table     – assigned cluster × known label counts.
  • match_clusters_to_labels – best cluster → label mapping (Hungarian search).

Cluster ids are 1..k and carry no meaning: id 1 is not "the first species".
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple, Union

import numpy as np
import pandas as pd
from scipy.cluster.hierarchy import cut_tree, linkage
from scipy.optimize import linear_sum_assignment
from scipy.spatial.distance import pdist, squareform
from sklearn.cluster import KMeans
from sklearn.metrics import adjusted_rand_score, silhouette_samples

from morphometrics.config import N_START, RANDOM_STATE
from morphometrics.errors import InvalidClusterCount

log = logging.getLogger("stage5")

LINKAGE_METHODS = {
    "ward": "ward",
    "ward.d2": "ward",
    "complete": "complete",
    "average": "average",
    "single": "single",
}

ArrayLike = Union[np.ndarray, pd.DataFrame]


@dataclass(frozen=True, eq=False)
class ClusterResult:
    assignments: pd.Series          # index → cluster id in 1..k
    k: int
    method: str
    centroids: pd.DataFrame         # cluster id × feature
    within_ss: float                # total within-cluster sum of squares
    linkage_matrix: Optional[np.ndarray] = None

    def sizes(self) -> pd.Series:
        return self.assignments.value_counts().sort_index()


@dataclass(frozen=True, eq=False)
class SilhouetteResult:
    widths: pd.Series
    mean: float

    def by_cluster(self, assignments: pd.Series) -> pd.Series:
        return self.widths.groupby(assignments).mean()


def _as_frame(X: ArrayLike) -> pd.DataFrame:
    if isinstance(X, pd.DataFrame):
        return X.astype(float)
    arr = np.asarray(X, dtype=float)
    if arr.ndim == 1:
        arr = arr.reshape(-1, 1)
    return pd.DataFrame(arr, columns=[f"x{i + 1}" for i in range(arr.shape[1])])


def _check_k(k: int, n: int) -> None:
    if not isinstance(k, (int, np.integer)) or k < 1 or k > n:
        raise InvalidClusterCount(k, n)


def within_cluster_ss(X: pd.DataFrame, assignments: pd.Series) -> Tuple[float, pd.DataFrame]:
    centroids = X.groupby(assignments.values).mean()
    diffs = X.values - centroids.loc[assignments.values].values
    return float((diffs ** 2).sum()), centroids


# ─────────────────────────────────────────────────────────────────────────────
# k-means
# ─────────────────────────────────────────────────────────────────────────────

def kmeans(X: ArrayLike, k: int, seed: int = RANDOM_STATE, n_start: int = N_START) -> ClusterResult:
    X = _as_frame(X)
    _check_k(k, len(X))
    if n_start < 1:
        raise ValueError(f"n_start must be >= 1 (got {n_start})")

    km = KMeans(n_clusters=int(k), n_init=int(n_start), random_state=seed)
    labels = km.fit_predict(X.values) + 1
    assignments = pd.Series(labels, index=X.index, name="cluster")
    wss, centroids = within_cluster_ss(X, assignments)
    log.info(f"k-means k={k} (n_start={n_start}, seed={seed}): WSS={wss:.4f}")
    return ClusterResult(assignments=assignments, k=int(k), method="kmeans",
                         centroids=centroids, within_ss=wss)


def elbow_curve(X: ArrayLike,
                k_range: Iterable[int],
                seed: int = RANDOM_STATE,
                n_start: int = N_START) -> pd.Series:
    X = _as_frame(X)
    ks = [int(k) for k in k_range]
    wss = {k: kmeans(X, k, seed=seed, n_start=n_start).within_ss for k in ks}
    return pd.Series(wss, name="within_ss").rename_axis("k")


# ─────────────────────────────────────────────────────────────────────────────
# hierarchical
# ─────────────────────────────────────────────────────────────────────────────

def hierarchical_cluster(X: ArrayLike, method: str = "ward", k: int = 3) -> ClusterResult:
    X = _as_frame(X)
    _check_k(k, len(X))
    key = method.lower()
    if key not in LINKAGE_METHODS:
        raise ValueError(f"unknown linkage '{method}'; choose from {sorted(LINKAGE_METHODS)}")

    if len(X) == 1:
        labels = np.array([1])
        Z = None
    else:
        Z = linkage(X.values, method=LINKAGE_METHODS[key], metric="euclidean")
        labels = cut_tree(Z, n_clusters=int(k)).ravel() + 1
    assignments = pd.Series(labels, index=X.index, name="cluster")
    wss, centroids = within_cluster_ss(X, assignments)
    log.info(f"hierarchical ({key}) k={k}: WSS={wss:.4f}")
    return ClusterResult(assignments=assignments, k=int(k), method=f"hclust-{LINKAGE_METHODS[key]}",
                         centroids=centroids, within_ss=wss, linkage_matrix=Z)


# ─────────────────────────────────────────────────────────────────────────────
# quality / validation
# ─────────────────────────────────────────────────────────────────────────────

def distance_matrix(X: ArrayLike) -> pd.DataFrame:
    X = _as_frame(X)
    return pd.DataFrame(squareform(pdist(X.values, metric="euclidean")),
                        index=X.index, columns=X.index)


def silhouette_width(assignments: pd.Series, distances: ArrayLike) -> SilhouetteResult:
    assignments = pd.Series(assignments)
    D = np.asarray(distances, dtype=float)
    n = len(assignments)
    if D.shape != (n, n):
        raise ValueError(f"distance matrix shape {D.shape} does not match {n} assignments")

    n_clusters = assignments.nunique()
    if n_clusters < 2:
        raise InvalidClusterCount(
            n_clusters, n, "silhouette width needs at least 2 clusters")
    if n_clusters == n:
        # every point is its own cluster
        widths = np.zeros(n)
    else:
        widths = silhouette_samples(D, assignments.values, metric="precomputed")
    s = pd.Series(widths, index=assignments.index, name="silhouette")
    return SilhouetteResult(widths=s, mean=float(s.mean()))


def contingency_table(assignments: pd.Series, true_labels: pd.Series) -> pd.DataFrame:
    assignments = pd.Series(assignments)
    true_labels = pd.Series(true_labels)
    if len(assignments) != len(true_labels):
        raise ValueError("assignments and labels differ in length")
    n_null = int(true_labels.isna().sum())
    if n_null:
        field = true_labels.name or "label"
        raise ValueError(f"label field '{field}' has {n_null} null value(s); "
                         f"every observation needs a label to be cross-tabulated")
    return pd.crosstab(pd.Series(assignments.values, name="cluster"),
                       pd.Series(true_labels.values, name="label"))


def match_clusters_to_labels(table: pd.DataFrame) -> Dict[str, object]:
    """
    Search all cluster → label correspondences for the one with the most
    agreeing observations. Returns the mapping and the agreement rate.
    """
    counts = table.values
    rows, cols = linear_sum_assignment(-counts)
    mapping = {table.index[r]: table.columns[c] for r, c in zip(rows, cols)}
    matched = int(counts[rows, cols].sum())
    total = int(counts.sum())
    return {
        "mapping": mapping,
        "matched": matched,
        "agreement": matched / total if total else float("nan"),
    }


def adjusted_rand_index(assignments: pd.Series, true_labels: pd.Series) -> float:
    return float(adjusted_rand_score(pd.Series(true_labels).values, pd.Series(assignments).values))
