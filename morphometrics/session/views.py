"""
Standard dashboard views and figure export.

Each factory returns a callable ``fn(state) -> value`` suitable for
``SessionContext.views.register``.
"""
from __future__ import annotations

from pathlib import Path
from typing import Mapping, Optional, Sequence, Union

from morphometrics.config import LINKAGE, N_START, RANDOM_STATE
from morphometrics.session.state import DerivedState, SessionContext
from morphometrics.stage_3_regression import ModelComparison, compare_models, fit_models
from morphometrics.stage_4_pca import PCAResult, compute_pca, standardize
from morphometrics.stage_5_clustering import (
    contingency_table,
    distance_matrix,
    hierarchical_cluster,
    kmeans,
    match_clusters_to_labels,
    silhouette_width,
)
from morphometrics.visualization import plots


def table_view(state: DerivedState):
    return state.frame


def model_view(response: str, specs: Mapping[str, Sequence[str]], log_response: bool = False):
    def fn(state: DerivedState) -> ModelComparison:
        return compare_models(fit_models(state.frame, response, specs, log_response=log_response))
    return fn


def pca_view(fields: Sequence[str]):
    def fn(state: DerivedState) -> PCAResult:
        return compute_pca(standardize(state.frame, fields))
    return fn


def cluster_view(fields: Sequence[str],
                 algorithm: str = "kmeans",
                 k: int = 3,
                 label_field: Optional[str] = "species",
                 seed: int = RANDOM_STATE,
                 n_start: int = N_START,
                 method: str = LINKAGE):
    def fn(state: DerivedState) -> dict:
        frame = state.frame
        X = standardize(frame, fields)
        if algorithm == "kmeans":
            result = kmeans(X, k, seed=seed, n_start=n_start)
        elif algorithm == "hierarchical":
            result = hierarchical_cluster(X, method=method, k=k)
        else:
            raise ValueError(f"unknown clustering algorithm '{algorithm}'")
        out = {"result": result, "silhouette": None, "contingency": None, "matching": None}
        if 1 < k < len(X):
            out["silhouette"] = silhouette_width(result.assignments, distance_matrix(X))
        if label_field:
            table = contingency_table(result.assignments, frame[label_field])
            out["contingency"] = table
            out["matching"] = match_clusters_to_labels(table)
        return out
    return fn


def export_plot(session: SessionContext, view: str, path: Union[str, Path]) -> str:
    """Render the current value of *view* and save it as an image."""
    value = session.views.get(view)
    if isinstance(value, ModelComparison):
        fig = plots.residual_plot(value.selected)
    elif isinstance(value, PCAResult):
        labels = session.state.frame.get("species")
        fig = plots.pca_scatter(value, labels=labels)
    elif isinstance(value, dict) and value.get("contingency") is not None:
        fig = plots.contingency_heatmap(value["contingency"])
    elif isinstance(value, dict) and value.get("silhouette") is not None:
        fig = plots.silhouette_plot(value["silhouette"], value["result"].assignments)
    else:
        raise TypeError(f"view '{view}' has no figure renderer ({type(value).__name__})")
    return plots.save_figure(fig, path)
