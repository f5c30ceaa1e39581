#!/usr/bin/env python3
"""
pipeline.py

End-to-end batch analysis:

    prepared → exploratory plots
             → candidate linear models → comparison / selection
             → standardize → PCA
                           → elbow curve, k-means, hierarchical
                           → silhouette, cluster × species table

Every step is wrapped in ``@monitor`` so it is logged, timed and held to
the configured time budget (``cfg["timeout"]``).
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import pandas as pd

from morphometrics.stage_2_preparation import prepare
from morphometrics.stage_3_regression import compare_models, fit_models
from morphometrics.stage_4_pca import compute_pca, standardize
from morphometrics.stage_5_clustering import (
    adjusted_rand_index,
    contingency_table,
    distance_matrix,
    elbow_curve,
    hierarchical_cluster,
    kmeans,
    match_clusters_to_labels,
    silhouette_width,
)
from morphometrics.utils.monitor import monitor
from morphometrics.utils.reporter import PipelineReporter
from morphometrics.visualization import plots

log = logging.getLogger("pipeline")


@monitor(name="prepare", log_result=True)
def prepare_step(df: pd.DataFrame, cfg: Dict[str, Any]) -> pd.DataFrame:
    return prepare(df, cfg["preparation"])


@monitor(name="regression")
def regression_step(df: pd.DataFrame, cfg: Dict[str, Any]):
    reg = cfg["regression"]
    models = fit_models(df, reg["response"], reg["models"], log_response=reg.get("log_response", False))
    return compare_models(models)


@monitor(name="pca")
def pca_step(df: pd.DataFrame, cfg: Dict[str, Any]):
    X = standardize(df, cfg["pca"]["fields"])
    return X, compute_pca(X)


@monitor(name="clustering", track_memory=True)
def clustering_step(X: pd.DataFrame, labels: Optional[pd.Series], cfg: Dict[str, Any]) -> Dict[str, Any]:
    cl = cfg["clustering"]
    seed, k, n_start = cfg["seed"], cl["k"], cl["n_start"]
    lo, hi = cl["elbow_range"]
    hi = min(hi, len(X))

    out: Dict[str, Any] = {"elbow": elbow_curve(X, range(lo, hi + 1), seed=seed, n_start=n_start)}
    D = distance_matrix(X)
    for key, result in (("kmeans", kmeans(X, k, seed=seed, n_start=n_start)),
                        ("hierarchical", hierarchical_cluster(X, method=cl["linkage"], k=k))):
        entry: Dict[str, Any] = {"result": result}
        if 1 < k < len(X):
            entry["silhouette"] = silhouette_width(result.assignments, D)
        if labels is not None:
            table = contingency_table(result.assignments, labels)
            entry["contingency"] = table
            entry["matching"] = match_clusters_to_labels(table)
            entry["ari"] = adjusted_rand_index(result.assignments, labels)
        out[key] = entry
    return out


# ─────────────────────────────────────────────────────────────────────────────
# report sections
# ─────────────────────────────────────────────────────────────────────────────

def _report_preparation(rep: PipelineReporter, raw: pd.DataFrame, df: pd.DataFrame, cfg):
    prep = cfg["preparation"]
    rep.add_section("Data preparation",
                    summary={"rows": len(df),
                             "missing_before": raw.isna().sum().to_dict(),
                             "imputation": df.attrs.get("imputation", {}),
                             "composite_nulls": int(df[prep["composite_field"]].isna().sum())})
    if not rep.make_plots:
        return
    group = prep["group_key"]
    rep.add_chart("Exploratory plots",
                  plots.scatter_by_group(df, "flipper_length_mm", "body_mass_g", hue=group),
                  "scatter_mass_flipper.png")
    rep.add_chart("Exploratory plots",
                  plots.scatter_by_group(df, "bill_length_mm", "bill_depth_mm", hue=group),
                  "scatter_bill.png")
    rep.add_chart("Exploratory plots",
                  plots.box_by_group(df, prep["composite_field"], group),
                  "box_bmi.png")
    rep.add_chart("Exploratory plots",
                  plots.pair_plot(df, prep["numeric_fields"], hue=group),
                  "pairplot.png")


def _report_regression(rep: PipelineReporter, comparison):
    tables = {"Model comparison": comparison.table.drop(columns=["formula"])}
    for name, model in comparison.models.items():
        tables[f"Coefficients · {name} ({model.formula})"] = model.coefficient_table()
    rep.add_section("Regression",
                    summary={"selected": comparison.selected.name,
                             "rule": comparison.rule,
                             "models": {n: {k: v for k, v in m.summary().items() if k != "coefficients"}
                                        for n, m in comparison.models.items()}},
                    tables=tables)
    if not rep.make_plots:
        return
    rep.add_chart("Regression", plots.comparison_plot(comparison.table), "model_comparison.png")
    rep.add_chart("Regression", plots.residual_plot(comparison.selected), "residuals_selected.png")


def _report_pca(rep: PipelineReporter, pca, labels):
    rep.add_section("PCA",
                    summary={"n_components": pca.n_components},
                    tables={"Variance explained": pca.variance_table(),
                            "Loadings": pca.loadings})
    if not rep.make_plots:
        return
    rep.add_chart("PCA", plots.scree_plot(pca), "pca_scree.png")
    rep.add_chart("PCA", plots.pca_scatter(pca, labels=labels), "pca_scores.png")


def _report_clustering(rep: PipelineReporter, clusters, cfg):
    k = cfg["clustering"]["k"]
    rep.add_section("Clustering", tables={"Elbow curve": clusters["elbow"].to_frame()})
    if rep.make_plots:
        rep.add_chart("Clustering", plots.elbow_plot(clusters["elbow"], chosen_k=k), "elbow.png")
    for key in ("kmeans", "hierarchical"):
        entry = clusters[key]
        result = entry["result"]
        summary = {f"{key}_method": result.method,
                   f"{key}_sizes": result.sizes(),
                   f"{key}_within_ss": result.within_ss}
        tables = {}
        if "silhouette" in entry:
            summary[f"{key}_mean_silhouette"] = entry["silhouette"].mean
        if "silhouette" in entry and rep.make_plots:
            rep.add_chart("Clustering", plots.silhouette_plot(entry["silhouette"], result.assignments),
                          f"silhouette_{key}.png")
        if "contingency" in entry:
            tables[f"{key}: cluster × label"] = entry["contingency"]
            summary[f"{key}_agreement"] = entry["matching"]["agreement"]
            summary[f"{key}_mapping"] = entry["matching"]["mapping"]
            summary[f"{key}_ari"] = entry["ari"]
        rep.add_section("Clustering", summary=summary, tables=tables)
    if rep.make_plots and clusters["hierarchical"]["result"].linkage_matrix is not None:
        rep.add_chart("Clustering",
                      plots.dendrogram_plot(clusters["hierarchical"]["result"].linkage_matrix, k=k),
                      "dendrogram.png")


# ─────────────────────────────────────────────────────────────────────────────
# orchestrate
# ─────────────────────────────────────────────────────────────────────────────

def run_analysis(raw: pd.DataFrame,
                 cfg: Dict[str, Any],
                 reporter: Optional[PipelineReporter] = None) -> Dict[str, Any]:
    budget = cfg.get("timeout")
    df = prepare_step(raw, cfg, _timeout=budget)
    comparison = regression_step(df, cfg, _timeout=budget)
    X, pca = pca_step(df, cfg, _timeout=budget)

    label_field = cfg["clustering"].get("label_field")
    labels = df.loc[X.index, label_field] if label_field else None
    clusters = clustering_step(X, labels, cfg, _timeout=budget)

    if reporter is not None:
        _report_preparation(reporter, raw, df, cfg)
        _report_regression(reporter, comparison)
        _report_pca(reporter, pca, labels)
        _report_clustering(reporter, clusters, cfg)
        reporter.generate_report()

    return {"prepared": df, "comparison": comparison, "standardized": X,
            "pca": pca, "clusters": clusters}
