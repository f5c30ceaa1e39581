"""
Exploratory and diagnostic figures.

Every function returns a matplotlib ``Figure``; ``save_figure`` writes it
and closes it so long report runs do not accumulate open figures.
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence, Union

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from scipy.cluster.hierarchy import dendrogram

sns.set_theme(style="whitegrid")

SPECIES_PALETTE = {"Adelie": "darkorange", "Chinstrap": "purple", "Gentoo": "#008b8b"}


def _palette(labels: Optional[pd.Series]):
    if labels is None:
        return None
    levels = set(pd.Series(labels).dropna().astype(str).unique())
    if levels <= set(SPECIES_PALETTE):
        return SPECIES_PALETTE
    return "deep"


def save_figure(fig, path: Union[str, Path], dpi: int = 120) -> str:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(path, dpi=dpi, bbox_inches="tight")
    plt.close(fig)
    return str(path)


# ─────────────────────────── exploratory ────────────────────────────

def scatter_by_group(df: pd.DataFrame, x: str, y: str, hue: Optional[str] = None):
    fig, ax = plt.subplots(figsize=(7, 5))
    sns.scatterplot(data=df, x=x, y=y, hue=hue, ax=ax,
                    palette=_palette(df[hue]) if hue else None, alpha=0.8)
    ax.set_title(f"{y} vs {x}" + (f" by {hue}" if hue else ""))
    fig.tight_layout()
    return fig


def box_by_group(df: pd.DataFrame, value: str, group: str):
    fig, ax = plt.subplots(figsize=(7, 5))
    sns.boxplot(data=df, x=group, y=value, hue=group, ax=ax,
                palette=_palette(df[group]), legend=False)
    ax.set_title(f"{value} by {group}")
    fig.tight_layout()
    return fig


def pair_plot(df: pd.DataFrame, fields: Sequence[str], hue: Optional[str] = None):
    cols = list(fields) + ([hue] if hue else [])
    grid = sns.pairplot(df[cols].dropna(), hue=hue, corner=True,
                        palette=_palette(df[hue]) if hue else None)
    return grid.figure


# ─────────────────────────── regression ─────────────────────────────

def residual_plot(model):
    fig, axs = plt.subplots(1, 2, figsize=(11, 4.5))
    axs[0].scatter(model.fitted_values, model.residuals, s=12, alpha=0.7)
    axs[0].axhline(0, color="red", linestyle="--")
    axs[0].set_xlabel("Fitted")
    axs[0].set_ylabel("Residual")
    axs[0].set_title(f"Residuals vs fitted · {model.name}")
    sns.histplot(model.residuals, kde=True, ax=axs[1], color="steelblue")
    axs[1].set_title("Residual distribution")
    fig.tight_layout()
    return fig


def comparison_plot(table: pd.DataFrame):
    fig, axs = plt.subplots(1, 3, figsize=(13, 4))
    for ax, col in zip(axs, ["aic", "bic", "adj_r_squared"]):
        colors = ["seagreen" if sel else "grey" for sel in table["selected"]]
        ax.bar(table.index.astype(str), table[col], color=colors)
        ax.set_title(col)
        ax.tick_params(axis="x", rotation=30)
    fig.tight_layout()
    return fig


# ─────────────────────────── PCA ────────────────────────────────────

def scree_plot(pca):
    ratio = pca.variance_ratio
    x = np.arange(1, len(ratio) + 1)
    fig, ax = plt.subplots(figsize=(6, 4))
    ax.bar(x, ratio.values, alpha=0.6, label="per component")
    ax.plot(x, pca.cumulative_ratio.values, marker="o", color="black", label="cumulative")
    ax.set_xticks(x)
    ax.set_xticklabels(ratio.index)
    ax.set_ylabel("Explained variance ratio")
    ax.set_title("PCA Scree Plot")
    ax.legend()
    fig.tight_layout()
    return fig


def pca_scatter(pca, labels: Optional[pd.Series] = None, show_loadings: bool = True):
    scores = pca.scores
    fig, ax = plt.subplots(figsize=(7, 6))
    hue = None if labels is None else pd.Series(labels).astype(str).values
    sns.scatterplot(x=scores.iloc[:, 0], y=scores.iloc[:, 1], hue=hue, ax=ax,
                    palette=_palette(labels), alpha=0.8)
    if show_loadings and pca.n_components >= 2:
        scale = float(np.abs(scores.iloc[:, :2].values).max())
        for feat, (lx, ly) in pca.loadings.iloc[:, :2].iterrows():
            ax.arrow(0, 0, lx * scale, ly * scale, color="firebrick", head_width=0.05 * scale / 3)
            ax.annotate(feat, (lx * scale * 1.08, ly * scale * 1.08), color="firebrick", fontsize=8)
    ax.set_xlabel(f"PC1 ({pca.variance_ratio.iloc[0]:.1%})")
    if pca.n_components >= 2:
        ax.set_ylabel(f"PC2 ({pca.variance_ratio.iloc[1]:.1%})")
    ax.set_title("PCA scores")
    fig.tight_layout()
    return fig


# ─────────────────────────── clustering ─────────────────────────────

def elbow_plot(wss: pd.Series, chosen_k: Optional[int] = None):
    fig, ax = plt.subplots(figsize=(6, 4))
    ax.plot(wss.index, wss.values, marker="o")
    if chosen_k is not None:
        ax.axvline(chosen_k, color="red", linestyle="--", label=f"k={chosen_k}")
        ax.legend()
    ax.set_xlabel("k")
    ax.set_ylabel("Total within-cluster SS")
    ax.set_title("Elbow curve")
    fig.tight_layout()
    return fig


def dendrogram_plot(linkage_matrix: np.ndarray, k: Optional[int] = None):
    fig, ax = plt.subplots(figsize=(10, 4.5))
    threshold = None
    if k is not None and 1 < k <= len(linkage_matrix):
        # cut height between the (n-k)-th and next merge
        heights = linkage_matrix[:, 2]
        threshold = float((heights[-k] + heights[-k + 1]) / 2)
    dendrogram(linkage_matrix, ax=ax, no_labels=True, color_threshold=threshold)
    if threshold is not None:
        ax.axhline(threshold, color="red", linestyle="--")
    ax.set_title("Hierarchical clustering dendrogram")
    fig.tight_layout()
    return fig


def silhouette_plot(silhouette, assignments: pd.Series):
    fig, ax = plt.subplots(figsize=(6, 5))
    y_lower = 0
    for cid in sorted(pd.Series(assignments).unique()):
        vals = np.sort(silhouette.widths[assignments == cid].values)
        ax.fill_betweenx(np.arange(y_lower, y_lower + len(vals)), 0, vals, alpha=0.7)
        ax.text(-0.05, y_lower + len(vals) / 2, str(cid))
        y_lower += len(vals) + 5
    ax.axvline(silhouette.mean, color="red", linestyle="--", label=f"mean={silhouette.mean:.3f}")
    ax.set_xlabel("Silhouette width")
    ax.set_yticks([])
    ax.legend()
    ax.set_title("Silhouette plot")
    fig.tight_layout()
    return fig


def contingency_heatmap(table: pd.DataFrame):
    fig, ax = plt.subplots(figsize=(5, 4))
    sns.heatmap(table, annot=True, fmt="d", cmap="Blues", ax=ax)
    ax.set_title("Cluster vs label")
    fig.tight_layout()
    return fig
