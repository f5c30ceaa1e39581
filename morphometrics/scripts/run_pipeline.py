#!/usr/bin/env python3
"""
run_pipeline.py

Batch driver: load the penguins CSV, run every analysis stage and write the
JSON / Markdown / PNG report.

    python -m morphometrics.scripts.run_pipeline --data data/penguins.csv
    python -m morphometrics.scripts.run_pipeline --data penguins.csv --config analysis.yaml --k 3
"""
import argparse
import logging
import sys

import matplotlib

matplotlib.use("Agg")

import pandera as pa  # noqa: E402
from rich.console import Console  # noqa: E402
from rich.table import Table  # noqa: E402

from morphometrics.config import load_config  # noqa: E402
from morphometrics.errors import MorphometricsError  # noqa: E402
from morphometrics.pipeline import run_analysis  # noqa: E402
from morphometrics.stage_1_ingestion import load_penguins  # noqa: E402
from morphometrics.utils.reporter import PipelineReporter  # noqa: E402

log = logging.getLogger("RunPipeline")
console = Console()


def print_summary(results) -> None:
    comparison = results["comparison"]
    table = Table(title="Model comparison", show_lines=True)
    for col in ("model", "AIC", "BIC", "adj. R²", "selected"):
        table.add_column(col, justify="right" if col != "model" else "left")
    for name, row in comparison.table.iterrows():
        table.add_row(name, f"{row['aic']:.2f}", f"{row['bic']:.2f}",
                      f"{row['adj_r_squared']:.4f}", "✅" if row["selected"] else "")
    console.print(table)

    pca = results["pca"]
    vt = Table(title="PCA variance explained")
    vt.add_column("component")
    vt.add_column("ratio", justify="right")
    vt.add_column("cumulative", justify="right")
    for comp, row in pca.variance_table().iterrows():
        vt.add_row(comp, f"{row['variance_ratio']:.3f}", f"{row['cumulative_ratio']:.3f}")
    console.print(vt)

    for key in ("kmeans", "hierarchical"):
        entry = results["clusters"][key]
        line = f"[bold]{key}[/bold]: sizes={entry['result'].sizes().to_dict()}"
        if "silhouette" in entry:
            line += f"  silhouette={entry['silhouette'].mean:.3f}"
        if "matching" in entry:
            line += f"  agreement={entry['matching']['agreement']:.3f}  ARI={entry['ari']:.3f}"
        console.print(line)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Penguin morphometrics report")
    p.add_argument("--data", required=True, help="penguins CSV")
    p.add_argument("--config", help="YAML file overriding the defaults")
    p.add_argument("--report-dir", help="output directory")
    p.add_argument("--k", type=int, help="number of clusters")
    p.add_argument("--seed", type=int, help="random seed for k-means")
    p.add_argument("--n-start", type=int, help="k-means restarts")
    p.add_argument("--linkage", choices=["ward", "ward.D2", "complete", "average", "single"])
    p.add_argument("--timeout", type=float, help="per-step time budget in seconds (0 = none)")
    p.add_argument("--log-response", action="store_true", help="fit models on log(response)")
    p.add_argument("--no-plots", action="store_true")
    p.add_argument("-v", "--verbose", action="store_true")
    return p


def apply_overrides(cfg: dict, args: argparse.Namespace) -> dict:
    if args.report_dir:
        cfg["report_dir"] = args.report_dir
    if args.k is not None:
        cfg["clustering"]["k"] = args.k
    if args.seed is not None:
        cfg["seed"] = args.seed
    if args.n_start is not None:
        cfg["clustering"]["n_start"] = args.n_start
    if args.linkage:
        cfg["clustering"]["linkage"] = args.linkage
    if args.timeout is not None:
        cfg["timeout"] = args.timeout or None
    if args.log_response:
        cfg["regression"]["log_response"] = True
    if args.no_plots:
        cfg["plots"] = False
    return cfg


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(asctime)s | %(levelname)s | %(message)s")
    try:
        cfg = apply_overrides(load_config(args.config), args)
        raw = load_penguins(args.data)
        reporter = PipelineReporter(cfg["report_dir"], make_plots=cfg["plots"])
        results = run_analysis(raw, cfg, reporter=reporter)
    except (MorphometricsError, FileNotFoundError, ValueError, pa.errors.SchemaErrors) as e:
        log.error(f"analysis aborted: {e}")
        return 1
    print_summary(results)
    log.info(f"✅ report written to {cfg['report_dir']}")
    return 0


def cli():
    sys.exit(main())


if __name__ == "__main__":
    cli()
