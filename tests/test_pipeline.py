import json

import pytest

from morphometrics.pipeline import run_analysis
from morphometrics.scripts.run_pipeline import apply_overrides, build_parser, main
from morphometrics.utils.reporter import PipelineReporter
from morphometrics.visualization import plots


def test_run_analysis_end_to_end(penguins, cfg, tmp_path):
    reporter = PipelineReporter(tmp_path / "report", make_plots=True)
    results = run_analysis(penguins, cfg, reporter=reporter)

    assert results["prepared"].isna().sum().sum() == 0
    assert results["comparison"].selected.name == "flipper_species_sex"
    assert results["pca"].n_components == 4

    clusters = results["clusters"]
    assert list(clusters["elbow"].index) == [1, 2, 3, 4, 5, 6]
    for key in ("kmeans", "hierarchical"):
        assert clusters[key]["result"].k == 3
        assert -1 <= clusters[key]["silhouette"].mean <= 1
        assert clusters[key]["contingency"].values.sum() == len(penguins)

    report = json.loads((tmp_path / "report" / "analysis_report.json").read_text())
    assert report["Regression"]["summary"]["selected"] == "flipper_species_sex"
    assert "Clustering" in report and "PCA" in report
    md = (tmp_path / "report" / "analysis_report.md").read_text()
    assert "### Model comparison" in md
    assert "| flipper_species_sex" in md
    assert (tmp_path / "report" / "figures" / "pca_scores.png").exists()
    assert (tmp_path / "report" / "figures" / "dendrogram.png").exists()


def test_run_analysis_without_reporter(make_penguins, cfg):
    cfg["clustering"]["label_field"] = None
    results = run_analysis(make_penguins(n_per=15, seed=4), cfg)
    assert "contingency" not in results["clusters"]["kmeans"]


def test_no_figures_built_when_plots_disabled(penguins, cfg, tmp_path, monkeypatch):
    def refuse(*args, **kwargs):
        raise AssertionError("figure built with plots disabled")

    for fn in ("scatter_by_group", "box_by_group", "pair_plot", "comparison_plot", "residual_plot",
               "scree_plot", "pca_scatter", "elbow_plot", "silhouette_plot", "dendrogram_plot"):
        monkeypatch.setattr(plots, fn, refuse)
    reporter = PipelineReporter(tmp_path / "quiet", make_plots=False)
    run_analysis(penguins, cfg, reporter=reporter)
    assert (tmp_path / "quiet" / "analysis_report.json").exists()
    assert not (tmp_path / "quiet" / "figures").exists()


def test_overrides():
    args = build_parser().parse_args(
        ["--data", "x.csv", "--k", "4", "--timeout", "0", "--no-plots", "--linkage", "average"])
    cfg = apply_overrides({"clustering": {"k": 3, "linkage": "ward"}, "timeout": 60, "plots": True}, args)
    assert cfg["clustering"] == {"k": 4, "linkage": "average"}
    assert cfg["timeout"] is None
    assert cfg["plots"] is False


def test_cli_writes_report(make_penguins, tmp_path):
    data = tmp_path / "penguins.csv"
    make_penguins(n_per=20, seed=2).to_csv(data, index=False)
    out = tmp_path / "out"
    code = main(["--data", str(data), "--report-dir", str(out), "--no-plots", "--n-start", "3"])
    assert code == 0
    assert (out / "analysis_report.json").exists()
    assert not (out / "figures").exists()


@pytest.mark.parametrize("extra", [["--k", "0"], ["--config", "missing.yaml"]])
def test_cli_failures_return_nonzero(make_penguins, tmp_path, extra):
    data = tmp_path / "penguins.csv"
    make_penguins(n_per=10).to_csv(data, index=False)
    assert main(["--data", str(data), "--report-dir", str(tmp_path / "r"), "--no-plots", *extra]) == 1


def test_cli_missing_data(tmp_path):
    assert main(["--data", str(tmp_path / "absent.csv")]) == 1
