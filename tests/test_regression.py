import dataclasses
import math
import random

import numpy as np
import pandas as pd
import pytest

from morphometrics.errors import DegenerateDesignMatrix, InvalidResponseDomain
from morphometrics.stage_2_preparation import prepare
from morphometrics.stage_3_regression import (
    build_design_matrix,
    compare_models,
    fit_linear_model,
    fit_models,
    select_model,
)


@pytest.fixture
def noisy():
    rng = np.random.default_rng(7)
    n = 200
    x1, x2 = rng.normal(size=n), rng.normal(size=n)
    base = 2.0 + 3.0 * x1 - 1.5 * x2
    return pd.DataFrame({
        "x1": x1,
        "x2": x2,
        "y_small": base + rng.normal(0, 0.1, n),
        "y_large": base + rng.normal(0, 5.0, n),
    })


@pytest.fixture
def prepared(penguins, cfg):
    return prepare(penguins, cfg["preparation"])


def test_dummy_coding_drops_alphabetical_first_level(prepared):
    X, refs = build_design_matrix(prepared, ["flipper_length_mm", "species"])
    assert refs == {"species": "Adelie"}
    assert list(X.columns) == ["Intercept", "flipper_length_mm",
                               "species[T.Chinstrap]", "species[T.Gentoo]"]


def test_fit_statistics_follow_textbook_formulas(prepared):
    m = fit_linear_model(prepared, "body_mass_g", ["flipper_length_mm", "species", "sex"])
    n, p = m.n_obs, m.n_params
    assert p == 4
    rss = float((m.residuals ** 2).sum())
    assert math.isclose(m.rss, rss, rel_tol=1e-9)
    assert math.isclose(m.aic, n * math.log(rss / n) + 2 * (p + 2), rel_tol=1e-9)
    assert math.isclose(m.bic, n * math.log(rss / n) + (p + 2) * math.log(n), rel_tol=1e-9)
    assert math.isclose(m.adj_r_squared, 1 - (1 - m.r_squared) * (n - 1) / (n - p - 1), rel_tol=1e-9)
    assert m.df_resid == n - p - 1


def test_adjusted_r2_not_above_r2_and_criteria_finite(prepared):
    for preds in (["flipper_length_mm"], ["flipper_length_mm", "species"], ["bill_depth_mm", "island"]):
        m = fit_linear_model(prepared, "body_mass_g", preds)
        assert m.adj_r_squared <= m.r_squared
        assert np.isfinite(m.aic) and np.isfinite(m.bic)


def test_fitted_model_is_immutable(prepared):
    m = fit_linear_model(prepared, "body_mass_g", ["flipper_length_mm"])
    with pytest.raises(dataclasses.FrozenInstanceError):
        m.aic = 0.0


def test_coefficient_table_has_report_columns(prepared):
    m = fit_linear_model(prepared, "body_mass_g", ["flipper_length_mm", "species"], name="fs")
    table = m.coefficient_table()
    assert list(table.columns) == ["estimate", "std_error", "t_value", "p_value"]
    assert "species[T.Gentoo]" in table.index
    assert m.summary()["formula"] == "body_mass_g ~ flipper_length_mm + species"


def test_log_response_requires_positive_values(noisy):
    with pytest.raises(InvalidResponseDomain) as exc:
        fit_linear_model(noisy, "y_small", ["x1"], log_response=True)
    assert exc.value.response == "y_small"


def test_log_response_fits_on_positive_values(prepared):
    m = fit_linear_model(prepared, "body_mass_g", ["flipper_length_mm"], log_response=True)
    assert m.log_response
    assert m.formula.startswith("log(body_mass_g)")
    assert m.fitted_values.max() < 10


def test_single_level_categorical_is_degenerate(prepared):
    gentoo = prepared[prepared["species"] == "Gentoo"]
    with pytest.raises(DegenerateDesignMatrix) as exc:
        fit_linear_model(gentoo, "body_mass_g", ["flipper_length_mm", "species"])
    assert exc.value.term == "species"


def test_constant_continuous_predictor_is_degenerate(noisy):
    df = noisy.assign(c=1.0)
    with pytest.raises(DegenerateDesignMatrix):
        fit_linear_model(df, "y_small", ["x1", "c"])


def test_collinear_predictors_are_degenerate(noisy):
    df = noisy.assign(x3=2.0 * noisy["x1"] - noisy["x2"])
    with pytest.raises(DegenerateDesignMatrix, match="rank deficient"):
        fit_linear_model(df, "y_small", ["x1", "x2", "x3"])


def test_island_and_species_collinear_in_synthetic_data(prepared):
    # every species lives on exactly one island here
    with pytest.raises(DegenerateDesignMatrix):
        fit_linear_model(prepared, "body_mass_g", ["species", "island"])


def test_compare_selects_low_noise_model(noisy):
    a = fit_linear_model(noisy, "y_small", ["x1", "x2"], name="A")
    b = fit_linear_model(noisy, "y_large", ["x1", "x2"], name="B")
    assert a.aic < b.aic and a.bic < b.bic and a.adj_r_squared > b.adj_r_squared

    comparison = compare_models([b, a])
    assert comparison.selected.name == "A"
    assert comparison.rule == "aic+bic"
    assert list(comparison.table.index) == ["A", "B"]
    assert comparison.table.loc["A", "selected"]


def test_compare_is_order_independent(prepared):
    specs = {
        "flipper": ["flipper_length_mm"],
        "flipper_species": ["flipper_length_mm", "species"],
        "flipper_species_sex": ["flipper_length_mm", "species", "sex"],
    }
    models = fit_models(prepared, "body_mass_g", specs)
    winners = set()
    for seed in range(5):
        shuffled = models[:]
        random.Random(seed).shuffle(shuffled)
        winners.add(compare_models(shuffled).selected.name)
    assert winners == {"flipper_species_sex"}


def test_compare_rejects_duplicate_names(noisy):
    a = fit_linear_model(noisy, "y_small", ["x1"], name="same")
    b = fit_linear_model(noisy, "y_small", ["x2"], name="same")
    with pytest.raises(ValueError, match="duplicate"):
        compare_models([a, b])


def test_selection_falls_back_to_aic_when_no_model_dominates(noisy):
    base = fit_linear_model(noisy, "y_small", ["x1"], name="base")
    m1 = dataclasses.replace(base, name="low_aic", aic=10.0, bic=30.0, adj_r_squared=0.5)
    m2 = dataclasses.replace(base, name="low_bic", aic=12.0, bic=20.0, adj_r_squared=0.9)
    winner, rule = select_model([m2, m1])
    assert winner.name == "low_aic"
    assert rule == "aic"


def test_selection_tie_broken_by_adjusted_r2_then_name(noisy):
    base = fit_linear_model(noisy, "y_small", ["x1"], name="base")
    m1 = dataclasses.replace(base, name="b", aic=10.0, bic=20.0, adj_r_squared=0.5)
    m2 = dataclasses.replace(base, name="a", aic=10.0, bic=20.0, adj_r_squared=0.7)
    m3 = dataclasses.replace(base, name="c", aic=10.0, bic=20.0, adj_r_squared=0.7)
    assert select_model([m1, m3, m2])[0].name == "a"
