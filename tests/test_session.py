import pandas as pd
import pytest

from morphometrics.errors import FormulaError, InvalidClusterCount
from morphometrics.session import SessionContext, SessionManager
from morphometrics.session.views import (
    cluster_view,
    export_plot,
    model_view,
    pca_view,
    table_view,
)
from morphometrics.stage_2_preparation import prepare

FIELDS = ["bill_length_mm", "bill_depth_mm", "flipper_length_mm", "body_mass_g"]


@pytest.fixture
def base(penguins, cfg):
    return prepare(penguins, cfg["preparation"])


@pytest.fixture
def session(base):
    return SessionContext(base, session_id="s1")


def test_initial_state_is_full_table(session, base):
    assert session.version == 0
    assert len(session.state) == len(base)
    assert session.filters == {} and session.formulas == {}


def test_filter_bumps_version_and_narrows_rows(session):
    state = session.set_filter("species", ["Gentoo"])
    assert state.version == 1
    assert set(state.frame["species"]) == {"Gentoo"}
    assert session.filters == {"species": ("Gentoo",)}


def test_same_controls_do_not_bump_version(session):
    session.set_filter("species", ["Gentoo", "Adelie"])
    again = session.set_filter("species", ["Adelie", "Gentoo"])
    assert again.version == 1


def test_empty_filter_clears(session, base):
    session.set_filter("sex", ["male"])
    state = session.set_filter("sex", [])
    assert len(state) == len(base)
    assert state.version == 2
    assert session.filters == {}


def test_unfilterable_field(session):
    with pytest.raises(KeyError):
        session.set_filter("body_mass_g", [4000])


def test_state_frame_is_a_copy(session):
    frame = session.state.frame
    frame.loc[:, "body_mass_g"] = 0.0
    assert (session.state.frame["body_mass_g"] > 0).all()


def test_formula_adds_column(session):
    state = session.add_formula("bill_ratio", "bill_length_mm / bill_depth_mm")
    expected = state.frame["bill_length_mm"] / state.frame["bill_depth_mm"]
    pd.testing.assert_series_equal(state.frame["bill_ratio"], expected, check_names=False)
    assert session.formulas == {"bill_ratio": "bill_length_mm / bill_depth_mm"}
    session.remove_formula("bill_ratio")
    assert "bill_ratio" not in session.state.frame.columns


def test_failing_formula_leaves_state_unchanged(session):
    session.set_filter("species", ["Adelie"])
    before = session.state
    with pytest.raises(FormulaError):
        session.add_formula("bad", "no_such_column * 2")
    with pytest.raises(FormulaError):
        session.add_formula("worse", "__import__('os')")
    with pytest.raises(FormulaError, match="species"):
        session.add_formula("y", "species + 1")
    assert session.state is before
    assert session.formulas == {}


def test_formula_cannot_shadow_base_column(session):
    with pytest.raises(ValueError):
        session.add_formula("body_mass_g", "body_mass_g * 2")
    with pytest.raises(ValueError):
        session.add_formula("not a name", "1")


def test_sessions_are_isolated(base):
    manager = SessionManager(base)
    a, b = manager.open("a"), manager.open("b")
    a.set_filter("species", ["Chinstrap"])
    a.add_formula("double_mass", "body_mass_g * 2")
    assert b.version == 0
    assert len(b.state) == len(base)
    assert "double_mass" not in b.state.frame.columns
    assert len(manager) == 2
    assert manager.get("a") is a

    with pytest.raises(ValueError):
        manager.open("a")
    manager.close("a")
    assert len(manager) == 1


def test_listeners_see_each_new_state(session):
    seen = []
    session.subscribe(lambda state: seen.append(state.version))
    session.set_filter("island", ["Biscoe"])
    session.set_filter("island", ["Biscoe"])
    session.clear_filters()
    assert seen == [1, 2]


def test_views_recompute_only_on_version_change(session):
    calls = []

    def counting(state):
        calls.append(state.version)
        return len(state)

    session.views.register("count", counting)
    assert session.views.names() == ["count"]
    assert session.views.get("count") == session.views.get("count")
    assert calls == [0]
    assert not session.views.is_stale("count")

    session.set_filter("species", ["Gentoo"])
    assert session.views.is_stale("count")
    assert session.views.get("count") == 40
    assert calls == [0, 1]


def test_failing_view_keeps_last_good_value(session):
    calls = []

    def needs_100_rows(state):
        calls.append(state.version)
        if len(state) < 100:
            raise InvalidClusterCount(100, len(state), "too few rows")
        return len(state)

    session.views.register("guarded", needs_100_rows)
    assert session.views.get("guarded") == 120

    session.set_filter("species", ["Gentoo"])
    with pytest.raises(InvalidClusterCount):
        session.views.get("guarded")
    # cached failure for this version
    with pytest.raises(InvalidClusterCount):
        session.views.get("guarded")
    assert calls == [0, 1]
    assert session.views.last_value("guarded") == 120
    assert isinstance(session.views.error("guarded"), InvalidClusterCount)
    assert set(session.views.refresh()) == {"guarded"}

    session.clear_filters()
    assert session.views.refresh() == {}
    assert session.views.error("guarded") is None
    assert calls == [0, 1, 2]


def test_cluster_view_reports_invalid_k(session):
    session.views.register("kmeans", cluster_view(FIELDS, k=3, n_start=3))
    good = session.views.get("kmeans")
    assert good["silhouette"] is not None
    assert set(good["result"].assignments) == {1, 2, 3}

    session.set_filter("species", ["Gentoo"])
    session.views.register("too_many", cluster_view(FIELDS, k=41, n_start=1))
    with pytest.raises(InvalidClusterCount):
        session.views.get("too_many")
    assert session.views.last_value("too_many") is None


def test_table_view_and_unknown_view(session):
    session.views.register("table", table_view)
    assert len(session.views.get("table")) == len(session.state)
    with pytest.raises(KeyError):
        session.views.get("nope")


def test_model_and_pca_views(session):
    session.views.register("models", model_view("body_mass_g", {
        "flipper": ["flipper_length_mm"],
        "flipper_sex": ["flipper_length_mm", "sex"],
    }))
    session.views.register("pca", pca_view(FIELDS))
    session.set_filter("species", ["Adelie"])
    comparison = session.views.get("models")
    assert comparison.selected.name == "flipper_sex"
    assert session.views.get("pca").n_components == 4


def test_cluster_view_hierarchical(session):
    session.views.register("hc", cluster_view(FIELDS, algorithm="hierarchical", k=3))
    out = session.views.get("hc")
    assert out["result"].method == "hclust-ward"
    assert out["contingency"].values.sum() == len(session.state)
    assert out["matching"]["agreement"] > 0.8


def test_export_csv_and_plot(session, tmp_path):
    session.set_filter("species", ["Gentoo", "Chinstrap"])
    path = session.export_csv(tmp_path / "out" / "filtered.csv")
    exported = pd.read_csv(path)
    assert set(exported["species"]) == {"Gentoo", "Chinstrap"}

    session.views.register("pca", pca_view(FIELDS))
    session.views.register("table", table_view)
    png = export_plot(session, "pca", tmp_path / "pca.png")
    assert (tmp_path / "pca.png").exists() and png.endswith("pca.png")
    with pytest.raises(TypeError):
        export_plot(session, "table", tmp_path / "table.png")
