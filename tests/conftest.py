import matplotlib

matplotlib.use("Agg")

import numpy as np  # noqa: E402
import pandas as pd  # noqa: E402
import pytest  # noqa: E402

from morphometrics.config import default_config  # noqa: E402

# (bill length, bill depth, flipper, mass, island)
SPECIES_MEANS = {
    "Adelie": (38.8, 18.3, 190.0, 3700.0, "Torgersen"),
    "Chinstrap": (48.8, 18.4, 196.0, 3730.0, "Dream"),
    "Gentoo": (47.5, 15.0, 217.0, 5076.0, "Biscoe"),
}


def _make_penguins(n_per: int = 40, seed: int = 0, with_missing: bool = True) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    rows = []
    for species, (bl, bd, fl, bm, island) in SPECIES_MEANS.items():
        for i in range(n_per):
            sex = "male" if i % 2 else "female"
            flipper = fl + rng.normal(0, 6)
            mass = bm + 35 * (flipper - fl) + (300 if sex == "male" else -300) + rng.normal(0, 150)
            rows.append({
                "species": species,
                "island": island,
                "bill_length_mm": bl + rng.normal(0, 2.5),
                "bill_depth_mm": bd + rng.normal(0, 0.8),
                "flipper_length_mm": round(flipper),
                "body_mass_g": round(mass, -1),
                "sex": sex,
                "year": 2007 + i % 3,
            })
    df = pd.DataFrame(rows)
    df["flipper_length_mm"] = df["flipper_length_mm"].astype(float)
    if with_missing:
        holes = {
            "bill_length_mm": [3, 50],
            "body_mass_g": [3, 90],
            "flipper_length_mm": [3],
            "sex": [7, 44, 101],
        }
        for col, rows in holes.items():
            df.loc[[r for r in rows if r < len(df)], col] = np.nan
    return df


@pytest.fixture
def make_penguins():
    return _make_penguins


@pytest.fixture
def penguins():
    return _make_penguins()


@pytest.fixture
def cfg(tmp_path):
    c = default_config()
    c["clustering"]["n_start"] = 5
    c["clustering"]["elbow_range"] = [1, 6]
    c["report_dir"] = str(tmp_path / "reports")
    return c


@pytest.fixture
def six_rows():
    return pd.DataFrame({
        "species": ["A", "A", "A", "B", "B", "B"],
        "body_mass_g": [3000.0, np.nan, 3200.0, 5000.0, 5100.0, 5200.0],
    })
