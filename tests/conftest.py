"""Shared synthetic worksite data for the costkit test suite."""

from __future__ import annotations

import numpy as np
import polars as pl
import pytest

from costkit.dataset import Dataset

WORKSITE_FEATURES: list[str] = [
    "n_worksites",
    "tot_dist",
    "slope",
    "bankfull_width",
    "paved",
    "basin",
    "speed_class",
]

SPEED_CLASSES: list[str] = ["low", "mid", "high"]


def make_worksite_frame(n_rows: int = 120, seed: int = 0) -> pl.DataFrame:
    """Build a deterministic table of culvert worksites with a log-linear cost.

    Args:
        n_rows (int): Number of worksites.
        seed (int): Seed for the covariates and the noise.

    Returns:
        pl.DataFrame: Feature columns, a `project_id` auxiliary column and a
            positive `cost` response.
    """
    rng = np.random.default_rng(seed)
    n_worksites = rng.integers(1, 7, size=n_rows)
    tot_dist = rng.gamma(2.0, 3.0, size=n_rows)
    slope = rng.uniform(0.0, 0.1, size=n_rows)
    bankfull_width = rng.uniform(1.0, 12.0, size=n_rows)
    paved = rng.integers(0, 2, size=n_rows)
    basins = np.array(["Coast", "Puget", "Columbia"])[np.arange(n_rows) % 3]
    speed = np.array(SPEED_CLASSES)[(np.arange(n_rows) // 3) % 3]
    basin_effect = np.select([basins == "Puget", basins == "Columbia"], [0.4, -0.3], default=0.0)
    speed_effect = np.select([speed == "mid", speed == "high"], [0.2, 0.5], default=0.0)
    log_cost = (
        10.0
        + 0.15 * n_worksites
        + 0.02 * tot_dist
        + 4.0 * slope
        + 0.05 * bankfull_width
        + 0.6 * paved
        + basin_effect
        + speed_effect
        + rng.normal(0.0, 0.2, size=n_rows)
    )
    return pl.DataFrame({
        "n_worksites": n_worksites,
        "tot_dist": tot_dist,
        "slope": slope,
        "bankfull_width": bankfull_width,
        "paved": paved,
        "basin": basins.tolist(),
        "speed_class": pl.Series(speed.tolist(), dtype=pl.Enum(SPEED_CLASSES)),
        "project_id": [f"P{index // 4:03d}" for index in range(n_rows)],
        "cost": np.exp(log_cost),
    })


def make_paved_frame() -> pl.DataFrame:
    """Six worksites where paving alone determines cost (100 when paved, 500 otherwise)."""
    return pl.DataFrame({
        "paved": [0, 0, 0, 1, 1, 1],
        "cost": [500.0, 500.0, 500.0, 100.0, 100.0, 100.0],
    })


@pytest.fixture
def worksite_dataset() -> Dataset:
    """Worksite dataset with continuous, nominal and ordered features.

    Returns:
        Dataset: 120 rows; `project_id` is carried as an auxiliary column.
    """
    return Dataset.from_frame(make_worksite_frame(), "cost", features=WORKSITE_FEATURES)


@pytest.fixture
def paved_dataset() -> Dataset:
    """Six-row dataset whose cost is fully explained by `paved`.

    Returns:
        Dataset: Single continuous feature `paved`.
    """
    return Dataset.from_frame(make_paved_frame(), "cost")
