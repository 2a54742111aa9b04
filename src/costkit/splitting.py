"""Seeded row partitioning: train/test splits, k-fold assignment, and sub-streams.

Every stochastic draw in the harness derives from one caller seed. Child
seeds are produced with `numpy.random.SeedSequence.spawn`, which gives
statistically independent streams per tree or fold, so the result of a
parallel fit never depends on execution order or worker count.
"""

from __future__ import annotations

from typing import NamedTuple

import numpy as np
from sklearn.model_selection import KFold
from sklearn.model_selection import train_test_split as _sklearn_train_test_split

from costkit.dataset import Dataset
from costkit.exceptions import InvalidConfigurationError

type Seed = int | np.random.SeedSequence


class TrainTestSplit(NamedTuple):
    """A training/testing partition of one dataset.

    Attributes:
        train (Dataset): Training rows.
        test (Dataset): Held-out rows.
        train_indices (np.ndarray): Source row positions of the training rows.
        test_indices (np.ndarray): Source row positions of the held-out rows.
    """

    train: Dataset
    test: Dataset
    train_indices: np.ndarray
    test_indices: np.ndarray


def train_test_split(dataset: Dataset, *, train_fraction: float = 0.5, seed: int = 1) -> TrainTestSplit:
    """Randomly partition a dataset's rows into training and testing sets.

    Args:
        dataset (Dataset): The full cleaned dataset.
        train_fraction (float): Share of rows assigned to training, in (0, 1).
        seed (int): Caller seed; the same seed and input give the same split.

    Returns:
        TrainTestSplit: Both partitions with their source row positions, each
            in ascending source order.

    Raises:
        InvalidConfigurationError: If `train_fraction` is outside (0, 1) or
            either partition would be empty.
    """
    if not 0.0 < train_fraction < 1.0:
        raise InvalidConfigurationError(
            f"train_fraction must be in (0, 1), got {train_fraction}", parameter="train_fraction"
        )
    n_rows = len(dataset)
    n_train = int(np.floor(n_rows * train_fraction))
    if n_train < 1 or n_train >= n_rows:
        raise InvalidConfigurationError(
            f"train_fraction={train_fraction} leaves an empty partition for {n_rows} rows",
            parameter="train_fraction",
        )
    train_indices, test_indices = _sklearn_train_test_split(
        np.arange(n_rows),
        train_size=n_train,
        random_state=seed,
        shuffle=True,
    )
    train_indices = np.sort(train_indices)
    test_indices = np.sort(test_indices)
    return TrainTestSplit(
        train=dataset.take(train_indices),
        test=dataset.take(test_indices),
        train_indices=train_indices,
        test_indices=test_indices,
    )


def kfold_indices(n_rows: int, n_folds: int, seed: Seed) -> list[tuple[np.ndarray, np.ndarray]]:
    """Assign rows to shuffled cross-validation folds.

    Args:
        n_rows (int): Number of rows to partition.
        n_folds (int): Number of folds, between 2 and `n_rows`.
        seed (Seed): Seed for the fold shuffle.

    Returns:
        list[tuple[np.ndarray, np.ndarray]]: One `(train_positions,
            held_out_positions)` pair per fold.

    Raises:
        InvalidConfigurationError: If `n_folds` is below 2 or exceeds `n_rows`.
    """
    if n_folds < 2 or n_folds > n_rows:
        raise InvalidConfigurationError(
            f"cv_folds must be between 2 and the number of training rows ({n_rows}), got {n_folds}",
            parameter="cv_folds",
        )
    splitter = KFold(n_splits=n_folds, shuffle=True, random_state=int_seed(seed))
    return list(splitter.split(np.arange(n_rows)))


def as_seed_sequence(seed: Seed) -> np.random.SeedSequence:
    """Return a fresh SeedSequence for `seed` without advancing the caller's sequence.

    Spawning from a SeedSequence changes its internal child counter; copying
    keeps repeated calls with the same argument pure.

    Args:
        seed (Seed): An integer seed or an existing SeedSequence.

    Returns:
        np.random.SeedSequence: An unspawned sequence with the same entropy and key.
    """
    if isinstance(seed, np.random.SeedSequence):
        return np.random.SeedSequence(seed.entropy, spawn_key=seed.spawn_key)
    return np.random.SeedSequence(seed)


def spawn_seeds(seed: Seed, n_children: int) -> list[np.random.SeedSequence]:
    """Derive independent child seeds, one per tree or fold.

    Args:
        seed (Seed): Parent seed.
        n_children (int): Number of children.

    Returns:
        list[np.random.SeedSequence]: Child sequences in a fixed order.
    """
    return as_seed_sequence(seed).spawn(n_children)


def make_rng(seed: Seed) -> np.random.Generator:
    """Create a numpy Generator from a seed.

    Args:
        seed (Seed): Integer seed or SeedSequence.

    Returns:
        np.random.Generator: A PCG64 generator.
    """
    return np.random.default_rng(as_seed_sequence(seed))


def int_seed(seed: Seed) -> int:
    """Collapse a seed into a 32-bit integer for libraries that want one.

    Args:
        seed (Seed): Integer seed or SeedSequence.

    Returns:
        int: A deterministic integer derived from `seed`.
    """
    return int(as_seed_sequence(seed).generate_state(1)[0])
