"""Bootstrap-aggregated (random-forest style) ensemble of regression trees.

Every member is an unpruned tree grown on a bootstrap resample of the
training rows, choosing among a fresh random subset of features at each split.
Each member owns a child seed spawned from the caller seed, and that seed
drives both its bootstrap draw and its feature subsets, so fitting members in
parallel gives the same ensemble as fitting them one by one.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Self

import numpy as np
from joblib import Parallel, delayed
from loguru import logger
from sklearn.exceptions import NotFittedError

from costkit.config import ForestConfig, TreeConfig, validate_config
from costkit.dataset import Dataset, FeatureSpec, ResponseTransform, RowsLike, encode_rows
from costkit.exceptions import EmptyTrainingSetError, InvalidConfigurationError, SchemaMismatchError
from costkit.logging import FIT_LEVEL
from costkit.splitting import Seed, make_rng, spawn_seeds
from costkit.tree.growing import grow_tree, predict_tree
from costkit.tree.models import TreeNode


@dataclass(frozen=True)
class BaggedMember:
    """One member tree and the draw that produced it.

    Attributes:
        tree (TreeNode): The member's root.
        bootstrap_indices (np.ndarray): Training row positions drawn with
            replacement, in draw order.
        seed (np.random.SeedSequence): Child seed driving the draw and the
            member's per-split feature subsets.
    """

    tree: TreeNode
    bootstrap_indices: np.ndarray
    seed: np.random.SeedSequence

    def out_of_bag(self, n_rows: int) -> np.ndarray:
        """Return the training row positions never drawn for this member."""
        in_bag = np.zeros(n_rows, dtype=bool)
        in_bag[self.bootstrap_indices] = True
        return np.flatnonzero(~in_bag)


class BaggedEnsemble:
    """Mean of unpruned trees fit to bootstrap resamples.

    Args:
        config (ForestConfig | None): Ensemble controls; defaults to `ForestConfig()`.
        seed (Seed): Caller seed; child seeds are spawned from it, one per member.
        n_jobs (int | None): joblib workers for member fits; `None` runs serially.
        response_transform (ResponseTransform): Response scale to fit on.
        **overrides (Any): Individual `ForestConfig` fields, e.g. `n_trees=50`.
    """

    def __init__(
        self,
        config: ForestConfig | None = None,
        *,
        seed: Seed = 1,
        n_jobs: int | None = None,
        response_transform: ResponseTransform = "log",
        **overrides: Any,
    ) -> None:
        base = config.model_dump() if config is not None else {}
        self.config = validate_config(ForestConfig, **{**base, **overrides})
        self.seed = seed
        self.n_jobs = n_jobs
        self.response_transform: ResponseTransform = response_transform
        self._features: tuple[FeatureSpec, ...] | None = None
        self.members_: tuple[BaggedMember, ...] = ()
        self.oob_predictions_: np.ndarray | None = None
        self.oob_rmse_: float | None = None

    def __repr__(self) -> str:
        """Return the estimator's configuration."""
        return f"BaggedEnsemble(config={self.config!r}, seed={self.seed!r}, n_jobs={self.n_jobs!r})"

    # -- Fitting -------------------------------------------------------------

    def fit(self, dataset: Dataset) -> Self:
        """Fit every member tree on its own bootstrap resample.

        Args:
            dataset (Dataset): Training rows.

        Returns:
            Self: The fitted ensemble.

        Raises:
            EmptyTrainingSetError: If `dataset` has no rows.
            InvalidConfigurationError: If `features_per_split` exceeds the
                feature count.
        """
        n_rows = len(dataset)
        if n_rows == 0:
            logger.warning("Refusing to fit on an empty dataset", estimator="BaggedEnsemble")
            raise EmptyTrainingSetError("BaggedEnsemble")
        tree_config = self._member_config(dataset.n_features)
        logger.log(
            FIT_LEVEL,
            "Fitting bagged ensemble",
            n_rows=n_rows,
            n_trees=self.config.n_trees,
            features_per_split=tree_config.features_per_split,
        )

        matrix = dataset.feature_matrix
        response = dataset.response_values(self.response_transform)
        features = dataset.features
        members = Parallel(n_jobs=self.n_jobs)(
            delayed(_fit_member)(matrix, response, features, tree_config, child)
            for child in spawn_seeds(self.seed, self.config.n_trees)
        )

        self._features = features
        self.members_ = tuple(members)
        self.oob_predictions_ = _out_of_bag_predictions(self.members_, matrix)
        covered = ~np.isnan(self.oob_predictions_)
        if covered.any():
            residuals = self.oob_predictions_[covered] - response[covered]
            self.oob_rmse_ = float(np.sqrt(np.mean(residuals**2)))
        else:
            self.oob_rmse_ = None
        logger.log(FIT_LEVEL, "Bagged ensemble fitted", n_trees=len(self.members_), oob_rmse=self.oob_rmse_)
        return self

    def _member_config(self, n_features: int) -> TreeConfig:
        features_per_split = self.config.features_per_split or max(1, n_features // 3)
        if features_per_split > n_features:
            raise InvalidConfigurationError(
                f"features_per_split={features_per_split} exceeds the {n_features} available features",
                parameter="features_per_split",
            )
        return TreeConfig(
            min_samples_split=2,
            min_samples_leaf=self.config.min_samples_leaf,
            complexity=0.0,
            max_depth=self.config.max_depth,
            features_per_split=features_per_split,
            leaf_statistic=self.config.leaf_statistic,
        )

    # -- Fitted state ----------------------------------------------------------

    @property
    def features_(self) -> tuple[FeatureSpec, ...]:
        """Feature schema recorded at fit time."""
        if self._features is None:
            raise NotFittedError("BaggedEnsemble is not fitted; call fit() first")
        return self._features

    def member_trees(self) -> tuple[TreeNode, ...]:
        """Return every member's root, in member order."""
        if not self.members_:
            raise NotFittedError("BaggedEnsemble is not fitted; call fit() first")
        return tuple(member.tree for member in self.members_)

    # -- Prediction ------------------------------------------------------------

    def member_predictions(self, data: RowsLike) -> np.ndarray:
        """Predict with every member separately.

        Args:
            data (RowsLike): Rows with the fitted feature columns.

        Returns:
            np.ndarray: Shape `(n_trees, n_rows)`.

        Raises:
            SchemaMismatchError: If a row disagrees with the fitted schema.
        """
        try:
            matrix = encode_rows(data, self.features_)
            return np.vstack([predict_tree(member.tree, matrix) for member in self.members_])
        except SchemaMismatchError as exc:
            logger.warning("Prediction rows do not match the fitted schema", feature=exc.feature, detail=exc.detail)
            raise

    def predict(self, data: RowsLike) -> np.ndarray:
        """Predict the arithmetic mean of the member predictions for each row."""
        return self.member_predictions(data).mean(axis=0)

    def predict_row(self, row: Mapping[str, Any]) -> float:
        """Predict a single row given as a `{feature: value}` mapping."""
        return float(self.predict(row)[0])


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _fit_member(
    matrix: np.ndarray,
    response: np.ndarray,
    features: Sequence[FeatureSpec],
    config: TreeConfig,
    seed: np.random.SeedSequence,
) -> BaggedMember:
    """Draw one bootstrap resample and grow a member tree on it."""
    rng = make_rng(seed)
    n_rows = matrix.shape[0]
    indices = rng.integers(0, n_rows, size=n_rows)
    tree = grow_tree(matrix[indices], response[indices], features, config, rng=rng)
    logger.debug("Bagged member grown", distinct_rows=int(np.unique(indices).size))
    return BaggedMember(tree=tree, bootstrap_indices=indices, seed=seed)


def _out_of_bag_predictions(members: Sequence[BaggedMember], matrix: np.ndarray) -> np.ndarray:
    """Average each training row's predictions over the members that never drew it.

    Rows drawn by every member get NaN.
    """
    n_rows = matrix.shape[0]
    totals = np.zeros(n_rows, dtype=np.float64)
    counts = np.zeros(n_rows, dtype=np.int64)
    for member in members:
        rows = member.out_of_bag(n_rows)
        if rows.size:
            totals[rows] += predict_tree(member.tree, matrix[rows])
            counts[rows] += 1
    with np.errstate(invalid="ignore", divide="ignore"):
        return np.where(counts > 0, totals / np.maximum(counts, 1), np.nan)
