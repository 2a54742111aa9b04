"""Sequential residual boosting of shallow regression trees with shrinkage.

The ensemble starts from the training mean. Each iteration fits a tree with
mean leaves to the current residuals and subtracts `learning_rate` times its
predictions, so the training SSE can never increase from one iteration to
the next. Residuals are handed from one step to the next explicitly.

With `cv_folds >= 2` the same process is rerun on each fold (folds in
parallel) to trace the held-out error against the number of trees; the best
iteration count is reported but not applied automatically.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Self

import numpy as np
from joblib import Parallel, delayed
from loguru import logger
from sklearn.exceptions import NotFittedError

from costkit.config import BoostingConfig, TreeConfig, validate_config
from costkit.dataset import Dataset, FeatureSpec, ResponseTransform, RowsLike, encode_rows
from costkit.exceptions import EmptyTrainingSetError, InvalidConfigurationError, SchemaMismatchError
from costkit.logging import FIT_LEVEL
from costkit.splitting import Seed, kfold_indices
from costkit.tree.growing import grow_tree, predict_tree
from costkit.tree.models import TreeNode


class BoostedEnsemble:
    """Additive model `baseline + learning_rate * sum(tree(x))`.

    Args:
        config (BoostingConfig | None): Boosting controls; defaults to `BoostingConfig()`.
        seed (Seed): Seed for the cross-validation fold assignment.
        n_jobs (int | None): joblib workers for the CV folds; `None` runs serially.
        response_transform (ResponseTransform): Response scale to fit on.
        **overrides (Any): Individual `BoostingConfig` fields, e.g. `n_trees=200`.

    Attributes:
        baseline_ (float): Training mean of the transformed response.
        members_ (tuple[TreeNode, ...]): Member trees in fit order.
        train_error_ (np.ndarray): Training MSE after 1, 2, ... trees.
        cv_error_ (np.ndarray | None): Cross-validated MSE after 1, 2, ... trees.
        best_iteration_ (int | None): Tree count minimizing `cv_error_`.
    """

    def __init__(
        self,
        config: BoostingConfig | None = None,
        *,
        seed: Seed = 1,
        n_jobs: int | None = None,
        response_transform: ResponseTransform = "log",
        **overrides: Any,
    ) -> None:
        base = config.model_dump() if config is not None else {}
        self.config = validate_config(BoostingConfig, **{**base, **overrides})
        self.seed = seed
        self.n_jobs = n_jobs
        self.response_transform: ResponseTransform = response_transform
        self._features: tuple[FeatureSpec, ...] | None = None
        self.baseline_: float = 0.0
        self.members_: tuple[TreeNode, ...] = ()
        self.train_error_: np.ndarray = np.empty(0)
        self.cv_error_: np.ndarray | None = None
        self.best_iteration_: int | None = None

    def __repr__(self) -> str:
        """Return the estimator's configuration."""
        return f"BoostedEnsemble(config={self.config!r}, seed={self.seed!r}, n_jobs={self.n_jobs!r})"

    @property
    def learning_rate(self) -> float:
        """Shrinkage applied to every member."""
        return self.config.learning_rate

    # -- Fitting -------------------------------------------------------------

    def fit(self, dataset: Dataset) -> Self:
        """Fit the boosting sequence and, if enabled, its CV error curve.

        Args:
            dataset (Dataset): Training rows.

        Returns:
            Self: The fitted ensemble.

        Raises:
            EmptyTrainingSetError: If `dataset` has no rows.
            InvalidConfigurationError: If `cv_folds` exceeds the row count.
        """
        n_rows = len(dataset)
        if n_rows == 0:
            logger.warning("Refusing to fit on an empty dataset", estimator="BoostedEnsemble")
            raise EmptyTrainingSetError("BoostedEnsemble")
        logger.log(
            FIT_LEVEL,
            "Fitting boosted ensemble",
            n_rows=n_rows,
            n_trees=self.config.n_trees,
            learning_rate=self.learning_rate,
        )

        matrix = dataset.feature_matrix
        response = dataset.response_values(self.response_transform)
        features = dataset.features
        tree_config = self._member_config()

        # Folds are validated before the main sequence so a bad fold count fails fast.
        folds = kfold_indices(n_rows, self.config.cv_folds, self.seed) if self.config.cv_folds else []

        baseline, members, train_error = _boost(
            matrix, response, features, tree_config, self.config.n_trees, self.learning_rate
        )
        self._features = features
        self.baseline_ = baseline
        self.members_ = tuple(members)
        self.train_error_ = train_error

        if folds:
            fold_errors = Parallel(n_jobs=self.n_jobs)(
                delayed(_fold_squared_errors)(
                    matrix,
                    response,
                    features,
                    tree_config,
                    self.config.n_trees,
                    self.learning_rate,
                    fit_rows,
                    held_out_rows,
                )
                for fit_rows, held_out_rows in folds
            )
            self.cv_error_ = np.sum(fold_errors, axis=0) / n_rows
            self.best_iteration_ = int(np.argmin(self.cv_error_)) + 1
        else:
            self.cv_error_ = None
            self.best_iteration_ = None

        logger.log(
            FIT_LEVEL,
            "Boosted ensemble fitted",
            train_mse=float(train_error[-1]),
            best_iteration=self.best_iteration_,
        )
        return self

    def _member_config(self) -> TreeConfig:
        return TreeConfig(
            min_samples_split=2,
            min_samples_leaf=self.config.min_samples_leaf,
            complexity=0.0,
            max_depth=self.config.max_depth,
            leaf_statistic="mean",
        )

    # -- Fitted state ----------------------------------------------------------

    @property
    def features_(self) -> tuple[FeatureSpec, ...]:
        """Feature schema recorded at fit time."""
        if self._features is None:
            raise NotFittedError("BoostedEnsemble is not fitted; call fit() first")
        return self._features

    def member_trees(self) -> tuple[TreeNode, ...]:
        """Return every member tree in fit order."""
        if not self.members_:
            raise NotFittedError("BoostedEnsemble is not fitted; call fit() first")
        return self.members_

    # -- Prediction ------------------------------------------------------------

    def staged_predict(self, data: RowsLike) -> np.ndarray:
        """Predict after each iteration.

        Args:
            data (RowsLike): Rows with the fitted feature columns.

        Returns:
            np.ndarray: Shape `(n_trees, n_rows)`; row `m` uses the first `m + 1` trees.
        """
        try:
            matrix = encode_rows(data, self.features_)
            return _staged_predictions(matrix, self.baseline_, self.members_, self.learning_rate)
        except SchemaMismatchError as exc:
            logger.warning("Prediction rows do not match the fitted schema", feature=exc.feature, detail=exc.detail)
            raise

    def predict(self, data: RowsLike, n_trees: int | None = None) -> np.ndarray:
        """Predict with the first `n_trees` members.

        Args:
            data (RowsLike): Rows with the fitted feature columns.
            n_trees (int | None): Number of leading members to use; `None`
                uses all of them, 0 returns the baseline.

        Returns:
            np.ndarray: One prediction per row.

        Raises:
            InvalidConfigurationError: If `n_trees` is outside `[0, len(members_)]`.
            SchemaMismatchError: If a row disagrees with the fitted schema.
        """
        features = self.features_
        count = len(self.members_) if n_trees is None else n_trees
        if not 0 <= count <= len(self.members_):
            raise InvalidConfigurationError(
                f"n_trees must be between 0 and {len(self.members_)}, got {n_trees}", parameter="n_trees"
            )
        try:
            matrix = encode_rows(data, features)
            predictions = np.full(matrix.shape[0], self.baseline_, dtype=np.float64)
            for tree in self.members_[:count]:
                predictions += self.learning_rate * predict_tree(tree, matrix)
        except SchemaMismatchError as exc:
            logger.warning("Prediction rows do not match the fitted schema", feature=exc.feature, detail=exc.detail)
            raise
        return predictions

    def predict_row(self, row: Mapping[str, Any]) -> float:
        """Predict a single row given as a `{feature: value}` mapping."""
        return float(self.predict(row)[0])


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _boosting_step(
    matrix: np.ndarray,
    residual: np.ndarray,
    features: Sequence[FeatureSpec],
    config: TreeConfig,
    learning_rate: float,
) -> tuple[TreeNode, np.ndarray]:
    """Fit one tree to the residuals and return it with the updated residuals."""
    tree = grow_tree(matrix, residual, features, config)
    return tree, residual - learning_rate * predict_tree(tree, matrix)


def _boost(
    matrix: np.ndarray,
    response: np.ndarray,
    features: Sequence[FeatureSpec],
    config: TreeConfig,
    n_trees: int,
    learning_rate: float,
) -> tuple[float, list[TreeNode], np.ndarray]:
    """Run the full boosting sequence.

    Returns:
        tuple[float, list[TreeNode], np.ndarray]: Baseline, member trees, and
            the training MSE after each iteration.
    """
    baseline = float(response.mean())
    residual = response - baseline
    members: list[TreeNode] = []
    train_error = np.empty(n_trees, dtype=np.float64)
    for iteration in range(n_trees):
        tree, residual = _boosting_step(matrix, residual, features, config, learning_rate)
        members.append(tree)
        train_error[iteration] = float(np.mean(residual**2))
    logger.debug("Boosting sequence complete", n_rows=response.size, n_trees=n_trees)
    return baseline, members, train_error


def _staged_predictions(
    matrix: np.ndarray,
    baseline: float,
    members: Sequence[TreeNode],
    learning_rate: float,
) -> np.ndarray:
    """Cumulative predictions after each member, shape `(n_members, n_rows)`."""
    if not members:
        return np.empty((0, matrix.shape[0]), dtype=np.float64)
    contributions = np.vstack([learning_rate * predict_tree(tree, matrix) for tree in members])
    return baseline + np.cumsum(contributions, axis=0)


def _fold_squared_errors(
    matrix: np.ndarray,
    response: np.ndarray,
    features: Sequence[FeatureSpec],
    config: TreeConfig,
    n_trees: int,
    learning_rate: float,
    fit_rows: np.ndarray,
    held_out_rows: np.ndarray,
) -> np.ndarray:
    """Boost on one fold's training rows and sum held-out squared errors per iteration."""
    baseline, members, _ = _boost(matrix[fit_rows], response[fit_rows], features, config, n_trees, learning_rate)
    staged = _staged_predictions(matrix[held_out_rows], baseline, members, learning_rate)
    return ((staged - response[held_out_rows]) ** 2).sum(axis=1)
