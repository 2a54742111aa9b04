"""Single regression tree estimator with cross-validated cost-complexity pruning."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Self

import numpy as np
from loguru import logger
from sklearn.exceptions import NotFittedError

from costkit.config import PruningConfig, TreeConfig, validate_config
from costkit.dataset import Dataset, FeatureSpec, ResponseTransform, RowsLike, encode_rows
from costkit.exceptions import EmptyTrainingSetError, SchemaMismatchError
from costkit.logging import FIT_LEVEL
from costkit.splitting import Seed, kfold_indices, make_rng, spawn_seeds
from costkit.tree.growing import grow_tree, predict_tree
from costkit.tree.models import LeafNode, TreeNode, count_leaves
from costkit.tree.pruning import ComplexityRow, cross_validate_sequence, pruning_sequence, select_subtree
from costkit.tree.rules import LeafRule, extract_rules


class RegressionTree:
    """CART-style regression tree with median leaves and rpart-style pruning.

    The full tree is grown on the training rows; when `pruning` is set, the
    weakest-link subtree sequence is cross-validated on seeded folds of the
    same rows and the subtree chosen by `pruning.rule` becomes `tree_`.

    Args:
        config (TreeConfig | None): Growth controls; defaults to `TreeConfig()`.
        pruning (PruningConfig | None): Pruning controls; `None` keeps the
            full tree.
        seed (Seed): Seed for fold assignment and per-split feature subsets.
        response_transform (ResponseTransform): Response scale to fit on.
        **overrides (Any): Individual `TreeConfig` fields, applied on top of
            `config`, e.g. `RegressionTree(min_samples_leaf=5)`.

    Examples:
        >>> import polars as pl
        >>> df = pl.DataFrame({"paved": [0, 0, 0, 1, 1, 1], "cost": [500.0] * 3 + [100.0] * 3})
        >>> data = Dataset.from_frame(df, "cost")
        >>> tree = RegressionTree(pruning=None, response_transform="identity").fit(data)
        >>> tree.predict_row({"paved": 1})
        100.0
    """

    def __init__(
        self,
        config: TreeConfig | None = None,
        *,
        pruning: PruningConfig | None = PruningConfig(),
        seed: Seed = 1,
        response_transform: ResponseTransform = "log",
        **overrides: Any,
    ) -> None:
        base = config.model_dump() if config is not None else {}
        self.config = validate_config(TreeConfig, **{**base, **overrides})
        self.pruning = pruning
        self.seed = seed
        self.response_transform: ResponseTransform = response_transform
        self._features: tuple[FeatureSpec, ...] | None = None
        self._full_tree: TreeNode | None = None
        self._pruned_tree: TreeNode | None = None
        self.cp_table_: list[ComplexityRow] = []
        self.selected_complexity_: float | None = None

    def __repr__(self) -> str:
        """Return the estimator's configuration."""
        return (
            f"RegressionTree(config={self.config!r}, pruning={self.pruning!r}, "
            f"seed={self.seed!r}, response_transform={self.response_transform!r})"
        )

    # -- Fitting -------------------------------------------------------------

    def fit(self, dataset: Dataset) -> Self:
        """Grow (and optionally prune) the tree on a training dataset.

        Args:
            dataset (Dataset): Training rows.

        Returns:
            Self: The fitted estimator.

        Raises:
            EmptyTrainingSetError: If `dataset` has no rows.
            InvalidConfigurationError: If `cv_folds` exceeds the row count of a
                tree that has something to prune, or
                `features_per_split` exceeds the feature count.
        """
        if len(dataset) == 0:
            logger.warning("Refusing to fit on an empty dataset", estimator="RegressionTree")
            raise EmptyTrainingSetError("RegressionTree")
        logger.log(FIT_LEVEL, "Fitting regression tree", n_rows=len(dataset), n_features=dataset.n_features)

        growth_seed, fold_seed, fold_growth_seed = spawn_seeds(self.seed, 3)
        matrix = dataset.feature_matrix
        response = dataset.response_values(self.response_transform)
        features = dataset.features

        full_tree = grow_tree(matrix, response, features, self.config, rng=make_rng(growth_seed))
        pruned_tree = full_tree
        self.cp_table_ = []
        self.selected_complexity_ = None

        if self.pruning is not None and isinstance(full_tree, LeafNode):
            # Nothing to prune; the single row reports the resubstitution error.
            self.cp_table_ = [_leaf_row(full_tree, response)]
            self.selected_complexity_ = 0.0
        elif self.pruning is not None:
            steps = pruning_sequence(full_tree)
            folds = kfold_indices(len(dataset), self.pruning.cv_folds, fold_seed)
            fold_rngs = [make_rng(child) for child in spawn_seeds(fold_growth_seed, len(folds))]
            fold_iter = iter(fold_rngs)

            def fit_fold(rows: np.ndarray) -> TreeNode:
                return grow_tree(matrix[rows], response[rows], features, self.config, rng=next(fold_iter))

            def predict_fold(tree: TreeNode, rows: np.ndarray) -> np.ndarray:
                return predict_tree(tree, matrix[rows])

            self.cp_table_ = cross_validate_sequence(
                steps,
                response=response,
                folds=folds,
                fit_fold=fit_fold,
                predict_fold=predict_fold,
            )
            selected = select_subtree(self.cp_table_, self.pruning.rule)
            pruned_tree = steps[selected].tree
            self.selected_complexity_ = self.cp_table_[selected].complexity

        self._features = features
        self._full_tree = full_tree
        self._pruned_tree = pruned_tree
        logger.log(
            FIT_LEVEL,
            "Regression tree fitted",
            full_leaves=count_leaves(full_tree),
            pruned_leaves=count_leaves(pruned_tree),
            selected_complexity=self.selected_complexity_,
        )
        return self

    # -- Fitted state ----------------------------------------------------------

    @property
    def features_(self) -> tuple[FeatureSpec, ...]:
        """Feature schema recorded at fit time."""
        if self._features is None:
            raise NotFittedError("RegressionTree is not fitted; call fit() first")
        return self._features

    @property
    def full_tree_(self) -> TreeNode:
        """The unpruned tree."""
        if self._full_tree is None:
            raise NotFittedError("RegressionTree is not fitted; call fit() first")
        return self._full_tree

    @property
    def pruned_tree_(self) -> TreeNode:
        """The cross-validation-selected subtree (the full tree when pruning is off)."""
        if self._pruned_tree is None:
            raise NotFittedError("RegressionTree is not fitted; call fit() first")
        return self._pruned_tree

    @property
    def tree_(self) -> TreeNode:
        """The tree used for prediction."""
        return self.pruned_tree_

    @property
    def n_leaves_(self) -> int:
        """Number of leaves of `tree_`."""
        return count_leaves(self.tree_)

    def member_trees(self) -> tuple[TreeNode, ...]:
        """Return the prediction tree as a one-member sequence."""
        return (self.tree_,)

    def rules(self, *, use_full_tree: bool = False) -> list[LeafRule]:
        """Return one readable rule per leaf.

        Args:
            use_full_tree (bool): Describe the unpruned tree instead of `tree_`.

        Returns:
            list[LeafRule]: Leaf rules in pre-order.
        """
        tree = self.full_tree_ if use_full_tree else self.tree_
        return extract_rules(tree, self.features_)

    # -- Prediction ------------------------------------------------------------

    def predict(self, data: RowsLike, *, use_full_tree: bool = False) -> np.ndarray:
        """Predict the transformed response for each row.

        Args:
            data (RowsLike): Rows with the fitted feature columns.
            use_full_tree (bool): Predict with the unpruned tree.

        Returns:
            np.ndarray: One prediction per row.

        Raises:
            SchemaMismatchError: If a row lacks a feature needed along its
                path, holds an unknown level, or has a wrong column type.
        """
        tree = self.full_tree_ if use_full_tree else self.tree_
        try:
            return predict_tree(tree, encode_rows(data, self.features_))
        except SchemaMismatchError as exc:
            logger.warning("Prediction rows do not match the fitted schema", feature=exc.feature, detail=exc.detail)
            raise

    def predict_row(self, row: Mapping[str, Any]) -> float:
        """Predict a single row given as a `{feature: value}` mapping."""
        return float(self.predict(row)[0])


def _leaf_row(leaf: LeafNode, response: np.ndarray) -> ComplexityRow:
    """Complexity row of a tree that is already a single leaf."""
    squared_errors = (response - leaf.prediction) ** 2
    return ComplexityRow(
        complexity=0.0,
        n_splits=0,
        n_leaves=1,
        relative_error=1.0 if leaf.sse > 0.0 else 0.0,
        cv_error=float(squared_errors.mean()),
        cv_std_error=float(squared_errors.std() / np.sqrt(response.size)),
    )
