"""Tests for the residual-boosted ensemble."""

from __future__ import annotations

import numpy as np
import pytest
from pytest_check import check
from sklearn.exceptions import NotFittedError

from costkit.config import BoostingConfig
from costkit.dataset import Dataset
from costkit.ensemble import BoostedEnsemble
from costkit.exceptions import EmptyTrainingSetError, InvalidConfigurationError
from costkit.tree import LeafNode, iter_nodes, tree_depth


class TestFit:
    """Tests for the boosting sequence and its diagnostics."""

    def test_training_error_never_increases(self, worksite_dataset: Dataset) -> None:
        """Mean-leaf steps with shrinkage cannot raise the training error."""
        # Act
        model = BoostedEnsemble(n_trees=25, cv_folds=0).fit(worksite_dataset)

        # Assert
        with check:
            assert model.train_error_.shape == (25,)
        with check:
            assert np.all(np.diff(model.train_error_) <= 1e-12)
        with check:
            assert model.cv_error_ is None
        with check:
            assert model.best_iteration_ is None

    def test_baseline_is_training_mean(self, worksite_dataset: Dataset) -> None:
        """With zero trees the model predicts the training mean."""
        model = BoostedEnsemble(n_trees=5, cv_folds=0).fit(worksite_dataset)
        expected = float(worksite_dataset.response_values("log").mean())
        with check:
            assert model.baseline_ == pytest.approx(expected)
        with check:
            assert np.allclose(model.predict(worksite_dataset, n_trees=0), expected)

    def test_members_are_shallow_mean_leaf_trees(self, worksite_dataset: Dataset) -> None:
        """Members respect the configured depth."""
        model = BoostedEnsemble(n_trees=5, max_depth=2, min_samples_leaf=4, cv_folds=0).fit(worksite_dataset)
        for tree in model.member_trees():
            with check:
                assert tree_depth(tree) <= 2
            leaf_sizes = [node.n_samples for node in iter_nodes(tree) if isinstance(node, LeafNode)]
            with check:
                assert min(leaf_sizes) >= 4

    def test_cross_validated_error_curve(self, worksite_dataset: Dataset) -> None:
        """CV error is traced per iteration and its argmin is reported."""
        # Act
        model = BoostedEnsemble(n_trees=20, cv_folds=3, seed=2).fit(worksite_dataset)

        # Assert
        assert model.cv_error_ is not None
        with check:
            assert model.cv_error_.shape == (20,)
        with check:
            assert model.best_iteration_ == int(np.argmin(model.cv_error_)) + 1
        with check:
            assert 1 <= model.best_iteration_ <= 20

    def test_parallel_folds_match_serial(self, worksite_dataset: Dataset) -> None:
        """Fold parallelism must not change the CV curve."""
        serial = BoostedEnsemble(n_trees=10, cv_folds=3, seed=5).fit(worksite_dataset)
        parallel = BoostedEnsemble(n_trees=10, cv_folds=3, seed=5, n_jobs=2).fit(worksite_dataset)
        assert serial.cv_error_ is not None and parallel.cv_error_ is not None
        with check:
            assert np.allclose(serial.cv_error_, parallel.cv_error_)
        with check:
            assert serial.member_trees() == parallel.member_trees()


class TestPredict:
    """Tests for staged and truncated prediction."""

    def test_staged_predictions(self, worksite_dataset: Dataset) -> None:
        """Stage m of `staged_predict` equals `predict` with m + 1 trees."""
        # Arrange
        model = BoostedEnsemble(n_trees=6, cv_folds=0).fit(worksite_dataset)

        # Act
        staged = model.staged_predict(worksite_dataset)

        # Assert
        with check:
            assert staged.shape == (6, len(worksite_dataset))
        with check:
            assert np.allclose(staged[2], model.predict(worksite_dataset, n_trees=3))
        with check:
            assert np.allclose(staged[-1], model.predict(worksite_dataset))

    def test_staged_training_error_matches_record(self, worksite_dataset: Dataset) -> None:
        """Re-scoring the staged predictions reproduces `train_error_`."""
        model = BoostedEnsemble(n_trees=4, cv_folds=0).fit(worksite_dataset)
        staged = model.staged_predict(worksite_dataset)
        mse = ((staged - worksite_dataset.response_values("log")) ** 2).mean(axis=1)
        assert np.allclose(mse, model.train_error_)

    @pytest.mark.parametrize("n_trees", [-1, 7])
    def test_n_trees_out_of_range(self, worksite_dataset: Dataset, n_trees: int) -> None:
        """Asking for more trees than were fit is an error."""
        model = BoostedEnsemble(n_trees=6, cv_folds=0).fit(worksite_dataset)
        with pytest.raises(InvalidConfigurationError) as exc_info:
            model.predict(worksite_dataset, n_trees=n_trees)
        assert exc_info.value.parameter == "n_trees"


class TestErrors:
    """Tests for configuration and state errors."""

    def test_single_fold_rejected(self) -> None:
        """One CV fold is meaningless."""
        with pytest.raises(InvalidConfigurationError):
            BoostedEnsemble(BoostingConfig(), cv_folds=1)

    def test_more_folds_than_rows(self, paved_dataset: Dataset) -> None:
        """Fold count is validated against the training rows."""
        with pytest.raises(InvalidConfigurationError) as exc_info:
            BoostedEnsemble(n_trees=2, cv_folds=7, response_transform="identity").fit(paved_dataset)
        assert exc_info.value.parameter == "cv_folds"

    def test_empty_training_set(self, worksite_dataset: Dataset) -> None:
        """Zero rows cannot be fit."""
        with pytest.raises(EmptyTrainingSetError):
            BoostedEnsemble(n_trees=2).fit(worksite_dataset.take([]))

    def test_unfitted(self) -> None:
        """Prediction requires a fitted model."""
        with pytest.raises(NotFittedError):
            BoostedEnsemble().predict({"paved": 1})
