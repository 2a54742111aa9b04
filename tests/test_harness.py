"""Tests for the end-to-end model comparison."""

from __future__ import annotations

import pytest
from pytest_check import check

from costkit.config import HarnessSettings
from costkit.dataset import Dataset
from costkit.ensemble import BaggedEnsemble, BoostedEnsemble
from costkit.exceptions import InvalidConfigurationError
from costkit.harness import SMALL_TREE_COMPLEXITY, ComparisonReport, build_estimators, compare_models, run_comparison
from costkit.linear import LinearEstimator
from costkit.tree import RegressionTree


@pytest.fixture
def small_settings() -> HarnessSettings:
    """Settings with small ensembles so the comparison runs quickly.

    Returns:
        HarnessSettings: Seeded settings on the log scale.
    """
    return HarnessSettings(seed=3, train_fraction=0.5, forest_trees=10, boosting_trees=20)


class TestBuildEstimators:
    """Tests for the default estimator set."""

    def test_default_set(self, small_settings: HarnessSettings) -> None:
        """Five estimators share the configured response scale."""
        # Act
        estimators = build_estimators(small_settings)

        # Assert
        with check:
            assert list(estimators) == ["ols", "small_tree", "tree", "forest", "boosting"]
        with check:
            assert all(e.response_transform == "log" for e in estimators.values())
        with check:
            assert isinstance(estimators["small_tree"], RegressionTree)
        with check:
            assert estimators["small_tree"].config.complexity == SMALL_TREE_COMPLEXITY
        with check:
            assert estimators["small_tree"].pruning is None
        with check:
            assert isinstance(estimators["forest"], BaggedEnsemble)
        with check:
            assert estimators["forest"].config.n_trees == 10
        with check:
            assert isinstance(estimators["boosting"], BoostedEnsemble)
        with check:
            assert estimators["boosting"].config.n_trees == 20

    def test_custom_linear_baseline(self, small_settings: HarnessSettings) -> None:
        """A configured linear baseline replaces the default one."""
        linear = LinearEstimator(["paved", "slope"], cluster="project_id")
        assert build_estimators(small_settings, linear=linear)["ols"] is linear


class TestRunComparison:
    """Tests for fitting and scoring on one seeded split."""

    def test_report_contents(self, worksite_dataset: Dataset, small_settings: HarnessSettings) -> None:
        """The report holds one score per estimator with the right metadata."""
        # Act
        report = compare_models(worksite_dataset, settings=small_settings)

        # Assert
        by_name = {item.name: item for item in report.scores}
        with check:
            assert report.n_train == 60
        with check:
            assert report.n_test == 60
        with check:
            assert set(by_name) == {"ols", "small_tree", "tree", "forest", "boosting"}
        with check:
            assert all(item.rmse > 0.0 for item in report.scores)
        with check:
            assert by_name["ols"].importances is None
        with check:
            assert by_name["forest"].n_members == 10
        with check:
            assert by_name["tree"].n_leaves is not None
        with check:
            assert by_name["boosting"].best_iteration is not None
        with check:
            assert set(by_name["forest"].importances or {}) == set(worksite_dataset.feature_names)
        with check:
            assert report.best().rmse == min(item.rmse for item in report.scores)

    def test_same_seed_same_report(self, worksite_dataset: Dataset, small_settings: HarnessSettings) -> None:
        """The comparison is reproducible from its seed."""
        first = compare_models(worksite_dataset, settings=small_settings)
        second = compare_models(worksite_dataset, settings=small_settings)
        assert first == second

    def test_report_round_trips_through_json(
        self, worksite_dataset: Dataset, small_settings: HarnessSettings
    ) -> None:
        """The report is serializable for downstream tooling."""
        report = compare_models(worksite_dataset, settings=small_settings)
        restored = ComparisonReport.model_validate_json(report.model_dump_json())
        with check:
            assert restored == report
        with check:
            assert restored.to_frame()["rmse"].is_sorted()

    def test_run_exposes_fitted_estimators(self, worksite_dataset: Dataset, small_settings: HarnessSettings) -> None:
        """The full run keeps the fitted models and the split."""
        run = run_comparison(
            worksite_dataset,
            settings=small_settings,
            estimators={"tree": RegressionTree(pruning=None), "ols": LinearEstimator()},
        )
        with check:
            assert list(run.estimators) == ["tree", "ols"]
        with check:
            assert len(run.split.train) == 60
        with check:
            assert run.estimators["tree"].predict(run.split.test).shape == (60,)

    def test_mixed_scales_rejected(self, worksite_dataset: Dataset, small_settings: HarnessSettings) -> None:
        """Custom estimator sets must share one response scale."""
        with pytest.raises(InvalidConfigurationError):
            run_comparison(
                worksite_dataset,
                settings=small_settings,
                estimators={
                    "log": RegressionTree(pruning=None),
                    "raw": RegressionTree(pruning=None, response_transform="identity"),
                },
            )
