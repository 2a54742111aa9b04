"""Tests for hyperparameter models and run-level settings."""

from __future__ import annotations

import pytest
from pytest_check import check

from costkit.config import BoostingConfig, ForestConfig, HarnessSettings, PruningConfig, TreeConfig, validate_config
from costkit.ensemble import BoostedEnsemble
from costkit.exceptions import CostkitError, InvalidConfigurationError
from costkit.tree import RegressionTree


class TestDefaults:
    """Tests for configuration defaults."""

    def test_tree_defaults(self) -> None:
        """A default tree grows median leaves with rpart-style controls."""
        config = TreeConfig()
        with check:
            assert config.min_samples_split == 2
        with check:
            assert config.min_samples_leaf == 1
        with check:
            assert config.complexity == pytest.approx(0.01)
        with check:
            assert config.leaf_statistic == "median"
        with check:
            assert config.max_leaves is None

    def test_pruning_defaults(self) -> None:
        """Pruning defaults to ten folds and the one-standard-error rule."""
        config = PruningConfig()
        with check:
            assert config.cv_folds == 10
        with check:
            assert config.rule == "one_se"

    def test_ensemble_defaults(self) -> None:
        """Forest and boosting defaults match the documented values."""
        with check:
            assert ForestConfig().n_trees == 500
        with check:
            assert ForestConfig().features_per_split is None
        with check:
            assert BoostingConfig().learning_rate == pytest.approx(0.1)
        with check:
            assert BoostingConfig().cv_folds == 5

    def test_configs_are_frozen(self) -> None:
        """Configuration models cannot be mutated after construction."""
        config = TreeConfig()
        with pytest.raises(ValueError):
            config.max_depth = 3  # type: ignore[misc]


class TestValidateConfig:
    """Tests for `validate_config` error translation."""

    def test_out_of_range_field_names_parameter(self) -> None:
        """A bad field value should surface the field as the parameter."""
        with pytest.raises(InvalidConfigurationError) as exc_info:
            validate_config(TreeConfig, min_samples_leaf=0)
        with check:
            assert exc_info.value.parameter == "min_samples_leaf"
        with check:
            assert "TreeConfig" in str(exc_info.value)

    def test_unknown_field_is_rejected(self) -> None:
        """Extra keyword arguments are not silently ignored."""
        with pytest.raises(InvalidConfigurationError) as exc_info:
            validate_config(ForestConfig, bogus=3)
        assert exc_info.value.parameter == "bogus"

    def test_model_level_error_has_no_parameter(self) -> None:
        """A model validator failure carries no single field location."""
        with pytest.raises(InvalidConfigurationError) as exc_info:
            validate_config(BoostingConfig, cv_folds=1)
        assert exc_info.value.parameter is None

    def test_error_is_catchable_as_costkit_and_value_error(self) -> None:
        """Configuration errors belong to both exception families."""
        with pytest.raises(InvalidConfigurationError) as exc_info:
            validate_config(BoostingConfig, learning_rate=0.0)
        with check:
            assert isinstance(exc_info.value, CostkitError)
        with check:
            assert isinstance(exc_info.value, ValueError)

    @pytest.mark.parametrize("overrides", [{"min_samples_leaf": 0}, {"max_depth": -1}, {"complexity": -0.1}])
    def test_estimator_overrides_are_validated(self, overrides: dict[str, float]) -> None:
        """Keyword overrides on an estimator go through the same validation."""
        with pytest.raises(InvalidConfigurationError):
            RegressionTree(**overrides)

    def test_boosting_learning_rate_is_validated(self) -> None:
        """A learning rate above one is rejected at construction."""
        with pytest.raises(InvalidConfigurationError) as exc_info:
            BoostedEnsemble(learning_rate=1.5)
        assert exc_info.value.parameter == "learning_rate"


class TestHarnessSettings:
    """Tests for environment-driven run settings."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
        """Without environment overrides the documented defaults apply."""
        # Arrange
        monkeypatch.chdir(tmp_path)
        for name in ("SEED", "TRAIN_FRACTION", "RESPONSE_TRANSFORM", "N_JOBS"):
            monkeypatch.delenv(f"COSTKIT_{name}", raising=False)

        # Act
        settings = HarnessSettings()

        # Assert
        with check:
            assert settings.seed == 1
        with check:
            assert settings.train_fraction == pytest.approx(0.5)
        with check:
            assert settings.response_transform == "log"
        with check:
            assert settings.n_jobs is None

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
        """`COSTKIT_*` variables override the defaults."""
        # Arrange
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("COSTKIT_SEED", "7")
        monkeypatch.setenv("COSTKIT_RESPONSE_TRANSFORM", "identity")

        # Act
        settings = HarnessSettings()

        # Assert
        with check:
            assert settings.seed == 7
        with check:
            assert settings.response_transform == "identity"

    def test_invalid_fraction_rejected(self) -> None:
        """A training fraction of one leaves nothing to test on."""
        with pytest.raises(ValueError):
            HarnessSettings(train_fraction=1.0)
