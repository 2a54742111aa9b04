"""Hyperparameter models and run-level settings.

Estimator hyperparameters are frozen pydantic models whose `Field`
constraints encode the valid ranges. `validate_config` builds one and turns
pydantic's `ValidationError` into `InvalidConfigurationError`, so callers see
a single configuration error type.

Run-level defaults (seed, training fraction, response scale, worker count) are
read from `COSTKIT_*` environment variables or a `.env` file by
`HarnessSettings`.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings

from costkit.dataset import ResponseTransform
from costkit.exceptions import InvalidConfigurationError

# ---------------------------------------------------------------------------
# Public type aliases
# ---------------------------------------------------------------------------

type LeafStatistic = Literal["median", "mean"]

type PruningRule = Literal["min", "one_se"]

# ---------------------------------------------------------------------------
# Estimator configuration models
# ---------------------------------------------------------------------------


class TreeConfig(BaseModel):
    """Growth controls for a single regression tree.

    Attributes:
        min_samples_split (int): Nodes with fewer rows become leaves.
        min_samples_leaf (int): Minimum rows on each side of an admissible split.
        complexity (float): A split must reduce SSE by at least
            `complexity * root_sse` (rpart's relative complexity parameter).
        max_depth (int): Maximum depth; the root has depth 0.
        max_leaves (int | None): Leaf budget; `None` means unlimited.
        features_per_split (int | None): Size of the random feature subset
            drawn at every split; `None` considers every feature.
        max_exhaustive_levels (int): Nominal features with at most this many
            levels present at a node are split by exhaustive bipartition
            search; larger ones use the mean-ordered scan.
        leaf_statistic (LeafStatistic): `"median"` or `"mean"` of the
            responses routed to a leaf.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    min_samples_split: int = Field(default=2, ge=2)
    min_samples_leaf: int = Field(default=1, ge=1)
    complexity: float = Field(default=0.01, ge=0.0)
    max_depth: int = Field(default=30, ge=0)
    max_leaves: int | None = Field(default=None, ge=1)
    features_per_split: int | None = Field(default=None, ge=1)
    max_exhaustive_levels: int = Field(default=12, ge=2, le=20)
    leaf_statistic: LeafStatistic = "median"


class PruningConfig(BaseModel):
    """Cost-complexity pruning controls.

    Attributes:
        cv_folds (int): Number of cross-validation folds on the training set.
        rule (PruningRule): `"one_se"` selects the smallest subtree whose CV
            error is within one standard error of the minimum; `"min"` selects
            the minimum.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    cv_folds: int = Field(default=10, ge=2)
    rule: PruningRule = "one_se"


class ForestConfig(BaseModel):
    """Controls for the bootstrap-aggregated ensemble.

    Attributes:
        n_trees (int): Number of member trees.
        features_per_split (int | None): Features drawn at every split;
            `None` uses a third of the features (at least one).
        min_samples_leaf (int): Minimum rows per member-tree leaf.
        max_depth (int): Maximum member-tree depth.
        leaf_statistic (LeafStatistic): Member-tree leaf statistic.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    n_trees: int = Field(default=500, ge=1)
    features_per_split: int | None = Field(default=None, ge=1)
    min_samples_leaf: int = Field(default=5, ge=1)
    max_depth: int = Field(default=30, ge=0)
    leaf_statistic: LeafStatistic = "median"


class BoostingConfig(BaseModel):
    """Controls for the sequential residual-boosted ensemble.

    Attributes:
        n_trees (int): Number of boosting iterations.
        learning_rate (float): Shrinkage applied to every member's predictions.
        max_depth (int): Maximum depth of each member tree.
        min_samples_leaf (int): Minimum rows per member-tree leaf.
        cv_folds (int): Folds for the per-iteration CV error diagnostic;
            0 disables it.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    n_trees: int = Field(default=100, ge=1)
    learning_rate: float = Field(default=0.1, gt=0.0, le=1.0)
    max_depth: int = Field(default=4, ge=1)
    min_samples_leaf: int = Field(default=10, ge=1)
    cv_folds: int = Field(default=5, ge=0)

    @model_validator(mode="after")
    def _validate_cv_folds(self) -> BoostingConfig:
        """Reject a single fold, which leaves nothing to validate on.

        Returns:
            BoostingConfig: The validated model instance.

        Raises:
            ValueError: If `cv_folds == 1`.
        """
        if self.cv_folds == 1:
            raise ValueError("cv_folds must be 0 (disabled) or at least 2")
        return self


def validate_config[ConfigT: BaseModel](config_cls: type[ConfigT], **values: Any) -> ConfigT:
    """Build a configuration model, reporting failures as InvalidConfigurationError.

    Args:
        config_cls (type[ConfigT]): The pydantic model class to build.
        **values (Any): Field values.

    Returns:
        ConfigT: The validated configuration.

    Raises:
        InvalidConfigurationError: If any field fails validation.

    Examples:
        >>> validate_config(PruningConfig, cv_folds=5).cv_folds
        5
    """
    try:
        return config_cls(**values)
    except ValidationError as exc:
        first_error = exc.errors()[0]
        parameter = ".".join(str(part) for part in first_error["loc"]) or None
        details = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or config_cls.__name__}: {error['msg']}"
            for error in exc.errors()
        )
        raise InvalidConfigurationError(f"Invalid {config_cls.__name__}: {details}", parameter=parameter) from exc


# ---------------------------------------------------------------------------
# Run-level settings
# ---------------------------------------------------------------------------


class HarnessSettings(BaseSettings, env_prefix="COSTKIT_", env_file=".env", env_file_encoding="utf-8", extra="ignore"):
    """Run-level defaults for a model comparison.

    Every field can be overridden with a `COSTKIT_<FIELD>` environment
    variable, e.g. `COSTKIT_SEED=7`.

    Attributes:
        seed (int): Caller seed governing the split, bootstrap draws, feature
            subsets, and cross-validation folds.
        train_fraction (float): Share of rows assigned to the training partition.
        response_transform (ResponseTransform): Response scale every estimator
            is fit and scored on.
        n_jobs (int | None): joblib workers for parallel member and fold fits;
            `None` runs serially.
        forest_trees (int): Member count for the bagged ensemble.
        boosting_trees (int): Iteration count for the boosted ensemble.
    """

    seed: int = Field(default=1, description="Caller seed for every stochastic draw.")
    train_fraction: float = Field(default=0.5, gt=0.0, lt=1.0, description="Training share of the rows.")
    response_transform: ResponseTransform = Field(default="log", description="Response scale for all estimators.")
    n_jobs: int | None = Field(default=None, description="joblib workers; None runs serially.")
    forest_trees: int = Field(default=500, ge=1, description="Members in the bagged ensemble.")
    boosting_trees: int = Field(default=1000, ge=1, description="Iterations of the boosted ensemble.")
