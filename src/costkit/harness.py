"""One-call comparison of the four estimator families on one seeded split.

`compare_models` splits a dataset, fits the linear baseline, a small fixed
complexity tree, a cross-validated pruned tree, a bagged ensemble and a
boosted ensemble on the training rows, scores each on the held-out rows and
collects the tree-based importances into a JSON-serializable report.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Final

import polars as pl
from loguru import logger
from pydantic import BaseModel, Field

from costkit.config import HarnessSettings
from costkit.dataset import Dataset, ResponseTransform
from costkit.ensemble.bagging import BaggedEnsemble
from costkit.ensemble.boosting import BoostedEnsemble
from costkit.estimator import Estimator, TreeEnsemble
from costkit.evaluation import compare
from costkit.importance import importances
from costkit.linear import LinearEstimator
from costkit.logging import FIT_LEVEL
from costkit.splitting import TrainTestSplit, spawn_seeds, train_test_split
from costkit.tree.estimator import RegressionTree

# rpart complexity giving the compact tree of the original analysis (four leaves there).
SMALL_TREE_COMPLEXITY: Final[float] = 0.025

# ---------------------------------------------------------------------------
# Public models
# ---------------------------------------------------------------------------


class ModelScore(BaseModel):
    """Held-out performance of one fitted estimator.

    Attributes:
        name (str): Label in the comparison, e.g. `"forest"`.
        estimator_type (str): Estimator class name.
        rmse (float): Test RMSE on the shared response scale.
        n_leaves (int | None): Leaf count of a single tree.
        n_members (int | None): Member count of an ensemble.
        best_iteration (int | None): CV-optimal tree count of a boosted ensemble.
        importances (dict[str, float] | None): Summed SSE reductions per
            feature for tree-based estimators.
    """

    name: str = Field(description="Label of the estimator in the comparison.")
    estimator_type: str = Field(description="Estimator class name.")
    rmse: float = Field(ge=0.0, description="Test RMSE on the shared response scale.")
    n_leaves: int | None = Field(default=None, description="Leaf count of a single tree.")
    n_members: int | None = Field(default=None, description="Member count of an ensemble.")
    best_iteration: int | None = Field(default=None, description="CV-optimal tree count of a boosted ensemble.")
    importances: dict[str, float] | None = Field(
        default=None, description="Summed SSE reduction per feature for tree-based estimators."
    )


class ComparisonReport(BaseModel):
    """Result of a model comparison on one seeded split.

    Attributes:
        seed (int): Caller seed used for every stochastic draw.
        train_fraction (float): Training share of the rows.
        response_transform (ResponseTransform): Scale every RMSE is measured on.
        n_train (int): Training rows.
        n_test (int): Held-out rows.
        scores (list[ModelScore]): One entry per estimator, in fit order.
    """

    seed: int = Field(description="Caller seed used for every stochastic draw.")
    train_fraction: float = Field(description="Training share of the rows.")
    response_transform: ResponseTransform = Field(description="Scale every RMSE is measured on.")
    n_train: int = Field(ge=1, description="Number of training rows.")
    n_test: int = Field(ge=1, description="Number of held-out rows.")
    scores: list[ModelScore] = Field(description="One entry per estimator, in fit order.")

    def best(self) -> ModelScore:
        """Return the score with the lowest test RMSE (first on ties)."""
        return min(self.scores, key=lambda item: item.rmse)

    def to_frame(self) -> pl.DataFrame:
        """Return a `(model, estimator_type, rmse)` table sorted by RMSE."""
        return pl.DataFrame(
            {
                "model": [item.name for item in self.scores],
                "estimator_type": [item.estimator_type for item in self.scores],
                "rmse": [item.rmse for item in self.scores],
            }
        ).sort("rmse", maintain_order=True)


@dataclass(frozen=True)
class ComparisonRun:
    """Everything produced by one comparison.

    Attributes:
        report (ComparisonReport): Serializable scores and importances.
        estimators (dict[str, Estimator]): Fitted estimators by label.
        split (TrainTestSplit): The partition they were fit and scored on.
    """

    report: ComparisonReport
    estimators: dict[str, Estimator]
    split: TrainTestSplit


# ---------------------------------------------------------------------------
# Public interface
# ---------------------------------------------------------------------------


def build_estimators(
    settings: HarnessSettings,
    *,
    linear: LinearEstimator | None = None,
) -> dict[str, Estimator]:
    """Create the unfitted estimators of a comparison.

    The tree-based estimators receive independent child seeds spawned from
    `settings.seed`.

    Args:
        settings (HarnessSettings): Run-level defaults.
        linear (LinearEstimator | None): Configured linear baseline (features,
            interactions, cluster column); `None` uses every feature.

    Returns:
        dict[str, Estimator]: Estimators keyed by `ols`, `small_tree`, `tree`,
            `forest` and `boosting`.
    """
    transform = settings.response_transform
    tree_seed, small_tree_seed, forest_seed, boosting_seed = spawn_seeds(settings.seed, 4)
    return {
        "ols": linear if linear is not None else LinearEstimator(response_transform=transform),
        "small_tree": RegressionTree(
            complexity=SMALL_TREE_COMPLEXITY,
            pruning=None,
            seed=small_tree_seed,
            response_transform=transform,
        ),
        "tree": RegressionTree(seed=tree_seed, response_transform=transform),
        "forest": BaggedEnsemble(
            n_trees=settings.forest_trees,
            seed=forest_seed,
            n_jobs=settings.n_jobs,
            response_transform=transform,
        ),
        "boosting": BoostedEnsemble(
            n_trees=settings.boosting_trees,
            seed=boosting_seed,
            n_jobs=settings.n_jobs,
            response_transform=transform,
        ),
    }


def run_comparison(
    dataset: Dataset,
    *,
    settings: HarnessSettings | None = None,
    estimators: Mapping[str, Estimator] | None = None,
    linear: LinearEstimator | None = None,
) -> ComparisonRun:
    """Split, fit, score and summarize a set of estimators.

    Args:
        dataset (Dataset): The full cleaned dataset.
        settings (HarnessSettings | None): Run-level defaults; read from the
            environment when `None`.
        estimators (Mapping[str, Estimator] | None): Unfitted estimators by
            label; defaults to `build_estimators(settings, linear=linear)`.
        linear (LinearEstimator | None): Linear baseline used by the default
            estimator set.

    Returns:
        ComparisonRun: Report, fitted estimators and the split.

    Raises:
        InvalidConfigurationError: If the estimators use different response
            scales or the split leaves an empty partition.
    """
    settings = settings if settings is not None else HarnessSettings()
    split = train_test_split(dataset, train_fraction=settings.train_fraction, seed=settings.seed)
    pending = dict(estimators) if estimators is not None else build_estimators(settings, linear=linear)
    logger.log(
        FIT_LEVEL,
        "Model comparison started",
        models=list(pending),
        n_train=len(split.train),
        n_test=len(split.test),
        seed=settings.seed,
    )

    fitted = {name: estimator.fit(split.train) for name, estimator in pending.items()}
    rmses = compare(fitted, split.test)
    scores = [_summarize(name, estimator, rmses[name]) for name, estimator in fitted.items()]
    report = ComparisonReport(
        seed=settings.seed,
        train_fraction=settings.train_fraction,
        response_transform=settings.response_transform,
        n_train=len(split.train),
        n_test=len(split.test),
        scores=scores,
    )
    logger.log(FIT_LEVEL, "Model comparison finished", best=report.best().name, rmse=rmses)
    return ComparisonRun(report=report, estimators=fitted, split=split)


def compare_models(
    dataset: Dataset,
    *,
    settings: HarnessSettings | None = None,
    linear: LinearEstimator | None = None,
) -> ComparisonReport:
    """Fit and score the default estimator set, returning only the report.

    Args:
        dataset (Dataset): The full cleaned dataset.
        settings (HarnessSettings | None): Run-level defaults.
        linear (LinearEstimator | None): Configured linear baseline.

    Returns:
        ComparisonReport: Test RMSE and importances per estimator.
    """
    return run_comparison(dataset, settings=settings, linear=linear).report


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _summarize(name: str, estimator: Estimator, rmse: float) -> ModelScore:
    """Build the report entry of one fitted estimator."""
    score = ModelScore(name=name, estimator_type=type(estimator).__name__, rmse=rmse)
    if isinstance(estimator, RegressionTree):
        score.n_leaves = estimator.n_leaves_
    elif isinstance(estimator, BaggedEnsemble | BoostedEnsemble):
        score.n_members = len(estimator.members_)
    if isinstance(estimator, BoostedEnsemble):
        score.best_iteration = estimator.best_iteration_
    if isinstance(estimator, TreeEnsemble):
        score.importances = importances(estimator)
    return score
