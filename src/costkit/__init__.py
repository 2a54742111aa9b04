"""costkit: fit and compare cost models for infrastructure-repair worksites."""

from loguru import logger

from costkit.config import BoostingConfig, ForestConfig, HarnessSettings, PruningConfig, TreeConfig
from costkit.dataset import Dataset, FeatureSpec
from costkit.ensemble import BaggedEnsemble, BoostedEnsemble
from costkit.estimator import Estimator, TreeEnsemble
from costkit.evaluation import compare, prediction_frame, rmse, score
from costkit.harness import ComparisonReport, ModelScore, compare_models, run_comparison
from costkit.importance import importances, relative_importances
from costkit.linear import LinearEstimator
from costkit.logging import PACKAGE_NAME, enable_logging
from costkit.persistence import load_estimator, save_estimator
from costkit.splitting import TrainTestSplit, kfold_indices, train_test_split
from costkit.tree import RegressionTree, extract_rules

logger.disable(PACKAGE_NAME)  # noqa: RUF067 - Disable logging for the costkit module by default

__all__ = [
    "BaggedEnsemble",
    "BoostedEnsemble",
    "BoostingConfig",
    "ComparisonReport",
    "Dataset",
    "Estimator",
    "FeatureSpec",
    "ForestConfig",
    "HarnessSettings",
    "LinearEstimator",
    "ModelScore",
    "PruningConfig",
    "RegressionTree",
    "TrainTestSplit",
    "TreeConfig",
    "TreeEnsemble",
    "compare",
    "compare_models",
    "enable_logging",
    "extract_rules",
    "importances",
    "kfold_indices",
    "load_estimator",
    "prediction_frame",
    "relative_importances",
    "rmse",
    "run_comparison",
    "save_estimator",
    "score",
    "train_test_split",
]
