"""Held-out scoring of fitted estimators."""

from __future__ import annotations

from collections.abc import Mapping

import numpy as np
import polars as pl
from loguru import logger
from sklearn.metrics import mean_squared_error

from costkit.dataset import Dataset
from costkit.estimator import Estimator
from costkit.exceptions import InvalidConfigurationError


def rmse(truth: np.ndarray, predictions: np.ndarray) -> float:
    """Root mean squared error.

    Args:
        truth (np.ndarray): Observed values.
        predictions (np.ndarray): Predicted values, same shape as `truth`.

    Returns:
        float: `sqrt(mean((predictions - truth) ** 2))`.

    Raises:
        InvalidConfigurationError: If there are no values to score.

    Examples:
        >>> rmse(np.array([1.0, 2.0]), np.array([1.0, 4.0]))
        1.4142135623730951
    """
    truth = np.asarray(truth, dtype=np.float64)
    if truth.size == 0:
        raise InvalidConfigurationError("cannot score an empty test set", parameter="test")
    return float(np.sqrt(mean_squared_error(truth, np.asarray(predictions, dtype=np.float64))))


def score(estimator: Estimator, test: Dataset) -> float:
    """Score a fitted estimator on held-out rows.

    The observed response is transformed with the estimator's own
    `response_transform` before comparison, so a log-scale model is scored on
    log cost.

    Args:
        estimator (Estimator): A fitted estimator.
        test (Dataset): Held-out rows.

    Returns:
        float: Test RMSE on the estimator's response scale.

    Raises:
        InvalidConfigurationError: If `test` has no rows.
        SchemaMismatchError: If `test` disagrees with the fitted schema.
    """
    if len(test) == 0:
        logger.warning("Refusing to score on an empty test set", estimator=type(estimator).__name__)
        raise InvalidConfigurationError("cannot score an empty test set", parameter="test")
    truth = test.response_values(estimator.response_transform)
    result = rmse(truth, estimator.predict(test))
    logger.debug("Estimator scored", estimator=type(estimator).__name__, n_rows=len(test), rmse=result)
    return result


def compare(estimators: Mapping[str, Estimator], test: Dataset) -> dict[str, float]:
    """Score several estimators on the same held-out rows.

    Args:
        estimators (Mapping[str, Estimator]): Fitted estimators by label.
        test (Dataset): Held-out rows.

    Returns:
        dict[str, float]: Test RMSE by label, in input order.

    Raises:
        InvalidConfigurationError: If the estimators predict on different
            response scales, whose RMSEs are not comparable.
    """
    scales = {label: estimator.response_transform for label, estimator in estimators.items()}
    if len(set(scales.values())) > 1:
        logger.warning("Estimators use different response scales", scales=scales)
        raise InvalidConfigurationError(
            f"cannot compare estimators on different response scales: {scales}", parameter="response_transform"
        )
    return {label: score(estimator, test) for label, estimator in estimators.items()}


def prediction_frame(estimator: Estimator, test: Dataset) -> pl.DataFrame:
    """Tabulate observed against predicted values for held-out rows.

    Args:
        estimator (Estimator): A fitted estimator.
        test (Dataset): Held-out rows.

    Returns:
        pl.DataFrame: Columns `observed`, `predicted` and `residual`
            (`observed - predicted`), all on the estimator's response scale.
    """
    observed = test.response_values(estimator.response_transform)
    predicted = estimator.predict(test)
    return pl.DataFrame(
        {
            "observed": observed,
            "predicted": predicted,
            "residual": observed - predicted,
        }
    )
