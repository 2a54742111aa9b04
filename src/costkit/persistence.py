"""Saving and restoring fitted estimators as opaque joblib artifacts.

An artifact is a joblib file holding the fitted estimator next to a small
header: a format version, the estimator class name, the response transform,
and the fitted feature schema. `load_estimator` checks the header before
handing the estimator back and, when given the data it will be applied to,
validates that the schema still matches.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Any, Final

import joblib
from loguru import logger
from pydantic import BaseModel, Field

from costkit.dataset import Dataset, FeatureSpec, ResponseTransform
from costkit.ensemble.bagging import BaggedEnsemble
from costkit.ensemble.boosting import BoostedEnsemble
from costkit.estimator import Estimator
from costkit.exceptions import SchemaMismatchError
from costkit.linear import LinearEstimator
from costkit.tree.estimator import RegressionTree

__all__ = ["ARTIFACT_FORMAT_VERSION", "ArtifactHeader", "load_estimator", "save_estimator"]

ARTIFACT_FORMAT_VERSION: Final[int] = 1

_ESTIMATOR_TYPES: Final[dict[str, type]] = {
    cls.__name__: cls for cls in (RegressionTree, BaggedEnsemble, BoostedEnsemble, LinearEstimator)
}


class ArtifactHeader(BaseModel):
    """Metadata stored alongside a fitted estimator.

    Attributes:
        format_version (int): Artifact layout version.
        estimator_type (str): Class name of the stored estimator.
        response_transform (ResponseTransform): Response scale of its predictions.
        features (list[FeatureSpec]): Feature schema recorded at fit time.
    """

    format_version: int = Field(default=ARTIFACT_FORMAT_VERSION, description="Artifact layout version.")
    estimator_type: str = Field(description="Class name of the stored estimator.")
    response_transform: ResponseTransform = Field(description="Response scale of the estimator's predictions.")
    features: list[FeatureSpec] = Field(description="Feature schema recorded at fit time.")


def save_estimator(estimator: Estimator, path: str | Path, *, compress: int = 3) -> Path:
    """Write a fitted estimator to a joblib artifact.

    Args:
        estimator (Estimator): A fitted estimator.
        path (str | Path): Destination file; parent directories are created.
        compress (int): joblib compression level, 0-9.

    Returns:
        Path: The written file.

    Raises:
        TypeError: If the estimator is not one of the harness estimator types.
        sklearn.exceptions.NotFittedError: If the estimator is not fitted.

    Examples:
        >>> save_estimator(tree, "artifacts/tree.joblib")  # doctest: +SKIP
        PosixPath('artifacts/tree.joblib')
    """
    estimator_type = type(estimator).__name__
    if estimator_type not in _ESTIMATOR_TYPES:
        raise TypeError(f"Cannot save estimator of type {estimator_type}")
    header = ArtifactHeader(
        estimator_type=estimator_type,
        response_transform=estimator.response_transform,
        features=list(estimator.features_),  # type: ignore[attr-defined]
    )
    destination = Path(path)
    destination.parent.mkdir(parents=True, exist_ok=True)
    joblib.dump({"header": header.model_dump(mode="json"), "estimator": estimator}, destination, compress=compress)
    logger.info("Estimator saved", path=str(destination), estimator=estimator_type)
    return destination


def load_estimator(
    path: str | Path,
    *,
    expected_features: Dataset | Sequence[FeatureSpec] | None = None,
) -> Any:
    """Read a fitted estimator from a joblib artifact.

    Only load artifacts from trusted sources: joblib files are pickles.

    Args:
        path (str | Path): Artifact written by `save_estimator`.
        expected_features (Dataset | Sequence[FeatureSpec] | None): Schema the
            estimator will be applied to; when given, every stored feature
            must appear in it unchanged, levels included.

    Returns:
        Any: The fitted estimator.

    Raises:
        ValueError: If the file is not a costkit artifact or has an
            unsupported format version.
        SchemaMismatchError: If a stored feature is missing from or changed
            in `expected_features`.
    """
    payload = joblib.load(Path(path))
    if not isinstance(payload, dict) or "header" not in payload or "estimator" not in payload:
        raise ValueError(f"{path} is not a costkit estimator artifact")
    header = ArtifactHeader.model_validate(payload["header"])
    if header.format_version != ARTIFACT_FORMAT_VERSION:
        raise ValueError(
            f"Unsupported artifact format version {header.format_version}; expected {ARTIFACT_FORMAT_VERSION}"
        )
    estimator = payload["estimator"]
    expected_type = _ESTIMATOR_TYPES.get(header.estimator_type)
    if expected_type is None or not isinstance(estimator, expected_type):
        raise ValueError(f"Artifact header names {header.estimator_type} but holds {type(estimator).__name__}")

    if expected_features is not None:
        expected = expected_features.features if isinstance(expected_features, Dataset) else tuple(expected_features)
        _validate_schema(tuple(header.features), tuple(expected))
    logger.info("Estimator loaded", path=str(path), estimator=header.estimator_type)
    return estimator


# Private helpers


def _validate_schema(stored: tuple[FeatureSpec, ...], expected: tuple[FeatureSpec, ...]) -> None:
    """Raise SchemaMismatchError unless every stored feature appears unchanged in `expected`."""
    by_name = {spec.name: spec for spec in expected}
    for stored_spec in stored:
        expected_spec = by_name.get(stored_spec.name)
        if expected_spec is None:
            logger.warning("Artifact schema mismatch", feature=stored_spec.name, reason="missing")
            raise SchemaMismatchError(stored_spec.name, "feature used by the stored estimator is missing")
        if expected_spec != stored_spec:
            logger.warning("Artifact schema mismatch", feature=stored_spec.name, reason="changed")
            raise SchemaMismatchError(stored_spec.name, f"stored {stored_spec!r}, expected {expected_spec!r}")
