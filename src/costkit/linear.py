"""Ordinary least squares baseline with fixed effects and robust standard errors.

The design matrix holds an intercept, continuous features as they are,
categorical features one-hot encoded against their first (reference) level,
and declared interaction terms as the product of two continuous features.
The fit and its inference come from statsmodels: cluster-robust covariance
grouped by an auxiliary column when one is given, HC3 otherwise.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Self

import numpy as np
import polars as pl
import statsmodels.api as sm
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from sklearn.exceptions import NotFittedError

from costkit.dataset import Dataset, FeatureSpec, ResponseTransform, RowsLike, encode_rows
from costkit.exceptions import EmptyTrainingSetError, InvalidConfigurationError, RankDeficientError, SchemaMismatchError
from costkit.logging import FIT_LEVEL

INTERCEPT_TERM: str = "Intercept"


class Coefficient(BaseModel):
    """One fitted term of the linear model.

    Attributes:
        term (str): Design column name, e.g. `"slope"`, `"basin[Puget]"` or
            `"n_worksites:tot_dist"`.
        estimate (float): Point estimate on the transformed response scale.
        std_error (float): Robust standard error.
        statistic (float): Estimate divided by its standard error.
        p_value (float): Two-sided p-value of the statistic.
    """

    model_config = ConfigDict(frozen=True)

    term: str = Field(description="Design column name.")
    estimate: float = Field(description="Point estimate on the transformed response scale.")
    std_error: float = Field(description="Robust (cluster or HC3) standard error.")
    statistic: float = Field(description="Estimate over standard error.")
    p_value: float = Field(description="Two-sided p-value.")


class LinearEstimator:
    """OLS on a transformed response with fixed effects and interactions.

    Args:
        features (Sequence[str] | None): Features entering the design, in
            order; `None` uses every dataset feature.
        interactions (Sequence[tuple[str, str]]): Pairs of continuous
            features whose product enters the design.
        cluster (str | None): Auxiliary column grouping rows for
            cluster-robust standard errors; `None` uses HC3.
        response_transform (ResponseTransform): Response scale to fit on.

    Examples:
        >>> model = LinearEstimator(interactions=[("n_worksites", "tot_dist")], cluster="project_id")
        >>> model.cluster
        'project_id'
    """

    def __init__(
        self,
        features: Sequence[str] | None = None,
        *,
        interactions: Sequence[tuple[str, str]] = (),
        cluster: str | None = None,
        response_transform: ResponseTransform = "log",
    ) -> None:
        self.features = tuple(features) if features is not None else None
        self.interactions = tuple((left, right) for left, right in interactions)
        self.cluster = cluster
        self.response_transform: ResponseTransform = response_transform
        self._features: tuple[FeatureSpec, ...] | None = None
        self._params: np.ndarray | None = None
        self.terms_: tuple[str, ...] = ()
        self.coefficients_: list[Coefficient] = []
        self.results_: Any = None

    def __repr__(self) -> str:
        """Return the estimator's configuration."""
        return (
            f"LinearEstimator(features={self.features!r}, interactions={self.interactions!r}, "
            f"cluster={self.cluster!r}, response_transform={self.response_transform!r})"
        )

    # -- Fitting -------------------------------------------------------------

    def fit(self, dataset: Dataset) -> Self:
        """Fit the OLS model and its robust covariance.

        Args:
            dataset (Dataset): Training rows; must hold the `cluster` column
                when one is configured.

        Returns:
            Self: The fitted estimator.

        Raises:
            EmptyTrainingSetError: If `dataset` has no rows.
            ColumnsNotFoundError: If a selected feature or the cluster column is absent.
            InvalidConfigurationError: If an interaction names a categorical or
                unselected feature.
            RankDeficientError: If the design is not full column rank.
        """
        if len(dataset) == 0:
            logger.warning("Refusing to fit on an empty dataset", estimator="LinearEstimator")
            raise EmptyTrainingSetError("LinearEstimator")
        names = self.features if self.features is not None else dataset.feature_names
        specs = tuple(dataset.feature(name) for name in names)
        self._validate_interactions(specs)
        logger.log(
            FIT_LEVEL,
            "Fitting linear estimator",
            n_rows=len(dataset),
            features=list(names),
            cluster=self.cluster,
        )

        design, terms = _design_matrix(encode_rows(dataset, specs), specs, self.interactions)
        rank = int(np.linalg.matrix_rank(design))
        if rank < design.shape[1]:
            empty = [term for term, column in zip(terms, design.T, strict=True) if not column.any()]
            logger.warning("Linear design is rank deficient", rank=rank, n_columns=design.shape[1], empty_columns=empty)
            raise RankDeficientError(rank=rank, n_columns=design.shape[1], empty_columns=empty)

        response = dataset.response_values(self.response_transform)
        model = sm.OLS(response, design)
        if self.cluster is not None:
            groups = np.unique(dataset.auxiliary(self.cluster).to_numpy(), return_inverse=True)[1]
            results = model.fit(cov_type="cluster", cov_kwds={"groups": groups})
        else:
            results = model.fit(cov_type="HC3")

        self._features = specs
        self._params = np.asarray(results.params, dtype=np.float64)
        self.terms_ = terms
        self.results_ = results
        self.coefficients_ = [
            Coefficient(
                term=term,
                estimate=float(estimate),
                std_error=float(std_error),
                statistic=float(statistic),
                p_value=float(p_value),
            )
            for term, estimate, std_error, statistic, p_value in zip(
                terms, results.params, results.bse, results.tvalues, results.pvalues, strict=True
            )
        ]
        logger.log(FIT_LEVEL, "Linear estimator fitted", n_terms=len(terms), r_squared=float(results.rsquared))
        return self

    def _validate_interactions(self, specs: Sequence[FeatureSpec]) -> None:
        by_name = {spec.name: spec for spec in specs}
        for pair in self.interactions:
            for name in pair:
                spec = by_name.get(name)
                if spec is None or spec.is_categorical:
                    raise InvalidConfigurationError(
                        f"interaction {pair} must pair two selected continuous features; '{name}' is not one",
                        parameter="interactions",
                    )

    # -- Fitted state ----------------------------------------------------------

    @property
    def features_(self) -> tuple[FeatureSpec, ...]:
        """Schema of the features entering the design."""
        if self._features is None:
            raise NotFittedError("LinearEstimator is not fitted; call fit() first")
        return self._features

    def coefficient_frame(self) -> pl.DataFrame:
        """Return the coefficient table as a DataFrame, one row per term."""
        if self.results_ is None:
            raise NotFittedError("LinearEstimator is not fitted; call fit() first")
        return pl.DataFrame([coefficient.model_dump() for coefficient in self.coefficients_])

    # -- Prediction ------------------------------------------------------------

    def predict(self, data: RowsLike) -> np.ndarray:
        """Predict the transformed response for each row.

        Args:
            data (RowsLike): Rows with every design feature.

        Returns:
            np.ndarray: One prediction per row.

        Raises:
            SchemaMismatchError: If a design feature is missing, holds an
                unknown level, or has a wrong column type.
        """
        specs = self.features_
        if self._params is None:
            raise NotFittedError("LinearEstimator is not fitted; call fit() first")
        try:
            matrix = encode_rows(data, specs)
            missing = np.isnan(matrix).any(axis=0)
            if missing.any():
                raise SchemaMismatchError(specs[int(np.argmax(missing))].name, "the linear design needs this feature")
        except SchemaMismatchError as exc:
            logger.warning("Prediction rows do not match the fitted schema", feature=exc.feature, detail=exc.detail)
            raise
        design, _ = _design_matrix(matrix, specs, self.interactions)
        return design @ self._params

    def predict_row(self, row: Mapping[str, Any]) -> float:
        """Predict a single row given as a `{feature: value}` mapping."""
        return float(self.predict(row)[0])


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _design_matrix(
    matrix: np.ndarray,
    specs: Sequence[FeatureSpec],
    interactions: Sequence[tuple[str, str]],
) -> tuple[np.ndarray, tuple[str, ...]]:
    """Expand encoded features into the OLS design.

    Args:
        matrix (np.ndarray): Encoded features, one column per spec.
        specs (Sequence[FeatureSpec]): Schema of `matrix`.
        interactions (Sequence[tuple[str, str]]): Continuous feature pairs.

    Returns:
        tuple[np.ndarray, tuple[str, ...]]: Design matrix and its column names.
    """
    n_rows = matrix.shape[0]
    columns: list[np.ndarray] = [np.ones(n_rows)]
    terms: list[str] = [INTERCEPT_TERM]
    position = {spec.name: index for index, spec in enumerate(specs)}
    for index, spec in enumerate(specs):
        values = matrix[:, index]
        if not spec.is_categorical:
            columns.append(values)
            terms.append(spec.name)
            continue
        # Level 0 is the reference and gets no column.
        for code, level in enumerate(spec.category_levels[1:], start=1):
            columns.append((values == code).astype(np.float64))
            terms.append(f"{spec.name}[{level}]")
    for left, right in interactions:
        columns.append(matrix[:, position[left]] * matrix[:, position[right]])
        terms.append(f"{left}:{right}")
    return np.column_stack(columns), tuple(terms)
