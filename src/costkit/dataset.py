"""Immutable, typed observation table consumed by every estimator.

A `Dataset` wraps a cleaned `polars.DataFrame` together with a feature schema:
one `FeatureSpec` per feature column recording its kind and, for categorical
kinds, the fixed ordered level set established at construction time. Feature
values are encoded once into a read-only float64 matrix (continuous values as
is, categorical values as their level position) which the tree builders and
the linear design expansion consume directly.

Rows supplied later for prediction are encoded against the same schema with
`encode_rows`; levels are never re-derived, and a value outside the
recorded level set raises `SchemaMismatchError`.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from functools import cached_property
from typing import Any, Final, Literal

import numpy as np
import polars as pl
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, model_validator

from costkit.exceptions import (
    ColumnsNotFoundError,
    DuplicateColumnsError,
    MissingValuesError,
    NonPositiveResponseError,
    SchemaMismatchError,
    UnsupportedColumnTypeError,
)

# ---------------------------------------------------------------------------
# Public type aliases
# ---------------------------------------------------------------------------

type FeatureKind = Literal["continuous", "ordered", "nominal"]

type ResponseTransform = Literal["identity", "log"]

type RowsLike = Dataset | pl.DataFrame | Mapping[str, Any]

# ---------------------------------------------------------------------------
# Public models
# ---------------------------------------------------------------------------


class FeatureSpec(BaseModel):
    """Declared type of one feature column.

    Attributes:
        name (str): Column name in the source DataFrame.
        kind (FeatureKind): `"continuous"`, `"ordered"` (ordered categorical,
            split by level position) or `"nominal"` (unordered categorical,
            split by level subsets).
        levels (tuple[str, ...] | None): Ordered level labels for categorical
            kinds, `None` for continuous features. A value's code is its index
            in this tuple.

    Examples:
        >>> spec = FeatureSpec(name="basin", kind="nominal", levels=("Coast", "Puget"))
        >>> spec.is_categorical
        True
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1, description="Column name in the source DataFrame.")
    kind: FeatureKind = Field(description="Continuous, ordered categorical, or nominal categorical.")
    levels: tuple[str, ...] | None = Field(
        default=None,
        description="Ordered level labels for categorical kinds; None for continuous features.",
    )

    @model_validator(mode="after")
    def _validate_levels_match_kind(self) -> FeatureSpec:
        """Validate that categorical kinds carry a non-empty, unique level set.

        Returns:
            FeatureSpec: The validated model instance.

        Raises:
            ValueError: If a categorical feature has no levels or duplicate
                levels, or if a continuous feature declares levels.
        """
        if self.kind == "continuous":
            if self.levels is not None:
                raise ValueError(f"Continuous feature '{self.name}' cannot declare levels")
            return self
        if not self.levels:
            raise ValueError(f"Categorical feature '{self.name}' requires at least one level")
        if len(set(self.levels)) != len(self.levels):
            raise ValueError(f"Categorical feature '{self.name}' has duplicate levels")
        return self

    @property
    def is_categorical(self) -> bool:
        """Whether the feature is ordered or nominal categorical."""
        return self.kind != "continuous"

    @property
    def category_levels(self) -> tuple[str, ...]:
        """Ordered level labels of a categorical feature.

        Raises:
            ValueError: If the feature is continuous.
        """
        if self.levels is None:
            raise ValueError(f"Continuous feature '{self.name}' has no levels")
        return self.levels


# ---------------------------------------------------------------------------
# Dataset
# ---------------------------------------------------------------------------


class Dataset:
    """Read-only rectangular table with a typed feature schema and a response.

    Construct with `Dataset.from_frame`, which infers feature kinds from polars
    dtypes unless they are declared. Subsets produced by `take` share the
    schema (including categorical level sets) and never mutate the source.

    Attributes:
        frame (pl.DataFrame): The underlying table, including auxiliary columns.
        response (str): Name of the response column.
        features (tuple[FeatureSpec, ...]): Feature schema in canonical order.

    Examples:
        >>> df = pl.DataFrame({"paved": [0, 1], "cost": [500.0, 100.0]})
        >>> data = Dataset.from_frame(df, "cost")
        >>> data.feature_names
        ('paved',)
        >>> len(data)
        2
    """

    def __init__(self, frame: pl.DataFrame, response: str, features: Sequence[FeatureSpec]) -> None:
        """Validate and store a table with an explicit feature schema.

        Args:
            frame (pl.DataFrame): Cleaned table containing the response, every
                feature column and any auxiliary columns.
            response (str): Name of the response column.
            features (Sequence[FeatureSpec]): Feature schema in canonical order.

        Raises:
            ColumnsNotFoundError: If the response or a feature column is absent.
            DuplicateColumnsError: If a feature name repeats.
            UnsupportedColumnTypeError: If the response is not numeric, or a
                feature names the response column.
            MissingValuesError: If consumed columns hold nulls or NaNs.
            SchemaMismatchError: If categorical values fall outside declared levels.
        """
        feature_names = [spec.name for spec in features]
        _validate_columns(frame, response, feature_names)
        _validate_response_dtype(frame, response)
        _validate_no_missing(frame, [*feature_names, response])
        self._frame = frame
        self._response = response
        self._features = tuple(features)
        # Encoding the frame eagerly surfaces level violations at construction time.
        _ = self.feature_matrix

    # -- Construction -------------------------------------------------------

    @classmethod
    def from_frame(
        cls,
        frame: pl.DataFrame,
        response: str,
        *,
        features: Sequence[str] | None = None,
        kinds: Mapping[str, FeatureKind] | None = None,
        levels: Mapping[str, Sequence[Any]] | None = None,
    ) -> Dataset:
        """Build a Dataset, inferring the feature schema from column dtypes.

        Args:
            frame (pl.DataFrame): Cleaned input table.
            response (str): Name of the response column.
            features (Sequence[str] | None): Feature columns in canonical order.
                When `None`, every column except `response` is a feature.
            kinds (Mapping[str, FeatureKind] | None): Explicit kinds overriding
                dtype inference, e.g. `{"project_year": "ordered"}`.
            levels (Mapping[str, Sequence[Any]] | None): Explicit level orders
                for categorical features; the first level is the reference
                level of the linear baseline.

        Returns:
            Dataset: The validated dataset.

        Raises:
            ColumnsNotFoundError: If requested columns are missing.
            UnsupportedColumnTypeError: If a column dtype cannot be used.
        """
        feature_names = list(features) if features is not None else [c for c in frame.columns if c != response]
        _validate_columns(frame, response, feature_names)
        kinds = kinds or {}
        levels = levels or {}
        specs = [
            _infer_feature_spec(frame[name], kind=kinds.get(name), levels=levels.get(name)) for name in feature_names
        ]
        dataset = cls(frame, response, specs)
        logger.debug(
            "Dataset constructed",
            n_rows=len(dataset),
            response=response,
            kinds={spec.name: spec.kind for spec in specs},
        )
        return dataset

    # -- Read-only views ------------------------------------------------------

    @property
    def frame(self) -> pl.DataFrame:
        """The underlying polars table."""
        return self._frame

    @property
    def response(self) -> str:
        """Name of the response column."""
        return self._response

    @property
    def features(self) -> tuple[FeatureSpec, ...]:
        """Feature schema in canonical order."""
        return self._features

    @property
    def feature_names(self) -> tuple[str, ...]:
        """Feature names in canonical order."""
        return tuple(spec.name for spec in self._features)

    @property
    def n_features(self) -> int:
        """Number of feature columns."""
        return len(self._features)

    def __len__(self) -> int:
        """Return the number of rows."""
        return self._frame.height

    def __repr__(self) -> str:
        """Return a compact description of the dataset."""
        return f"Dataset(n_rows={len(self)}, response={self._response!r}, features={list(self.feature_names)!r})"

    def feature(self, name: str) -> FeatureSpec:
        """Look up a feature spec by name.

        Args:
            name (str): Feature name.

        Returns:
            FeatureSpec: The matching spec.

        Raises:
            ColumnsNotFoundError: If no feature has that name.
        """
        for spec in self._features:
            if spec.name == name:
                return spec
        raise ColumnsNotFoundError(missing_columns=[name], available_columns=list(self.feature_names))

    @cached_property
    def feature_matrix(self) -> np.ndarray:
        """Read-only float64 matrix of encoded features, shape `(n_rows, n_features)`."""
        matrix = _encode_frame(self._frame, self._features)
        matrix.flags.writeable = False
        return matrix

    def response_values(self, transform: ResponseTransform = "identity") -> np.ndarray:
        """Return the response column as float64, optionally transformed.

        Args:
            transform (ResponseTransform): `"identity"` or `"log"`.

        Returns:
            np.ndarray: 1-D response vector.
        """
        values = self._frame[self._response].cast(pl.Float64).to_numpy()
        return apply_response_transform(values, transform, response=self._response)

    def auxiliary(self, name: str) -> pl.Series:
        """Return a non-feature column such as a project identifier.

        Args:
            name (str): Column name.

        Returns:
            pl.Series: The column.

        Raises:
            ColumnsNotFoundError: If the column does not exist.
        """
        if name not in self._frame.columns:
            raise ColumnsNotFoundError(missing_columns=[name], available_columns=self._frame.columns)
        return self._frame[name]

    # -- Subsetting ------------------------------------------------------------

    def take(self, indices: Sequence[int] | np.ndarray) -> Dataset:
        """Return a new Dataset holding the given rows, in the given order.

        Args:
            indices (Sequence[int] | np.ndarray): Row positions; repeats allowed.

        Returns:
            Dataset: A dataset with the same schema.
        """
        positions = np.asarray(indices, dtype=np.int64)
        # Rows of a validated dataset are already valid; reuse the encoded matrix
        # instead of re-validating and re-encoding.
        subset = Dataset.__new__(Dataset)
        subset._frame = self._frame[positions]
        subset._response = self._response
        subset._features = self._features
        matrix = self.feature_matrix[positions]
        matrix.flags.writeable = False
        subset.__dict__["feature_matrix"] = matrix
        return subset


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def encode_rows(data: RowsLike, features: Sequence[FeatureSpec]) -> np.ndarray:
    """Encode rows against a fitted feature schema.

    A Dataset with exactly this schema reuses its encoded matrix. Feature
    columns absent from `data` are encoded as NaN.

    Args:
        data (RowsLike): A Dataset, a DataFrame, or a single row mapping.
        features (Sequence[FeatureSpec]): The schema recorded at fit time.

    Returns:
        np.ndarray: Encoded float64 matrix with one column per feature.

    Raises:
        SchemaMismatchError: If a categorical value is outside the recorded
            level set or a column's dtype disagrees with its feature kind.
    """
    if isinstance(data, Dataset):
        if data.features == tuple(features):
            return data.feature_matrix
        return _encode_frame(data.frame, features, allow_missing_columns=True)
    return _encode_frame(as_frame(data), features, allow_missing_columns=True)


def as_frame(data: pl.DataFrame | Mapping[str, Any]) -> pl.DataFrame:
    """Coerce a DataFrame or a single row mapping into a DataFrame.

    Args:
        data (pl.DataFrame | Mapping[str, Any]): Table or one row.

    Returns:
        pl.DataFrame: The table (one row for a mapping).
    """
    if isinstance(data, pl.DataFrame):
        return data
    return pl.from_dicts([dict(data)])


def apply_response_transform(
    values: np.ndarray,
    transform: ResponseTransform,
    *,
    response: str = "response",
) -> np.ndarray:
    """Apply a response transform to raw response values.

    Args:
        values (np.ndarray): Raw response values.
        transform (ResponseTransform): `"identity"` or `"log"`.
        response (str): Response name used in error messages.

    Returns:
        np.ndarray: Transformed float64 values.

    Raises:
        NonPositiveResponseError: If `transform="log"` and any value is <= 0.
        ValueError: If `transform` is not recognized.
    """
    values = np.asarray(values, dtype=np.float64)
    if transform == "identity":
        return values
    if transform == "log":
        non_positive = int(np.count_nonzero(values <= 0.0))
        if non_positive:
            raise NonPositiveResponseError(response, non_positive)
        return np.log(values)
    raise ValueError(f"Unknown response transform: {transform!r}")


# ---------------------------------------------------------------------------
# Private helpers -- Column classification
# ---------------------------------------------------------------------------

_DTYPE_TO_FEATURE_KIND: Final[dict[type[pl.DataType], FeatureKind]] = {
    pl.Int8: "continuous",
    pl.Int16: "continuous",
    pl.Int32: "continuous",
    pl.Int64: "continuous",
    pl.UInt8: "continuous",
    pl.UInt16: "continuous",
    pl.UInt32: "continuous",
    pl.UInt64: "continuous",
    pl.Float32: "continuous",
    pl.Float64: "continuous",
    pl.Boolean: "nominal",
    pl.String: "nominal",
    pl.Categorical: "nominal",
    pl.Enum: "ordered",
}

_CATEGORICAL_DTYPES: Final[tuple[type[pl.DataType], ...]] = (pl.String, pl.Categorical, pl.Enum, pl.Boolean)


def _classify_dtype(dtype: pl.DataType) -> FeatureKind | None:
    """Map a polars dtype to its default feature kind.

    Lookups use the dtype class, so parameterized dtypes such as
    `Enum([...])` resolve the same way as their bare class.

    Args:
        dtype (pl.DataType): Column dtype.

    Returns:
        FeatureKind | None: The default kind, or `None` if unsupported.
    """
    return _DTYPE_TO_FEATURE_KIND.get(dtype.base_type())


def _infer_feature_spec(
    series: pl.Series,
    *,
    kind: FeatureKind | None,
    levels: Sequence[Any] | None,
) -> FeatureSpec:
    """Build the FeatureSpec for one column.

    Args:
        series (pl.Series): The feature column.
        kind (FeatureKind | None): Declared kind, or `None` to infer.
        levels (Sequence[Any] | None): Declared level order, or `None` to derive.

    Returns:
        FeatureSpec: The column's spec.

    Raises:
        UnsupportedColumnTypeError: If the dtype is unsupported or incompatible
            with the declared kind.
    """
    inferred = _classify_dtype(series.dtype)
    if inferred is None:
        raise UnsupportedColumnTypeError(series.name, str(series.dtype))
    resolved_kind = kind or inferred
    if resolved_kind == "continuous":
        if not series.dtype.is_numeric():
            raise UnsupportedColumnTypeError(series.name, str(series.dtype), reason="continuous features need numbers")
        return FeatureSpec(name=series.name, kind="continuous")

    if levels is not None:
        level_labels = tuple(str(level) for level in levels)
    elif isinstance(series.dtype, pl.Enum):
        level_labels = tuple(series.dtype.categories.to_list())
    elif series.dtype.is_numeric():
        # Numeric levels keep numeric order, not lexical order.
        level_labels = tuple(series.drop_nulls().unique().sort().cast(pl.String).to_list())
    else:
        level_labels = tuple(series.drop_nulls().cast(pl.String).unique().sort().to_list())
    return FeatureSpec(name=series.name, kind=resolved_kind, levels=level_labels)


# ---------------------------------------------------------------------------
# Private helpers -- Validation
# ---------------------------------------------------------------------------


def _validate_columns(frame: pl.DataFrame, response: str, feature_names: Sequence[str]) -> None:
    """Check that the response and feature columns exist and are distinct."""
    missing = [name for name in [response, *feature_names] if name not in frame.columns]
    if missing:
        raise ColumnsNotFoundError(missing_columns=missing, available_columns=frame.columns)
    if len(set(feature_names)) != len(feature_names):
        raise DuplicateColumnsError(columns=list(feature_names))
    if response in feature_names:
        raise UnsupportedColumnTypeError(
            response, str(frame[response].dtype), reason="the response cannot also be a feature"
        )


def _validate_response_dtype(frame: pl.DataFrame, response: str) -> None:
    """Check that the response column is numeric."""
    dtype = frame[response].dtype
    if not dtype.is_numeric():
        raise UnsupportedColumnTypeError(response, str(dtype), reason="the response must be numeric")


def _validate_no_missing(frame: pl.DataFrame, columns: Sequence[str]) -> None:
    """Raise MissingValuesError if any consumed column holds nulls or NaNs."""
    null_counts: dict[str, int] = {}
    for name in columns:
        series = frame[name]
        count = series.null_count()
        if series.dtype.is_float():
            count += int(series.is_nan().sum() or 0)
        if count:
            null_counts[name] = count
    if null_counts:
        raise MissingValuesError(null_counts)


# ---------------------------------------------------------------------------
# Private helpers -- Encoding
# ---------------------------------------------------------------------------


def _encode_frame(
    frame: pl.DataFrame,
    features: Sequence[FeatureSpec],
    *,
    allow_missing_columns: bool = False,
) -> np.ndarray:
    """Encode feature columns into a float64 matrix.

    Args:
        frame (pl.DataFrame): Source table.
        features (Sequence[FeatureSpec]): Schema to encode against.
        allow_missing_columns (bool): Encode absent columns as NaN instead of
            raising.

    Returns:
        np.ndarray: Matrix with shape `(frame.height, len(features))`.
    """
    columns: list[np.ndarray] = []
    for spec in features:
        if spec.name not in frame.columns:
            if not allow_missing_columns:
                raise ColumnsNotFoundError(missing_columns=[spec.name], available_columns=frame.columns)
            columns.append(np.full(frame.height, np.nan))
            continue
        columns.append(_encode_column(frame[spec.name], spec))
    if not columns:
        return np.empty((frame.height, 0), dtype=np.float64)
    return np.column_stack(columns).astype(np.float64, copy=False)


def _encode_column(series: pl.Series, spec: FeatureSpec) -> np.ndarray:
    """Encode one column against its spec.

    Args:
        series (pl.Series): The column values.
        spec (FeatureSpec): Target feature spec.

    Returns:
        np.ndarray: 1-D float64 codes; nulls become NaN.

    Raises:
        SchemaMismatchError: On dtype/kind disagreement or unknown levels.
    """
    # An all-null column (e.g. a `None` in a row mapping) carries no type; treat it as missing.
    if series.dtype == pl.Null:
        return np.full(series.len(), np.nan)
    if spec.kind == "continuous":
        if not series.dtype.is_numeric():
            raise SchemaMismatchError(spec.name, f"expected a numeric column, got {series.dtype}")
        return series.cast(pl.Float64).to_numpy()

    if not (series.dtype.is_numeric() or isinstance(series.dtype, _CATEGORICAL_DTYPES)):
        raise SchemaMismatchError(spec.name, f"dtype {series.dtype} cannot hold categorical levels")
    levels = list(spec.category_levels)
    labels = series.cast(pl.String)
    present = labels.drop_nulls()
    unknown = present.filter(~present.is_in(levels)).unique().sort().to_list()
    if unknown:
        raise SchemaMismatchError(spec.name, f"values outside the fitted level set: {unknown}")
    codes = labels.replace_strict(
        levels,
        list(range(len(levels))),
        default=None,
        return_dtype=pl.Float64,
    )
    return codes.to_numpy()
