"""Custom exceptions for the cost model harness.

This module defines exceptions for dataset construction and for model fitting
and prediction:

Dataset validation exceptions (subclass ValueError):
- ColumnsNotFoundError: Raised when the response or feature columns do not exist.
- DuplicateColumnsError: Raised when duplicate feature names are provided.
- MissingValuesError: Raised when consumed columns contain nulls or NaNs.
- UnsupportedColumnTypeError: Raised when a column dtype cannot be used as a feature.
- NonPositiveResponseError: Raised when a log transform meets a non-positive response.

Modeling exceptions (subclass CostkitError):
- CostkitError: Base class for all fitting and prediction errors. Catch this to
  handle any harness failure.
- SchemaMismatchError: Raised when prediction rows disagree with the fitted schema.
- EmptyTrainingSetError: Raised when an estimator is fit on zero rows.
- RankDeficientError: Raised when a linear design matrix is not full column rank.
- InvalidConfigurationError: Raised for out-of-range hyperparameters.
"""

from __future__ import annotations

from collections.abc import Sequence


class ColumnsNotFoundError(ValueError):
    """Raised when requested columns do not exist in a DataFrame.

    Attributes:
        missing_columns (list[str]): Column names that were not found.
        available_columns (list[str]): Column names present in the DataFrame.

    Examples:
        >>> err = ColumnsNotFoundError(
        ...     missing_columns=["slope", "basin"],
        ...     available_columns=["cost", "n_worksites"],
        ... )
        >>> err.missing_columns
        ['slope', 'basin']
    """

    missing_columns: list[str]
    available_columns: list[str]

    def __init__(
        self,
        missing_columns: list[str],
        available_columns: list[str],
    ) -> None:
        """Initialize ColumnsNotFoundError.

        Args:
            missing_columns (list[str]): Column names not found in the DataFrame.
            available_columns (list[str]): Column names present in the DataFrame.
        """
        super().__init__(f"Columns not found in DataFrame: {sorted(missing_columns)}")
        self.missing_columns = missing_columns
        self.available_columns = available_columns


class DuplicateColumnsError(ValueError):
    """Raised when duplicate feature names are provided.

    Attributes:
        columns (list[str]): The column list that contains duplicates.
        duplicate_columns (list[str]): The specific column names that are
            duplicated (each listed once).

    Examples:
        >>> err = DuplicateColumnsError(columns=["slope", "slope", "basin"])
        >>> err.duplicate_columns
        ['slope']
    """

    columns: list[str]
    duplicate_columns: list[str]

    def __init__(self, columns: list[str]) -> None:
        """Initialize DuplicateColumnsError.

        Args:
            columns (list[str]): The column list containing duplicates.
        """
        seen: set[str] = set()
        self.duplicate_columns = []
        for col in columns:
            if col in seen and col not in self.duplicate_columns:
                self.duplicate_columns.append(col)
            seen.add(col)
        super().__init__(f"Duplicate feature names are not allowed: {self.duplicate_columns}")
        self.columns = columns


class MissingValuesError(ValueError):
    """Raised when columns consumed by the harness contain missing values.

    Rows with missing values must be dropped upstream; the harness never imputes.

    Attributes:
        null_counts (dict[str, int]): Mapping of column name to the number of
            null or NaN entries found.
    """

    null_counts: dict[str, int]

    def __init__(self, null_counts: dict[str, int]) -> None:
        """Initialize MissingValuesError.

        Args:
            null_counts (dict[str, int]): Per-column missing value counts.
        """
        super().__init__(f"Columns contain missing values: {dict(sorted(null_counts.items()))}")
        self.null_counts = null_counts


class UnsupportedColumnTypeError(ValueError):
    """Raised when a column's dtype cannot be used as the declared feature kind.

    Attributes:
        column (str): The offending column name.
        dtype (str): String form of the column's polars dtype.
    """

    column: str
    dtype: str

    def __init__(self, column: str, dtype: str, *, reason: str = "unsupported dtype") -> None:
        """Initialize UnsupportedColumnTypeError.

        Args:
            column (str): The offending column name.
            dtype (str): String form of the column's dtype.
            reason (str): Short explanation appended to the message.
        """
        super().__init__(f"Column '{column}' with dtype {dtype} cannot be used: {reason}")
        self.column = column
        self.dtype = dtype


class NonPositiveResponseError(ValueError):
    """Raised when a log response transform meets zero or negative responses.

    Attributes:
        response (str): Name of the response column.
        count (int): Number of non-positive values.
    """

    response: str
    count: int

    def __init__(self, response: str, count: int) -> None:
        """Initialize NonPositiveResponseError.

        Args:
            response (str): Name of the response column.
            count (int): Number of non-positive values.
        """
        super().__init__(f"Response '{response}' has {count} non-positive values; log transform is undefined")
        self.response = response
        self.count = count


class CostkitError(Exception):
    """Base exception for all model fitting and prediction errors.

    Catching this exception will catch every harness error raised while
    fitting, predicting, or scoring an estimator.
    """

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Representation including the class name and message.
        """
        return f"{self.__class__.__name__}(message={str(self)!r})"


class SchemaMismatchError(CostkitError):
    """Raised when prediction rows disagree with the schema a model was fit on.

    Covers a feature missing from a row that reaches a split on it, a
    categorical value outside the level set recorded at fit time, and a column
    whose dtype does not match the fitted feature kind. Values are never
    silently coerced.

    Attributes:
        feature (str): The feature whose values could not be used.
        detail (str): Human-readable description of the mismatch.

    Examples:
        >>> err = SchemaMismatchError("basin", "unknown levels ['Puget Sound']")
        >>> err.feature
        'basin'
    """

    feature: str
    detail: str

    def __init__(self, feature: str, detail: str) -> None:
        """Initialize SchemaMismatchError.

        Args:
            feature (str): The feature whose values could not be used.
            detail (str): Human-readable description of the mismatch.
        """
        super().__init__(f"Schema mismatch on feature '{feature}': {detail}")
        self.feature = feature
        self.detail = detail

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Representation including the feature and detail.
        """
        return f"{self.__class__.__name__}(feature={self.feature!r}, detail={self.detail!r})"


class EmptyTrainingSetError(CostkitError):
    """Raised when an estimator is fit on a dataset with zero rows."""

    def __init__(self, estimator: str) -> None:
        """Initialize EmptyTrainingSetError.

        Args:
            estimator (str): Name of the estimator that was being fit.
        """
        super().__init__(f"{estimator} cannot be fit on an empty training set")
        self.estimator = estimator


class RankDeficientError(CostkitError):
    """Raised when a linear design matrix is not of full column rank.

    The usual cause is a categorical level that never occurs in the training
    partition, which leaves its indicator column identically zero.

    Attributes:
        rank (int): Numerical rank of the design matrix.
        n_columns (int): Number of design columns.
        empty_columns (list[str]): Design terms that are identically zero.
    """

    rank: int
    n_columns: int
    empty_columns: list[str]

    def __init__(self, rank: int, n_columns: int, empty_columns: Sequence[str] = ()) -> None:
        """Initialize RankDeficientError.

        Args:
            rank (int): Numerical rank of the design matrix.
            n_columns (int): Number of design columns.
            empty_columns (Sequence[str]): Design terms that are identically zero.
        """
        message = f"Design matrix has rank {rank} < {n_columns} columns"
        if empty_columns:
            message += f"; all-zero terms: {list(empty_columns)}"
        super().__init__(message)
        self.rank = rank
        self.n_columns = n_columns
        self.empty_columns = list(empty_columns)

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Representation including rank, column count and empty columns.
        """
        return (
            f"{self.__class__.__name__}("
            f"rank={self.rank!r}, n_columns={self.n_columns!r}, "
            f"empty_columns={self.empty_columns!r})"
        )


class InvalidConfigurationError(CostkitError, ValueError):
    """Raised when estimator hyperparameters are out of range or inconsistent.

    Examples include `features_per_split` larger than the available feature
    count, a non-positive `n_trees` or `learning_rate`, or more
    cross-validation folds than training rows.

    Attributes:
        parameter (str | None): Name of the offending parameter, when known.
    """

    parameter: str | None

    def __init__(self, message: str, *, parameter: str | None = None) -> None:
        """Initialize InvalidConfigurationError.

        Args:
            message (str): Description of the configuration problem.
            parameter (str | None): Name of the offending parameter.
        """
        super().__init__(message)
        self.parameter = parameter

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Representation including message and parameter.
        """
        return f"{self.__class__.__name__}(message={str(self)!r}, parameter={self.parameter!r})"
