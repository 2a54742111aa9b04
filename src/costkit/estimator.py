"""Structural interfaces shared by every estimator in the harness.

The estimator family is closed (linear, single tree, bagged and boosted
ensembles), so the shared surface is expressed as protocols rather than a
base class: anything with `fit`, `predict` and `response_transform` can be
scored, and anything that also exposes `member_trees` can be credited with
feature importances.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, Self, runtime_checkable

if TYPE_CHECKING:
    import numpy as np

    from costkit.dataset import Dataset, FeatureSpec, ResponseTransform, RowsLike
    from costkit.tree.models import TreeNode


@runtime_checkable
class Estimator(Protocol):
    """A fitted-or-fittable cost model.

    Attributes:
        response_transform (ResponseTransform): Scale the estimator is fit on
            and predicts on; evaluation transforms the truth the same way.
    """

    response_transform: ResponseTransform

    def fit(self, dataset: Dataset) -> Self:
        """Fit the estimator to a training dataset and return it."""
        ...

    def predict(self, data: RowsLike) -> np.ndarray:
        """Predict one value per row on the estimator's response scale."""
        ...


@runtime_checkable
class TreeEnsemble(Estimator, Protocol):
    """An estimator whose predictions come from one or more regression trees."""

    @property
    def features_(self) -> tuple[FeatureSpec, ...]:
        """Feature schema recorded at fit time."""
        ...

    def member_trees(self) -> tuple[TreeNode, ...]:
        """Return the root of every tree contributing to predictions."""
        ...
