"""Recursive binary partitioning and tree prediction.

`grow_tree` builds one regression tree on an encoded feature matrix by
repeatedly choosing the split with the largest reduction in within-node sum
of squared error (SSE):

- continuous and ordered features: candidate thresholds are midpoints between
  consecutive distinct sorted values, scored in one pass with prefix sums;
- nominal features: every bipartition of the levels present at the node is
  scored when there are at most `max_exhaustive_levels` of them, otherwise
  levels are ordered by mean response and only prefix partitions are scored,
  which finds the same optimum for squared error.

Ties go to the first feature in schema order, then to the smallest threshold
(or the first bipartition in enumeration order). Gains closer than
`GAIN_TIE_RTOL` times the node SSE count as tied, because prefix sums taken
in different row orders round differently. When a random feature subset
is requested it is redrawn at every split and kept in schema order, so a
fixed generator state gives bit-identical trees.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
from loguru import logger

from costkit.config import TreeConfig
from costkit.dataset import FeatureSpec
from costkit.exceptions import EmptyTrainingSetError, InvalidConfigurationError, SchemaMismatchError
from costkit.tree.models import InternalNode, LeafNode, SplitRule, TreeNode

# Gains closer than this fraction of the node SSE are treated as equal.
GAIN_TIE_RTOL: float = 1e-9

# ---------------------------------------------------------------------------
# Public interface
# ---------------------------------------------------------------------------


def grow_tree(
    feature_matrix: np.ndarray,
    response: np.ndarray,
    features: Sequence[FeatureSpec],
    config: TreeConfig,
    *,
    rng: np.random.Generator | None = None,
) -> TreeNode:
    """Grow a regression tree on encoded training data.

    Args:
        feature_matrix (np.ndarray): Encoded features, shape `(n_rows, n_features)`.
        response (np.ndarray): Response vector, shape `(n_rows,)`.
        features (Sequence[FeatureSpec]): Schema parallel to the matrix columns.
        config (TreeConfig): Growth controls.
        rng (np.random.Generator | None): Generator for per-split feature
            subsets; required when `config.features_per_split` is set.

    Returns:
        TreeNode: The root of the grown tree.

    Raises:
        EmptyTrainingSetError: If there are no rows.
        InvalidConfigurationError: If `features_per_split` exceeds the feature
            count or no generator is given for it.
    """
    n_rows = feature_matrix.shape[0]
    if n_rows == 0:
        raise EmptyTrainingSetError("RegressionTree")
    if config.features_per_split is not None:
        if config.features_per_split > len(features):
            raise InvalidConfigurationError(
                f"features_per_split={config.features_per_split} exceeds the {len(features)} available features",
                parameter="features_per_split",
            )
        if rng is None:
            raise InvalidConfigurationError(
                "a random generator is required when features_per_split is set", parameter="features_per_split"
            )
    builder = _TreeBuilder(
        feature_matrix=feature_matrix,
        response=np.asarray(response, dtype=np.float64),
        features=tuple(features),
        config=config,
        rng=rng,
    )
    root = builder.build(np.arange(n_rows), depth=0)
    logger.trace("Tree grown", n_rows=n_rows, n_leaves=builder.n_leaves)
    return root


def predict_tree(root: TreeNode, feature_matrix: np.ndarray) -> np.ndarray:
    """Route encoded rows through a tree and return their leaf predictions.

    Args:
        root (TreeNode): Fitted tree.
        feature_matrix (np.ndarray): Encoded rows in the tree's schema.

    Returns:
        np.ndarray: One prediction per row.

    Raises:
        SchemaMismatchError: If a row reaching a split has no value (NaN) for
            the split feature.
    """
    predictions = np.empty(feature_matrix.shape[0], dtype=np.float64)
    _route(root, feature_matrix, np.arange(feature_matrix.shape[0]), predictions)
    return predictions


def node_value(values: np.ndarray, statistic: str) -> float:
    """Compute a leaf value for a set of responses.

    Args:
        values (np.ndarray): Responses routed to the node.
        statistic (str): `"median"` or `"mean"`.

    Returns:
        float: The leaf value.
    """
    if statistic == "median":
        return float(np.median(values))
    return float(np.mean(values))


# ---------------------------------------------------------------------------
# Private helpers -- Tree construction
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _SplitCandidate:
    """Best split found on one feature at one node."""

    gain: float
    threshold: float | None = None
    pass_codes: frozenset[int] | None = None


def _first_near_max(gains: np.ndarray, node_sse: float) -> int:
    """Index of the first gain tied with the maximum."""
    top = float(gains.max())
    return int(np.flatnonzero(gains >= top - GAIN_TIE_RTOL * node_sse)[0])


def _sse(values: np.ndarray) -> float:
    """Sum of squared deviations from the mean."""
    if values.size == 0:
        return 0.0
    centered = values - values.mean()
    return float(np.dot(centered, centered))


class _TreeBuilder:
    """Depth-first recursive tree builder holding the leaf budget."""

    def __init__(
        self,
        *,
        feature_matrix: np.ndarray,
        response: np.ndarray,
        features: tuple[FeatureSpec, ...],
        config: TreeConfig,
        rng: np.random.Generator | None,
    ) -> None:
        self.feature_matrix = feature_matrix
        self.response = response
        self.features = features
        self.config = config
        self.rng = rng
        self.min_gain = config.complexity * _sse(response)
        self.n_leaves = 1

    def build(self, rows: np.ndarray, depth: int) -> TreeNode:
        y = self.response[rows]
        sse = _sse(y)
        prediction = node_value(y, self.config.leaf_statistic)
        leaf = LeafNode(prediction=prediction, n_samples=int(rows.size), sse=sse, depth=depth)

        if not self._may_split(rows, y, depth):
            return leaf
        best = self._best_split(rows, y)
        if best is None:
            return leaf
        rule, pass_mask = best
        pass_rows = rows[pass_mask]
        fail_rows = rows[~pass_mask]
        # Recomputed directly from the children so stored gains carry no prefix-sum error.
        improvement = sse - _sse(y[pass_mask]) - _sse(y[~pass_mask])
        if improvement <= 0.0 or improvement < self.min_gain:
            return leaf

        self.n_leaves += 1
        pass_child = self.build(pass_rows, depth + 1)
        fail_child = self.build(fail_rows, depth + 1)
        return InternalNode(
            rule=rule,
            pass_child=pass_child,
            fail_child=fail_child,
            prediction=prediction,
            n_samples=int(rows.size),
            sse=sse,
            improvement=improvement,
            depth=depth,
        )

    def _may_split(self, rows: np.ndarray, y: np.ndarray, depth: int) -> bool:
        config = self.config
        if rows.size < config.min_samples_split or rows.size < 2 * config.min_samples_leaf:
            return False
        if depth >= config.max_depth:
            return False
        if config.max_leaves is not None and self.n_leaves >= config.max_leaves:
            return False
        # Fewer than two distinct responses leaves nothing to explain.
        return bool(np.ptp(y) > 0.0)

    def _candidate_features(self) -> np.ndarray:
        n_features = len(self.features)
        k = self.config.features_per_split
        # grow_tree refuses a feature subset without a generator.
        if k is None or self.rng is None:
            return np.arange(n_features)
        return np.sort(self.rng.choice(n_features, size=k, replace=False))

    def _best_split(self, rows: np.ndarray, y: np.ndarray) -> tuple[SplitRule, np.ndarray] | None:
        centered = y - y.mean()
        tie_margin = GAIN_TIE_RTOL * float(np.dot(centered, centered))
        best_index = -1
        best: _SplitCandidate | None = None
        for feature_index in self._candidate_features():
            spec = self.features[feature_index]
            values = self.feature_matrix[rows, feature_index]
            if spec.kind == "nominal":
                candidate = _best_subset_split(
                    values,
                    centered,
                    n_levels=len(spec.category_levels),
                    min_leaf=self.config.min_samples_leaf,
                    max_exhaustive=self.config.max_exhaustive_levels,
                )
            else:
                candidate = _best_threshold_split(values, centered, min_leaf=self.config.min_samples_leaf)
            # A later feature must beat the incumbent by more than rounding noise.
            if candidate is not None and (best is None or candidate.gain > best.gain + tie_margin):
                best = candidate
                best_index = int(feature_index)

        if best is None:
            return None
        spec = self.features[best_index]
        if best.pass_codes is not None:
            rule = SplitRule(feature=spec.name, feature_index=best_index, kind="subset", pass_codes=best.pass_codes)
        else:
            rule = SplitRule(feature=spec.name, feature_index=best_index, kind="threshold", threshold=best.threshold)
        return rule, rule.passes(self.feature_matrix[rows, best_index])


def _best_threshold_split(values: np.ndarray, y: np.ndarray, *, min_leaf: int) -> _SplitCandidate | None:
    """Find the SSE-optimal midpoint threshold for a continuous or ordered feature.

    Args:
        values (np.ndarray): Feature values at the node.
        y (np.ndarray): Mean-centered responses at the node.
        min_leaf (int): Minimum rows on each side.

    Returns:
        _SplitCandidate | None: The best threshold, or `None` if no admissible split exists.
    """
    n = values.size
    order = np.argsort(values, kind="stable")
    sorted_values = values[order]
    sorted_y = y[order]

    cum_y = np.cumsum(sorted_y)[:-1]
    cum_y2 = np.cumsum(sorted_y * sorted_y)[:-1]
    total_y = float(sorted_y.sum())
    total_y2 = float(np.dot(sorted_y, sorted_y))

    n_left = np.arange(1, n, dtype=np.float64)
    n_right = n - n_left
    admissible = (sorted_values[:-1] != sorted_values[1:]) & (n_left >= min_leaf) & (n_right >= min_leaf)
    if not admissible.any():
        return None

    sse_left = cum_y2 - cum_y * cum_y / n_left
    sse_right = (total_y2 - cum_y2) - (total_y - cum_y) ** 2 / n_right
    node_sse = total_y2 - total_y * total_y / n
    gains = np.where(admissible, node_sse - sse_left - sse_right, -np.inf)
    best = _first_near_max(gains, node_sse)
    threshold = 0.5 * (sorted_values[best] + sorted_values[best + 1])
    return _SplitCandidate(gain=float(gains[best]), threshold=float(threshold))


def _best_subset_split(
    codes: np.ndarray,
    y: np.ndarray,
    *,
    n_levels: int,
    min_leaf: int,
    max_exhaustive: int,
) -> _SplitCandidate | None:
    """Find the SSE-optimal bipartition of the levels of a nominal feature.

    Levels absent from the node join whichever branch holds more rows.

    Args:
        codes (np.ndarray): Level codes at the node.
        y (np.ndarray): Mean-centered responses at the node.
        n_levels (int): Size of the feature's full level set.
        min_leaf (int): Minimum rows on each side.
        max_exhaustive (int): Largest present-level count searched exhaustively.

    Returns:
        _SplitCandidate | None: The best partition, or `None` if no admissible split exists.
    """
    present, inverse = np.unique(codes, return_inverse=True)
    k = present.size
    if k < 2:
        return None
    counts = np.bincount(inverse, minlength=k).astype(np.float64)
    sums = np.bincount(inverse, weights=y, minlength=k)
    sums2 = np.bincount(inverse, weights=y * y, minlength=k)

    if k <= max_exhaustive:
        membership = _bipartition_membership(k)
    else:
        means = sums / counts
        by_mean = np.argsort(means, kind="stable")
        membership = np.zeros((k - 1, k), dtype=np.float64)
        for size in range(1, k):
            membership[size - 1, by_mean[:size]] = 1.0

    n_pass = membership @ counts
    n_fail = counts.sum() - n_pass
    sum_pass = membership @ sums
    sum_fail = sums.sum() - sum_pass
    sum2_total = sums2.sum()
    admissible = (n_pass >= min_leaf) & (n_fail >= min_leaf)
    if not admissible.any():
        return None

    total = sums.sum()
    n_total = counts.sum()
    with np.errstate(divide="ignore", invalid="ignore"):
        sse_split = sum2_total - sum_pass**2 / n_pass - sum_fail**2 / n_fail
    node_sse = sum2_total - total * total / n_total
    gains = np.where(admissible, node_sse - sse_split, -np.inf)
    best = _first_near_max(gains, node_sse)

    pass_levels = {int(code) for code in present[membership[best] > 0.0]}
    absent = set(range(n_levels)) - {int(code) for code in present}
    if n_pass[best] >= n_fail[best]:
        pass_levels |= absent
    return _SplitCandidate(gain=float(gains[best]), pass_codes=frozenset(pass_levels))


def _bipartition_membership(k: int) -> np.ndarray:
    """Enumerate the non-trivial bipartitions of `k` levels.

    The first level always sits on the pass side, so each unordered
    bipartition appears once; row `m` puts level `i + 1` on the pass side when
    bit `i` of `m` is set. The all-pass row is excluded.

    Args:
        k (int): Number of levels.

    Returns:
        np.ndarray: 0/1 matrix of shape `(2 ** (k - 1) - 1, k)`.
    """
    masks = np.arange(2 ** (k - 1) - 1)
    bits = (masks[:, None] >> np.arange(k - 1)[None, :]) & 1
    return np.column_stack([np.ones(masks.size), bits]).astype(np.float64)


# ---------------------------------------------------------------------------
# Private helpers -- Prediction
# ---------------------------------------------------------------------------


def _route(node: TreeNode, feature_matrix: np.ndarray, rows: np.ndarray, out: np.ndarray) -> None:
    """Recursively send rows down the tree, writing leaf values into `out`."""
    if isinstance(node, LeafNode):
        out[rows] = node.prediction
        return
    if rows.size == 0:
        return
    values = feature_matrix[rows, node.rule.feature_index]
    if np.isnan(values).any():
        raise SchemaMismatchError(node.rule.feature, "a row reaching a split on this feature has no value for it")
    mask = node.rule.passes(values)
    _route(node.pass_child, feature_matrix, rows[mask], out)
    _route(node.fail_child, feature_matrix, rows[~mask], out)
