"""Impurity-reduction feature importance for tree-based estimators.

Every internal node credits its SSE reduction to the feature it splits on.
A single tree's importance is the sum over its nodes; an ensemble's is the
sum over its member trees, without dividing by the member count. Boosted
members are credited in residual units, not scaled by the learning rate.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from costkit.dataset import FeatureSpec
from costkit.estimator import TreeEnsemble
from costkit.tree.models import TreeNode, iter_internal_nodes


def tree_importances(tree: TreeNode, feature_names: Sequence[str]) -> dict[str, float]:
    """Sum SSE reductions per feature over one tree.

    Args:
        tree (TreeNode): Root of a fitted tree.
        feature_names (Sequence[str]): Every feature in the schema.

    Returns:
        dict[str, float]: One entry per feature; unused features map to 0.0.

    Examples:
        >>> from costkit.tree.models import LeafNode
        >>> tree_importances(LeafNode(prediction=1.0, n_samples=3, sse=0.0), ["slope"])
        {'slope': 0.0}
    """
    scores = dict.fromkeys(feature_names, 0.0)
    for node in iter_internal_nodes(tree):
        scores[node.rule.feature] += node.improvement
    return scores


def importances(estimator: TreeEnsemble) -> dict[str, float]:
    """Aggregate feature importances over every tree of an estimator.

    Args:
        estimator (TreeEnsemble): A fitted tree, bagged or boosted ensemble.
            For a pruned tree the pruned subtree is used.

    Returns:
        dict[str, float]: Summed SSE reduction per feature in schema order.
    """
    names = [spec.name for spec in estimator.features_]
    per_tree = [tree_importances(tree, names) for tree in estimator.member_trees()]
    return _sum_scores(per_tree, estimator.features_)


def relative_importances(scores: Mapping[str, float]) -> dict[str, float]:
    """Rescale importances to percent of their total.

    Args:
        scores (Mapping[str, float]): Raw importances.

    Returns:
        dict[str, float]: Percentages summing to 100, or all zeros when
            nothing was credited.
    """
    total = sum(scores.values())
    if total <= 0.0:
        return dict.fromkeys(scores, 0.0)
    return {name: 100.0 * value / total for name, value in scores.items()}


def _sum_scores(per_tree: Sequence[Mapping[str, float]], features: Sequence[FeatureSpec]) -> dict[str, float]:
    """Reduce per-tree importance maps into one."""
    totals = dict.fromkeys((spec.name for spec in features), 0.0)
    for scores in per_tree:
        for name, value in scores.items():
            totals[name] += value
    return totals
