"""Minimal cost-complexity pruning with cross-validated subtree selection.

Weakest-link pruning repeatedly collapses the internal node(s) with the
smallest per-leaf increase in training SSE,

    g(t) = (R(t) - R(T_t)) / (|T_t| - 1),

which yields a nested sequence of subtrees T_0 (the full tree) down to the
root leaf, with complexity thresholds 0 = alpha_0 < alpha_1 < ... < alpha_m.
Thresholds are reported relative to the root SSE, like rpart's `cp`, so the
same value can prune trees grown on folds of different size.

Subtree k is then scored at the geometric mean of its threshold and the next
one: each fold grows its own tree, prunes it at that relative complexity, and
predicts its held-out rows. The CV error of a subtree is the mean squared
held-out error over all training rows, with standard error `std / sqrt(n)`.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass

import numpy as np
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from costkit.config import PruningRule
from costkit.tree.models import InternalNode, TreeNode, collapse, count_leaves, iter_internal_nodes, subtree_risk

# Relative tolerance when collapsing every node tied for the weakest link.
_WEAKEST_LINK_RTOL: float = 1e-10

# ---------------------------------------------------------------------------
# Public models
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PruningStep:
    """One subtree of the nested pruning sequence.

    Attributes:
        alpha (float): Absolute complexity threshold at which this subtree
            becomes optimal.
        tree (TreeNode): The subtree.
    """

    alpha: float
    tree: TreeNode


class ComplexityRow(BaseModel):
    """One row of a fitted tree's complexity table.

    Attributes:
        complexity (float): Relative complexity threshold (alpha / root SSE).
        n_splits (int): Number of internal nodes of the subtree.
        n_leaves (int): Number of leaves of the subtree.
        relative_error (float): Training SSE of the subtree over the root SSE.
        cv_error (float): Mean squared held-out error.
        cv_std_error (float): Standard error of `cv_error`.
    """

    model_config = ConfigDict(frozen=True)

    complexity: float = Field(ge=0.0, description="Relative complexity threshold (alpha / root SSE).")
    n_splits: int = Field(ge=0, description="Number of internal nodes of the subtree.")
    n_leaves: int = Field(ge=1, description="Number of leaves of the subtree.")
    relative_error: float = Field(ge=0.0, description="Training SSE of the subtree over the root SSE.")
    cv_error: float = Field(ge=0.0, description="Mean squared held-out error across folds.")
    cv_std_error: float = Field(ge=0.0, description="Standard error of the cross-validated error.")


# ---------------------------------------------------------------------------
# Public interface
# ---------------------------------------------------------------------------


def pruning_sequence(root: TreeNode) -> list[PruningStep]:
    """Build the nested weakest-link subtree sequence of a tree.

    Args:
        root (TreeNode): The full tree.

    Returns:
        list[PruningStep]: Steps with strictly increasing `alpha`, starting
            with the full tree at `alpha=0` and ending with the root leaf.
    """
    steps = [PruningStep(alpha=0.0, tree=root)]
    current = root
    while isinstance(current, InternalNode):
        alpha = min(_link_strength(node) for node in iter_internal_nodes(current))
        current = _prune_weakest(current, alpha * (1.0 + _WEAKEST_LINK_RTOL))
        if alpha <= steps[-1].alpha:
            # Numerically tied with the previous threshold: keep only the smaller tree.
            steps[-1] = PruningStep(alpha=steps[-1].alpha, tree=current)
        else:
            steps.append(PruningStep(alpha=alpha, tree=current))
    return steps


def subtree_at(steps: Sequence[PruningStep], alpha: float) -> TreeNode:
    """Return the optimal subtree for an absolute complexity value.

    Args:
        steps (Sequence[PruningStep]): Output of `pruning_sequence`.
        alpha (float): Absolute complexity value.

    Returns:
        TreeNode: The smallest subtree whose threshold does not exceed `alpha`.
    """
    selected = steps[0].tree
    for step in steps:
        if step.alpha > alpha:
            break
        selected = step.tree
    return selected


def prune_tree(root: TreeNode, complexity: float) -> TreeNode:
    """Prune a tree at a relative complexity value.

    Args:
        root (TreeNode): The full tree.
        complexity (float): Complexity relative to the root SSE.

    Returns:
        TreeNode: The pruned subtree.
    """
    return subtree_at(pruning_sequence(root), complexity * root.sse)


def grid_values(steps: Sequence[PruningStep], root_sse: float) -> list[float]:
    """Return the relative complexity at which each subtree is cross-validated.

    Subtree k is represented by the geometric mean of its threshold and the
    next threshold; the root leaf is represented by infinity.

    Args:
        steps (Sequence[PruningStep]): Output of `pruning_sequence`.
        root_sse (float): SSE of the full tree's root.

    Returns:
        list[float]: One relative complexity per step.
    """
    thresholds = [step.alpha / root_sse if root_sse > 0.0 else 0.0 for step in steps]
    upper = [*thresholds[1:], math.inf]
    return [math.sqrt(low * high) if math.isfinite(high) else math.inf for low, high in zip(thresholds, upper)]


def cross_validate_sequence(
    steps: Sequence[PruningStep],
    *,
    response: np.ndarray,
    folds: Sequence[tuple[np.ndarray, np.ndarray]],
    fit_fold: Callable[[np.ndarray], TreeNode],
    predict_fold: Callable[[TreeNode, np.ndarray], np.ndarray],
) -> list[ComplexityRow]:
    """Cross-validate every subtree of a pruning sequence.

    Args:
        steps (Sequence[PruningStep]): Pruning sequence of the full tree.
        response (np.ndarray): Training responses.
        folds (Sequence[tuple[np.ndarray, np.ndarray]]): `(fit_rows,
            held_out_rows)` pairs partitioning the training rows.
        fit_fold (Callable[[np.ndarray], TreeNode]): Grows a full tree on the
            given training row positions.
        predict_fold (Callable[[TreeNode, np.ndarray], np.ndarray]): Predicts
            the given training row positions with a tree.

    Returns:
        list[ComplexityRow]: One row per step, in sequence order.
    """
    root = steps[0].tree
    grid = grid_values(steps, root.sse)
    squared_errors = np.zeros((len(steps), response.size), dtype=np.float64)

    for fold_number, (fit_rows, held_out_rows) in enumerate(folds):
        fold_root = fit_fold(fit_rows)
        fold_steps = pruning_sequence(fold_root)
        for k, complexity in enumerate(grid):
            fold_tree = subtree_at(fold_steps, complexity * fold_root.sse)
            predictions = predict_fold(fold_tree, held_out_rows)
            squared_errors[k, held_out_rows] = (predictions - response[held_out_rows]) ** 2
        logger.debug("Pruning fold scored", fold=fold_number, fold_leaves=count_leaves(fold_root))

    n_rows = response.size
    rows: list[ComplexityRow] = []
    for k, step in enumerate(steps):
        risk, n_leaves = subtree_risk(step.tree)
        rows.append(
            ComplexityRow(
                complexity=step.alpha / root.sse if root.sse > 0.0 else 0.0,
                n_splits=n_leaves - 1,
                n_leaves=n_leaves,
                relative_error=risk / root.sse if root.sse > 0.0 else 0.0,
                cv_error=float(squared_errors[k].mean()),
                cv_std_error=float(squared_errors[k].std() / math.sqrt(n_rows)),
            )
        )
    return rows


def select_subtree(table: Sequence[ComplexityRow], rule: PruningRule) -> int:
    """Choose a subtree from a complexity table.

    Rows are ordered from the largest tree to the smallest. `"min"` picks the
    lowest CV error; `"one_se"` picks the smallest tree whose CV error is
    within one standard error of that minimum. Ties go to the smaller tree.

    Args:
        table (Sequence[ComplexityRow]): Output of `cross_validate_sequence`.
        rule (PruningRule): `"min"` or `"one_se"`.

    Returns:
        int: Index of the selected row.
    """
    errors = np.array([row.cv_error for row in table])
    best = int(np.flatnonzero(errors == errors.min())[-1])
    if rule == "min":
        return best
    ceiling = errors[best] + table[best].cv_std_error
    return int(np.flatnonzero(errors <= ceiling)[-1])


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _link_strength(node: InternalNode) -> float:
    """Per-leaf SSE increase if `node` were collapsed."""
    risk, n_leaves = subtree_risk(node)
    return max(node.sse - risk, 0.0) / (n_leaves - 1)


def _prune_weakest(node: TreeNode, alpha: float) -> TreeNode:
    """Collapse every internal node whose link strength is at most `alpha`."""
    if not isinstance(node, InternalNode):
        return node
    if _link_strength(node) <= alpha:
        return collapse(node)
    pass_child = _prune_weakest(node.pass_child, alpha)
    fail_child = _prune_weakest(node.fail_child, alpha)
    if pass_child is node.pass_child and fail_child is node.fail_child:
        return node
    return InternalNode(
        rule=node.rule,
        pass_child=pass_child,
        fail_child=fail_child,
        prediction=node.prediction,
        n_samples=node.n_samples,
        sse=node.sse,
        improvement=node.improvement,
        depth=node.depth,
    )
