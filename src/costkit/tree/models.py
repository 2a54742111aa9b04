"""Tree node types, split rules, and structural helpers.

A fitted tree is a single root `TreeNode`: either a `LeafNode` or an
`InternalNode` that exclusively owns its pass and fail children. Nodes are
frozen dataclasses, so a tree cannot change after `fit` returns and pruning
builds new nodes instead of editing old ones.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import Literal

import numpy as np

# ---------------------------------------------------------------------------
# Public type aliases
# ---------------------------------------------------------------------------

type SplitKind = Literal["threshold", "subset"]

type TreeNode = LeafNode | InternalNode

# ---------------------------------------------------------------------------
# Public models
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SplitRule:
    """A binary partition of rows on one feature.

    Threshold rules apply to continuous and ordered features: a row passes
    when its encoded value (the level position for ordered features) is at
    most `threshold`. Subset rules apply to nominal features: a row passes
    when its level code is in `pass_codes`, which covers every level routed to
    the pass branch, including levels never seen at the node during fitting.

    Attributes:
        feature (str): Feature name.
        feature_index (int): Column position in the encoded matrix.
        kind (SplitKind): `"threshold"` or `"subset"`.
        threshold (float | None): Upper bound of the pass branch for threshold rules.
        pass_codes (frozenset[int] | None): Level codes of the pass branch for subset rules.
    """

    feature: str
    feature_index: int
    kind: SplitKind
    threshold: float | None = None
    pass_codes: frozenset[int] | None = None

    def __post_init__(self) -> None:
        """Validate that the rule carries the bound its kind needs.

        Raises:
            ValueError: If a threshold rule has no threshold or a subset rule
                has no pass codes.
        """
        if self.kind == "threshold" and self.threshold is None:
            raise ValueError(f"Threshold split on '{self.feature}' requires a threshold")
        if self.kind == "subset" and self.pass_codes is None:
            raise ValueError(f"Subset split on '{self.feature}' requires pass codes")

    def passes(self, values: np.ndarray) -> np.ndarray:
        """Evaluate the rule on encoded feature values.

        Args:
            values (np.ndarray): Encoded values of `feature`, without NaNs.

        Returns:
            np.ndarray: Boolean mask, True for rows routed to the pass branch.
        """
        if self.threshold is not None:
            return values <= self.threshold
        return np.isin(values, np.fromiter(self.pass_codes or (), dtype=np.float64))

    def pass_level_codes(self, n_levels: int) -> set[int]:
        """Return the level codes routed to the pass branch of a categorical split.

        Args:
            n_levels (int): Size of the feature's level set.

        Returns:
            set[int]: Codes of the pass-branch levels.
        """
        if self.threshold is not None:
            return {code for code in range(n_levels) if code <= self.threshold}
        return set(self.pass_codes or ())


@dataclass(frozen=True)
class LeafNode:
    """A terminal node.

    Attributes:
        prediction (float): Median (or mean) of the training responses routed here.
        n_samples (int): Number of training rows routed here.
        sse (float): Sum of squared deviations of those responses from their mean.
        depth (int): Distance from the root.
    """

    prediction: float
    n_samples: int
    sse: float
    depth: int = 0


@dataclass(frozen=True)
class InternalNode:
    """A split node owning exactly two children.

    Attributes:
        rule (SplitRule): The split applied at this node.
        pass_child (TreeNode): Subtree for rows passing the rule.
        fail_child (TreeNode): Subtree for the remaining rows.
        prediction (float): Leaf value this node takes if pruning collapses it.
        n_samples (int): Number of training rows reaching this node.
        sse (float): Sum of squared deviations from the node mean.
        improvement (float): SSE reduction achieved by the split,
            `sse - pass_child.sse - fail_child.sse`.
        depth (int): Distance from the root.
    """

    rule: SplitRule
    pass_child: TreeNode
    fail_child: TreeNode
    prediction: float
    n_samples: int
    sse: float
    improvement: float
    depth: int = 0


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def iter_nodes(node: TreeNode) -> Iterator[TreeNode]:
    """Yield every node of a tree in pre-order (node, pass subtree, fail subtree)."""
    yield node
    if isinstance(node, InternalNode):
        yield from iter_nodes(node.pass_child)
        yield from iter_nodes(node.fail_child)


def iter_internal_nodes(node: TreeNode) -> Iterator[InternalNode]:
    """Yield every split node of a tree in pre-order."""
    for current in iter_nodes(node):
        if isinstance(current, InternalNode):
            yield current


def count_leaves(node: TreeNode) -> int:
    """Return the number of leaves in a tree."""
    if isinstance(node, LeafNode):
        return 1
    return count_leaves(node.pass_child) + count_leaves(node.fail_child)


def tree_depth(node: TreeNode) -> int:
    """Return the depth of the deepest leaf, with the root at depth 0."""
    if isinstance(node, LeafNode):
        return 0
    return 1 + max(tree_depth(node.pass_child), tree_depth(node.fail_child))


def subtree_risk(node: TreeNode) -> tuple[float, int]:
    """Return the summed leaf SSE and the leaf count of a subtree.

    Args:
        node (TreeNode): Subtree root.

    Returns:
        tuple[float, int]: `(sum of leaf sse, number of leaves)`.
    """
    if isinstance(node, LeafNode):
        return node.sse, 1
    pass_risk, pass_leaves = subtree_risk(node.pass_child)
    fail_risk, fail_leaves = subtree_risk(node.fail_child)
    return pass_risk + fail_risk, pass_leaves + fail_leaves


def collapse(node: TreeNode) -> LeafNode:
    """Replace a subtree by a leaf holding the subtree root's own prediction."""
    if isinstance(node, LeafNode):
        return node
    return LeafNode(prediction=node.prediction, n_samples=node.n_samples, sse=node.sse, depth=node.depth)
