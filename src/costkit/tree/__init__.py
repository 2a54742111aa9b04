"""Regression tree sub-package: node models, growth, pruning, rules, and the estimator."""

from __future__ import annotations

from costkit.tree.estimator import RegressionTree
from costkit.tree.growing import grow_tree, predict_tree
from costkit.tree.models import InternalNode, LeafNode, SplitRule, TreeNode, count_leaves, iter_nodes, tree_depth
from costkit.tree.pruning import ComplexityRow, PruningStep, prune_tree, pruning_sequence
from costkit.tree.rules import LeafRule, Predicate, extract_rules

__all__ = [
    "ComplexityRow",
    "InternalNode",
    "LeafNode",
    "LeafRule",
    "Predicate",
    "PruningStep",
    "RegressionTree",
    "SplitRule",
    "TreeNode",
    "count_leaves",
    "extract_rules",
    "grow_tree",
    "iter_nodes",
    "predict_tree",
    "prune_tree",
    "pruning_sequence",
    "tree_depth",
]
