"""Human-readable leaf rules extracted from a fitted tree."""

from __future__ import annotations

import operator
from collections.abc import Callable, Mapping, Sequence
from typing import Any, Literal

import polars as pl
from pydantic import BaseModel, Field, model_validator

from costkit.dataset import FeatureSpec
from costkit.tree.models import InternalNode, SplitRule, TreeNode

# ---------------------------------------------------------------------------
# Public type aliases
# ---------------------------------------------------------------------------

type PredicateOp = Literal["<=", ">", "in"]

_SCALAR_OPS: dict[str, Callable[[Any, Any], bool]] = {
    "<=": operator.le,
    ">": operator.gt,
}

# ---------------------------------------------------------------------------
# Public models
# ---------------------------------------------------------------------------


class Predicate(BaseModel):
    """A single condition on one feature along a root-to-leaf path.

    Continuous features use `"<="` / `">"` against a numeric threshold;
    categorical features (ordered and nominal alike) use `"in"` against the
    set of level labels routed to that branch.

    Attributes:
        variable (str): Feature name, e.g. `"bankfull_width"`.
        operator (PredicateOp): `"<="`, `">"`, or `"in"`.
        value (float | frozenset[str]): Threshold or level-label set.

    Examples:
        >>> p = Predicate(variable="bankfull_width", operator="<=", value=3.5)
        >>> str(p)
        'bankfull_width <= 3.5'
        >>> p.eval(2.0)
        True
        >>> Predicate(variable="basin", operator="in", value=frozenset({"Coast"})).eval("Puget")
        False
    """

    variable: str = Field(description="Feature name the condition applies to.")
    operator: PredicateOp = Field(description="'<=' or '>' for thresholds; 'in' for level sets.")
    value: float | frozenset[str] = Field(description="Numeric threshold, or the set of level labels.")

    @model_validator(mode="after")
    def _validate_operator_value_compatibility(self) -> Predicate:
        """Validate that the operator and value type agree.

        Returns:
            Predicate: The validated model instance.

        Raises:
            ValueError: If `"in"` is paired with a scalar or a threshold
                operator with a set.
        """
        is_set = isinstance(self.value, frozenset)
        if (self.operator == "in") != is_set:
            raise ValueError(f"Operator '{self.operator}' is incompatible with value {self.value!r}")
        return self

    def __str__(self) -> str:
        """Return the predicate as `"<variable> <operator> <value>"`."""
        if isinstance(self.value, frozenset):
            return f"{self.variable} in {{{', '.join(sorted(self.value))}}}"
        return f"{self.variable} {self.operator} {self.value}"

    def eval(self, x: float | str) -> bool:
        """Evaluate the predicate on a raw feature value.

        Args:
            x (float | str): Feature value; categorical values are compared
                by their string label.

        Returns:
            bool: Whether the condition holds.
        """
        if isinstance(self.value, frozenset):
            return str(x) in self.value
        return _SCALAR_OPS[self.operator](float(x), self.value)

    def mask(self, frame: pl.DataFrame) -> pl.Series:
        """Evaluate the predicate on every row of a DataFrame.

        Args:
            frame (pl.DataFrame): Rows holding `variable`.

        Returns:
            pl.Series: Boolean mask.
        """
        column = frame[self.variable]
        if isinstance(self.value, frozenset):
            return column.cast(pl.String).is_in(sorted(self.value))
        return _SCALAR_OPS[self.operator](column.cast(pl.Float64), self.value)


class LeafRule(BaseModel):
    """The path from the root of a tree to one leaf.

    Attributes:
        predicates (list[Predicate]): Conditions from root to leaf; empty for
            a single-leaf tree.
        prediction (float): Leaf value.
        samples (int): Training rows routed to the leaf.
        sse (float): Sum of squared deviations of those rows from their mean.
    """

    predicates: list[Predicate] = Field(description="Conditions along the path from the root to this leaf.")
    prediction: float = Field(description="Leaf value returned for rows satisfying every predicate.")
    samples: int = Field(ge=1, description="Number of training rows routed to this leaf.")
    sse: float = Field(ge=0.0, description="Within-leaf sum of squared deviations from the mean.")

    def __str__(self) -> str:
        """Return the rule as `"IF a AND b THEN prediction"`."""
        condition = " AND ".join(str(predicate) for predicate in self.predicates) or "TRUE"
        return f"IF {condition} THEN {self.prediction:.4g}"

    def mask(self, frame: pl.DataFrame) -> pl.Series:
        """Select the rows of a DataFrame that satisfy every predicate.

        Args:
            frame (pl.DataFrame): Rows holding every predicate variable.

        Returns:
            pl.Series: Boolean mask.
        """
        selected = pl.Series(values=[True] * frame.height, dtype=pl.Boolean)
        for predicate in self.predicates:
            selected = selected & predicate.mask(frame)
        return selected


# ---------------------------------------------------------------------------
# Public interface
# ---------------------------------------------------------------------------


def extract_rules(tree: TreeNode, features: Sequence[FeatureSpec]) -> list[LeafRule]:
    """Extract one rule per leaf, in pre-order (pass branch first).

    Args:
        tree (TreeNode): A fitted tree.
        features (Sequence[FeatureSpec]): Schema the tree was fit on.

    Returns:
        list[LeafRule]: One rule per leaf.
    """
    by_name = {spec.name: spec for spec in features}
    rules: list[LeafRule] = []
    _walk_tree(tree, by_name=by_name, path_predicates=[], rules=rules)
    return rules


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _walk_tree(
    node: TreeNode,
    *,
    by_name: Mapping[str, FeatureSpec],
    path_predicates: list[Predicate],
    rules: list[LeafRule],
) -> None:
    """Recursively accumulate leaf rules; `rules` is appended in place."""
    if not isinstance(node, InternalNode):
        rules.append(
            LeafRule(
                predicates=path_predicates,
                prediction=node.prediction,
                samples=node.n_samples,
                sse=max(node.sse, 0.0),
            )
        )
        return
    pass_predicate, fail_predicate = _build_split_predicates(node.rule, by_name[node.rule.feature])
    _walk_tree(node.pass_child, by_name=by_name, path_predicates=[*path_predicates, pass_predicate], rules=rules)
    _walk_tree(node.fail_child, by_name=by_name, path_predicates=[*path_predicates, fail_predicate], rules=rules)


def _build_split_predicates(rule: SplitRule, spec: FeatureSpec) -> tuple[Predicate, Predicate]:
    """Build the pass and fail predicates of one split.

    Categorical splits are decoded to level labels: for ordered features the
    pass set is every level at or below the threshold position.

    Args:
        rule (SplitRule): The split.
        spec (FeatureSpec): Schema entry of the split feature.

    Returns:
        tuple[Predicate, Predicate]: `(pass_predicate, fail_predicate)`.
    """
    if spec.kind == "continuous":
        if rule.threshold is None:
            raise ValueError(f"Continuous feature '{spec.name}' needs a threshold split")
        return (
            Predicate(variable=spec.name, operator="<=", value=rule.threshold),
            Predicate(variable=spec.name, operator=">", value=rule.threshold),
        )
    levels = spec.category_levels
    pass_labels = frozenset(levels[code] for code in rule.pass_level_codes(len(levels)))
    fail_labels = frozenset(levels) - pass_labels
    return (
        Predicate(variable=spec.name, operator="in", value=pass_labels),
        Predicate(variable=spec.name, operator="in", value=fail_labels),
    )
