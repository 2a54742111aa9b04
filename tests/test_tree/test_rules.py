"""Tests for leaf rule extraction and predicate evaluation."""

from __future__ import annotations

import numpy as np
import polars as pl
import pytest
from pydantic import ValidationError
from pytest_check import check

from costkit.dataset import Dataset, FeatureSpec
from costkit.tree import InternalNode, LeafNode, LeafRule, Predicate, RegressionTree, SplitRule, extract_rules


class TestPredicate:
    """Tests for `Predicate` validation, rendering and evaluation."""

    def test_set_operator_requires_set(self) -> None:
        """`in` with a scalar value should be rejected."""
        with pytest.raises(ValidationError):
            Predicate(variable="basin", operator="in", value=2.0)

    def test_threshold_operator_rejects_set(self) -> None:
        """`<=` with a level set should be rejected."""
        with pytest.raises(ValidationError):
            Predicate(variable="slope", operator="<=", value=frozenset({"a"}))

    def test_str_sorts_levels(self) -> None:
        """Level sets render in sorted order."""
        predicate = Predicate(variable="basin", operator="in", value=frozenset({"Puget", "Coast"}))
        assert str(predicate) == "basin in {Coast, Puget}"

    def test_mask_on_frame(self) -> None:
        """Threshold and set predicates should evaluate on DataFrame columns."""
        # Arrange
        frame = pl.DataFrame({"slope": [0.01, 0.05, 0.09], "basin": ["Coast", "Puget", "Coast"]})

        # Act
        steep = Predicate(variable="slope", operator=">", value=0.04).mask(frame)
        coastal = Predicate(variable="basin", operator="in", value=frozenset({"Coast"})).mask(frame)

        # Assert
        with check:
            assert steep.to_list() == [False, True, True]
        with check:
            assert coastal.to_list() == [True, False, True]


class TestExtractRules:
    """Tests for `extract_rules` on fitted trees."""

    def test_paved_rules(self, paved_dataset: Dataset) -> None:
        """The paved tree has one rule per branch, pass branch first."""
        # Arrange
        tree = RegressionTree(pruning=None, response_transform="identity").fit(paved_dataset)

        # Act
        rules = tree.rules()

        # Assert
        with check:
            assert [str(rule) for rule in rules] == ["IF paved <= 0.5 THEN 500", "IF paved > 0.5 THEN 100"]
        with check:
            assert [rule.samples for rule in rules] == [3, 3]

    def test_single_leaf_rule(self) -> None:
        """A leaf-only tree yields one unconditional rule."""
        rules = extract_rules(LeafNode(prediction=2.0, n_samples=4, sse=1.0), [])
        with check:
            assert len(rules) == 1
        with check:
            assert str(rules[0]) == "IF TRUE THEN 2"

    def test_ordered_split_decodes_levels(self) -> None:
        """An ordered threshold split should become level sets on both branches."""
        # Arrange
        spec = FeatureSpec(name="speed_class", kind="ordered", levels=("low", "mid", "high"))
        root = InternalNode(
            rule=SplitRule(feature="speed_class", feature_index=0, kind="threshold", threshold=0.5),
            pass_child=LeafNode(prediction=1.0, n_samples=2, sse=0.0, depth=1),
            fail_child=LeafNode(prediction=3.0, n_samples=4, sse=0.0, depth=1),
            prediction=2.0,
            n_samples=6,
            sse=8.0,
            improvement=8.0,
        )

        # Act
        rules = extract_rules(root, [spec])

        # Assert
        with check:
            assert rules[0].predicates[0].value == frozenset({"low"})
        with check:
            assert rules[1].predicates[0].value == frozenset({"mid", "high"})

    @pytest.mark.parametrize("kind", ["threshold", "subset"])
    def test_split_rule_requires_its_bound(self, kind: str) -> None:
        """A split rule without the bound its kind routes on is rejected."""
        with pytest.raises(ValueError, match="requires"):
            SplitRule(feature="basin", feature_index=0, kind=kind)  # type: ignore[arg-type]

    def test_pass_level_codes(self) -> None:
        """Threshold and subset rules both decode to pass-branch level codes."""
        ordered = SplitRule(feature="speed_class", feature_index=0, kind="threshold", threshold=1.5)
        nominal = SplitRule(feature="basin", feature_index=1, kind="subset", pass_codes=frozenset({0, 2}))
        with check:
            assert ordered.pass_level_codes(3) == {0, 1}
        with check:
            assert nominal.pass_level_codes(3) == {0, 2}

    def test_rules_reproduce_training_leaves(self, worksite_dataset: Dataset) -> None:
        """Every rule should select exactly its leaf's rows and reproduce its median."""
        # Arrange
        tree = RegressionTree(pruning=None, min_samples_leaf=5).fit(worksite_dataset)
        frame = worksite_dataset.frame
        response = worksite_dataset.response_values("log")

        # Act
        rules: list[LeafRule] = tree.rules()

        # Assert
        covered = np.zeros(len(worksite_dataset), dtype=int)
        for rule in rules:
            selected = rule.mask(frame).to_numpy()
            covered += selected
            with check:
                assert int(selected.sum()) == rule.samples
            with check:
                assert float(np.median(response[selected])) == pytest.approx(rule.prediction)
        with check:
            assert len(rules) == tree.n_leaves_
        with check:
            assert covered.tolist() == [1] * len(worksite_dataset)
