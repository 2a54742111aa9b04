"""Tests for recursive partitioning and tree prediction."""

from __future__ import annotations

import numpy as np
import pytest
from pytest_check import check

from costkit.config import TreeConfig
from costkit.dataset import FeatureSpec
from costkit.exceptions import EmptyTrainingSetError, InvalidConfigurationError, SchemaMismatchError
from costkit.tree import InternalNode, LeafNode, count_leaves, grow_tree, iter_nodes, predict_tree, tree_depth

CONTINUOUS_X = FeatureSpec(name="x", kind="continuous")
NOMINAL_BASIN = FeatureSpec(name="basin", kind="nominal", levels=("A", "B", "C", "D"))


def _column(*values: float) -> np.ndarray:
    return np.array(values, dtype=np.float64).reshape(-1, 1)


class TestSplitSelection:
    """Tests for the split search on continuous and nominal features."""

    def test_paved_split(self) -> None:
        """A perfectly separating binary feature should split at the midpoint."""
        # Arrange
        matrix = _column(0, 0, 0, 1, 1, 1)
        response = np.array([500.0, 500.0, 500.0, 100.0, 100.0, 100.0])
        features = [FeatureSpec(name="paved", kind="continuous")]

        # Act
        root = grow_tree(matrix, response, features, TreeConfig())

        # Assert
        assert isinstance(root, InternalNode)
        with check:
            assert root.rule.feature == "paved"
        with check:
            assert root.rule.threshold == pytest.approx(0.5)
        with check:
            assert root.pass_child.prediction == 500.0
        with check:
            assert root.fail_child.prediction == 100.0
        with check:
            assert root.improvement == pytest.approx(240_000.0)

    def test_smallest_threshold_wins_ties(self) -> None:
        """Two equally good thresholds should resolve to the smaller one."""
        # x = 1, 2, 3 with y = -1, 2, -1: both midpoints gain 1.5
        root = grow_tree(_column(1, 2, 3), np.array([-1.0, 2.0, -1.0]), [CONTINUOUS_X], TreeConfig(complexity=0.0))
        assert isinstance(root, InternalNode)
        assert root.rule.threshold == pytest.approx(1.5)

    def test_first_feature_wins_ties(self) -> None:
        """Identical feature columns should resolve to the first in schema order."""
        # Arrange
        matrix = np.column_stack([np.arange(6.0), np.arange(6.0)])
        response = np.array([1.0, 1.0, 1.0, 9.0, 9.0, 9.0])
        features = [FeatureSpec(name="first", kind="continuous"), FeatureSpec(name="second", kind="continuous")]

        # Act
        root = grow_tree(matrix, response, features, TreeConfig())

        # Assert
        assert isinstance(root, InternalNode)
        with check:
            assert root.rule.feature == "first"
        with check:
            assert root.rule.feature_index == 0

    def test_first_feature_wins_ties_under_rounding(self) -> None:
        """Mirrored features induce the same partitions, so the first one must always win."""
        # Arrange: scanning the mirror sorts rows in reverse, so its prefix sums round differently
        n_rows = 40
        ascending = np.arange(n_rows, dtype=np.float64)
        matrix = np.column_stack([ascending, ascending[::-1]])
        features = [FeatureSpec(name="upstream", kind="continuous"), FeatureSpec(name="downstream", kind="continuous")]
        config = TreeConfig(max_depth=1, min_samples_leaf=1, complexity=0.0)

        # Act
        chosen = []
        for seed in range(300):
            response = np.sort(np.random.default_rng(seed).lognormal(0.0, 1.0, size=n_rows))
            root = grow_tree(matrix, response, features, config)
            assert isinstance(root, InternalNode)
            chosen.append(root.rule.feature_index)

        # Assert
        assert chosen.count(1) == 0

    @pytest.mark.parametrize("max_exhaustive_levels", [12, 2], ids=["exhaustive", "mean_ordered"])
    def test_nominal_bipartition(self, max_exhaustive_levels: int) -> None:
        """Low and high levels should be grouped regardless of code order."""
        # Arrange
        codes = _column(0, 0, 1, 1, 2, 2, 3, 3)
        response = np.array([1.0, 1.0, 10.0, 10.0, 1.0, 1.0, 10.0, 10.0])
        config = TreeConfig(max_exhaustive_levels=max_exhaustive_levels)

        # Act
        root = grow_tree(codes, response, [NOMINAL_BASIN], config)

        # Assert
        assert isinstance(root, InternalNode)
        with check:
            assert root.rule.kind == "subset"
        with check:
            assert root.rule.pass_codes == frozenset({0, 2})
        with check:
            assert count_leaves(root) == 2

    def test_absent_level_joins_larger_branch(self) -> None:
        """A declared level unseen at the node should follow the majority of rows."""
        # Arrange: level C (code 2) never occurs; A holds four of six rows
        codes = _column(0, 0, 0, 0, 1, 3)
        response = np.array([1.0, 1.0, 1.0, 1.0, 10.0, 10.0])

        # Act
        root = grow_tree(codes, response, [NOMINAL_BASIN], TreeConfig())

        # Assert
        assert isinstance(root, InternalNode)
        with check:
            assert root.rule.pass_codes == frozenset({0, 2})
        with check:
            assert predict_tree(root, _column(2.0)).tolist() == [1.0]


class TestStoppingRules:
    """Tests for leaf statistics and growth limits."""

    def test_median_leaf(self) -> None:
        """Leaves should hold the median, not the mean, by default."""
        root = grow_tree(_column(1, 1, 1, 1), np.array([1.0, 2.0, 3.0, 10.0]), [CONTINUOUS_X], TreeConfig())
        with check:
            assert isinstance(root, LeafNode)
        with check:
            assert root.prediction == pytest.approx(2.5)

    def test_mean_leaf(self) -> None:
        """The mean statistic should be available for boosting members."""
        root = grow_tree(
            _column(1, 1, 1, 1), np.array([1.0, 2.0, 3.0, 10.0]), [CONTINUOUS_X], TreeConfig(leaf_statistic="mean")
        )
        assert root.prediction == pytest.approx(4.0)

    def test_constant_response_is_single_leaf(self) -> None:
        """Nothing to explain means no split."""
        root = grow_tree(_column(1, 2, 3, 4), np.full(4, 7.0), [CONTINUOUS_X], TreeConfig(complexity=0.0))
        with check:
            assert isinstance(root, LeafNode)
        with check:
            assert root.sse == 0.0

    def test_limits_are_respected(self) -> None:
        """Leaf size, depth and leaf count limits should all hold."""
        # Arrange
        rng = np.random.default_rng(3)
        matrix = rng.uniform(size=(80, 1))
        response = np.sin(8 * matrix[:, 0]) + rng.normal(0.0, 0.1, size=80)

        # Act
        by_leaf = grow_tree(matrix, response, [CONTINUOUS_X], TreeConfig(complexity=0.0, min_samples_leaf=7))
        by_depth = grow_tree(matrix, response, [CONTINUOUS_X], TreeConfig(complexity=0.0, max_depth=2))
        by_count = grow_tree(matrix, response, [CONTINUOUS_X], TreeConfig(complexity=0.0, max_leaves=5))

        # Assert
        leaf_sizes = [node.n_samples for node in iter_nodes(by_leaf) if isinstance(node, LeafNode)]
        with check:
            assert min(leaf_sizes) >= 7
        with check:
            assert sum(leaf_sizes) == 80
        with check:
            assert tree_depth(by_depth) <= 2
        with check:
            assert count_leaves(by_count) <= 5

    def test_complexity_blocks_small_improvements(self) -> None:
        """A split gaining less than `complexity * root_sse` should be refused."""
        # The best root split gains 1.5 of a root SSE of 6.0 (25%).
        response = np.array([-1.0, 2.0, -1.0])
        kept = grow_tree(_column(1, 2, 3), response, [CONTINUOUS_X], TreeConfig(complexity=0.2))
        refused = grow_tree(_column(1, 2, 3), response, [CONTINUOUS_X], TreeConfig(complexity=0.3))
        with check:
            assert isinstance(kept, InternalNode)
        with check:
            assert isinstance(refused, LeafNode)


class TestRandomFeatureSubsets:
    """Tests for per-split feature sampling."""

    def test_seeded_generator_is_deterministic(self) -> None:
        """The same generator state should give the same tree."""
        # Arrange
        rng = np.random.default_rng(0)
        matrix = rng.uniform(size=(60, 4))
        response = matrix @ np.array([1.0, 2.0, 3.0, 4.0])
        features = [FeatureSpec(name=f"x{i}", kind="continuous") for i in range(4)]
        config = TreeConfig(complexity=0.0, features_per_split=2, max_depth=4)

        # Act
        first = grow_tree(matrix, response, features, config, rng=np.random.default_rng(9))
        second = grow_tree(matrix, response, features, config, rng=np.random.default_rng(9))

        # Assert
        assert first == second

    def test_too_many_features_raises(self) -> None:
        """Requesting more features than exist should be rejected."""
        with pytest.raises(InvalidConfigurationError) as exc_info:
            grow_tree(
                _column(1, 2),
                np.array([1.0, 2.0]),
                [CONTINUOUS_X],
                TreeConfig(features_per_split=2),
                rng=np.random.default_rng(0),
            )
        assert exc_info.value.parameter == "features_per_split"

    def test_subset_without_generator_raises(self) -> None:
        """Feature sampling needs an explicit generator."""
        with pytest.raises(InvalidConfigurationError):
            grow_tree(_column(1, 2), np.array([1.0, 2.0]), [CONTINUOUS_X], TreeConfig(features_per_split=1))


class TestPrediction:
    """Tests for routing rows through a fitted tree."""

    def test_routes_unseen_values(self) -> None:
        """Values beyond the training range follow the threshold comparison."""
        root = grow_tree(
            _column(0, 0, 0, 1, 1, 1),
            np.array([500.0, 500.0, 500.0, 100.0, 100.0, 100.0]),
            [CONTINUOUS_X],
            TreeConfig(),
        )
        assert predict_tree(root, _column(-3.0, 0.4, 0.6, 12.0)).tolist() == [500.0, 500.0, 100.0, 100.0]

    def test_missing_value_at_split_raises(self) -> None:
        """A NaN reaching a split should raise SchemaMismatchError."""
        root = grow_tree(
            _column(0, 0, 1, 1),
            np.array([5.0, 5.0, 1.0, 1.0]),
            [CONTINUOUS_X],
            TreeConfig(),
        )
        with pytest.raises(SchemaMismatchError) as exc_info:
            predict_tree(root, _column(np.nan))
        assert exc_info.value.feature == "x"

    def test_missing_value_on_leaf_only_tree_is_fine(self) -> None:
        """A single-leaf tree never consults its features."""
        root = grow_tree(_column(1, 1), np.array([3.0, 3.0]), [CONTINUOUS_X], TreeConfig())
        assert predict_tree(root, _column(np.nan)).tolist() == [3.0]

    def test_empty_training_set_raises(self) -> None:
        """Zero rows cannot be fit."""
        with pytest.raises(EmptyTrainingSetError):
            grow_tree(np.empty((0, 1)), np.empty(0), [CONTINUOUS_X], TreeConfig())
