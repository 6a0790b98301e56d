"""Tests for the seeded train/test split."""

import numpy as np
import pytest

from lulc.data.feature_table import FeatureTable
from lulc.errors import InvalidInputError
from lulc.sampling.split import random_split


def _table(n=200):
    values = np.arange(n, dtype=float).reshape(-1, 1)
    labels = np.where(np.arange(n) % 2 == 0, 10, 40)
    return FeatureTable(["idx"], values, labels)


class TestRandomSplit:
    def test_deterministic(self):
        a = random_split(_table(), 0.7, seed=42)
        b = random_split(_table(), 0.7, seed=42)
        np.testing.assert_array_equal(a.train.values, b.train.values)
        np.testing.assert_array_equal(a.test.values, b.test.values)

    def test_partition_is_disjoint_and_complete(self):
        split = random_split(_table(), 0.7, seed=1)
        train = set(split.train.column("idx").tolist())
        test = set(split.test.column("idx").tolist())
        assert not train & test
        assert train | test == set(range(200))

    def test_source_order_kept(self):
        split = random_split(_table(), 0.5, seed=3)
        assert np.all(np.diff(split.train.column("idx")) > 0)
        assert np.all(np.diff(split.test.column("idx")) > 0)

    def test_fraction_roughly_matches(self):
        split = random_split(_table(1000), 0.7, seed=0)
        assert 0.6 < len(split.train) / 1000 < 0.8

    def test_proportion_one_puts_all_in_train(self):
        split = random_split(_table(), 1.0, seed=0)
        assert len(split.train) == 200
        assert len(split.test) == 0

    def test_proportion_zero_puts_all_in_test(self):
        split = random_split(_table(), 0.0, seed=0)
        assert len(split.train) == 0
        assert len(split.test) == 200

    def test_empty_table(self):
        split = random_split(_table(0), 0.7, seed=0)
        assert len(split.train) == 0
        assert len(split.test) == 0

    def test_keeps_schema(self):
        split = random_split(_table(), 0.7, seed=0)
        assert split.train.attributes == ("idx",)
        assert split.test.class_property == "class"

    def test_nan_proportion_rejected(self):
        with pytest.raises(InvalidInputError):
            random_split(_table(), float("nan"), seed=0)

    def test_infinite_proportion_empties_one_side(self):
        assert len(random_split(_table(), float("inf"), seed=0).test) == 0
        assert len(random_split(_table(), float("-inf"), seed=0).train) == 0
