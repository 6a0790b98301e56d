"""Seeded record-level train/test partition of a feature table."""

from __future__ import annotations

from typing import NamedTuple

import numpy as np
from loguru import logger

from lulc.data.feature_table import FeatureTable
from lulc.errors import InvalidInputError


class SplitResult(NamedTuple):
    train: FeatureTable
    test: FeatureTable


def random_column(n: int, seed: int) -> np.ndarray:
    """Uniform values in [0, 1), one per row position, reproducible for *seed*."""
    return np.random.default_rng(seed).random(n)


def random_split(table: FeatureTable, proportion: float, seed: int) -> SplitResult:
    """Partition *table* into train and test subsets.

    Each row gets a pseudorandom value in [0, 1) derived from the seed and
    its position; rows below *proportion* go to train, the rest to test.
    The split is not stratified, so per-class balance is only approximate.

    Parameters
    ----------
    table : FeatureTable
        Rows to partition.
    proportion : float
        Target train fraction. Values <= 0 give an empty train set,
        values >= 1 an empty test set.
    seed : int
        Seed for the per-row random values.

    Returns
    -------
    SplitResult
        ``(train, test)``; both keep the source row order.

    Raises
    ------
    InvalidInputError
        *proportion* is NaN.
    """
    if np.isnan(proportion):
        raise InvalidInputError(
            f"Split proportion must be a number, got {proportion} ({len(table)} rows)"
        )

    rand = random_column(len(table), seed)
    in_train = rand < proportion

    train = table.take(np.flatnonzero(in_train))
    test = table.take(np.flatnonzero(~in_train))

    if len(table) and (len(train) == 0 or len(test) == 0):
        logger.warning(
            "Split with proportion {} left an empty {} set ({} rows total)",
            proportion,
            "train" if len(train) == 0 else "test",
            len(table),
        )

    logger.info("Train size: {}, Test size: {}", len(train), len(test))
    return SplitResult(train, test)
