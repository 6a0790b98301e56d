"""Bagged random forests of CART trees.

Every tree sees a bootstrap sample of the training table and, at every node,
only a random subset of the predictors. All randomness comes from numpy
generators seeded with ``(seed, tree index, stream)``: stream 0 draws the
bootstrap and stream ``node_id`` (root 1, children 2i and 2i+1) draws the
``max_features`` predictors that node may split on; a node whose subset
cannot reduce its impurity becomes a leaf. The result does not depend on
the order in which trees or nodes are built.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np
from loguru import logger

from lulc.data.feature_table import FeatureTable
from lulc.errors import InvalidInputError
from lulc.models.classifier import VectorLike, majority_vote, predictor_columns
from lulc.models.tree import (
    DecisionNode,
    check_training_input,
    encode_labels,
    feature_importance,
    grow_tree,
    iter_nodes,
    predict_node,
    predict_node_array,
)

_BOOTSTRAP_STREAM = 0


def default_max_features(n_predictors: int) -> int:
    """Floor of the square root of the predictor count, at least 1."""
    return max(1, math.isqrt(n_predictors))


def bootstrap_rows(n: int, seed: int, tree_index: int) -> np.ndarray:
    """Indices of a with-replacement sample of size *n* for one tree."""
    rng = np.random.default_rng([seed, tree_index, _BOOTSTRAP_STREAM])
    return rng.integers(0, n, size=n)


def node_predictors(seed: int, tree_index: int, node_id: int, n_predictors: int, k: int) -> np.ndarray:
    """Sorted column indices of the *k* predictors one node may split on."""
    rng = np.random.default_rng([seed, tree_index, node_id])
    return np.sort(rng.choice(n_predictors, size=k, replace=False))


def _node_feature_sampler(seed: int, tree_index: int, n_predictors: int, k: int):
    def sample(node_id: int) -> np.ndarray:
        return node_predictors(seed, tree_index, node_id, n_predictors, k)

    return sample


@dataclass(frozen=True)
class ForestModel:
    """A trained random forest: ordered trees plus variable importance."""

    trees: tuple[DecisionNode, ...]
    predictors: tuple[str, ...]
    class_property: str
    importance: dict[str, float] = field(default_factory=dict)
    oob_error: float = float("nan")
    seed: int = 0
    max_features: int = 1

    def predict(self, vector: VectorLike) -> int:
        votes = np.array([[predict_node(tree, vector)] for tree in self.trees])
        return int(majority_vote(votes)[0])

    def predict_array(self, values: np.ndarray, attributes: Sequence[str]) -> np.ndarray:
        columns = predictor_columns(attributes, self.predictors)
        X = np.asarray(values, dtype=np.float64)
        votes = np.stack([predict_node_array(tree, X, columns) for tree in self.trees])
        return majority_vote(votes)

    def predict_table(self, table: FeatureTable) -> np.ndarray:
        return self.predict_array(table.values, table.attributes)

    def explain(self) -> dict:
        return {
            "type": "RandomForest",
            "classProperty": self.class_property,
            "inputProperties": list(self.predictors),
            "numberOfTrees": len(self.trees),
            "variablesPerSplit": self.max_features,
            "seed": self.seed,
            "importance": dict(self.importance),
            "outOfBagErrorEstimate": self.oob_error,
            "numberOfNodes": sum(len(list(iter_nodes(t))) for t in self.trees),
        }


def _oob_error(
    trees: Sequence[DecisionNode],
    samples: Sequence[np.ndarray],
    X: np.ndarray,
    labels: np.ndarray,
    classes: np.ndarray,
    columns: dict[str, int],
) -> float:
    """Share of rows misclassified by the vote of the trees that never saw them."""
    n = len(labels)
    tallies = np.zeros((len(classes), n), dtype=np.int64)
    for tree, rows in zip(trees, samples):
        out_of_bag = np.ones(n, dtype=bool)
        out_of_bag[rows] = False
        idx = np.flatnonzero(out_of_bag)
        if len(idx) == 0:
            continue
        pred = predict_node_array(tree, X[idx], columns)
        tallies[np.searchsorted(classes, pred), idx] += 1

    evaluated = tallies.sum(axis=0) > 0
    if not evaluated.any():
        return float("nan")
    # argmax returns the first maximum, i.e. the lowest label
    winners = classes[np.argmax(tallies, axis=0)]
    return float(np.mean(winners[evaluated] != labels[evaluated]))


def train_random_forest(
    table: FeatureTable,
    class_property: Optional[str] = None,
    predictors: Optional[Sequence[str]] = None,
    num_trees: int = 100,
    seed: int = 0,
    max_features: Optional[int] = None,
    max_depth: Optional[int] = None,
    min_leaf_size: int = 1,
) -> ForestModel:
    """Train a bagged random forest.

    Parameters
    ----------
    table : FeatureTable
        Training rows.
    class_property : str, optional
        Label attribute; must match ``table.class_property`` when given.
    predictors : Sequence[str], optional
        Predictor attributes (default: all table attributes).
    num_trees : int
        Number of trees.
    seed : int
        Base seed for bootstrap and per-node predictor draws.
    max_features : int, optional
        Predictors considered per split (default: floor(sqrt(p)), min 1).
    max_depth : int, optional
        Per-tree depth limit.
    min_leaf_size : int
        Minimum rows per child.

    Returns
    -------
    ForestModel
        Trees, normalized variable importance and out-of-bag error.
    """
    predictors = check_training_input(table, class_property, predictors, max_depth, min_leaf_size)
    if num_trees < 1:
        raise InvalidInputError(f"num_trees must be >= 1, got {num_trees}")
    if seed < 0:
        raise InvalidInputError(f"Seed must be non-negative, got {seed}")

    p = len(predictors)
    k = default_max_features(p) if max_features is None else int(max_features)
    if not 1 <= k <= p:
        raise InvalidInputError(f"max_features must be in [1, {p}], got {max_features}")

    X = table.select(predictors).values
    classes, y = encode_labels(table.labels)
    n = len(table)

    trees = []
    samples = []
    for t in range(num_trees):
        rows = bootstrap_rows(n, seed, t)
        tree = grow_tree(
            X, y, classes, rows, predictors,
            max_depth=max_depth,
            min_leaf_size=min_leaf_size,
            feature_sampler=_node_feature_sampler(seed, t, p, k),
        )
        trees.append(tree)
        samples.append(rows)
        logger.debug("Tree {}/{}: {} nodes", t + 1, num_trees, len(list(iter_nodes(tree))))

    columns = {name: i for i, name in enumerate(predictors)}
    model = ForestModel(
        trees=tuple(trees),
        predictors=predictors,
        class_property=table.class_property,
        importance=feature_importance(trees, predictors),
        oob_error=_oob_error(trees, samples, X, table.labels, classes, columns),
        seed=seed,
        max_features=k,
    )
    logger.info(
        "Trained random forest: {} trees on {} rows, {} variables per split, OOB error {:.4f}",
        num_trees, n, k, model.oob_error,
    )
    return model
