"""CART decision-tree induction with Gini impurity.

At every node each candidate attribute is sorted once and all midpoints
between consecutive distinct values are scored by the size-weighted Gini
impurity of the two children. The lowest score wins; ties go to the first
attribute in schema order, then to the lowest threshold. Routing at
prediction time sends ``value < threshold`` left.

Trees are grown with an explicit work stack rather than recursion, so deep
trees on noisy data do not hit the interpreter recursion limit.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Mapping, Optional, Sequence, Union

import numpy as np
from loguru import logger

from lulc.data.feature_table import FeatureTable
from lulc.errors import InvalidInputError, SchemaMismatchError
from lulc.models.classifier import VectorLike, predictor_columns, vector_value

# Scores closer than this are treated as equal
_SCORE_EPS = 1e-12


@dataclass(frozen=True)
class LeafNode:
    label: int
    n_samples: int


@dataclass
class SplitNode:
    attribute: str
    threshold: float
    left: Optional["DecisionNode"]
    right: Optional["DecisionNode"]
    n_samples: int
    impurity_decrease: float


DecisionNode = Union[LeafNode, SplitNode]

# node_id -> column indices the node may split on
FeatureSampler = Callable[[int], np.ndarray]


def gini(counts: np.ndarray) -> float:
    """Gini impurity 1 - sum(p_c^2) of a vector of class counts."""
    total = counts.sum()
    if total == 0:
        return 0.0
    p = counts / total
    return float(1.0 - np.dot(p, p))


def _majority(counts: np.ndarray, classes: np.ndarray) -> int:
    # classes are sorted ascending, argmax takes the first maximum
    return int(classes[int(np.argmax(counts))])


def _best_split(
    X: np.ndarray,
    y: np.ndarray,
    rows: np.ndarray,
    columns: Iterable[int],
    n_classes: int,
    min_leaf_size: int,
) -> Optional[tuple[float, int, float]]:
    """Lowest weighted child impurity over all candidate splits.

    Returns ``(score, column, threshold)`` or None if no split leaves both
    children with at least *min_leaf_size* rows.
    """
    n = len(rows)
    n_left = np.arange(1, n)
    n_right = n - n_left
    size_ok = (n_left >= min_leaf_size) & (n_right >= min_leaf_size)
    if not size_ok.any():
        return None

    node_y = y[rows]
    best = None

    for col in columns:
        values = X[rows, col]
        order = np.argsort(values, kind="stable")
        sorted_values = values[order]

        valid = size_ok & (sorted_values[1:] > sorted_values[:-1])
        if not valid.any():
            continue

        onehot = np.zeros((n, n_classes), dtype=np.float64)
        onehot[np.arange(n), node_y[order]] = 1.0
        left = np.cumsum(onehot, axis=0)[:-1]
        right = left[-1] + onehot[-1] - left

        gini_left = 1.0 - ((left / n_left[:, None]) ** 2).sum(axis=1)
        gini_right = 1.0 - ((right / n_right[:, None]) ** 2).sum(axis=1)
        scores = (n_left * gini_left + n_right * gini_right) / n
        scores[~valid] = np.inf

        lowest = scores.min()
        i = int(np.flatnonzero(scores <= lowest + _SCORE_EPS)[0])
        if best is not None and not scores[i] < best[0] - _SCORE_EPS:
            continue

        lo, hi = sorted_values[i], sorted_values[i + 1]
        threshold = float((lo + hi) / 2.0)
        if threshold <= lo:
            threshold = float(hi)
        best = (float(scores[i]), int(col), threshold)

    return best


def grow_tree(
    X: np.ndarray,
    y: np.ndarray,
    classes: np.ndarray,
    rows: np.ndarray,
    attributes: Sequence[str],
    max_depth: Optional[int] = None,
    min_leaf_size: int = 1,
    feature_sampler: Optional[FeatureSampler] = None,
) -> DecisionNode:
    """Grow a tree over ``X[rows]``.

    Parameters
    ----------
    X : np.ndarray
        Predictor matrix, columns aligned with *attributes*.
    y : np.ndarray
        Class index per row of *X* (position in *classes*).
    classes : np.ndarray
        Sorted class labels.
    rows : np.ndarray
        Rows of *X* reaching the root (may contain repeats).
    attributes : Sequence[str]
        Column names of *X*.
    max_depth : int, optional
        Depth at which nodes become leaves (root is depth 0).
    min_leaf_size : int
        Minimum rows on each side of a split.
    feature_sampler : FeatureSampler, optional
        Candidate columns per node id (root 1, children 2i and 2i+1).
        Defaults to searching every column.

    Returns
    -------
    DecisionNode
        Root of the grown tree.
    """
    n_classes = len(classes)
    all_columns = np.arange(X.shape[1])
    root: Optional[DecisionNode] = None

    stack = [(rows, 0, 1, None, None)]
    while stack:
        node_rows, depth, node_id, parent, side = stack.pop()
        counts = np.bincount(y[node_rows], minlength=n_classes)
        parent_gini = gini(counts)

        split = None
        at_max_depth = max_depth is not None and depth >= max_depth
        if np.count_nonzero(counts) > 1 and not at_max_depth:
            columns = all_columns if feature_sampler is None else np.sort(feature_sampler(node_id))
            split = _best_split(X, y, node_rows, columns, n_classes, min_leaf_size)
            if split is not None and not split[0] < parent_gini - _SCORE_EPS:
                split = None

        if split is None:
            node: DecisionNode = LeafNode(_majority(counts, classes), len(node_rows))
        else:
            score, col, threshold = split
            node = SplitNode(
                attribute=attributes[col],
                threshold=threshold,
                left=None,
                right=None,
                n_samples=len(node_rows),
                impurity_decrease=len(node_rows) * (parent_gini - score),
            )
            goes_left = X[node_rows, col] < threshold
            stack.append((node_rows[~goes_left], depth + 1, 2 * node_id + 1, node, "right"))
            stack.append((node_rows[goes_left], depth + 1, 2 * node_id, node, "left"))

        if parent is None:
            root = node
        else:
            setattr(parent, side, node)

    return root


def iter_nodes(root: DecisionNode):
    """Yield every node of the tree, parents before children."""
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        if isinstance(node, SplitNode):
            stack.append(node.right)
            stack.append(node.left)


def tree_depth(root: DecisionNode) -> int:
    depth = 0
    stack = [(root, 0)]
    while stack:
        node, d = stack.pop()
        depth = max(depth, d)
        if isinstance(node, SplitNode):
            stack.append((node.left, d + 1))
            stack.append((node.right, d + 1))
    return depth


def predict_node(root: DecisionNode, vector: VectorLike) -> int:
    node = root
    while isinstance(node, SplitNode):
        node = node.left if vector_value(vector, node.attribute) < node.threshold else node.right
    return node.label


def predict_node_array(root: DecisionNode, X: np.ndarray, columns: Mapping[str, int]) -> np.ndarray:
    """Route every row of *X* through the tree at once."""
    out = np.empty(len(X), dtype=np.int64)
    stack = [(root, np.arange(len(X)))]
    while stack:
        node, idx = stack.pop()
        if len(idx) == 0:
            continue
        if isinstance(node, LeafNode):
            out[idx] = node.label
            continue
        goes_left = X[idx, columns[node.attribute]] < node.threshold
        stack.append((node.left, idx[goes_left]))
        stack.append((node.right, idx[~goes_left]))
    return out


def feature_importance(roots: Iterable[DecisionNode], predictors: Sequence[str]) -> dict[str, float]:
    """Mean decrease in impurity per predictor, normalized to sum to 1.

    All zeros when no tree contains a split.
    """
    totals = {p: 0.0 for p in predictors}
    for root in roots:
        for node in iter_nodes(root):
            if isinstance(node, SplitNode):
                totals[node.attribute] += node.impurity_decrease

    grand_total = sum(totals.values())
    if grand_total <= 0:
        return totals
    return {p: v / grand_total for p, v in totals.items()}


def check_training_input(
    table: FeatureTable,
    class_property: Optional[str],
    predictors: Optional[Sequence[str]],
    max_depth: Optional[int],
    min_leaf_size: int,
) -> tuple[str, ...]:
    """Validate trainer arguments; returns the predictor list to use."""
    if class_property is not None and class_property != table.class_property:
        raise SchemaMismatchError(
            f"Class property '{class_property}' does not match table class property "
            f"'{table.class_property}' ({len(table)} rows)"
        )
    if len(table) == 0:
        raise InvalidInputError(
            f"Cannot train on an empty table (attributes={list(table.attributes)})"
        )
    predictors = tuple(table.attributes if predictors is None else predictors)
    if not predictors:
        raise InvalidInputError("At least one predictor attribute is required")
    for name in predictors:
        table.attribute_index(name)
    if max_depth is not None and max_depth < 0:
        raise InvalidInputError(f"max_depth must be >= 0, got {max_depth}")
    if min_leaf_size < 1:
        raise InvalidInputError(f"min_leaf_size must be >= 1, got {min_leaf_size}")
    return predictors


def encode_labels(labels: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Sorted class labels and the class index of every row."""
    classes, y = np.unique(labels, return_inverse=True)
    return classes, y.reshape(-1)


@dataclass(frozen=True)
class DecisionTreeModel:
    """A trained CART classifier."""

    root: DecisionNode
    predictors: tuple[str, ...]
    class_property: str

    def predict(self, vector: VectorLike) -> int:
        return predict_node(self.root, vector)

    def predict_array(self, values: np.ndarray, attributes: Sequence[str]) -> np.ndarray:
        columns = predictor_columns(attributes, self.predictors)
        return predict_node_array(self.root, np.asarray(values, dtype=np.float64), columns)

    def predict_table(self, table: FeatureTable) -> np.ndarray:
        return self.predict_array(table.values, table.attributes)

    def importance(self) -> dict[str, float]:
        return feature_importance([self.root], self.predictors)

    def explain(self) -> dict:
        nodes = list(iter_nodes(self.root))
        return {
            "type": "CART",
            "classProperty": self.class_property,
            "inputProperties": list(self.predictors),
            "importance": self.importance(),
            "numberOfNodes": len(nodes),
            "numberOfLeaves": sum(isinstance(n, LeafNode) for n in nodes),
            "depth": tree_depth(self.root),
        }


def train_decision_tree(
    table: FeatureTable,
    class_property: Optional[str] = None,
    predictors: Optional[Sequence[str]] = None,
    max_depth: Optional[int] = None,
    min_leaf_size: int = 1,
) -> DecisionTreeModel:
    """Induce a CART classifier from a training table.

    Parameters
    ----------
    table : FeatureTable
        Training rows.
    class_property : str, optional
        Label attribute; must match ``table.class_property`` when given.
    predictors : Sequence[str], optional
        Predictor attributes to split on (default: all table attributes).
    max_depth : int, optional
        Maximum tree depth (None = unlimited).
    min_leaf_size : int
        Minimum rows per child.

    Returns
    -------
    DecisionTreeModel

    Raises
    ------
    InvalidInputError
        Empty table or invalid stopping parameters.
    SchemaMismatchError
        Unknown predictor or class property.
    """
    predictors = check_training_input(table, class_property, predictors, max_depth, min_leaf_size)

    X = table.select(predictors).values
    classes, y = encode_labels(table.labels)
    root = grow_tree(
        X, y, classes, np.arange(len(table)), predictors,
        max_depth=max_depth, min_leaf_size=min_leaf_size,
    )

    model = DecisionTreeModel(root, predictors, table.class_property)
    info = model.explain()
    logger.info(
        "Trained CART on {} rows: {} nodes, {} leaves, depth {}",
        len(table), info["numberOfNodes"], info["numberOfLeaves"], info["depth"],
    )
    return model
