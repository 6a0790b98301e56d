"""Prediction interface shared by decision trees and random forests.

Evaluation code only talks to a ``Classifier``; it never needs to know
which kind of model produced the predictions.
"""

from __future__ import annotations

from typing import Mapping, Protocol, Sequence, Union, runtime_checkable

import numpy as np

from lulc.data.feature_table import FeatureTable, FeatureVector
from lulc.errors import SchemaMismatchError

VectorLike = Union[FeatureVector, Mapping[str, float]]


@runtime_checkable
class Classifier(Protocol):
    predictors: tuple[str, ...]
    class_property: str

    def predict(self, vector: VectorLike) -> int: ...

    def predict_array(self, values: np.ndarray, attributes: Sequence[str]) -> np.ndarray: ...

    def predict_table(self, table: FeatureTable) -> np.ndarray: ...

    def explain(self) -> dict: ...


def vector_value(vector: VectorLike, name: str) -> float:
    """Value of attribute *name* in a FeatureVector or plain mapping."""
    if isinstance(vector, FeatureVector):
        return vector[name]
    try:
        return float(vector[name])
    except KeyError:
        raise SchemaMismatchError(
            f"Attribute '{name}' missing from input vector with keys {list(vector)}"
        ) from None


def predictor_columns(attributes: Sequence[str], predictors: Sequence[str]) -> dict[str, int]:
    """Column index of every predictor within *attributes*."""
    attributes = list(attributes)
    missing = [p for p in predictors if p not in attributes]
    if missing:
        raise SchemaMismatchError(
            f"Predictors {missing} not found among input attributes {attributes}"
        )
    return {p: attributes.index(p) for p in predictors}


def classify_table(classifier: Classifier, table: FeatureTable) -> tuple[np.ndarray, np.ndarray]:
    """Reference and predicted labels for every row of *table*."""
    return table.labels.copy(), classifier.predict_table(table)


def majority_vote(votes: np.ndarray) -> np.ndarray:
    """Most frequent label per column of a (voters, samples) array.

    Ties go to the lowest label.
    """
    votes = np.asarray(votes, dtype=np.int64)
    if votes.ndim == 1:
        votes = votes[:, None]
    if votes.size == 0:
        return np.empty(votes.shape[1], dtype=np.int64)
    labels, codes = np.unique(votes, return_inverse=True)
    codes = codes.reshape(votes.shape)

    tallies = np.zeros((len(labels), votes.shape[1]), dtype=np.int64)
    for row in codes:
        tallies[row, np.arange(votes.shape[1])] += 1
    # argmax returns the first maximum, i.e. the lowest label
    return labels[np.argmax(tallies, axis=0)]
