"""Confusion matrix and accuracy-assessment metrics.

Rows are reference labels, columns are predicted labels, both indexed by the
sorted union of labels seen in either role. Metrics that are undefined for a
degenerate matrix (a class never referenced or never predicted, kappa with
expected agreement of 1) come back as NaN rather than raising, so the other
figures of a partial result stay usable.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from config.settings import KAPPA_TOLERANCE
from lulc.data.feature_table import FeatureTable
from lulc.errors import InvalidInputError


def _ratio(num: np.ndarray, den: np.ndarray) -> np.ndarray:
    out = np.full(len(num), np.nan)
    ok = den > 0
    out[ok] = num[ok] / den[ok]
    return out


@dataclass(frozen=True, eq=False)
class ConfusionMatrix:
    labels: tuple[int, ...]
    counts: np.ndarray

    def __post_init__(self):
        counts = np.array(self.counts, dtype=np.int64)
        n = len(self.labels)
        if counts.size == 0 and n == 0:
            counts = counts.reshape(n, n)
        if counts.shape != (n, n):
            raise InvalidInputError(
                f"Counts of shape {counts.shape} do not match {n} labels"
            )
        if (counts < 0).any():
            raise InvalidInputError("Confusion matrix counts must be non-negative")
        counts.flags.writeable = False
        object.__setattr__(self, "labels", tuple(int(c) for c in self.labels))
        object.__setattr__(self, "counts", counts)

    def __eq__(self, other) -> bool:
        if not isinstance(other, ConfusionMatrix):
            return NotImplemented
        return self.labels == other.labels and np.array_equal(self.counts, other.counts)

    @classmethod
    def from_labels(cls, reference: Sequence[int], predicted: Sequence[int]) -> "ConfusionMatrix":
        """Contingency table of reference vs. predicted labels."""
        ref = np.asarray(reference, dtype=np.int64).reshape(-1)
        pred = np.asarray(predicted, dtype=np.int64).reshape(-1)
        if len(ref) != len(pred):
            raise InvalidInputError(
                f"Got {len(ref)} reference labels but {len(pred)} predictions"
            )

        labels = np.union1d(ref, pred)
        counts = np.zeros((len(labels), len(labels)), dtype=np.int64)
        np.add.at(counts, (np.searchsorted(labels, ref), np.searchsorted(labels, pred)), 1)
        return cls(tuple(labels.tolist()), counts)

    @property
    def total(self) -> int:
        return int(self.counts.sum())

    @property
    def trace(self) -> int:
        return int(np.trace(self.counts))

    def row_sums(self) -> np.ndarray:
        return self.counts.sum(axis=1)

    def col_sums(self) -> np.ndarray:
        return self.counts.sum(axis=0)

    def accuracy(self) -> float:
        """Overall accuracy: correctly classified / total."""
        if self.total == 0:
            return float("nan")
        return self.trace / self.total

    def producers_accuracy(self) -> dict[int, float]:
        """Per-class recall; NaN for classes never seen as reference."""
        values = _ratio(np.diag(self.counts).astype(np.float64), self.row_sums())
        return dict(zip(self.labels, values.tolist()))

    def consumers_accuracy(self) -> dict[int, float]:
        """Per-class precision; NaN for classes never predicted."""
        values = _ratio(np.diag(self.counts).astype(np.float64), self.col_sums())
        return dict(zip(self.labels, values.tolist()))

    def kappa(self) -> float:
        """Cohen's kappa, NaN when expected agreement is 1 (or the matrix is empty)."""
        total = self.total
        if total == 0:
            return float("nan")
        observed = self.trace / total
        expected = float(np.dot(self.row_sums(), self.col_sums())) / total ** 2
        if abs(1.0 - expected) <= KAPPA_TOLERANCE:
            return float("nan")
        return (observed - expected) / (1.0 - expected)

    def fscore(self, beta: float = 1.0) -> dict[int, float]:
        """Per-class F-beta score from producer's and consumer's accuracy."""
        recall = np.array(list(self.producers_accuracy().values()))
        precision = np.array(list(self.consumers_accuracy().values()))
        b2 = beta ** 2
        num = (1 + b2) * precision * recall
        den = b2 * precision + recall
        with np.errstate(invalid="ignore", divide="ignore"):
            values = np.where(den > 0, num / np.where(den > 0, den, 1.0), np.nan)
        # a class with no hits but defined precision/recall scores 0
        values[(den == 0) & np.isfinite(precision) & np.isfinite(recall)] = 0.0
        return dict(zip(self.labels, values.tolist()))

    def to_frame(self, names: Optional[Mapping[int, str]] = None) -> pd.DataFrame:
        """Matrix as a DataFrame (index = reference, columns = predicted)."""
        names = names or {}
        axis = [names.get(c, c) for c in self.labels]
        return pd.DataFrame(
            self.counts,
            index=pd.Index(axis, name="reference"),
            columns=pd.Index(axis, name="predicted"),
        )


def evaluate(classifier, table: FeatureTable) -> ConfusionMatrix:
    """Apply *classifier* to every row of a held-out table and tabulate."""
    return ConfusionMatrix.from_labels(table.labels, classifier.predict_table(table))
