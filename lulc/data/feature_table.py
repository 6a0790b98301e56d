"""Immutable tables of labeled per-pixel feature vectors.

A ``FeatureTable`` is the hand-off format between sampling, splitting,
training and evaluation. Predictor values are kept in a read-only float64
matrix (rows × attributes) and class labels in a read-only int64 vector, so
trainers can work on whole columns without copying.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, Mapping, Optional, Sequence

import numpy as np
import pandas as pd
from loguru import logger

from lulc.errors import InvalidInputError, SchemaMismatchError

DEFAULT_CLASS_PROPERTY = "class"


@dataclass(frozen=True)
class FeatureVector:
    """One labeled pixel: named numeric attributes plus an integer class."""

    attributes: tuple[str, ...]
    values: tuple[float, ...]
    label: int

    def __post_init__(self):
        if len(self.attributes) != len(self.values):
            raise SchemaMismatchError(
                f"FeatureVector has {len(self.attributes)} attribute names "
                f"but {len(self.values)} values"
            )

    def __getitem__(self, name: str) -> float:
        try:
            return self.values[self.attributes.index(name)]
        except ValueError:
            raise SchemaMismatchError(
                f"Attribute '{name}' not in vector schema {list(self.attributes)}"
            ) from None

    def as_dict(self) -> dict[str, float]:
        return dict(zip(self.attributes, self.values))


def _as_matrix(values, n_attributes: int) -> np.ndarray:
    matrix = np.asarray(values, dtype=np.float64)
    if matrix.size == 0:
        return np.empty((0, n_attributes), dtype=np.float64)
    if matrix.ndim != 2 or matrix.shape[1] != n_attributes:
        raise SchemaMismatchError(
            f"Expected a (rows, {n_attributes}) value matrix, got shape {matrix.shape}"
        )
    return matrix


class FeatureTable:
    """Ordered, immutable sequence of feature vectors sharing one schema.

    Rows with any missing (NaN) or non-finite predictor are dropped at
    construction.

    Parameters
    ----------
    attributes : Sequence[str]
        Predictor attribute names in schema order.
    values : array-like
        Matrix of shape (rows, len(attributes)).
    labels : array-like
        Integer class label per row.
    class_property : str
        Name of the class label attribute (e.g., "Map").
    """

    def __init__(
        self,
        attributes: Sequence[str],
        values,
        labels,
        class_property: str = DEFAULT_CLASS_PROPERTY,
    ):
        attributes = tuple(str(a) for a in attributes)
        if len(set(attributes)) != len(attributes):
            raise SchemaMismatchError(f"Duplicate attribute names in schema {list(attributes)}")
        if class_property in attributes:
            raise SchemaMismatchError(
                f"Class property '{class_property}' cannot also be a predictor"
            )

        matrix = _as_matrix(values, len(attributes))
        label_arr = np.asarray(labels)
        if label_arr.size == 0:
            label_arr = np.empty(0, dtype=np.int64)
        if label_arr.ndim != 1 or len(label_arr) != len(matrix):
            raise SchemaMismatchError(
                f"Got {len(label_arr)} labels for {len(matrix)} rows"
            )

        valid = np.isfinite(matrix).all(axis=1)
        n_dropped = int((~valid).sum())
        if n_dropped:
            logger.debug("Dropped {} of {} rows with missing predictors", n_dropped, len(matrix))
            matrix = matrix[valid]
            label_arr = label_arr[valid]

        if label_arr.dtype.kind == "f" and not np.all(label_arr == np.round(label_arr)):
            raise SchemaMismatchError(f"Class property '{class_property}' must hold integer labels")

        self._attributes = attributes
        self._class_property = class_property
        self._values = np.array(matrix, dtype=np.float64)
        self._labels = np.array(label_arr, dtype=np.int64)
        self._values.flags.writeable = False
        self._labels.flags.writeable = False
        self._n_dropped = n_dropped

    # ─── Constructors ─────────────────────────────────────────────────────

    @classmethod
    def from_vectors(
        cls,
        vectors: Iterable[FeatureVector],
        attributes: Optional[Sequence[str]] = None,
        class_property: str = DEFAULT_CLASS_PROPERTY,
    ) -> "FeatureTable":
        """Build a table from vectors, checking each against the schema.

        If *attributes* is None the first vector's attributes define the schema.
        """
        vectors = list(vectors)
        if attributes is None:
            if not vectors:
                raise InvalidInputError("Cannot infer a schema from zero vectors")
            attributes = vectors[0].attributes
        schema = tuple(attributes)

        for i, vec in enumerate(vectors):
            if vec.attributes != schema:
                missing = [a for a in schema if a not in vec.attributes]
                extra = [a for a in vec.attributes if a not in schema]
                raise SchemaMismatchError(
                    f"Row {i} of {len(vectors)} does not match schema: "
                    f"missing={missing}, unexpected={extra}, order={list(vec.attributes)}"
                )

        return cls(
            schema,
            [vec.values for vec in vectors],
            [vec.label for vec in vectors],
            class_property=class_property,
        )

    @classmethod
    def from_records(
        cls,
        records: Iterable[Mapping],
        attributes: Sequence[str],
        class_property: str = DEFAULT_CLASS_PROPERTY,
    ) -> "FeatureTable":
        """Build a table from dict-like records (e.g., sampled feature properties).

        Records missing a predictor (absent key or None) are dropped, as are
        records without a class label.
        """
        values = []
        labels = []
        n_unlabeled = 0
        for record in records:
            label = record.get(class_property)
            if label is None:
                n_unlabeled += 1
                continue
            values.append([
                np.nan if record.get(a) is None else float(record[a]) for a in attributes
            ])
            labels.append(int(label))

        if n_unlabeled:
            logger.warning("Dropped {} records without a '{}' label", n_unlabeled, class_property)

        return cls(attributes, values, labels, class_property=class_property)

    @classmethod
    def from_frame(
        cls,
        df: pd.DataFrame,
        attributes: Optional[Sequence[str]] = None,
        class_property: str = DEFAULT_CLASS_PROPERTY,
    ) -> "FeatureTable":
        """Build a table from a DataFrame with one column per attribute."""
        if class_property not in df.columns:
            raise SchemaMismatchError(
                f"Class property '{class_property}' not in columns {list(df.columns)}"
            )
        if attributes is None:
            attributes = [c for c in df.columns if c != class_property]
        missing = [a for a in attributes if a not in df.columns]
        if missing:
            raise SchemaMismatchError(
                f"Columns {missing} not found in frame with {len(df)} rows"
            )

        labelled = df[df[class_property].notna()]
        return cls(
            attributes,
            labelled[list(attributes)].to_numpy(dtype=np.float64),
            labelled[class_property].to_numpy(),
            class_property=class_property,
        )

    # ─── Accessors ────────────────────────────────────────────────────────

    @property
    def attributes(self) -> tuple[str, ...]:
        return self._attributes

    @property
    def class_property(self) -> str:
        return self._class_property

    @property
    def values(self) -> np.ndarray:
        return self._values

    @property
    def labels(self) -> np.ndarray:
        return self._labels

    @property
    def n_dropped(self) -> int:
        """Rows removed at construction because of missing predictors."""
        return self._n_dropped

    def __len__(self) -> int:
        return len(self._labels)

    def __iter__(self) -> Iterator[FeatureVector]:
        for i in range(len(self)):
            yield self.row(i)

    def __repr__(self) -> str:
        return (
            f"FeatureTable(rows={len(self)}, attributes={list(self._attributes)}, "
            f"class_property='{self._class_property}')"
        )

    def row(self, index: int) -> FeatureVector:
        return FeatureVector(
            self._attributes,
            tuple(float(v) for v in self._values[index]),
            int(self._labels[index]),
        )

    def attribute_index(self, name: str) -> int:
        try:
            return self._attributes.index(name)
        except ValueError:
            raise SchemaMismatchError(
                f"Attribute '{name}' not in table schema {list(self._attributes)} "
                f"({len(self)} rows)"
            ) from None

    def column(self, name: str) -> np.ndarray:
        return self._values[:, self.attribute_index(name)]

    def classes(self) -> list[int]:
        """Sorted distinct class labels observed in the table."""
        return [int(c) for c in np.unique(self._labels)]

    def class_counts(self) -> dict[int, int]:
        codes, counts = np.unique(self._labels, return_counts=True)
        return {int(c): int(n) for c, n in zip(codes, counts)}

    # ─── Derived tables ───────────────────────────────────────────────────

    def take(self, indices) -> "FeatureTable":
        """New table with the given rows, in the given order (repeats allowed)."""
        idx = np.asarray(indices, dtype=np.int64)
        return FeatureTable(
            self._attributes,
            self._values[idx],
            self._labels[idx],
            class_property=self._class_property,
        )

    def select(self, attributes: Sequence[str]) -> "FeatureTable":
        """New table restricted to *attributes*, in the given order."""
        cols = [self.attribute_index(a) for a in attributes]
        return FeatureTable(
            attributes,
            self._values[:, cols],
            self._labels,
            class_property=self._class_property,
        )

    def to_frame(self) -> pd.DataFrame:
        df = pd.DataFrame(self._values, columns=list(self._attributes))
        df[self._class_property] = self._labels
        return df
