"""Class-balanced stratified sampling of pixel locations from a labeled raster.

For each class present in the region, up to the requested number of pixels
is drawn uniformly without replacement. Classes with fewer pixels than
requested contribute all of them (under-sampling is silent). Each class uses
its own random stream seeded from ``(seed, class code)``, so the draw for one
class does not depend on which other classes are present.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np
from loguru import logger
from shapely.geometry.base import BaseGeometry

from lulc.acquisition.raster import LabeledRaster, SampleLocations
from lulc.errors import InvalidInputError


def _validate_request(
    class_counts: Optional[dict[int, int]],
    num_points: int,
    seed: int,
) -> dict[int, int]:
    counts = dict(class_counts or {})
    bad = {c: n for c, n in counts.items() if n is None or int(n) <= 0}
    if bad:
        raise InvalidInputError(f"Per-class sample counts must be positive, got {bad}")
    if num_points < 0:
        raise InvalidInputError(f"num_points must be >= 0, got {num_points}")
    if not counts and num_points == 0:
        raise InvalidInputError("Nothing to sample: no class counts and num_points=0")
    if seed < 0:
        raise InvalidInputError(f"Seed must be non-negative, got {seed}")
    return {int(c): int(n) for c, n in counts.items()}


def stratified_sample(
    labels: LabeledRaster,
    geometry: Optional[BaseGeometry],
    scale: Optional[float],
    class_counts: Optional[dict[int, int]],
    seed: int,
    num_points: int = 0,
) -> SampleLocations:
    """Draw a class-balanced set of pixel locations.

    Parameters
    ----------
    labels : LabeledRaster
        Raster of land-cover codes.
    geometry : BaseGeometry, optional
        Region to sample from (None = whole raster).
    scale : float, optional
        Sampling pixel size in raster units.
    class_counts : dict[int, int], optional
        Requested number of points per class code.
    seed : int
        Base seed for reproducible draws.
    num_points : int
        Points for classes present in the region but absent from
        *class_counts* (0 = skip those classes).

    Returns
    -------
    SampleLocations
        Drawn locations in raster (row-major) order.
    """
    counts = _validate_request(class_counts, num_points, seed)
    candidates = labels.grid(geometry, scale)

    selected = []
    for code in sorted(np.unique(candidates.labels).tolist()):
        requested = counts.get(code, num_points)
        if requested == 0:
            continue

        pool = np.flatnonzero(candidates.labels == code)
        if len(pool) <= requested:
            if len(pool) < requested:
                logger.debug(
                    "Class {}: only {} pixels available, {} requested",
                    code, len(pool), requested,
                )
            selected.append(pool)
            continue

        rng = np.random.default_rng([seed, code])
        selected.append(np.sort(rng.choice(pool, size=requested, replace=False)))

    idx = np.sort(np.concatenate(selected)) if selected else np.empty(0, dtype=np.int64)
    result = SampleLocations(
        rows=candidates.rows[idx],
        cols=candidates.cols[idx],
        x=candidates.x[idx],
        y=candidates.y[idx],
        labels=candidates.labels[idx],
    )
    logger.info("Stratified sample: {} points, per class {}", len(result), result.class_counts())
    return result


def present_classes(
    labels: LabeledRaster,
    geometry: Optional[BaseGeometry],
    scale: Optional[float],
    target_classes: Sequence[int],
) -> list[int]:
    """Target classes that actually occur inside *geometry*, sorted."""
    histogram = labels.histogram(geometry, scale)
    present = sorted(c for c in histogram if c in set(int(t) for t in target_classes))
    logger.info("Classes present in AOI (filtered): {}", present)
    return present


def balanced_counts(classes: Sequence[int], per_class: int) -> dict[int, int]:
    """Same requested count for every class."""
    return {int(c): int(per_class) for c in classes}


def shortfall(requested: dict[int, int], drawn: SampleLocations) -> dict[int, int]:
    """Classes that received fewer points than requested, with the deficit."""
    got = drawn.class_counts()
    return {
        code: n - got.get(code, 0)
        for code, n in sorted(requested.items())
        if got.get(code, 0) < n
    }
