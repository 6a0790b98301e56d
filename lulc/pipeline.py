"""End-to-end land-cover classification: sample, split, train, evaluate, map.

Stages run sequentially and every random draw is seeded from the single
``seed`` argument, so two runs with identical inputs give identical
confusion matrices.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np
import xarray as xr
from loguru import logger
from shapely.geometry.base import BaseGeometry

from config.settings import (
    AGREEMENT_SAMPLE_POINTS,
    LABEL_BAND,
    MAX_DEPTH,
    MIN_LEAF_SIZE,
    NODATA_CLASS,
    NUM_TREES,
    PER_CLASS_SAMPLES,
    SCALE,
    SEED,
    TARGET_CLASSES,
    TRAIN_SPLIT,
)
from lulc.acquisition.raster import LabeledRaster, PredictorRaster, read_at
from lulc.data.feature_table import FeatureTable
from lulc.errors import InvalidInputError
from lulc.evaluation.confusion import ConfusionMatrix, evaluate
from lulc.evaluation.report import accuracy_summary, clean_metric, log_summary
from lulc.models.classifier import Classifier
from lulc.models.forest import train_random_forest
from lulc.models.tree import train_decision_tree
from lulc.sampling.split import SplitResult, random_split
from lulc.sampling.stratified import balanced_counts, present_classes, shortfall

CART = "CART"
RANDOM_FOREST = "Random Forest"


@dataclass
class PipelineResult:
    classes: list[int]
    samples: FeatureTable
    split: SplitResult
    models: dict[str, Classifier]
    matrices: dict[str, ConfusionMatrix]
    maps: dict[str, xr.DataArray] = field(default_factory=dict)
    agreement: Optional[ConfusionMatrix] = None


def agreement_check(
    labels: LabeledRaster,
    classified: xr.DataArray,
    geometry: Optional[BaseGeometry],
    scale: Optional[float],
    num_points: int,
    seed: int,
) -> ConfusionMatrix:
    """Compare a classified map with the reference labels on a stratified pixel sample.

    Pixels left unclassified in the map (missing predictors) are skipped.
    """
    locations = labels.sample_stratified(geometry, scale, None, seed, num_points=num_points)
    predicted = read_at(classified, locations)
    keep = np.isfinite(predicted) & (predicted != NODATA_CLASS)
    logger.info("Agreement check on {} of {} sampled pixels", int(keep.sum()), len(locations))
    return ConfusionMatrix.from_labels(locations.labels[keep], predicted[keep].astype(np.int64))


def run_pipeline(
    labels: LabeledRaster,
    predictors: PredictorRaster,
    geometry: Optional[BaseGeometry] = None,
    scale: Optional[float] = SCALE,
    target_classes: Sequence[int] = TARGET_CLASSES,
    per_class: int = PER_CLASS_SAMPLES,
    class_counts: Optional[dict[int, int]] = None,
    train_split: float = TRAIN_SPLIT,
    seed: int = SEED,
    num_trees: int = NUM_TREES,
    max_depth: Optional[int] = MAX_DEPTH,
    min_leaf_size: int = MIN_LEAF_SIZE,
    agreement_points: int = AGREEMENT_SAMPLE_POINTS,
    class_property: str = LABEL_BAND,
    classify_maps: bool = True,
) -> PipelineResult:
    """Run sampling, splitting, CART and random-forest training, and evaluation.

    Parameters
    ----------
    labels : LabeledRaster
        Reference land-cover raster.
    predictors : PredictorRaster
        Predictor bands on a grid covering the labels.
    geometry : BaseGeometry, optional
        AOI to sample within (None = whole raster).
    scale : float, optional
        Sampling pixel size.
    target_classes : Sequence[int]
        Classes to model; only those present in the AOI are sampled.
        Ignored when *class_counts* is given.
    per_class : int
        Requested points per class for balanced sampling.
    class_counts : dict[int, int], optional
        Explicit per-class point counts.
    train_split : float
        Train proportion for the random split.
    seed : int
        Seed for sampling, splitting and the forest.
    num_trees : int
        Random forest size.
    max_depth, min_leaf_size
        Tree stopping parameters (both models).
    agreement_points : int
        Points per class for the map-vs-reference check (0 = skip).
    class_property : str
        Name given to the label attribute of the sampled table.
    classify_maps : bool
        Classify the full predictor raster with both models.

    Returns
    -------
    PipelineResult
    """
    # Stage 1: classes and sampling design
    if class_counts is None:
        classes = present_classes(labels, geometry, scale, target_classes)
        if not classes:
            raise InvalidInputError(
                f"None of the target classes {list(target_classes)} occur in the AOI"
            )
        class_counts = balanced_counts(classes, per_class)
    else:
        classes = sorted(int(c) for c in class_counts)

    # Stage 2: stratified sampling + feature extraction
    locations = labels.sample_stratified(geometry, scale, class_counts, seed)
    missing = shortfall(class_counts, locations)
    if missing:
        logger.warning("Under-sampled classes (points short): {}", missing)

    samples = predictors.extract(locations, scale, class_property)

    # Stage 3: train/test split
    split = random_split(samples, train_split, seed)

    # Stage 4: models
    models: dict[str, Classifier] = {
        CART: train_decision_tree(
            split.train, class_property, predictors.bands,
            max_depth=max_depth, min_leaf_size=min_leaf_size,
        ),
        RANDOM_FOREST: train_random_forest(
            split.train, class_property, predictors.bands,
            num_trees=num_trees, seed=seed,
            max_depth=max_depth, min_leaf_size=min_leaf_size,
        ),
    }
    logger.info("RF variable importance: {}", models[RANDOM_FOREST].importance)

    # Stage 5: evaluation on the held-out set
    if len(split.test) == 0:
        logger.warning("Test set is empty; accuracy metrics will be undefined")
    matrices = {}
    for name, model in models.items():
        matrices[name] = evaluate(model, split.test)
        log_summary(name, matrices[name])

    result = PipelineResult(
        classes=classes,
        samples=samples,
        split=split,
        models=models,
        matrices=matrices,
    )

    # Stage 6: wall-to-wall maps and pixel-level agreement
    if classify_maps:
        for name, model in models.items():
            result.maps[name] = predictors.classify_all(model)
        if agreement_points > 0:
            result.agreement = agreement_check(
                labels, result.maps[RANDOM_FOREST], geometry, scale, agreement_points, seed,
            )
            log_summary("RF vs Reference", result.agreement)

    return result


def build_report(result: PipelineResult, params: Optional[dict] = None) -> dict:
    """JSON-serializable summary of a pipeline run."""
    models = {}
    for name, model in result.models.items():
        explain = model.explain()
        explain["importance"] = {k: clean_metric(v) for k, v in explain["importance"].items()}
        if "outOfBagErrorEstimate" in explain:
            explain["outOfBagErrorEstimate"] = clean_metric(explain["outOfBagErrorEstimate"])
        models[name] = {
            "explain": explain,
            "test": accuracy_summary(result.matrices[name]),
        }

    return {
        "params": dict(params or {}),
        "classes": list(result.classes),
        "samples": {
            "total": len(result.samples),
            "per_class": {str(k): v for k, v in result.samples.class_counts().items()},
            "train": len(result.split.train),
            "test": len(result.split.test),
        },
        "models": models,
        "agreement": accuracy_summary(result.agreement) if result.agreement is not None else None,
    }
