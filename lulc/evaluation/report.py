"""Accuracy summaries: log-friendly dicts and JSON reports."""

from __future__ import annotations

import json
import math
from datetime import datetime
from pathlib import Path
from typing import Optional

from loguru import logger

from config.classes import class_names
from config.settings import REPORTS_DIR
from lulc.evaluation.confusion import ConfusionMatrix


def clean_metric(value: float) -> Optional[float]:
    """JSON has no NaN; undefined metrics are written as null."""
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return None
    return round(float(value), 6)


def _per_class(values: dict) -> dict:
    return {str(k): clean_metric(v) for k, v in values.items()}


def accuracy_summary(cm: ConfusionMatrix) -> dict:
    """All metrics of a confusion matrix in a JSON-serializable dict.

    Returns
    -------
    dict
        Keys: labels, class_names, matrix, total, overall_accuracy, kappa,
        producers_accuracy, consumers_accuracy, fscore.
    """
    return {
        "labels": list(cm.labels),
        "class_names": {str(k): v for k, v in class_names(cm.labels).items()},
        "matrix": cm.counts.tolist(),
        "total": cm.total,
        "overall_accuracy": clean_metric(cm.accuracy()),
        "kappa": clean_metric(cm.kappa()),
        "producers_accuracy": _per_class(cm.producers_accuracy()),
        "consumers_accuracy": _per_class(cm.consumers_accuracy()),
        "fscore": _per_class(cm.fscore()),
    }


def log_summary(name: str, cm: ConfusionMatrix) -> None:
    """Log the confusion matrix and headline metrics for one model."""
    frame = cm.to_frame(class_names(cm.labels))
    logger.info("{} Confusion Matrix\n{}", name, frame.to_string())
    logger.info("{} Overall Accuracy: {:.4f}", name, cm.accuracy())
    logger.info("{} Kappa: {:.4f}", name, cm.kappa())
    logger.info(
        "{} Producer's (per class): {}",
        name, {k: round(v, 4) for k, v in cm.producers_accuracy().items()},
    )
    logger.info(
        "{} Consumer's (per class): {}",
        name, {k: round(v, 4) for k, v in cm.consumers_accuracy().items()},
    )


def save_report(
    report: dict,
    run_name: str,
    reports_dir: Path = REPORTS_DIR,
) -> Path:
    """Write a pipeline report as JSON.

    Parameters
    ----------
    report : dict
        JSON-serializable report (see ``lulc.pipeline.build_report``).
    run_name : str
        Used in the filename.
    reports_dir : Path
        Output directory.

    Returns
    -------
    Path
        Path to the saved JSON file.
    """
    reports_dir.mkdir(parents=True, exist_ok=True)
    payload = dict(report)
    payload["created_at"] = datetime.utcnow().isoformat()

    path = reports_dir / f"report_{run_name}.json"
    with open(path, "w") as f:
        json.dump(payload, f, indent=2)
    logger.info("Saved report to {}", path)
    return path


def load_report(path: Path) -> dict:
    if not path.exists():
        raise FileNotFoundError(f"Report not found: {path}")
    with open(path) as f:
        return json.load(f)
