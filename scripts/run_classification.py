"""Land-cover classification run: sample, train CART and RF, evaluate, map.

Features:
    - File logging to logs/run_classification_YYYYMMDD_HHMMSS.log
    - JSON accuracy report and SQLite run history
    - Optional NetCDF export of the classified maps

Usage:
    python scripts/run_classification.py
    python scripts/run_classification.py --stack data/stacks/delhi_2020.nc --aoi data/aoi/delhi.geojson
    python scripts/run_classification.py --stack stack.nc --per-class 200 --trees 50 --no-save-maps
"""

from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path

import click
from loguru import logger

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config.settings import (
    AGREEMENT_SAMPLE_POINTS,
    AOI_CRS,
    HISTORY_DB,
    LABEL_BAND,
    MAPS_DIR,
    MIN_LEAF_SIZE,
    NUM_TREES,
    PER_CLASS_SAMPLES,
    PREDICTOR_BANDS,
    REPORTS_DIR,
    SCALE,
    SEED,
    STACK_PATH,
    TRAIN_SPLIT,
)
from lulc.acquisition.aoi import load_aoi_geometry
from lulc.acquisition.raster import load_stack, save_map
from lulc.evaluation.history import store_evaluation
from lulc.evaluation.report import save_report
from lulc.log import setup_logging
from lulc.pipeline import RANDOM_FOREST, build_report, run_pipeline


@click.command()
@click.option(
    "--stack",
    default=str(STACK_PATH),
    show_default=True,
    type=click.Path(exists=True, dir_okay=False),
    help="NetCDF stack with the label band and predictor bands.",
)
@click.option("--label-band", default=LABEL_BAND, help="Variable holding class codes.")
@click.option("--bands", default=",".join(PREDICTOR_BANDS), help="Comma-separated predictor bands.")
@click.option(
    "--aoi",
    default=None,
    type=click.Path(exists=False),
    help="Path to AOI polygon (GeoJSON or GeoPackage).",
)
@click.option(
    "--crs",
    default=None,
    help="CRS of the stack x/y coordinates (default: read from the stack).",
)
@click.option(
    "--scale",
    default=SCALE,
    type=float,
    help="Sampling stride in raster units (default: every pixel).",
)
@click.option("--per-class", default=PER_CLASS_SAMPLES, help="Sample points per class.")
@click.option("--train-split", default=TRAIN_SPLIT, help="Train proportion.")
@click.option("--seed", default=SEED, help="Random seed.")
@click.option("--trees", default=NUM_TREES, help="Number of random forest trees.")
@click.option("--max-depth", default=None, type=int, help="Maximum tree depth.")
@click.option("--min-leaf", default=MIN_LEAF_SIZE, help="Minimum rows per leaf.")
@click.option(
    "--agreement-points",
    default=AGREEMENT_SAMPLE_POINTS,
    help="Points per class for the map-vs-reference check (0 to skip).",
)
@click.option(
    "--save-maps/--no-save-maps",
    default=True,
    help="Write the CART and RF maps as NetCDF.",
)
def main(
    stack: str,
    label_band: str,
    bands: str,
    aoi: str | None,
    crs: str | None,
    scale: float | None,
    per_class: int,
    train_split: float,
    seed: int,
    trees: int,
    max_depth: int | None,
    min_leaf: int,
    agreement_points: int,
    save_maps: bool,
) -> None:
    """Run the land-cover classification and accuracy assessment pipeline."""
    setup_logging("run_classification")
    band_list = [b.strip() for b in bands.split(",") if b.strip()]
    run_name = datetime.utcnow().strftime("%Y%m%d_%H%M%S")

    logger.info("=== Land Cover Classification (CART & Random Forest) ===")
    logger.info("Stack: {}, bands: {}", stack, band_list)

    try:
        labels, predictors = load_stack(Path(stack), label_band, band_list)
        target_crs = crs or labels.crs
        if target_crs is None:
            logger.warning("Stack records no CRS; assuming {}", AOI_CRS)
            target_crs = AOI_CRS
        geometry = load_aoi_geometry(path=Path(aoi) if aoi else None, target_crs=target_crs)

        result = run_pipeline(
            labels,
            predictors,
            geometry=geometry,
            scale=scale,
            per_class=per_class,
            train_split=train_split,
            seed=seed,
            num_trees=trees,
            max_depth=max_depth,
            min_leaf_size=min_leaf,
            agreement_points=agreement_points if save_maps else 0,
            class_property=label_band,
            classify_maps=save_maps,
        )
    except Exception:
        logger.exception("Classification run failed")
        raise

    params = {
        "stack": str(stack),
        "bands": band_list,
        "crs": target_crs,
        "scale": scale,
        "per_class": per_class,
        "train_split": train_split,
        "seed": seed,
        "trees": trees,
        "max_depth": max_depth,
        "min_leaf": min_leaf,
    }
    save_report(build_report(result, params), run_name, REPORTS_DIR)

    for name, cm in result.matrices.items():
        store_evaluation(
            run_name, name, cm,
            dataset="test", seed=seed, n_train=len(result.split.train), db_path=HISTORY_DB,
        )
    if result.agreement is not None:
        store_evaluation(
            run_name, RANDOM_FOREST, result.agreement,
            dataset="map_agreement", seed=seed, db_path=HISTORY_DB,
        )

    for name, classified in result.maps.items():
        slug = name.lower().replace(" ", "_")
        save_map(classified, MAPS_DIR / f"{slug}_{run_name}.nc")

    logger.info("=== Classification Complete ===")
    for name, cm in result.matrices.items():
        logger.info("{}: accuracy {:.4f}, kappa {:.4f}", name, cm.accuracy(), cm.kappa())


if __name__ == "__main__":
    main()
