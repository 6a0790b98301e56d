"""Global settings for the land-cover classification pipeline."""

from pathlib import Path

# ─── Project paths ────────────────────────────────────────────────────────────
ROOT_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = ROOT_DIR / "data"
AOI_DIR = DATA_DIR / "aoi"
STACKS_DIR = DATA_DIR / "stacks"
OUTPUT_DIR = DATA_DIR / "output"
REPORTS_DIR = OUTPUT_DIR / "reports"
MAPS_DIR = OUTPUT_DIR / "maps"
LOGS_DIR = ROOT_DIR / "logs"

# ─── Area of Interest ─────────────────────────────────────────────────────────
# Delhi region demo AOI: ~28.3–28.9°N, 76.5–77.2°E
AOI_BBOX = [76.5, 28.3, 77.2, 28.9]  # [west, south, east, north]
AOI_GEOJSON = AOI_DIR / "aoi.geojson"
AOI_GEOPACKAGE = AOI_DIR / "aoi.gpkg"
AOI_CRS = "EPSG:4326"

# ─── Labels & predictors ─────────────────────────────────────────────────────
YEAR = 2020
LABEL_BAND = "Map"  # ESA WorldCover class band
STACK_PATH = STACKS_DIR / f"stack_{YEAR}.nc"
PREDICTOR_BANDS = ["B2", "B3", "B4", "B8", "B11", "B12", "NDVI", "NDWI", "NBR"]

# Classes we try to model (must exist in the AOI to be sampled)
TARGET_CLASSES = [10, 20, 30, 40, 50, 60, 80, 90]

# ─── Sampling parameters ─────────────────────────────────────────────────────
SCALE = None  # sampling stride in raster units; None samples every pixel
PER_CLASS_SAMPLES = 500  # try 100–1000 depending on AOI size
TRAIN_SPLIT = 0.7
SEED = 42

# Pixel-level agreement check between the RF map and the reference labels
AGREEMENT_SAMPLE_POINTS = 5000

# ─── Model parameters ────────────────────────────────────────────────────────
NUM_TREES = 100
MAX_DEPTH = None  # unlimited
MIN_LEAF_SIZE = 1

# ─── Evaluation ──────────────────────────────────────────────────────────────
# |1 - expected agreement| below this is treated as zero when computing kappa
KAPPA_TOLERANCE = 1e-12
HISTORY_DB = OUTPUT_DIR / "evaluation_history.db"

# Fill value for unclassified pixels in output maps (not a WorldCover code)
NODATA_CLASS = 0
