"""In-memory labeled and predictor rasters backed by xarray.

These wrap an already-composited image stack (label band plus predictor
bands on a y/x grid) and provide the three operations the classification
pipeline needs from a raster: stratified location sampling, feature
extraction at locations, and wall-to-wall classification.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import numpy as np
import xarray as xr
from loguru import logger
from shapely.geometry.base import BaseGeometry

from config.settings import LABEL_BAND, NODATA_CLASS
from lulc.acquisition.aoi import geometry_mask
from lulc.data.feature_table import FeatureTable
from lulc.errors import InvalidInputError, SchemaMismatchError

_DIM_ALIASES = {"lat": "y", "latitude": "y", "lon": "x", "longitude": "x"}


def _ensure_yx(obj):
    """Rename lat/lon style dimensions to y/x."""
    renames = {d: _DIM_ALIASES[d] for d in obj.dims if d in _DIM_ALIASES}
    if renames:
        obj = obj.rename(renames)
    missing = [d for d in ("y", "x") if d not in obj.dims]
    if missing:
        raise SchemaMismatchError(f"Raster is missing spatial dimension(s) {missing}: {dict(obj.sizes)}")
    if "y" not in obj.coords or "x" not in obj.coords:
        obj = obj.assign_coords(y=np.arange(obj.sizes["y"]), x=np.arange(obj.sizes["x"]))
    return obj


def _resolution(obj) -> float:
    """Pixel size from coordinate spacing (1.0 for single-pixel axes)."""
    spacings = []
    for dim in ("x", "y"):
        coord = np.asarray(obj[dim].values, dtype=np.float64)
        if len(coord) > 1:
            spacings.append(abs(coord[1] - coord[0]))
    return float(min(spacings)) if spacings else 1.0


def stack_crs(data) -> Optional[str]:
    """CRS recorded on a stack: a ``crs`` attribute or a CF grid-mapping variable."""
    if data.attrs.get("crs"):
        return str(data.attrs["crs"])
    names = set(data.coords) | set(getattr(data, "data_vars", ()))
    for name in ("spatial_ref", "crs"):
        if name in names:
            attrs = data[name].attrs
            for key in ("crs_wkt", "spatial_ref"):
                if attrs.get(key):
                    return str(attrs[key])
    return None


def _stride(scale: Optional[float], resolution: float) -> int:
    if scale is None:
        return 1
    if scale <= 0:
        raise InvalidInputError(f"Scale must be positive, got {scale}")
    return max(1, int(round(scale / resolution)))


@dataclass(frozen=True)
class SampleLocations:
    """Pixel locations drawn from a labeled raster, in raster order."""

    rows: np.ndarray
    cols: np.ndarray
    x: np.ndarray
    y: np.ndarray
    labels: np.ndarray

    def __len__(self) -> int:
        return len(self.labels)

    def class_counts(self) -> dict[int, int]:
        codes, counts = np.unique(self.labels, return_counts=True)
        return {int(c): int(n) for c, n in zip(codes, counts)}


class LabeledRaster:
    """Single-band raster of integer land-cover codes.

    ``crs`` is the CRS of the x/y coordinates, if the stack records one.
    """

    def __init__(
        self,
        data: xr.DataArray,
        nodata: Optional[int] = None,
        crs: Optional[str] = None,
    ):
        data = _ensure_yx(data)
        if data.ndim != 2:
            raise SchemaMismatchError(f"Labeled raster must be 2D (y, x), got dims {data.dims}")
        self.data = data.transpose("y", "x")
        self.nodata = nodata
        self.crs = crs if crs is not None else stack_crs(data)

    @property
    def resolution(self) -> float:
        return _resolution(self.data)

    def grid(
        self,
        geometry: Optional[BaseGeometry],
        scale: Optional[float],
    ) -> SampleLocations:
        """All valid labeled pixels inside *geometry* at the given scale."""
        step = _stride(scale, self.resolution)
        ny, nx = self.data.sizes["y"], self.data.sizes["x"]
        row_idx = np.arange(0, ny, step)
        col_idx = np.arange(0, nx, step)
        if len(row_idx) * len(col_idx) == 1 and ny * nx > 1:
            raise InvalidInputError(
                f"Scale {scale} is a stride of {step} pixels at resolution {self.resolution:g}, "
                f"leaving one pixel of the {ny}x{nx} raster; scale must be in raster units"
            )

        x = np.asarray(self.data["x"].values)[col_idx]
        y = np.asarray(self.data["y"].values)[row_idx]
        values = np.asarray(self.data.values, dtype=np.float64)[np.ix_(row_idx, col_idx)]

        valid = np.isfinite(values) & geometry_mask(geometry, x, y)
        if self.nodata is not None:
            valid &= values != self.nodata

        r, c = np.nonzero(valid)
        return SampleLocations(
            rows=row_idx[r],
            cols=col_idx[c],
            x=x[c],
            y=y[r],
            labels=values[r, c].astype(np.int64),
        )

    def histogram(
        self,
        geometry: Optional[BaseGeometry] = None,
        scale: Optional[float] = None,
    ) -> dict[int, int]:
        """Frequency of each class code inside *geometry*."""
        return self.grid(geometry, scale).class_counts()

    def sample_stratified(
        self,
        geometry: Optional[BaseGeometry],
        scale: Optional[float],
        class_counts: Optional[dict[int, int]],
        seed: int,
        num_points: int = 0,
    ) -> SampleLocations:
        from lulc.sampling.stratified import stratified_sample

        return stratified_sample(self, geometry, scale, class_counts, seed, num_points)


def read_at(data: xr.DataArray, locations: SampleLocations, max_distance: Optional[float] = None) -> np.ndarray:
    """Nearest-pixel values of *data* at the location coordinates.

    Locations whose nearest pixel centre is farther than *max_distance*
    (default: one pixel) along either axis come back as NaN.
    """
    data = _ensure_yx(data)
    if len(locations) == 0:
        return np.empty(0, dtype=np.float64)

    if max_distance is None:
        max_distance = _resolution(data)

    px = xr.DataArray(locations.x, dims="points")
    py = xr.DataArray(locations.y, dims="points")
    picked = data.sel(x=px, y=py, method="nearest")

    values = np.asarray(picked.values, dtype=np.float64)
    dx = np.abs(np.asarray(picked["x"].values, dtype=np.float64) - locations.x)
    dy = np.abs(np.asarray(picked["y"].values, dtype=np.float64) - locations.y)
    values[(dx > max_distance) | (dy > max_distance)] = np.nan
    return values


class PredictorRaster:
    """Multi-band raster of predictor values (reflectances, indices)."""

    def __init__(self, data: xr.Dataset, bands: Optional[Sequence[str]] = None):
        data = _ensure_yx(data)
        if bands is None:
            bands = [name for name in data.data_vars if set(data[name].dims) == {"y", "x"}]
        missing = [b for b in bands if b not in data.data_vars]
        if missing:
            raise SchemaMismatchError(
                f"Bands {missing} not found in stack with variables {list(data.data_vars)}"
            )
        if not bands:
            raise InvalidInputError("Predictor raster needs at least one band")
        self.data = data
        self.bands = list(bands)

    @property
    def resolution(self) -> float:
        return _resolution(self.data)

    def extract(
        self,
        locations: SampleLocations,
        scale: Optional[float] = None,
        class_property: str = LABEL_BAND,
    ) -> FeatureTable:
        """Build feature rows at *locations*, labelled with the sampled class.

        Rows with any missing band are dropped.
        """
        tolerance = max(scale or 0.0, self.resolution)
        columns = [read_at(self.data[band], locations, tolerance) for band in self.bands]
        values = np.column_stack(columns) if columns else np.empty((len(locations), 0))

        table = FeatureTable(self.bands, values, locations.labels, class_property=class_property)
        if table.n_dropped:
            logger.warning(
                "Dropped {} of {} sampled points with missing predictor values",
                table.n_dropped,
                len(locations),
            )
        logger.info("Extracted {} feature rows over {} bands", len(table), len(self.bands))
        return table

    def classify_all(self, classifier, fill_value: int = NODATA_CLASS, name: str = "classification") -> xr.DataArray:
        """Apply *classifier* to every pixel; pixels with missing bands get *fill_value*."""
        stack = np.stack(
            [np.asarray(self.data[b].transpose("y", "x").values, dtype=np.float64) for b in self.bands],
            axis=-1,
        )
        ny, nx, nb = stack.shape
        flat = stack.reshape(-1, nb)
        valid = np.isfinite(flat).all(axis=1)

        out = np.full(ny * nx, fill_value, dtype=np.int64)
        if valid.any():
            out[valid] = classifier.predict_array(flat[valid], self.bands)

        logger.info("Classified {} of {} pixels", int(valid.sum()), ny * nx)
        return xr.DataArray(
            out.reshape(ny, nx),
            dims=("y", "x"),
            coords={"y": self.data["y"], "x": self.data["x"]},
            name=name,
            attrs={"nodata": fill_value},
        )


def load_stack(
    path: Path,
    label_band: str = LABEL_BAND,
    bands: Optional[Sequence[str]] = None,
) -> tuple[LabeledRaster, PredictorRaster]:
    """Open a NetCDF image stack and split it into label and predictor rasters.

    Parameters
    ----------
    path : Path
        NetCDF file with one variable per band on a y/x grid.
    label_band : str
        Variable holding the land-cover codes.
    bands : Sequence[str], optional
        Predictor variables. Defaults to every other 2D variable.

    Returns
    -------
    tuple[LabeledRaster, PredictorRaster]
    """
    if not path.exists():
        raise FileNotFoundError(f"Image stack not found: {path}")

    ds = _ensure_yx(xr.open_dataset(str(path)).load())
    if label_band not in ds.data_vars:
        raise SchemaMismatchError(
            f"Label band '{label_band}' not in stack variables {list(ds.data_vars)}"
        )

    if bands is None:
        bands = [
            name for name in ds.data_vars
            if name != label_band and set(ds[name].dims) == {"y", "x"}
        ]

    crs = stack_crs(ds)
    logger.info(
        "Loaded stack {} ({}x{} pixels, CRS={}, label={}, bands={})",
        path.name, ds.sizes["y"], ds.sizes["x"], crs, label_band, list(bands),
    )
    return LabeledRaster(ds[label_band], crs=crs), PredictorRaster(ds[list(bands)], bands)


def save_map(data: xr.DataArray, path: Path) -> Path:
    """Write a classified map to NetCDF."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data.to_netcdf(str(path))
    logger.info("Saved map: {}", path)
    return path
