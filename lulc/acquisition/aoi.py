"""Area of Interest geometry loading and pixel-grid masking.

The AOI is read from a GeoPackage or GeoJSON polygon file and dissolved into
a single geometry. Without a polygon file the settings bbox is used.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import geopandas as gpd
import numpy as np
import shapely
from loguru import logger
from shapely.geometry import box
from shapely.geometry.base import BaseGeometry

from config.settings import AOI_BBOX, AOI_CRS, AOI_GEOJSON, AOI_GEOPACKAGE


def _read_polygon_file(path: Path, target_crs: str) -> BaseGeometry:
    gdf = gpd.read_file(str(path))
    logger.info("AOI file {}: {} feature(s) in {}", path.name, len(gdf), gdf.crs)
    if gdf.crs is not None and str(gdf.crs) != target_crs:
        logger.debug("Reprojecting AOI from {} to {}", gdf.crs, target_crs)
        gdf = gdf.to_crs(target_crs)
    return shapely.union_all(gdf.geometry.values)


def load_aoi_geometry(
    path: Optional[Path] = None,
    bbox: list[float] = AOI_BBOX,
    target_crs: str = AOI_CRS,
) -> BaseGeometry:
    """Load the AOI as a single shapely geometry.

    Parameters
    ----------
    path : Path, optional
        Polygon file to read. If *None*, ``AOI_GEOPACKAGE`` and then
        ``AOI_GEOJSON`` from settings are tried.
    bbox : list[float]
        ``[west, south, east, north]`` in ``AOI_CRS``, used when no polygon
        file exists.
    target_crs : str
        CRS the raster coordinates are expressed in; the geometry is
        reprojected to it.

    Returns
    -------
    BaseGeometry
        Union of all features in the file, or the bbox rectangle.
    """
    search = [path] if path is not None else [AOI_GEOPACKAGE, AOI_GEOJSON]
    found = next((p for p in search if p.exists()), None)
    if found is not None:
        return _read_polygon_file(found, target_crs)

    west, south, east, north = bbox
    logger.warning(
        "No AOI file among {}; using bbox W={} S={} E={} N={}",
        [p.name for p in search], west, south, east, north,
    )
    rect = box(west, south, east, north)
    if target_crs != AOI_CRS:
        rect = gpd.GeoSeries([rect], crs=AOI_CRS).to_crs(target_crs).iloc[0]
        logger.debug("Reprojected AOI bbox to {}", target_crs)
    return rect


def geometry_mask(
    geometry: Optional[BaseGeometry],
    x: np.ndarray,
    y: np.ndarray,
) -> np.ndarray:
    """Boolean (y, x) mask of pixel centres falling inside *geometry*.

    Pixels exactly on the boundary count as inside. A *None* geometry
    selects the whole grid.
    """
    xx, yy = np.meshgrid(np.asarray(x, dtype=np.float64), np.asarray(y, dtype=np.float64))
    if geometry is None:
        return np.ones(xx.shape, dtype=bool)
    return shapely.intersects_xy(geometry, xx, yy)
