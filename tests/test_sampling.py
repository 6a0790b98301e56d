"""Tests for stratified sampling and feature extraction on small synthetic rasters."""

import numpy as np
import pytest
import xarray as xr
from shapely.geometry import box

from lulc.acquisition.raster import (
    LabeledRaster,
    PredictorRaster,
    SampleLocations,
    read_at,
    stack_crs,
)
from lulc.errors import InvalidInputError
from lulc.sampling.stratified import (
    balanced_counts,
    present_classes,
    shortfall,
    stratified_sample,
)


def _coords(n=10):
    return {"y": np.arange(n, dtype=float), "x": np.arange(n, dtype=float)}


def _labels(n=10):
    """Class 10 in the first two rows, class 40 everywhere else."""
    codes = np.full((n, n), 40, dtype=np.int64)
    codes[:2, :] = 10
    return LabeledRaster(xr.DataArray(codes, dims=("y", "x"), coords=_coords(n)))


def _predictors(n=10, missing=()):
    rows, cols = np.meshgrid(np.arange(n), np.arange(n), indexing="ij")
    b4 = (rows * 10 + cols).astype(float)
    for r, c in missing:
        b4[r, c] = np.nan
    ds = xr.Dataset(
        {
            "B4": (("y", "x"), b4),
            "NDVI": (("y", "x"), np.where(rows < 2, 0.8, 0.1)),
        },
        coords=_coords(n),
    )
    return PredictorRaster(ds, ["B4", "NDVI"])


class TestStratifiedSample:
    def test_exact_counts(self):
        locs = stratified_sample(_labels(), None, None, {10: 5, 40: 7}, seed=1)
        assert locs.class_counts() == {10: 5, 40: 7}

    def test_capped_at_available_pixels(self):
        """A class with fewer pixels than requested contributes all of them."""
        locs = stratified_sample(_labels(), None, None, {10: 50, 40: 3}, seed=1)
        assert locs.class_counts() == {10: 20, 40: 3}

    def test_same_seed_same_points(self):
        a = stratified_sample(_labels(), None, None, {10: 5, 40: 5}, seed=7)
        b = stratified_sample(_labels(), None, None, {10: 5, 40: 5}, seed=7)
        np.testing.assert_array_equal(a.rows, b.rows)
        np.testing.assert_array_equal(a.cols, b.cols)

    def test_different_seed_different_points(self):
        a = stratified_sample(_labels(), None, None, {40: 10}, seed=1)
        b = stratified_sample(_labels(), None, None, {40: 10}, seed=2)
        assert not (np.array_equal(a.rows, b.rows) and np.array_equal(a.cols, b.cols))

    def test_class_draws_are_independent(self):
        """Adding another class to the request does not change the draw of the first."""
        alone = stratified_sample(_labels(), None, None, {10: 5}, seed=3)
        both = stratified_sample(_labels(), None, None, {10: 5, 40: 5}, seed=3)
        in_10 = both.labels == 10
        np.testing.assert_array_equal(alone.rows, both.rows[in_10])
        np.testing.assert_array_equal(alone.cols, both.cols[in_10])

    def test_points_are_in_raster_order(self):
        locs = stratified_sample(_labels(), None, None, {10: 5, 40: 5}, seed=3)
        flat = locs.rows * 10 + locs.cols
        assert np.all(np.diff(flat) > 0)

    def test_geometry_restricts_region(self):
        aoi = box(-0.5, -0.5, 4.5, 9.5)
        locs = stratified_sample(_labels(), aoi, None, {10: 100, 40: 100}, seed=0)
        assert len(locs) == 50
        assert np.all(locs.x <= 4)

    def test_scale_thins_the_grid(self):
        locs = stratified_sample(_labels(), None, 2.0, {10: 100, 40: 100}, seed=0)
        assert len(locs) == 25
        assert np.all(locs.rows % 2 == 0)
        assert np.all(locs.cols % 2 == 0)

    def test_scale_coarser_than_the_raster_rejected(self):
        """A metre scale on a degree grid would keep a single pixel."""
        coords = {"y": np.arange(200) * 1e-4, "x": 76.5 + np.arange(200) * 1e-4}
        raster = LabeledRaster(xr.DataArray(np.full((200, 200), 40), dims=("y", "x"), coords=coords))
        with pytest.raises(InvalidInputError):
            raster.grid(None, 10)
        assert len(raster.grid(None, None)) == 40000

    def test_num_points_covers_unlisted_classes(self):
        locs = stratified_sample(_labels(), None, None, None, seed=0, num_points=4)
        assert locs.class_counts() == {10: 4, 40: 4}

    def test_explicit_count_overrides_num_points(self):
        locs = stratified_sample(_labels(), None, None, {40: 2}, seed=0, num_points=4)
        assert locs.class_counts() == {10: 4, 40: 2}

    def test_zero_count_rejected(self):
        with pytest.raises(InvalidInputError):
            stratified_sample(_labels(), None, None, {10: 0}, seed=0)

    def test_empty_request_rejected(self):
        with pytest.raises(InvalidInputError):
            stratified_sample(_labels(), None, None, {}, seed=0)

    def test_negative_seed_rejected(self):
        with pytest.raises(InvalidInputError):
            stratified_sample(_labels(), None, None, {10: 1}, seed=-1)

    def test_nodata_pixels_skipped(self):
        codes = np.full((4, 4), 40)
        codes[0, 0] = 0
        raster = LabeledRaster(xr.DataArray(codes, dims=("y", "x"), coords=_coords(4)), nodata=0)
        locs = stratified_sample(raster, None, None, {40: 100}, seed=0)
        assert len(locs) == 15


class TestClassHelpers:
    def test_present_classes_filters_targets(self):
        assert present_classes(_labels(), None, None, [10, 20, 40]) == [10, 40]

    def test_present_classes_inside_geometry(self):
        aoi = box(-0.5, 1.5, 9.5, 9.5)
        assert present_classes(_labels(), aoi, None, [10, 40]) == [40]

    def test_balanced_counts(self):
        assert balanced_counts([10, 40], 500) == {10: 500, 40: 500}

    def test_shortfall(self):
        locs = stratified_sample(_labels(), None, None, {10: 50, 40: 5}, seed=0)
        assert shortfall({10: 50, 40: 5}, locs) == {10: 30}

    def test_histogram(self):
        assert _labels().histogram() == {10: 20, 40: 80}


class TestExtract:
    def test_values_taken_at_locations(self):
        locs = stratified_sample(_labels(), None, None, {10: 5, 40: 5}, seed=0)
        table = _predictors().extract(locs, class_property="Map")
        assert table.attributes == ("B4", "NDVI")
        assert table.class_property == "Map"
        np.testing.assert_array_equal(table.column("B4"), locs.rows * 10 + locs.cols)
        np.testing.assert_array_equal(table.labels, locs.labels)

    def test_missing_predictor_rows_dropped(self):
        predictors = _predictors(missing=[(0, 0)])
        locs = stratified_sample(_labels(), None, None, {10: 20, 40: 80}, seed=0)
        table = predictors.extract(locs)
        assert len(table) == 99
        assert table.n_dropped == 1

    def test_read_at_far_points_are_nan(self):
        data = xr.DataArray(np.ones((3, 3)), dims=("y", "x"), coords=_coords(3))
        locs = SampleLocations(
            rows=np.array([0, 0]),
            cols=np.array([0, 0]),
            x=np.array([1.0, 50.0]),
            y=np.array([1.0, 1.0]),
            labels=np.array([10, 10]),
        )
        values = read_at(data, locs)
        assert values[0] == 1.0
        assert np.isnan(values[1])


class TestStackCrs:
    def test_crs_attribute(self):
        da = xr.DataArray(np.zeros((2, 2)), dims=("y", "x"), coords=_coords(2), attrs={"crs": "EPSG:32643"})
        assert stack_crs(da) == "EPSG:32643"
        assert LabeledRaster(da).crs == "EPSG:32643"

    def test_grid_mapping_variable(self):
        ds = xr.Dataset(
            {"Map": (("y", "x"), np.zeros((2, 2)))},
            coords={**_coords(2), "spatial_ref": ((), 0, {"crs_wkt": "WKT-UTM43N"})},
        )
        assert stack_crs(ds) == "WKT-UTM43N"
        assert LabeledRaster(ds["Map"]).crs == "WKT-UTM43N"

    def test_unknown(self):
        assert stack_crs(_labels().data) is None
        assert _labels().crs is None

    def test_explicit_crs_wins(self):
        da = xr.DataArray(np.zeros((2, 2)), dims=("y", "x"), coords=_coords(2), attrs={"crs": "EPSG:32643"})
        assert LabeledRaster(da, crs="EPSG:4326").crs == "EPSG:4326"
