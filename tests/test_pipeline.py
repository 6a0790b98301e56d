"""End-to-end tests of the classification pipeline on a synthetic image stack."""

import json

import numpy as np
import pytest
import xarray as xr

from config.settings import NODATA_CLASS
from lulc.acquisition.raster import LabeledRaster, PredictorRaster, load_stack, save_map
from lulc.errors import InvalidInputError
from lulc.evaluation.confusion import ConfusionMatrix
from lulc.evaluation.history import load_class_accuracy, load_history, store_evaluation
from lulc.evaluation.report import accuracy_summary, load_report, save_report
from lulc.pipeline import CART, RANDOM_FOREST, build_report, run_pipeline


def _stack(n=20, seed=0):
    """Tree cover (10) on the left half, cropland (40) on the right half.

    NDVI and B8 separate the two classes with a gap; one NDVI pixel is missing.
    """
    rng = np.random.default_rng(seed)
    codes = np.where(np.arange(n)[None, :] < n // 2, 10, 40).repeat(n, axis=0)
    is_tree = codes == 10

    ndvi = np.where(is_tree, rng.uniform(0.7, 1.0, (n, n)), rng.uniform(0.0, 0.3, (n, n)))
    b8 = np.where(is_tree, rng.uniform(0.0, 0.3, (n, n)), rng.uniform(0.7, 1.0, (n, n)))
    ndvi[n - 1, n - 1] = np.nan

    coords = {"y": np.arange(n, dtype=float), "x": np.arange(n, dtype=float)}
    return xr.Dataset(
        {
            "Map": (("y", "x"), codes),
            "NDVI": (("y", "x"), ndvi),
            "B8": (("y", "x"), b8),
        },
        coords=coords,
    )


def _run(**kwargs):
    ds = _stack()
    params = dict(
        scale=None,
        target_classes=[10, 20, 40],
        per_class=60,
        train_split=0.7,
        seed=3,
        num_trees=10,
        agreement_points=40,
    )
    params.update(kwargs)
    return run_pipeline(LabeledRaster(ds["Map"]), PredictorRaster(ds, ["NDVI", "B8"]), **params)


class TestRunPipeline:
    def test_separable_stack_is_classified_perfectly(self):
        result = _run()
        assert result.classes == [10, 40]
        assert set(result.matrices) == {CART, RANDOM_FOREST}
        for cm in result.matrices.values():
            assert cm.accuracy() == 1.0
            assert cm.kappa() == pytest.approx(1.0)

    def test_samples_and_split(self):
        result = _run()
        assert sum(result.samples.class_counts().values()) == len(result.samples)
        assert len(result.samples) >= 119
        assert len(result.split.train) + len(result.split.test) == len(result.samples)
        assert result.samples.class_property == "Map"

    def test_maps_and_agreement(self):
        result = _run()
        rf_map = result.maps[RANDOM_FOREST]
        assert rf_map.shape == (20, 20)
        assert int(rf_map[19, 19]) == NODATA_CLASS
        assert int(rf_map[0, 0]) == 10
        assert int(rf_map[0, 19]) == 40
        assert result.agreement.accuracy() == 1.0

    def test_maps_can_be_skipped(self):
        result = _run(classify_maps=False)
        assert result.maps == {}
        assert result.agreement is None

    def test_reproducible(self):
        a = _run()
        b = _run()
        for name in (CART, RANDOM_FOREST):
            assert a.matrices[name] == b.matrices[name]
        assert a.models[RANDOM_FOREST].trees == b.models[RANDOM_FOREST].trees

    def test_explicit_class_counts(self):
        result = _run(class_counts={10: 15, 40: 25}, classify_maps=False)
        assert result.classes == [10, 40]
        counts = result.samples.class_counts()
        assert counts[10] == 15
        assert counts[40] >= 24

    def test_no_target_class_present(self):
        with pytest.raises(InvalidInputError):
            _run(target_classes=[20, 30])


class TestReporting:
    def test_report_is_json_serializable(self, tmp_path):
        result = _run()
        report = build_report(result, {"seed": 3})
        text = json.dumps(report)
        assert "Random Forest" in text

        path = save_report(report, "unit", reports_dir=tmp_path)
        loaded = load_report(path)
        assert loaded["models"][CART]["test"]["overall_accuracy"] == 1.0
        assert loaded["models"][RANDOM_FOREST]["explain"]["numberOfTrees"] == 10
        assert "created_at" in loaded

    def test_missing_report(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_report(tmp_path / "nope.json")

    def test_undefined_metrics_become_null(self):
        summary = accuracy_summary(ConfusionMatrix.from_labels([10, 10], [10, 10]))
        assert summary["kappa"] is None
        assert summary["overall_accuracy"] == 1.0
        assert summary["class_names"] == {"10": "Trees"}


class TestHistory:
    def test_store_and_load(self, tmp_path):
        db = tmp_path / "history.db"
        cm = ConfusionMatrix.from_labels([10, 10, 40, 40], [10, 40, 40, 40])

        store_evaluation("r1", CART, cm, seed=1, n_train=10, db_path=db)
        run_id = store_evaluation("r1", CART, cm, seed=1, n_train=10, db_path=db)
        store_evaluation("r1", RANDOM_FOREST, cm, db_path=db)

        history = load_history(db_path=db)
        assert len(history) == 2
        assert load_history(model=CART, db_path=db)["overall_accuracy"].iloc[0] == pytest.approx(0.75)

        per_class = load_class_accuracy(run_id, db_path=db)
        assert per_class["class_code"].tolist() == [10, 40]
        assert per_class["producers"].tolist() == pytest.approx([0.5, 1.0])

    def test_nan_kappa_stored_as_null(self, tmp_path):
        db = tmp_path / "history.db"
        store_evaluation("r1", CART, ConfusionMatrix.from_labels([10], [10]), db_path=db)
        history = load_history(db_path=db)
        assert history["kappa"].isna().iloc[0]


class TestLoadStack:
    def test_round_trip_netcdf(self, tmp_path):
        path = tmp_path / "stack.nc"
        _stack().to_netcdf(str(path))

        labels, predictors = load_stack(path, "Map")
        assert predictors.bands == ["NDVI", "B8"]
        assert labels.histogram() == {10: 200, 40: 200}
        assert labels.crs is None

    def test_crs_read_from_stack(self, tmp_path):
        path = tmp_path / "stack.nc"
        ds = _stack()
        ds.attrs["crs"] = "EPSG:32643"
        ds.to_netcdf(str(path))

        labels, _ = load_stack(path, "Map")
        assert labels.crs == "EPSG:32643"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_stack(tmp_path / "missing.nc")

    def test_save_map(self, tmp_path):
        result = _run(agreement_points=0)
        path = save_map(result.maps[CART], tmp_path / "maps" / "cart.nc")

        saved = xr.open_dataarray(str(path))
        np.testing.assert_array_equal(saved.values, result.maps[CART].values)
        assert saved.attrs["nodata"] == NODATA_CLASS
        saved.close()
