"""
End-to-end tests: a full model run on the synthetic grid, forecasting and the CLI.
"""

import json

import numpy as np
import pandas as pd
import pytest
import rasterio
from matplotlib.figure import Figure
from rasterio.transform import from_origin

from sdm.cli import main, parse_args
from sdm.climate import RasterStack, save_raster_stack
from sdm.config import SDMConfig
from sdm.errors import BandMismatchError, NoOccurrencesError
from sdm.model import SpeciesDistributionModel
from sdm.pipeline import run_sdm
from sdm.plotting import plot_occurrences, plot_probability, plot_suitability

CONFIG = SDMConfig(n_background=50, n_folds=5, seed=42)


@pytest.fixture
def result(toy_occurrences, toy_stack):
    return run_sdm(toy_occurrences, toy_stack, config=CONFIG, species_name="Toy species")


def test_run_sdm(result, toy_stack):
    assert len(result.presence) == 10
    assert len(result.background) == 50
    assert len(result.table) == 60
    assert np.bincount(result.folds)[1:].tolist() == [12] * 5

    assert set(result.model.coefficients) == {"bio1", "bio2", "bio12"}
    assert 0.0 < result.threshold < 1.0
    assert 0.0 <= result.evaluation.auc <= 1.0
    assert result.evaluation.n_presence + result.evaluation.n_background == 12

    # The padded extent covers the whole synthetic grid
    assert result.probability.shape == toy_stack.shape
    assert result.probability.transform == toy_stack.transform
    np.testing.assert_array_equal(result.suitability.valid_mask, toy_stack.valid_mask)


def test_run_sdm_classifies_some_held_out_presence(result):
    test = result.table[result.folds == CONFIG.test_fold]
    presence = test[test["pa"] == 1]

    scores = result.model.predict_proba(presence)

    assert (scores >= result.threshold).any()
    assert result.evaluation.sensitivity > 0
    assert result.evaluation.tss >= 0


def test_run_sdm_is_reproducible(toy_occurrences, toy_stack, result):
    again = run_sdm(toy_occurrences, toy_stack, config=CONFIG)

    pd.testing.assert_frame_equal(again.table, result.table)
    np.testing.assert_array_equal(again.folds, result.folds)
    np.testing.assert_array_equal(again.probability.values, result.probability.values)


def test_run_sdm_without_occurrences(toy_stack):
    occurrences = pd.DataFrame({"longitude": [np.nan, -107.0], "latitude": [31.0, np.nan]})
    with pytest.raises(NoOccurrencesError):
        run_sdm(occurrences, toy_stack, config=CONFIG)


def test_run_sdm_keeps_presence_on_extent_edges():
    rng = np.random.default_rng(3)
    stack = RasterStack(rng.normal(size=(2, 10, 10)), from_origin(0, 10, 1, 1), None, ("bio1", "bio2"))
    # Whole-degree coordinates sit on cell edges; the bounding box edges are not padded
    occurrences = pd.DataFrame({
        "longitude": [1.0, 2.0, 3.0, 4.0, 5.0, 6.0, 7.0, 8.0, 3.0, 5.0],
        "latitude": [2.0, 3.0, 4.0, 5.0, 6.0, 7.0, 8.0, 9.0, 6.0, 4.0],
    })
    config = SDMConfig(n_background=40, n_folds=5, seed=1, padding=1.0)

    result = run_sdm(occurrences, stack, config=config)

    assert result.stack.shape == (8, 8)
    assert result.table["pa"].sum() == 10


def test_forecast(result, toy_stack):
    shifted = toy_stack.data.copy()
    shifted[0] += 1.0
    future = RasterStack(shifted, toy_stack.transform, toy_stack.crs, toy_stack.band_names)

    forecast = result.forecast(future, label="warmer")

    assert forecast.label == "warmer"
    assert forecast.probability.shape == result.probability.shape
    assert not np.array_equal(
        forecast.probability.values[forecast.probability.valid_mask],
        result.probability.values[result.probability.valid_mask],
    )
    assert set(np.unique(forecast.suitability.values[forecast.suitability.valid_mask])) <= {0.0, 1.0}

    with pytest.raises(BandMismatchError):
        result.forecast(toy_stack.rename(["bio1", "bio2", "bio5"]))


def test_save(tmp_path, result, toy_stack):
    forecast = result.forecast(toy_stack, label="Same Climate")
    paths = result.save(tmp_path, forecasts=[forecast])

    for name in (
        "probability.tif", "suitability.tif", "training_table.csv", "model.joblib", "summary.json",
        "occurrences.png", "probability.png", "suitability.png",
        "same_climate_probability.tif", "same_climate_suitability.tif", "same_climate_suitability.png",
    ):
        assert (tmp_path / name).exists(), name
    assert paths["summary"] == tmp_path / "summary.json"

    summary = json.loads((tmp_path / "summary.json").read_text())
    assert summary["species"] == "Toy species"
    assert summary["n_presence"] == 10
    assert summary["n_background"] == 50
    assert summary["fold_sizes"] == [12] * 5
    assert summary["evaluation"]["threshold"] == pytest.approx(result.threshold)
    assert summary["forecasts"][0]["label"] == "Same Climate"
    # Suitable shares agree with the thresholded map
    suitable = np.nanmean(result.suitability.values)
    assert summary["probability"]["suitable_fraction"] == pytest.approx(suitable)
    assert summary["suitability"]["suitable_fraction"] == pytest.approx(suitable)

    table = pd.read_csv(tmp_path / "training_table.csv")
    assert list(table.columns) == ["pa", "longitude", "latitude", "bio1", "bio2", "bio12", "fold"]

    model = SpeciesDistributionModel.load(tmp_path / "model.joblib")
    assert model.intercept == pytest.approx(result.model.intercept)

    with rasterio.open(tmp_path / "suitability.tif") as src:
        assert src.descriptions == ("suitability",)
        assert src.shape == result.suitability.shape


def test_plots_return_figures(result):
    figures = [
        plot_occurrences(result.stack, result.presence, result.background, band="bio12"),
        plot_probability(result.probability, result.presence),
        plot_suitability(result.suitability, title="Suitable habitat"),
    ]
    for fig in figures:
        assert isinstance(fig, Figure)
    assert figures[2].axes[0].get_title() == "Suitable habitat"


# CLI

def test_parse_args_requires_input():
    with pytest.raises(SystemExit):
        parse_args([])

    args = parse_args(["Carnegiea gigantea", "--forecast", "--ssp", "585"])
    assert args.species == "Carnegiea gigantea"
    assert args.ssp == "585"
    assert args.background == 1000


def test_cli_with_local_files(tmp_path, toy_occurrences, toy_stack):
    occurrences_path = tmp_path / "occurrences.csv"
    toy_occurrences[["latitude", "longitude"]].to_csv(occurrences_path, index=False)

    current = save_raster_stack(toy_stack, tmp_path / "current.tif")
    future_stack = toy_stack.rename(["b1", "b2", "b3"])
    future = save_raster_stack(future_stack, tmp_path / "future.tif")

    output_dir = tmp_path / "out"
    main([
        "--occurrences", str(occurrences_path),
        "--rasters", str(current),
        "--forecast-rasters", str(future),
        "--output-dir", str(output_dir),
        "-n", "50", "-k", "5", "-s", "42",
        "--no-plots",
    ])

    assert (output_dir / "probability.tif").exists()
    assert (output_dir / "forecast_suitability.tif").exists()
    assert not (output_dir / "probability.png").exists()

    summary = json.loads((output_dir / "summary.json").read_text())
    assert summary["bands"] == ["bio1", "bio2", "bio12"]
    assert summary["n_presence"] == 10
