"""
Tests for model fitting, held-out evaluation and raster prediction.
"""

import warnings

import numpy as np
import pytest
import rasterio

from conftest import MISSING_CELLS
from sdm.errors import BandMismatchError, DegenerateFitError
from sdm.evaluation import evaluate, max_sens_spec_threshold
from sdm.features import assemble_features
from sdm.folds import assign_folds, split_by_fold
from sdm.model import SpeciesDistributionModel, fit_model
from sdm.predict import SuitabilitySurface, classify_surface, predict_surface
from sdm.sampling import sample_background


@pytest.fixture
def toy_model(toy_stack, toy_presence) -> SpeciesDistributionModel:
    background = sample_background(toy_stack, 50, seed=42)
    table = assemble_features(toy_presence, background, toy_stack)
    return fit_model(table)


@pytest.fixture
def held_out(informative_table):
    folds = assign_folds(informative_table, k=5, seed=0)
    return split_by_fold(informative_table, folds, test_fold=1)


# Fitting

def test_fit_reports_raw_scale_coefficients(informative_table):
    model = SpeciesDistributionModel()
    stats = model.fit(informative_table)

    assert model.band_names == ("bio1", "bio2", "bio12")
    assert set(model.coefficients) == {"bio1", "bio2", "bio12"}
    assert model.coefficients["bio1"] > 0
    assert stats["n_presence"] == 150
    assert stats["n_background"] == 150

    X = informative_table[["bio1", "bio2", "bio12"]].to_numpy()
    coef = np.array([model.coefficients[b] for b in model.band_names])
    expected = 1 / (1 + np.exp(-(model.intercept + X @ coef)))
    np.testing.assert_allclose(model.predict_proba(informative_table), expected, rtol=1e-6)


def test_fit_rejects_single_class(informative_table):
    with pytest.raises(DegenerateFitError):
        fit_model(informative_table[informative_table["pa"] == 1])


def test_fit_rejects_constant_and_collinear_bands(informative_table):
    with pytest.raises(DegenerateFitError, match="rank deficient"):
        fit_model(informative_table.assign(bio5=1.0))
    with pytest.raises(DegenerateFitError, match="rank deficient"):
        fit_model(informative_table.assign(bio5=informative_table["bio1"] * 2))


def test_fit_rejects_missing_values(informative_table):
    table = informative_table.copy()
    table.loc[0, "bio2"] = np.nan
    with pytest.raises(DegenerateFitError):
        fit_model(table)


def test_refit_and_unfitted_use_raise(informative_table):
    model = SpeciesDistributionModel()
    with pytest.raises(RuntimeError):
        model.predict_proba(informative_table)

    model.fit(informative_table)
    with pytest.raises(RuntimeError):
        model.fit(informative_table)


def test_fit_has_no_penalty_deprecation_warning(informative_table):
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        model = fit_model(informative_table)

    assert not [w for w in caught if "penalty" in str(w.message)]
    assert model.train_stats["converged"]


def test_predict_proba_selects_columns_by_name(informative_table):
    model = fit_model(informative_table)
    shuffled = informative_table[["bio12", "pa", "bio2", "bio1"]]

    np.testing.assert_allclose(model.predict_proba(shuffled), model.predict_proba(informative_table))

    with pytest.raises(BandMismatchError):
        model.predict_proba(informative_table.drop(columns="bio2"))
    with pytest.raises(ValueError):
        model.predict_proba(np.zeros((4, 2)))


def test_save_load_roundtrip(tmp_path, informative_table):
    model = fit_model(informative_table)
    path = tmp_path / "model.joblib"
    model.save(path)

    loaded = SpeciesDistributionModel.load(path)

    assert loaded.band_names == model.band_names
    assert loaded.coefficients == pytest.approx(model.coefficients)
    np.testing.assert_allclose(loaded.predict_proba(informative_table), model.predict_proba(informative_table))


# Evaluation

def test_threshold_maximises_sensitivity_plus_specificity():
    assert max_sens_spec_threshold(np.array([0, 0, 1, 1]), np.array([0.1, 0.2, 0.8, 0.9])) == pytest.approx(0.8)
    assert max_sens_spec_threshold(np.array([0, 1, 0, 1]), np.array([0.1, 0.4, 0.35, 0.8])) == pytest.approx(0.4)


def test_evaluate_on_held_out_fold(held_out):
    train, test = held_out
    model = fit_model(train)

    evaluation = evaluate(model, test[test["pa"] == 1], test[test["pa"] == 0])

    assert evaluation.auc > 0.8
    assert 0.0 < evaluation.threshold < 1.0
    assert evaluation.n_presence == 30
    assert evaluation.n_background == 30
    assert evaluation.true_positives + evaluation.false_negatives == 30
    assert evaluation.tss > 0
    # Neither every held-out presence below nor every background above the cutoff
    assert evaluation.sensitivity > 0
    assert evaluation.specificity > 0
    assert evaluation.to_dict()["confusion"]["tp"] == evaluation.true_positives


def test_evaluate_requires_both_classes(held_out):
    train, test = held_out
    model = fit_model(train)

    with pytest.raises(ValueError):
        evaluate(model, test[test["pa"] == 1], test.iloc[0:0])


# Prediction

def test_predict_surface_on_stack_grid(toy_model, toy_stack):
    surface = predict_surface(toy_model, toy_stack)

    assert surface.shape == toy_stack.shape
    assert surface.transform == toy_stack.transform
    for row, col in MISSING_CELLS:
        assert np.isnan(surface.values[row, col])
    valid = surface.values[surface.valid_mask]
    assert valid.size == toy_stack.valid_mask.sum()
    assert ((valid > 0) & (valid < 1)).all()

    expected = toy_model.predict_proba(toy_stack.data[:, 5, 12][np.newaxis, :])
    assert surface.values[5, 12] == pytest.approx(expected[0])


def test_predict_surface_batches_match(toy_model, toy_stack):
    whole = predict_surface(toy_model, toy_stack)
    batched = predict_surface(toy_model, toy_stack, batch_size=7)

    np.testing.assert_array_equal(whole.values, batched.values)


def test_predict_surface_band_mismatch(toy_model, toy_stack):
    with pytest.raises(BandMismatchError):
        predict_surface(toy_model, toy_stack.select(["bio2", "bio1", "bio12"]))
    with pytest.raises(BandMismatchError):
        predict_surface(toy_model, toy_stack.rename(["bio1", "bio2", "bio5"]))


def test_classify_surface(toy_model, toy_stack):
    probability = predict_surface(toy_model, toy_stack)
    threshold = float(np.nanmedian(probability.values))

    suitability = classify_surface(probability, threshold)

    assert suitability.name == "suitability"
    assert set(np.unique(suitability.values[suitability.valid_mask])) == {0.0, 1.0}
    np.testing.assert_array_equal(suitability.valid_mask, probability.valid_mask)
    np.testing.assert_array_equal(
        suitability.values[probability.valid_mask] == 1,
        probability.values[probability.valid_mask] >= threshold,
    )

    with pytest.raises(ValueError):
        classify_surface(probability, 1.5)


def test_surface_save(tmp_path, toy_stack):
    values = np.full(toy_stack.shape, 0.25)
    values[0, 0] = np.nan
    surface = SuitabilitySurface(values, toy_stack.transform, toy_stack.crs)

    path = surface.save(tmp_path / "probability.tif")

    with rasterio.open(path) as src:
        data = src.read(1, masked=True)
        assert src.descriptions == ("probability",)
        assert src.transform == toy_stack.transform
    assert data.mask[0, 0]
    assert data[1, 1] == pytest.approx(0.25)


def test_suitable_fraction_uses_threshold(toy_stack):
    values = np.array([[0.1, 0.3], [0.6, np.nan]])
    probability = SuitabilitySurface(values, toy_stack.transform, toy_stack.crs)
    suitability = classify_surface(probability, 0.3)

    assert probability.suitable_fraction(0.3) == pytest.approx(2 / 3)
    assert suitability.suitable_fraction() == pytest.approx(2 / 3)
    assert probability.summary(threshold=0.3)["suitable_fraction"] == suitability.summary()["suitable_fraction"]
