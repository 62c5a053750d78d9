"""
End-to-end species distribution model run.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from .climate import Extent, RasterStack
from .config import LABEL, LATITUDE, LONGITUDE, SDMConfig
from .errors import NoOccurrencesError
from .evaluation import Evaluation, evaluate
from .features import assemble_features
from .folds import assign_folds, split_by_fold
from .model import SpeciesDistributionModel
from .occurrences import filter_missing_coordinates
from .plotting import plot_occurrences, plot_probability, plot_suitability
from .predict import SuitabilitySurface, classify_surface, predict_surface
from .sampling import sample_background

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class ForecastResult:
    """Model output on a forecast climate stack."""

    label: str
    probability: SuitabilitySurface
    suitability: SuitabilitySurface


@dataclass(frozen=True, eq=False)
class SDMResult:
    """Artefacts of one model run, from cleaned occurrences to the suitability map."""

    config: SDMConfig
    extent: Extent
    stack: RasterStack
    presence: pd.DataFrame
    background: pd.DataFrame
    table: pd.DataFrame
    folds: np.ndarray
    model: SpeciesDistributionModel
    evaluation: Evaluation
    probability: SuitabilitySurface
    suitability: SuitabilitySurface
    species_name: Optional[str] = None

    @property
    def threshold(self) -> float:
        return self.evaluation.threshold

    def forecast(self, stack: RasterStack, label: str = "forecast") -> ForecastResult:
        """
        Apply the fitted model and threshold to another climate stack.

        The stack is cropped to the run's extent and must carry the same band
        names, in the same order, as the stack the model was fit on.
        """
        logger.info(f"Forecasting '{label}'...")
        cropped = stack.crop(self.extent)
        probability = predict_surface(self.model, cropped)
        suitability = classify_surface(probability, self.threshold)

        return ForecastResult(label=label, probability=probability, suitability=suitability)

    def summary(self, forecasts: Sequence[ForecastResult] = ()) -> dict:
        n_presence = int(self.table[LABEL].sum())
        return {
            "species": self.species_name,
            "config": self.config.to_dict(),
            "extent": list(self.extent),
            "bands": list(self.stack.band_names),
            "n_presence": n_presence,
            "n_background": int(len(self.table) - n_presence),
            "fold_sizes": np.bincount(self.folds, minlength=self.config.n_folds + 1)[1:].tolist(),
            "model": {
                "intercept": self.model.intercept,
                "coefficients": self.model.coefficients,
                "converged": self.model.train_stats.get("converged"),
            },
            "evaluation": self.evaluation.to_dict(),
            "probability": self.probability.summary(threshold=self.threshold),
            "suitability": self.suitability.summary(),
            "forecasts": [
                {"label": f.label, "suitability": f.suitability.summary()} for f in forecasts
            ],
        }

    def save(
        self,
        output_dir: Path,
        forecasts: Sequence[ForecastResult] = (),
        plots: bool = True,
    ) -> dict[str, Path]:
        """Save rasters, model, table, summary and maps to `output_dir`."""
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        paths = {
            "probability": self.probability.save(output_dir / "probability.tif"),
            "suitability": self.suitability.save(output_dir / "suitability.tif"),
        }

        table_path = output_dir / "training_table.csv"
        table = self.table.assign(fold=self.folds)
        table.to_csv(table_path, index=False)
        paths["table"] = table_path

        model_path = output_dir / "model.joblib"
        self.model.save(model_path)
        paths["model"] = model_path
        logger.info(f"Saved model: {model_path}")

        for forecast in forecasts:
            slug = forecast.label.replace(" ", "_").lower()
            paths[f"{slug}_probability"] = forecast.probability.save(output_dir / f"{slug}_probability.tif")
            paths[f"{slug}_suitability"] = forecast.suitability.save(output_dir / f"{slug}_suitability.tif")

        summary_path = output_dir / "summary.json"
        with open(summary_path, "w") as f:
            json.dump(self.summary(forecasts), f, indent=2)
        paths["summary"] = summary_path
        logger.info(f"Saved summary: {summary_path}")

        if plots:
            paths.update(self.save_plots(output_dir, forecasts))

        return paths

    def save_plots(self, output_dir: Path, forecasts: Sequence[ForecastResult] = ()) -> dict[str, Path]:
        output_dir = Path(output_dir)
        title = self.species_name or "Species"
        figures = {
            "occurrence_map": (
                plot_occurrences(self.stack, self.presence, self.background, title=f"{title}: occurrences"),
                output_dir / "occurrences.png",
            ),
            "probability_map": (
                plot_probability(self.probability, self.presence, title=f"{title}: probability of occurrence"),
                output_dir / "probability.png",
            ),
            "suitability_map": (
                plot_suitability(self.suitability, title=f"{title}: suitable habitat"),
                output_dir / "suitability.png",
            ),
        }
        for forecast in forecasts:
            slug = forecast.label.replace(" ", "_").lower()
            figures[f"{slug}_suitability_map"] = (
                plot_suitability(forecast.suitability, title=f"{title}: suitable habitat ({forecast.label})"),
                output_dir / f"{slug}_suitability.png",
            )

        paths = {}
        for key, (fig, path) in figures.items():
            fig.savefig(path, dpi=150, bbox_inches="tight")
            plt.close(fig)
            paths[key] = path
        logger.info(f"Saved {len(paths)} maps to {output_dir}")

        return paths


def study_extent(presence: pd.DataFrame, padding: float) -> Extent:
    """Bounding box of the presence points, scaled about its centre."""
    return Extent.from_points(presence[LONGITUDE], presence[LATITUDE]).scale(padding)


def run_sdm(
    occurrences: pd.DataFrame,
    stack: RasterStack,
    config: Optional[SDMConfig] = None,
    species_name: Optional[str] = None,
) -> SDMResult:
    """
    Build, evaluate and map a presence/background logistic regression SDM.

    Args:
        occurrences: Presence coordinates (`longitude`, `latitude`, NaN allowed)
        stack: Environmental layers covering the occurrences
        config: Run parameters (defaults: 1000 background points, 5 folds)
        species_name: Used for logging, plot titles and the summary

    Returns:
        SDMResult with every intermediate artefact
    """
    config = config or SDMConfig()

    logger.info("=" * 60)
    logger.info(f"Species distribution model: {species_name or 'unnamed species'}")
    logger.info("=" * 60)

    # 1. Clean occurrences
    logger.info("[1/7] Cleaning occurrence records...")
    presence = filter_missing_coordinates(occurrences)
    if presence.empty:
        raise NoOccurrencesError("No occurrence records with coordinates")
    logger.info(f"  Presence records: {len(presence)}")

    # 2. Study extent
    logger.info("[2/7] Cropping environmental layers...")
    extent = study_extent(presence, config.padding)
    cropped = stack.crop(extent)
    h, w = cropped.shape
    logger.info(f"  Extent: {tuple(round(v, 4) for v in extent)}; grid {h} x {w}, {cropped.n_bands} bands")

    # 3. Background points
    logger.info("[3/7] Sampling background points...")
    background = sample_background(
        cropped, config.n_background, seed=config.seed, on_shortfall=config.on_shortfall
    )

    # 4. Labelled table
    logger.info("[4/7] Assembling feature table...")
    table = assemble_features(presence, background, cropped, on_missing=config.on_missing)
    if int(table[LABEL].sum()) == 0:
        raise NoOccurrencesError("No presence records fall on valid raster cells")

    # 5. Folds and model fit
    logger.info("[5/7] Fitting logistic regression...")
    folds = assign_folds(table, k=config.n_folds, seed=config.seed)
    train, test = split_by_fold(table, folds, test_fold=config.test_fold)
    model = SpeciesDistributionModel()
    model.fit(train)

    # 6. Evaluation
    logger.info("[6/7] Evaluating on held-out fold...")
    evaluation = evaluate(
        model,
        test[test[LABEL] == 1],
        test[test[LABEL] == 0],
    )

    # 7. Prediction
    logger.info("[7/7] Predicting suitability...")
    probability = predict_surface(model, cropped)
    suitability = classify_surface(probability, evaluation.threshold)

    logger.info("=" * 60)
    logger.info("COMPLETE")
    logger.info("=" * 60)

    return SDMResult(
        config=config,
        extent=extent,
        stack=cropped,
        presence=presence,
        background=background,
        table=table,
        folds=folds,
        model=model,
        evaluation=evaluation,
        probability=probability,
        suitability=suitability,
        species_name=species_name,
    )
