"""
Prediction over raster grids and threshold classification.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np
import rasterio
from rasterio.crs import CRS
from rasterio.transform import Affine
from tqdm import tqdm

from .climate import Extent, RasterStack
from .config import PREDICT_BATCH_SIZE
from .errors import BandMismatchError
from .model import SpeciesDistributionModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class SuitabilitySurface:
    """Single-band surface (probability or 0/1 suitability) on a raster grid."""

    values: np.ndarray  # (H, W); NaN where no prediction
    transform: Affine
    crs: Optional[CRS]
    name: str = "probability"

    @property
    def shape(self) -> tuple[int, int]:
        return self.values.shape

    @property
    def bounds(self) -> Extent:
        height, width = self.shape
        west, south, east, north = rasterio.transform.array_bounds(height, width, self.transform)
        return Extent(west, south, east, north)

    @property
    def valid_mask(self) -> np.ndarray:
        return np.isfinite(self.values)

    def suitable_fraction(self, threshold: float = 1.0) -> float:
        """
        Share of valid cells with a value of at least `threshold`.

        The default counts the 1s of a binary suitability surface; pass the
        model threshold for a probability surface.
        """
        valid = self.values[self.valid_mask]
        if valid.size == 0:
            return 0.0
        return float((valid >= threshold).mean())

    def summary(self, threshold: float = 1.0) -> dict:
        valid = self.values[self.valid_mask]
        return {
            "name": self.name,
            "shape": list(self.shape),
            "bounds": list(self.bounds),
            "valid_cells": int(valid.size),
            "min": float(valid.min()) if valid.size else None,
            "max": float(valid.max()) if valid.size else None,
            "mean": float(valid.mean()) if valid.size else None,
            "suitable_fraction": self.suitable_fraction(threshold),
        }

    def save(self, path: str | Path) -> Path:
        """Save as a single-band float32 GeoTIFF (NaN nodata)."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with rasterio.open(
            path, "w",
            driver="GTiff",
            height=self.shape[0],
            width=self.shape[1],
            count=1,
            dtype=np.float32,
            crs=self.crs,
            transform=self.transform,
            nodata=np.nan,
            compress="lzw",
        ) as dst:
            dst.write(self.values.astype(np.float32), 1)
            dst.set_band_description(1, self.name)
        logger.info(f"Saved {self.name} raster: {path}")

        return path


def check_bands(model: SpeciesDistributionModel, stack: RasterStack) -> None:
    """Raise BandMismatchError unless the stack's bands equal the model's, in order."""
    if tuple(stack.band_names) != tuple(model.band_names):
        raise BandMismatchError(model.band_names, stack.band_names)


def predict_surface(
    model: SpeciesDistributionModel,
    stack: RasterStack,
    batch_size: int = PREDICT_BATCH_SIZE,
) -> SuitabilitySurface:
    """
    Predict presence probability for every cell of a raster stack.

    Args:
        model: Fitted model
        stack: Layers with exactly the model's band names, in the same order
        batch_size: Cells per prediction batch

    Returns:
        Probability surface on the stack's grid; NaN where any band is missing
    """
    check_bands(model, stack)

    height, width = stack.shape
    features = stack.data.reshape(stack.n_bands, -1).T
    valid = np.all(np.isfinite(features), axis=1)
    valid_idx = np.flatnonzero(valid)

    probabilities = np.full(height * width, np.nan)
    logger.info(f"Predicting {len(valid_idx):,} of {height * width:,} cells")

    for i in tqdm(range(0, len(valid_idx), batch_size), desc="Predicting", disable=len(valid_idx) <= batch_size):
        idx = valid_idx[i:i + batch_size]
        probabilities[idx] = model.predict_proba(features[idx])

    surface = SuitabilitySurface(
        values=probabilities.reshape(height, width),
        transform=stack.transform,
        crs=stack.crs,
        name="probability",
    )

    if len(valid_idx):
        logger.info(f"Probability range: {np.nanmin(probabilities):.3f} - {np.nanmax(probabilities):.3f}")

    return surface


def classify_surface(probability: SuitabilitySurface, threshold: float) -> SuitabilitySurface:
    """
    Binarise a probability surface: 1 where probability >= threshold, else 0.

    Cells without a probability stay NaN.
    """
    if not 0.0 <= threshold <= 1.0:
        raise ValueError(f"Threshold must be within [0, 1], got {threshold}")

    values = np.full(probability.shape, np.nan)
    valid = probability.valid_mask
    values[valid] = (probability.values[valid] >= threshold).astype(float)

    surface = SuitabilitySurface(
        values=values,
        transform=probability.transform,
        crs=probability.crs,
        name="suitability",
    )
    n_suitable = int(np.nansum(values))
    logger.info(f"Suitable cells at threshold {threshold:.4f}: {n_suitable:,} of {int(valid.sum()):,}")

    return surface
