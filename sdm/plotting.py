"""
Maps of occurrences, probability and suitability surfaces.
"""

import logging
from pathlib import Path
from typing import Optional

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from matplotlib.colors import ListedColormap
from matplotlib.figure import Figure

from .climate import Extent, RasterStack
from .config import LATITUDE, LONGITUDE
from .predict import SuitabilitySurface

logger = logging.getLogger(__name__)


def _imshow_extent(bounds: Extent) -> list[float]:
    return [bounds.min_lon, bounds.max_lon, bounds.min_lat, bounds.max_lat]


def _finish(fig: Figure, ax, title: Optional[str], path: Optional[str | Path]) -> Figure:
    ax.set_xlabel("Longitude")
    ax.set_ylabel("Latitude")
    if title:
        ax.set_title(title)
    fig.tight_layout()
    if path is not None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(path, dpi=150, bbox_inches="tight")
        logger.info(f"Saved plot: {path}")
    return fig


def plot_occurrences(
    stack: RasterStack,
    presence: pd.DataFrame,
    background: Optional[pd.DataFrame] = None,
    band: Optional[str] = None,
    title: Optional[str] = None,
    path: Optional[str | Path] = None,
) -> Figure:
    """Presence (and background) points over one environmental band."""
    band = band or stack.band_names[0]

    fig, ax = plt.subplots(figsize=(8, 6))
    image = ax.imshow(
        stack.band(band),
        extent=_imshow_extent(stack.bounds),
        origin="upper",
        cmap="viridis",
    )
    fig.colorbar(image, ax=ax, label=band)

    if background is not None and len(background):
        ax.scatter(background[LONGITUDE], background[LATITUDE], s=4, c="lightgray",
                   label="Background", alpha=0.7)
    ax.scatter(presence[LONGITUDE], presence[LATITUDE], s=10, c="olivedrab",
               edgecolors="black", linewidths=0.3, label="Presence")
    ax.legend(loc="lower left")

    return _finish(fig, ax, title, path)


def plot_probability(
    probability: SuitabilitySurface,
    presence: Optional[pd.DataFrame] = None,
    title: Optional[str] = None,
    path: Optional[str | Path] = None,
) -> Figure:
    """Continuous probability of occurrence."""
    fig, ax = plt.subplots(figsize=(8, 6))
    image = ax.imshow(
        probability.values,
        extent=_imshow_extent(probability.bounds),
        origin="upper",
        cmap="YlGn",
        vmin=0,
        vmax=1,
    )
    fig.colorbar(image, ax=ax, label="Probability of occurrence")

    if presence is not None and len(presence):
        ax.scatter(presence[LONGITUDE], presence[LATITUDE], s=6, c="black", label="Presence")
        ax.legend(loc="lower left")

    return _finish(fig, ax, title, path)


def plot_suitability(
    suitability: SuitabilitySurface,
    title: Optional[str] = None,
    path: Optional[str | Path] = None,
) -> Figure:
    """Binary suitability: gray land, green suitable cells."""
    values = suitability.values
    base = np.where(np.isfinite(values), 0.0, np.nan)
    suitable = np.where(values == 1, 1.0, np.nan)

    fig, ax = plt.subplots(figsize=(8, 6))
    extent = _imshow_extent(suitability.bounds)
    ax.imshow(base, extent=extent, origin="upper", cmap=ListedColormap(["lightgray"]))
    ax.imshow(suitable, extent=extent, origin="upper", cmap=ListedColormap(["forestgreen"]))

    return _finish(fig, ax, title, path)
