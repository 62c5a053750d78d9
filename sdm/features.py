"""
Labelled feature table assembly.

Joins presence and background coordinates into one table and attaches the
environmental values of the raster cell under each point.
"""

import logging
from typing import Literal

import numpy as np
import pandas as pd

from .climate import RasterStack
from .config import LABEL, LATITUDE, LONGITUDE
from .errors import MissingFeatureValuesError

logger = logging.getLogger(__name__)


def assemble_features(
    presence: pd.DataFrame,
    background: pd.DataFrame,
    stack: RasterStack,
    on_missing: Literal["drop", "raise"] = "drop",
) -> pd.DataFrame:
    """
    Build the labelled table used for model fitting.

    Args:
        presence: Presence coordinates (`longitude`, `latitude`)
        background: Background coordinates (`longitude`, `latitude`)
        stack: Environmental layers to sample
        on_missing: Rows outside the raster or on missing cells are dropped
            ("drop") or cause a MissingFeatureValuesError ("raise")

    Returns:
        DataFrame with columns `pa` (1 presence, 0 background), `longitude`,
        `latitude` and one column per band
    """
    points = pd.concat(
        [presence[[LONGITUDE, LATITUDE]], background[[LONGITUDE, LATITUDE]]],
        ignore_index=True,
    )
    labels = np.concatenate([
        np.ones(len(presence), dtype=int),
        np.zeros(len(background), dtype=int),
    ])

    values = stack.sample(points[LONGITUDE].to_numpy(), points[LATITUDE].to_numpy())

    table = pd.DataFrame({
        LABEL: labels,
        LONGITUDE: points[LONGITUDE].to_numpy(dtype=float),
        LATITUDE: points[LATITUDE].to_numpy(dtype=float),
    })
    features = pd.DataFrame(values, columns=list(stack.band_names))
    table = pd.concat([table, features], axis=1)

    complete = np.all(np.isfinite(values), axis=1)
    n_missing = int((~complete).sum())
    if n_missing:
        if on_missing == "raise":
            raise MissingFeatureValuesError(n_missing, len(table))
        n_missing_presence = int((~complete & (labels == 1)).sum())
        logger.warning(
            f"Dropping {n_missing} points with missing environmental values "
            f"({n_missing_presence} presence, {n_missing - n_missing_presence} background)"
        )
        table = table[complete].reset_index(drop=True)

    n_pos = int(table[LABEL].sum())
    logger.info(f"Feature table: {len(table)} rows (presence: {n_pos}, background: {len(table) - n_pos})")

    return table


def feature_columns(table: pd.DataFrame) -> list[str]:
    """Band columns of a labelled table, in order."""
    return [c for c in table.columns if c not in (LABEL, LONGITUDE, LATITUDE)]
