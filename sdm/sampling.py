"""
Background (pseudo-absence) point sampling.
"""

import logging
from typing import Literal, Optional

import numpy as np
import pandas as pd

from .climate import RasterStack
from .config import LATITUDE, LONGITUDE
from .errors import InsufficientBackgroundError

logger = logging.getLogger(__name__)


def sample_background(
    stack: RasterStack,
    n_samples: int,
    seed: Optional[int] = None,
    on_shortfall: Literal["reduce", "raise"] = "reduce",
) -> pd.DataFrame:
    """
    Sample random background points from the valid cells of a raster stack.

    Cells are drawn uniformly without replacement from those where every band
    has a value; each point is the centre of its cell.

    Args:
        stack: Environmental layers defining the sampling region
        n_samples: Number of background points to draw
        seed: Random seed for reproducibility
        on_shortfall: What to do when fewer than `n_samples` valid cells
            exist: "reduce" returns every valid cell, "raise" raises
            InsufficientBackgroundError

    Returns:
        DataFrame with `longitude` and `latitude` columns
    """
    if n_samples < 1:
        raise ValueError(f"n_samples must be positive, got {n_samples}")

    valid_cells = np.flatnonzero(stack.valid_mask)
    n_valid = len(valid_cells)

    if n_valid == 0:
        raise InsufficientBackgroundError(n_samples, 0)

    if n_valid < n_samples:
        if on_shortfall == "raise":
            raise InsufficientBackgroundError(n_samples, n_valid)
        logger.warning(f"Only {n_valid} valid cells available (requested {n_samples} background points)")
        n_samples = n_valid

    rng = np.random.default_rng(seed)
    chosen = rng.choice(valid_cells, size=n_samples, replace=False)

    _, width = stack.shape
    rows, cols = np.divmod(chosen, width)
    longitudes, latitudes = stack.cell_centers(rows, cols)

    logger.info(f"Sampled {n_samples} background points from {n_valid} valid cells")

    return pd.DataFrame({LONGITUDE: longitudes, LATITUDE: latitudes})
