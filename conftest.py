"""
Shared fixtures: a small synthetic bioclimatic grid and occurrences on it.
"""

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest
from rasterio.crs import CRS
from rasterio.transform import from_origin

from sdm.climate import RasterStack

# 20 x 30 grid of 0.5 degree cells, lon [-115, -100], lat [25, 35]
WEST, NORTH, CELL = -115.0, 35.0, 0.5
ROWS, COLS = 20, 30
BANDS = ("bio1", "bio2", "bio12")

# Presence cells span the grid so a 1.25x padded extent covers all of it
PRESENCE_CELLS = [
    (1, 5), (1, 20), (18, 14), (18, 2), (9, 1),
    (9, 28), (5, 12), (13, 8), (14, 22), (6, 25),
]
# Bottom-left cells with no data
MISSING_CELLS = [(19, 0), (19, 1), (19, 2)]


def cell_center(row: int, col: int) -> tuple[float, float]:
    return WEST + (col + 0.5) * CELL, NORTH - (row + 0.5) * CELL


@pytest.fixture
def toy_stack() -> RasterStack:
    rng = np.random.default_rng(0)
    data = rng.normal(size=(len(BANDS), ROWS, COLS))
    data[1] = data[1] * 3 + 10
    data[2] = data[2] * 50 + 400
    for row, col in MISSING_CELLS:
        data[:, row, col] = np.nan
    return RasterStack(
        data=data,
        transform=from_origin(WEST, NORTH, CELL, CELL),
        crs=CRS.from_epsg(4326),
        band_names=BANDS,
    )


@pytest.fixture
def toy_presence() -> pd.DataFrame:
    lons, lats = zip(*(cell_center(r, c) for r, c in PRESENCE_CELLS))
    return pd.DataFrame({"longitude": lons, "latitude": lats})


@pytest.fixture
def toy_occurrences(toy_presence) -> pd.DataFrame:
    """Presence records plus rows with missing coordinates."""
    missing = pd.DataFrame({"longitude": [np.nan, -107.0], "latitude": [31.0, np.nan]})
    return pd.concat([toy_presence, missing], ignore_index=True)


@pytest.fixture
def informative_table() -> pd.DataFrame:
    """Labelled table where bio1 separates the classes with overlap."""
    rng = np.random.default_rng(1)
    n = 150
    presence = pd.DataFrame({
        "pa": 1,
        "longitude": rng.uniform(-110, -100, n),
        "latitude": rng.uniform(25, 35, n),
        "bio1": rng.normal(1.0, 1.0, n),
        "bio2": rng.normal(10.0, 3.0, n),
        "bio12": rng.normal(400.0, 50.0, n),
    })
    background = pd.DataFrame({
        "pa": 0,
        "longitude": rng.uniform(-110, -100, n),
        "latitude": rng.uniform(25, 35, n),
        "bio1": rng.normal(-1.0, 1.0, n),
        "bio2": rng.normal(10.0, 3.0, n),
        "bio12": rng.normal(400.0, 50.0, n),
    })
    return pd.concat([presence, background], ignore_index=True)
