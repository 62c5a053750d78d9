"""
Configuration defaults and run parameters for the SDM pipeline.
"""

from dataclasses import dataclass
from typing import Literal, Optional


# Default run parameters
DEFAULT_N_BACKGROUND = 1000
DEFAULT_N_FOLDS = 5
DEFAULT_TEST_FOLD = 1
DEFAULT_SEED = 20210707
DEFAULT_PADDING = 1.25

# Column names
LATITUDE = "latitude"
LONGITUDE = "longitude"
LABEL = "pa"

# WorldClim 2.1 bioclimatic variables
WORLDCLIM_RESOLUTIONS = ("10m", "5m", "2.5m", "30s")
DEFAULT_RESOLUTION = "2.5m"
N_BIOCLIM = 19
WORLDCLIM_BASE_URL = "https://geodata.ucdavis.edu/climate/worldclim/2_1/base/wc2.1_{resolution}_bio.zip"
CMIP6_URL = (
    "https://geodata.ucdavis.edu/cmip6/{resolution}/{model}/ssp{ssp}/"
    "wc2.1_{resolution}_bioc_{model}_ssp{ssp}_{period}.tif"
)

# Forecast scenario
DEFAULT_GCM = "MPI-ESM1-2-HR"
DEFAULT_SSP = "245"
DEFAULT_PERIOD = "2061-2080"
CMIP6_SSPS = ("126", "245", "370", "585")
CMIP6_PERIODS = ("2021-2040", "2041-2060", "2061-2080", "2081-2100")

# Rows per batch when predicting over a whole raster
PREDICT_BATCH_SIZE = 250_000


@dataclass(frozen=True)
class SDMConfig:
    """Parameters for a single model run."""

    n_background: int = DEFAULT_N_BACKGROUND
    n_folds: int = DEFAULT_N_FOLDS
    test_fold: int = DEFAULT_TEST_FOLD
    seed: Optional[int] = DEFAULT_SEED
    padding: float = DEFAULT_PADDING
    on_shortfall: Literal["reduce", "raise"] = "reduce"
    on_missing: Literal["drop", "raise"] = "drop"

    def __post_init__(self):
        if self.n_background < 1:
            raise ValueError(f"n_background must be positive, got {self.n_background}")
        if self.n_folds < 2:
            raise ValueError(f"n_folds must be at least 2, got {self.n_folds}")
        if not 1 <= self.test_fold <= self.n_folds:
            raise ValueError(f"test_fold must be in [1, {self.n_folds}], got {self.test_fold}")
        if self.padding <= 0:
            raise ValueError(f"padding must be positive, got {self.padding}")
        if self.on_shortfall not in ("reduce", "raise"):
            raise ValueError(f"on_shortfall must be 'reduce' or 'raise', got {self.on_shortfall!r}")
        if self.on_missing not in ("drop", "raise"):
            raise ValueError(f"on_missing must be 'drop' or 'raise', got {self.on_missing!r}")

    def to_dict(self) -> dict:
        return {
            "n_background": self.n_background,
            "n_folds": self.n_folds,
            "test_fold": self.test_fold,
            "seed": self.seed,
            "padding": self.padding,
            "on_shortfall": self.on_shortfall,
            "on_missing": self.on_missing,
        }
