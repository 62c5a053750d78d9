"""
Environmental raster stacks.

Loads bioclimatic GeoTIFF layers into memory, crops them to a geographic
extent and looks up cell values at point coordinates. WorldClim current and
CMIP6 forecast layers can be downloaded and cached locally.
"""

import logging
import re
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import NamedTuple, Optional, Sequence

import numpy as np
import rasterio
import rasterio.transform
import rasterio.windows
import requests
from rasterio.crs import CRS
from rasterio.transform import Affine
from tqdm import tqdm

from .config import (
    CMIP6_URL,
    DEFAULT_GCM,
    DEFAULT_PERIOD,
    DEFAULT_RESOLUTION,
    DEFAULT_SSP,
    N_BIOCLIM,
    WORLDCLIM_BASE_URL,
    WORLDCLIM_RESOLUTIONS,
)
from .errors import BandMismatchError, GridMismatchError

logger = logging.getLogger(__name__)

# Default path to local raster cache
DEFAULT_CACHE_DIR = Path("data") / "worldclim"


class Extent(NamedTuple):
    """Geographic bounding box in the raster's coordinates."""

    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    @classmethod
    def from_points(cls, longitudes, latitudes) -> "Extent":
        longitudes = np.asarray(longitudes, dtype=float)
        latitudes = np.asarray(latitudes, dtype=float)
        if longitudes.size == 0:
            raise ValueError("Cannot build an extent from zero points")
        return cls(
            float(np.nanmin(longitudes)),
            float(np.nanmin(latitudes)),
            float(np.nanmax(longitudes)),
            float(np.nanmax(latitudes)),
        )

    def scale(self, factor: float) -> "Extent":
        """Grow (or shrink) the extent about its centre by `factor`."""
        center_lon = (self.min_lon + self.max_lon) / 2
        center_lat = (self.min_lat + self.max_lat) / 2
        half_width = (self.max_lon - self.min_lon) / 2 * factor
        half_height = (self.max_lat - self.min_lat) / 2 * factor
        return Extent(
            center_lon - half_width,
            center_lat - half_height,
            center_lon + half_width,
            center_lat + half_height,
        )

    @property
    def width(self) -> float:
        return self.max_lon - self.min_lon


def _window_for_extent(transform: Affine, height: int, width: int, extent: Extent) -> rasterio.windows.Window:
    """Window of all cells intersecting `extent`, clipped to the raster."""
    inv = ~transform
    col_a, row_a = inv * (extent.min_lon, extent.max_lat)
    col_b, row_b = inv * (extent.max_lon, extent.min_lat)

    # Cells are assigned by flooring, as in `RasterStack.rowcol`, so a point on
    # the east or south edge belongs to the cell starting there
    col_start = int(np.floor(min(col_a, col_b)))
    col_stop = int(np.floor(max(col_a, col_b))) + 1
    row_start = int(np.floor(min(row_a, row_b)))
    row_stop = int(np.floor(max(row_a, row_b))) + 1

    col_start, col_stop = max(col_start, 0), min(col_stop, width)
    row_start, row_stop = max(row_start, 0), min(row_stop, height)

    if col_stop <= col_start or row_stop <= row_start:
        raise ValueError(f"Extent {tuple(extent)} does not overlap the raster")

    return rasterio.windows.Window(col_start, row_start, col_stop - col_start, row_stop - row_start)


@dataclass(frozen=True, eq=False)
class RasterStack:
    """
    Same-grid environmental layers held in memory.

    Attributes:
        data: Array of shape (bands, rows, cols); missing cells are NaN
        transform: Affine transform of the grid
        crs: Coordinate reference system (may be None for synthetic grids)
        band_names: One name per band, in band order
    """

    data: np.ndarray
    transform: Affine
    crs: Optional[CRS]
    band_names: tuple[str, ...]

    def __post_init__(self):
        data = np.asarray(self.data, dtype=np.float64)
        if data.ndim != 3:
            raise ValueError(f"Raster data must have shape (bands, rows, cols), got {data.shape}")
        names = tuple(self.band_names)
        if len(names) != data.shape[0]:
            raise ValueError(f"{data.shape[0]} bands but {len(names)} band names")
        if len(set(names)) != len(names):
            raise ValueError(f"Band names must be unique: {list(names)}")
        object.__setattr__(self, "data", data)
        object.__setattr__(self, "band_names", names)

    @property
    def n_bands(self) -> int:
        return self.data.shape[0]

    @property
    def shape(self) -> tuple[int, int]:
        return self.data.shape[1], self.data.shape[2]

    @property
    def bounds(self) -> Extent:
        height, width = self.shape
        west, south, east, north = rasterio.transform.array_bounds(height, width, self.transform)
        return Extent(west, south, east, north)

    @property
    def valid_mask(self) -> np.ndarray:
        """Boolean (rows, cols) mask of cells where every band has a value."""
        return np.all(np.isfinite(self.data), axis=0)

    def band(self, name: str) -> np.ndarray:
        return self.data[self.band_names.index(name)]

    def crop(self, extent: Extent) -> "RasterStack":
        """Return a new stack restricted to the cells intersecting `extent`."""
        height, width = self.shape
        window = _window_for_extent(self.transform, height, width, extent)
        rows, cols = window.toslices()
        return RasterStack(
            data=self.data[:, rows, cols].copy(),
            transform=rasterio.windows.transform(window, self.transform),
            crs=self.crs,
            band_names=self.band_names,
        )

    def select(self, band_names: Sequence[str]) -> "RasterStack":
        """Return a new stack with only `band_names`, in that order."""
        missing = [b for b in band_names if b not in self.band_names]
        if missing:
            raise BandMismatchError(tuple(band_names), self.band_names)
        idx = [self.band_names.index(b) for b in band_names]
        return RasterStack(self.data[idx].copy(), self.transform, self.crs, tuple(band_names))

    def rename(self, band_names: Sequence[str]) -> "RasterStack":
        """Return a new stack with the same data under new band names."""
        return RasterStack(self.data, self.transform, self.crs, tuple(band_names))

    def rowcol(self, longitudes, latitudes) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Convert coordinates to the row/column of the cell containing them.

        Returns:
            Tuple of (rows, cols, inside) where `inside` flags points that
            fall within the grid. Rows/cols of outside points are 0.
        """
        longitudes = np.asarray(longitudes, dtype=float)
        latitudes = np.asarray(latitudes, dtype=float)
        height, width = self.shape

        rows = np.zeros(len(longitudes), dtype=int)
        cols = np.zeros(len(longitudes), dtype=int)
        finite = np.isfinite(longitudes) & np.isfinite(latitudes)
        if finite.any():
            r, c = rasterio.transform.rowcol(self.transform, longitudes[finite], latitudes[finite])
            rows[finite] = np.asarray(r, dtype=int)
            cols[finite] = np.asarray(c, dtype=int)

        inside = finite & (rows >= 0) & (rows < height) & (cols >= 0) & (cols < width)
        rows[~inside] = 0
        cols[~inside] = 0
        return rows, cols, inside

    def sample(self, longitudes, latitudes) -> np.ndarray:
        """
        Look up band values at each coordinate.

        Returns:
            Array of shape (n_points, n_bands); NaN for points outside the
            grid or on missing cells
        """
        rows, cols, inside = self.rowcol(longitudes, latitudes)
        values = np.full((len(rows), self.n_bands), np.nan)
        values[inside] = self.data[:, rows[inside], cols[inside]].T
        return values

    def cell_centers(self, rows, cols) -> tuple[np.ndarray, np.ndarray]:
        """Longitude/latitude of the centres of the given cells."""
        if len(rows) == 0:
            return np.array([], dtype=float), np.array([], dtype=float)
        xs, ys = rasterio.transform.xy(self.transform, rows, cols)
        return np.asarray(xs, dtype=float), np.asarray(ys, dtype=float)


def _band_names_for(src, path: Path) -> list[str]:
    if src.count == 1:
        return [src.descriptions[0] or path.stem]
    if all(src.descriptions):
        return list(src.descriptions)
    return [f"{path.stem}_{i}" for i in range(1, src.count + 1)]


def load_raster_stack(
    paths: Sequence[str | Path],
    band_names: Optional[Sequence[str]] = None,
    extent: Optional[Extent] = None,
) -> RasterStack:
    """
    Load one or more GeoTIFFs into a single in-memory stack.

    Args:
        paths: Raster files; bands are stacked in file order
        band_names: Names for the bands (default: band descriptions or file stems)
        extent: If given, only the cells intersecting this extent are read

    Returns:
        RasterStack with nodata cells set to NaN
    """
    paths = [Path(p) for p in paths]
    if not paths:
        raise ValueError("No raster files given")

    layers = []
    names = []
    transform = None
    crs = None
    grid = None

    for path in paths:
        with rasterio.open(path) as src:
            window = None
            file_transform = src.transform
            if extent is not None:
                window = _window_for_extent(src.transform, src.height, src.width, extent)
                file_transform = rasterio.windows.transform(window, src.transform)

            data = src.read(window=window, masked=True).astype(np.float64).filled(np.nan)

            if transform is None:
                transform, crs, grid = file_transform, src.crs, data.shape[1:]
            elif data.shape[1:] != grid or file_transform != transform:
                raise GridMismatchError(
                    f"{path.name} has grid {data.shape[1:]} @ {tuple(file_transform)[:6]}, "
                    f"expected {grid} @ {tuple(transform)[:6]}"
                )

            layers.append(data)
            names.extend(_band_names_for(src, path))

    stack = np.concatenate(layers, axis=0)
    if band_names is not None:
        names = list(band_names)

    logger.info(f"Loaded raster stack: {stack.shape[0]} bands, {stack.shape[1]} x {stack.shape[2]} cells")

    return RasterStack(stack, transform, crs, tuple(names))


def save_raster_stack(stack: RasterStack, path: str | Path) -> Path:
    """Save a stack to a multi-band GeoTIFF, band names as descriptions."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    height, width = stack.shape

    with rasterio.open(
        path, "w",
        driver="GTiff",
        height=height,
        width=width,
        count=stack.n_bands,
        dtype="float32",
        crs=stack.crs,
        transform=stack.transform,
        nodata=np.nan,
        compress="lzw",
    ) as dst:
        dst.write(stack.data.astype(np.float32))
        for i, name in enumerate(stack.band_names, start=1):
            dst.set_band_description(i, name)

    return path


def bioclim_names() -> list[str]:
    return [f"bio{i}" for i in range(1, N_BIOCLIM + 1)]


def download_file(url: str, path: Path, chunk_size: int = 1 << 20) -> Path:
    """Download `url` to `path` unless it is already cached."""
    if path.exists():
        logger.info(f"Using cached {path}")
        return path

    path.parent.mkdir(parents=True, exist_ok=True)
    partial = path.with_name(path.name + ".part")

    logger.info(f"Downloading {url}")
    with requests.get(url, stream=True, timeout=60) as response:
        response.raise_for_status()
        total = int(response.headers.get("content-length", 0))
        with open(partial, "wb") as f, tqdm(
            total=total, unit="B", unit_scale=True, desc=path.name, dynamic_ncols=True
        ) as pbar:
            for chunk in response.iter_content(chunk_size=chunk_size):
                f.write(chunk)
                pbar.update(len(chunk))

    partial.replace(path)
    return path


def _check_resolution(resolution: str) -> None:
    if resolution not in WORLDCLIM_RESOLUTIONS:
        raise ValueError(f"Unknown resolution: {resolution}. Choose from {list(WORLDCLIM_RESOLUTIONS)}")


def _bio_number(path: Path) -> int:
    match = re.search(r"_bio_(\d+)\.tif$", path.name)
    if match is None:
        raise ValueError(f"Not a WorldClim bioclim layer: {path.name}")
    return int(match.group(1))


def fetch_worldclim_bioclim(
    resolution: str = DEFAULT_RESOLUTION,
    cache_dir: Optional[Path] = None,
    extent: Optional[Extent] = None,
) -> RasterStack:
    """
    Download (once) and load the 19 WorldClim 2.1 bioclimatic layers.

    Bands are named bio1 ... bio19 in numeric order.
    """
    _check_resolution(resolution)
    cache_dir = Path(cache_dir or DEFAULT_CACHE_DIR)
    layer_dir = cache_dir / f"wc2.1_{resolution}"

    layers = sorted(layer_dir.glob(f"wc2.1_{resolution}_bio_*.tif"), key=_bio_number)
    if len(layers) < N_BIOCLIM:
        archive = download_file(
            WORLDCLIM_BASE_URL.format(resolution=resolution),
            cache_dir / f"wc2.1_{resolution}_bio.zip",
        )
        logger.info(f"Extracting {archive.name}")
        with zipfile.ZipFile(archive) as zf:
            zf.extractall(layer_dir)
        layers = sorted(layer_dir.glob(f"wc2.1_{resolution}_bio_*.tif"), key=_bio_number)

    if len(layers) != N_BIOCLIM:
        raise RuntimeError(f"Expected {N_BIOCLIM} bioclim layers in {layer_dir}, found {len(layers)}")

    return load_raster_stack(layers, band_names=bioclim_names(), extent=extent)


def fetch_cmip6_bioclim(
    model: str = DEFAULT_GCM,
    ssp: str = DEFAULT_SSP,
    period: str = DEFAULT_PERIOD,
    resolution: str = DEFAULT_RESOLUTION,
    cache_dir: Optional[Path] = None,
    extent: Optional[Extent] = None,
) -> RasterStack:
    """
    Download (once) and load CMIP6 forecast bioclimatic layers.

    Bands are named like the current-climate layers so that a model fit on
    `fetch_worldclim_bioclim` data can predict on the forecast directly.
    """
    _check_resolution(resolution)
    ssp = str(ssp).lower().removeprefix("ssp")
    cache_dir = Path(cache_dir or DEFAULT_CACHE_DIR)

    url = CMIP6_URL.format(resolution=resolution, model=model, ssp=ssp, period=period)
    path = download_file(url, cache_dir / "cmip6" / url.rsplit("/", 1)[-1])

    return load_raster_stack([path], band_names=bioclim_names(), extent=extent)
