"""
Command-line interface for building a species distribution model.
"""

import argparse
import logging
from pathlib import Path
from typing import Optional

from .climate import fetch_cmip6_bioclim, fetch_worldclim_bioclim, load_raster_stack
from .config import (
    CMIP6_PERIODS,
    CMIP6_SSPS,
    DEFAULT_GCM,
    DEFAULT_N_BACKGROUND,
    DEFAULT_N_FOLDS,
    DEFAULT_PADDING,
    DEFAULT_PERIOD,
    DEFAULT_RESOLUTION,
    DEFAULT_SEED,
    DEFAULT_SSP,
    DEFAULT_TEST_FOLD,
    WORLDCLIM_RESOLUTIONS,
    SDMConfig,
)
from .errors import NoOccurrencesError
from .occurrences import download_occurrences, filter_missing_coordinates, read_occurrences, save_occurrences
from .pipeline import SDMResult, run_sdm, study_extent

logger = logging.getLogger(__name__)


def build_sdm(
    output_dir: Path,
    species_name: Optional[str] = None,
    occurrences_path: Optional[Path] = None,
    raster_paths: Optional[list[Path]] = None,
    resolution: str = DEFAULT_RESOLUTION,
    cache_dir: Optional[Path] = None,
    config: Optional[SDMConfig] = None,
    forecast: bool = False,
    forecast_paths: Optional[list[Path]] = None,
    gcm: str = DEFAULT_GCM,
    ssp: str = DEFAULT_SSP,
    period: str = DEFAULT_PERIOD,
    max_records: Optional[int] = None,
    plots: bool = True,
) -> SDMResult:
    """
    Complete run: load occurrences and climate layers, fit, evaluate, map.

    Args:
        output_dir: Directory to save outputs
        species_name: Scientific name; occurrences are downloaded from GBIF
            when no occurrence file is given
        occurrences_path: CSV with latitude/longitude columns
        raster_paths: Local GeoTIFF layers (default: WorldClim download)
        resolution: WorldClim resolution when downloading
        cache_dir: Where downloaded climate data is cached
        config: Run parameters
        forecast: Also predict on a CMIP6 forecast
        forecast_paths: Local forecast layers, in the same band order as
            the current layers (implies `forecast`)
        gcm, ssp, period: Forecast scenario
        max_records: Cap on GBIF records
        plots: Save PNG maps

    Returns:
        The SDMResult of the run
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    config = config or SDMConfig()

    if occurrences_path is not None:
        occurrences = read_occurrences(occurrences_path)
    elif species_name:
        occurrences = download_occurrences(species_name, max_records=max_records)
        save_occurrences(filter_missing_coordinates(occurrences), output_dir / "occurrences.csv")
    else:
        raise ValueError("Give a species name or an occurrence file")

    # Read only the cells the run needs
    presence = filter_missing_coordinates(occurrences)
    if presence.empty:
        raise NoOccurrencesError("No occurrence records with coordinates")
    extent = study_extent(presence, config.padding)

    if raster_paths:
        stack = load_raster_stack(raster_paths, extent=extent)
    else:
        stack = fetch_worldclim_bioclim(resolution, cache_dir=cache_dir, extent=extent)

    result = run_sdm(occurrences, stack, config=config, species_name=species_name)

    forecasts = []
    if forecast_paths:
        # Local forecast files map onto the current bands by position
        future = load_raster_stack(forecast_paths, extent=result.extent)
        if future.n_bands == result.stack.n_bands:
            future = future.rename(result.stack.band_names)
        forecasts.append(result.forecast(future, label="forecast"))
    elif forecast:
        future = fetch_cmip6_bioclim(gcm, ssp, period, resolution, cache_dir=cache_dir, extent=result.extent)
        forecasts.append(result.forecast(future, label=f"{gcm} ssp{ssp} {period}"))

    paths = result.save(output_dir, forecasts=forecasts, plots=plots)
    for key, path in paths.items():
        logger.debug(f"  {key}: {path}")

    return result


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Build a presence/background species distribution model",
    )
    parser.add_argument("species", nargs="?", help="Scientific name of the species (e.g., 'Carnegiea gigantea')")
    parser.add_argument("--occurrences", type=Path, help="CSV with latitude/longitude columns")
    parser.add_argument("--rasters", type=Path, nargs="+", help="Environmental GeoTIFF layers")
    parser.add_argument("--resolution", default=DEFAULT_RESOLUTION, choices=WORLDCLIM_RESOLUTIONS,
                        help="WorldClim resolution when downloading")
    parser.add_argument("--cache-dir", type=Path, help="Directory for downloaded climate data")
    parser.add_argument("--output-dir", "-o", type=Path, default=Path("output"), help="Output directory")
    parser.add_argument("--background", "-n", type=int, default=DEFAULT_N_BACKGROUND,
                        help="Number of background points")
    parser.add_argument("--folds", "-k", type=int, default=DEFAULT_N_FOLDS, help="Number of folds")
    parser.add_argument("--test-fold", type=int, default=DEFAULT_TEST_FOLD, help="Fold held out for testing")
    parser.add_argument("--seed", "-s", type=int, default=DEFAULT_SEED, help="Random seed")
    parser.add_argument("--padding", type=float, default=DEFAULT_PADDING,
                        help="Factor to grow the occurrence bounding box by")
    parser.add_argument("--strict", action="store_true",
                        help="Fail on too few valid cells or points with missing values instead of dropping")
    parser.add_argument("--max-records", type=int, help="Maximum GBIF records to download")
    parser.add_argument("--forecast", action="store_true", help="Also predict on a CMIP6 forecast")
    parser.add_argument("--forecast-rasters", type=Path, nargs="+",
                        help="Local forecast GeoTIFF layers, same band order as the current layers")
    parser.add_argument("--gcm", default=DEFAULT_GCM, help="CMIP6 global climate model")
    parser.add_argument("--ssp", default=DEFAULT_SSP, choices=CMIP6_SSPS, help="Shared socioeconomic pathway")
    parser.add_argument("--period", default=DEFAULT_PERIOD, choices=CMIP6_PERIODS, help="Forecast period")
    parser.add_argument("--no-plots", action="store_true", help="Skip PNG maps")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    args = parser.parse_args(argv)
    if not args.species and not args.occurrences:
        parser.error("Specify a species name or --occurrences")
    return args


def main(argv: Optional[list[str]] = None):
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    config = SDMConfig(
        n_background=args.background,
        n_folds=args.folds,
        test_fold=args.test_fold,
        seed=args.seed,
        padding=args.padding,
        on_shortfall="raise" if args.strict else "reduce",
        on_missing="raise" if args.strict else "drop",
    )

    result = build_sdm(
        output_dir=args.output_dir,
        species_name=args.species,
        occurrences_path=args.occurrences,
        raster_paths=args.rasters,
        resolution=args.resolution,
        cache_dir=args.cache_dir,
        config=config,
        forecast=args.forecast,
        forecast_paths=args.forecast_rasters,
        gcm=args.gcm,
        ssp=args.ssp,
        period=args.period,
        max_records=args.max_records,
        plots=not args.no_plots,
    )

    print(f"\nAUC: {result.evaluation.auc:.3f}  threshold: {result.threshold:.4f}")
    print(f"Output saved to: {args.output_dir}/")


if __name__ == "__main__":
    main()
