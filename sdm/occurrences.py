"""
Species occurrence records: CSV loading, cleaning and GBIF download.
"""

import logging
from pathlib import Path
from typing import Optional

import pandas as pd
import requests

from .config import LATITUDE, LONGITUDE

logger = logging.getLogger(__name__)

GBIF_MATCH_URL = "https://api.gbif.org/v1/species/match"
GBIF_SEARCH_URL = "https://api.gbif.org/v1/occurrence/search"


def read_occurrences(
    path: str | Path,
    latitude_column: str = LATITUDE,
    longitude_column: str = LONGITUDE,
) -> pd.DataFrame:
    """
    Read occurrence records from a CSV file.

    Only the coordinate columns are kept; every other column is ignored.
    Non-numeric coordinate values are treated as missing.

    Args:
        path: Path to the CSV file
        latitude_column: Name of the latitude column in the file
        longitude_column: Name of the longitude column in the file

    Returns:
        DataFrame with `longitude` and `latitude` columns (may contain NaN)
    """
    df = pd.read_csv(path)

    missing = [c for c in (latitude_column, longitude_column) if c not in df.columns]
    if missing:
        raise ValueError(f"Occurrence file {path} is missing column(s): {missing}")

    occurrences = pd.DataFrame({
        LONGITUDE: pd.to_numeric(df[longitude_column], errors="coerce"),
        LATITUDE: pd.to_numeric(df[latitude_column], errors="coerce"),
    })
    logger.info(f"Read {len(occurrences)} occurrence records from {path}")

    return occurrences


def filter_missing_coordinates(occurrences: pd.DataFrame) -> pd.DataFrame:
    """Drop records with a missing latitude or longitude. Returns a new frame."""
    filtered = occurrences.dropna(subset=[LATITUDE, LONGITUDE]).reset_index(drop=True)

    n_dropped = len(occurrences) - len(filtered)
    if n_dropped:
        logger.info(f"Dropped {n_dropped} records with missing coordinates")

    return filtered


def save_occurrences(occurrences: pd.DataFrame, path: str | Path) -> None:
    """Save occurrence coordinates to CSV."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    occurrences[[LATITUDE, LONGITUDE]].to_csv(path, index=False)
    logger.info(f"Saved {len(occurrences)} occurrences to {path}")


def get_species_key(species_name: str) -> Optional[int]:
    """
    Resolve a scientific name to its GBIF backbone taxon key.

    Fuzzy and higher-rank matches are accepted but logged as warnings, since
    the occurrences then belong to a different name than the one asked for.

    Returns:
        GBIF taxon key or None if GBIF has no match
    """
    response = requests.get(GBIF_MATCH_URL, params={"name": species_name}, timeout=30)
    response.raise_for_status()
    match = response.json()

    match_type = match.get("matchType", "NONE")
    taxon_key = match.get("usageKey")
    if match_type == "NONE" or taxon_key is None:
        logger.warning(f"No GBIF match for '{species_name}'")
        return None

    matched_name = match.get("scientificName", species_name)
    if match_type != "EXACT":
        logger.warning(f"GBIF {match_type.lower()} match for '{species_name}': {matched_name} (key {taxon_key})")
    else:
        logger.info(f"GBIF match for '{species_name}': {matched_name} (key {taxon_key})")

    return taxon_key


def fetch_gbif_occurrences(
    taxon_key: int,
    bbox: Optional[tuple[float, float, float, float]] = None,
    limit: int = 300,
    max_records: Optional[int] = None,
) -> list[dict]:
    """
    Fetch georeferenced occurrences from the GBIF API with pagination.

    Args:
        taxon_key: GBIF taxon key for the species
        bbox: Optional (min_lon, min_lat, max_lon, max_lat) filter
        limit: Number of records per API request
        max_records: Stop after this many records

    Returns:
        List of occurrence dictionaries
    """
    all_occurrences = []
    offset = 0

    while True:
        params = {
            "taxonKey": taxon_key,
            "hasCoordinate": "true",
            "hasGeospatialIssue": "false",
            "limit": limit,
            "offset": offset,
        }
        if bbox is not None:
            min_lon, min_lat, max_lon, max_lat = bbox
            params["decimalLatitude"] = f"{min_lat},{max_lat}"
            params["decimalLongitude"] = f"{min_lon},{max_lon}"

        response = requests.get(GBIF_SEARCH_URL, params=params)
        response.raise_for_status()
        data = response.json()

        results = data.get("results", [])
        if not results:
            break

        all_occurrences.extend(results)
        logger.debug(f"Fetched {len(all_occurrences)} of {data.get('count', 0)} records")

        if max_records is not None and len(all_occurrences) >= max_records:
            all_occurrences = all_occurrences[:max_records]
            break
        if data.get("endOfRecords") or len(all_occurrences) >= data.get("count", 0):
            break

        offset += limit

    return all_occurrences


def occurrences_to_frame(occurrences: list[dict]) -> pd.DataFrame:
    """
    Convert GBIF occurrence dictionaries to a coordinate DataFrame.

    Records without coordinates are kept as NaN rows so that
    `filter_missing_coordinates` decides what to drop.
    """
    return pd.DataFrame({
        LONGITUDE: pd.to_numeric(
            pd.Series([occ.get("decimalLongitude") for occ in occurrences], dtype=object),
            errors="coerce",
        ),
        LATITUDE: pd.to_numeric(
            pd.Series([occ.get("decimalLatitude") for occ in occurrences], dtype=object),
            errors="coerce",
        ),
    })


def download_occurrences(
    species_name: str,
    bbox: Optional[tuple[float, float, float, float]] = None,
    max_records: Optional[int] = None,
) -> pd.DataFrame:
    """Look up a species on GBIF and return its occurrence coordinates."""
    taxon_key = get_species_key(species_name)
    if taxon_key is None:
        raise ValueError(f"Species not found in GBIF: {species_name}")

    records = fetch_gbif_occurrences(taxon_key, bbox=bbox, max_records=max_records)
    logger.info(f"Found {len(records)} occurrences")

    return occurrences_to_frame(records)
