"""
Loading of species occurrence records and the study-region boundary.
"""

import logging
from pathlib import Path

import geopandas as gpd
import pandas as pd
from pyproj import CRS
from pyproj.exceptions import CRSError

from .errors import DataError

logger = logging.getLogger(__name__)

GEOGRAPHIC_CRS = "EPSG:4326"


def load_occurrences(
    path: str | Path,
    source_crs: str,
    lon_col: str = "longitude",
    lat_col: str = "latitude",
) -> gpd.GeoDataFrame:
    """
    Load occurrence records and reproject them to geographic coordinates.

    The coordinate columns are read as easting/northing in ``source_crs``
    (a projected CRS such as a UTM zone). Records with a missing or
    non-numeric coordinate are dropped.

    Args:
        path: CSV file with one row per occurrence record
        source_crs: CRS the coordinate columns are expressed in
        lon_col: Name of the x / longitude column
        lat_col: Name of the y / latitude column

    Returns:
        GeoDataFrame in EPSG:4326 with ``longitude`` and ``latitude`` columns
    """
    try:
        records = pd.read_csv(path)
    except (OSError, UnicodeDecodeError, pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
        raise DataError(f"Cannot read occurrence file {path}: {exc}") from exc

    missing = [c for c in (lon_col, lat_col) if c not in records.columns]
    if missing:
        raise DataError(f"Occurrence file {path} is missing columns: {missing}")

    coords = records[[lon_col, lat_col]].apply(pd.to_numeric, errors="coerce")
    valid = coords.notna().all(axis=1)
    n_dropped = int((~valid).sum())
    if n_dropped:
        logger.warning(f"Dropped {n_dropped} records with missing coordinates")

    coords = coords[valid]
    if coords.empty:
        raise DataError(f"No usable occurrence records in {path}")

    try:
        crs = CRS.from_user_input(source_crs)
    except CRSError as exc:
        raise DataError(f"Invalid source CRS {source_crs!r}") from exc

    points = gpd.GeoDataFrame(
        geometry=gpd.points_from_xy(coords[lon_col], coords[lat_col]),
        crs=crs,
    ).to_crs(GEOGRAPHIC_CRS)
    points["longitude"] = points.geometry.x
    points["latitude"] = points.geometry.y

    logger.info(f"Loaded {len(points)} occurrence points from {path}")
    return points.reset_index(drop=True)


def to_projected(points: gpd.GeoDataFrame, crs: str) -> pd.DataFrame:
    """Reproject geographic points back to ``crs`` as an x/y table."""
    projected = points.to_crs(crs)
    return pd.DataFrame({"x": projected.geometry.x, "y": projected.geometry.y})


def load_boundary(path: str | Path) -> gpd.GeoSeries:
    """
    Load the study-region outline as a single (multi)polygon.

    All features in the file are dissolved together; the CRS of the file is
    kept so callers can reproject as needed.
    """
    try:
        frame = gpd.read_file(path)
    except Exception as exc:  # pyogrio/fiona raise their own error types
        raise DataError(f"Cannot read boundary file {path}: {exc}") from exc

    if frame.empty or frame.crs is None:
        raise DataError(f"Boundary file {path} is empty or has no CRS")

    outline = frame.geometry.union_all()
    if outline.is_empty:
        raise DataError(f"Boundary file {path} contains no geometry")

    return gpd.GeoSeries([outline], crs=frame.crs)


def coordinates(points: pd.DataFrame) -> list[tuple[float, float]]:
    """
    Extract (lon, lat) pairs from a point table.

    Args:
        points: Table with ``longitude`` and ``latitude`` columns

    Returns:
        List of (longitude, latitude) tuples
    """
    return list(zip(points["longitude"].astype(float), points["latitude"].astype(float)))
