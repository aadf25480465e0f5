"""
Spatial Tiler - partitions located assets into fixed-size lat/lon cells.

Cell assignment is a pure function of (lat, lon, tile_size):

    tile_lat = floor(lat / tile_size) * tile_size
    tile_lon = floor(lon / tile_size) * tile_size

Each non-empty cell becomes one tile carrying both its declared grid bounds
(used by the map client for manifest-driven prefetch) and the observed
min/max of the points inside it (used for tighter map fitting). Assets
without a coordinate pair (both present and finite) are left out of tiling
entirely; they are still in the relationship cache. Finite pairs outside
the lat/lon range are tiled like any other point and reported with a
warning, so the manifest totals always match the located input.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd

from .config import SOURCE_DATE_EPOCH, TILE_SIZE
from .errors import MissingCoordinate
from .models import Asset, Bounds, Tile

logger = logging.getLogger(__name__)

POINT_COLUMNS = ["id", "location_id", "lat", "lon", "country", "state", "tracker"]


@dataclass
class TilePartition:
    """A tile's manifest entry plus the point rows that go in its file."""
    tile: Tile
    points: pd.DataFrame


def valid_coordinate(lat: Optional[float], lon: Optional[float]) -> bool:
    """Both values present and finite. Range is checked separately."""
    if lat is None or lon is None:
        return False
    try:
        lat, lon = float(lat), float(lon)
    except (TypeError, ValueError):
        return False
    return math.isfinite(lat) and math.isfinite(lon)


def in_range(lat: float, lon: float) -> bool:
    return -90.0 <= float(lat) <= 90.0 and -180.0 <= float(lon) <= 180.0


def tile_cell(lat: float, lon: float, tile_size: float = TILE_SIZE) -> Tuple[float, float]:
    """Grid cell (south-west corner) containing the point."""
    if not valid_coordinate(lat, lon):
        raise MissingCoordinate(f"No usable coordinate: lat={lat!r}, lon={lon!r}")
    tile_lat = math.floor(float(lat) / tile_size) * tile_size + 0.0
    tile_lon = math.floor(float(lon) / tile_size) * tile_size + 0.0
    return tile_lat, tile_lon


def _fmt_coord(value: float) -> str:
    value = float(value) + 0.0  # no "-0"
    if value.is_integer():
        return str(int(value))
    return f"{value:g}"


def tile_name(tile_lat: float, tile_lon: float) -> str:
    return f"tile_{_fmt_coord(tile_lat)}_{_fmt_coord(tile_lon)}"


def manifest_timestamp(generated: Optional[str] = None) -> str:
    """ISO-8601 UTC build time. SOURCE_DATE_EPOCH pins it for reproducible builds."""
    if generated:
        return generated
    if SOURCE_DATE_EPOCH:
        ts = datetime.fromtimestamp(int(SOURCE_DATE_EPOCH), tz=timezone.utc)
    else:
        ts = datetime.now(timezone.utc)
    return ts.strftime("%Y-%m-%dT%H:%M:%SZ")


def _asset_frame(assets: Iterable[Asset]) -> pd.DataFrame:
    rows = [
        {
            "id": a.id,
            "location_id": a.location_id,
            "lat": a.latitude,
            "lon": a.longitude,
            "country": a.country,
            "state": a.state,
            "tracker": a.tracker,
            "row_count": a.row_count,
        }
        for a in assets
    ]
    return pd.DataFrame(rows, columns=POINT_COLUMNS + ["row_count"])


def partition_assets(assets: Iterable[Asset],
                     tile_size: float = TILE_SIZE) -> List[TilePartition]:
    """Group located assets into tiles.

    Returns partitions ordered by row count (largest first), then by cell,
    so the manifest order is stable across runs.
    """
    if tile_size <= 0:
        raise ValueError(f"tile_size must be positive, got {tile_size}")

    df = _asset_frame(assets)
    lat = pd.to_numeric(df["lat"], errors="coerce").astype(float)
    lon = pd.to_numeric(df["lon"], errors="coerce").astype(float)
    valid = np.isfinite(lat) & np.isfinite(lon)
    excluded = int((~valid).sum())
    if excluded:
        logger.info(f"Excluded {excluded} asset(s) without coordinates from tiling")
    out_of_range = int((valid & ~(lat.between(-90, 90) & lon.between(-180, 180))).sum())
    if out_of_range:
        logger.warning(f"{out_of_range} asset(s) have coordinates outside lat/lon range; tiled as given")

    df = df[valid].copy()
    df["lat"] = lat[valid]
    df["lon"] = lon[valid]
    df["tile_lat"] = np.floor(df["lat"] / tile_size) * tile_size + 0.0
    df["tile_lon"] = np.floor(df["lon"] / tile_size) * tile_size + 0.0

    partitions = []
    for (tile_lat, tile_lon), group in df.groupby(["tile_lat", "tile_lon"], sort=True):
        name = tile_name(tile_lat, tile_lon)
        tile = Tile(
            name=name,
            file=f"{name}.parquet",
            tile_bounds=Bounds(
                min_lat=float(tile_lat),
                max_lat=float(tile_lat + tile_size),
                min_lon=float(tile_lon),
                max_lon=float(tile_lon + tile_size),
            ),
            bounds=Bounds(
                min_lat=float(group["lat"].min()),
                max_lat=float(group["lat"].max()),
                min_lon=float(group["lon"].min()),
                max_lon=float(group["lon"].max()),
            ),
            asset_count=int(group["id"].nunique()),
            row_count=int(group["row_count"].sum()),
        )
        points = group.sort_values("id")[POINT_COLUMNS].reset_index(drop=True)
        partitions.append(TilePartition(tile=tile, points=points))

    partitions.sort(key=lambda p: (-p.tile.row_count, p.tile.tile_bounds.min_lat, p.tile.tile_bounds.min_lon))
    logger.info(f"Partitioned {len(df)} assets into {len(partitions)} tiles ({tile_size}° cells)")
    return partitions


def coordinate_audit(assets: Iterable[Asset]) -> dict:
    """Counts of points the tiler skips (missing) or tiles as given (out_of_range)."""
    missing = out_of_range = 0
    for a in assets:
        if not valid_coordinate(a.latitude, a.longitude):
            missing += 1
        elif not in_range(a.latitude, a.longitude):
            out_of_range += 1
    return {"missing": missing, "out_of_range": out_of_range}
