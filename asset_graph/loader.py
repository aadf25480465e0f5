"""
Graph Loader - validates raw ownership rows and builds the in-memory indices.

The loader is the only place that touches loosely-typed warehouse rows.
It maps column aliases to canonical fields, fails fast when a required
column is absent, coerces numbers, drops exact duplicates and then builds
an OwnershipGraph that every later stage reads (never mutates).

Edges come in two flavours in the same table:
  - entity -> asset   (asset_id is an infrastructure unit)
  - entity -> entity  (asset_id is itself an owning entity)
An id is an entity if it appears anywhere as owner_id / immediate_owner_id.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Union

import numpy as np
import pandas as pd

from .config import (
    COLUMN_ALIASES,
    DEDUPE_KEY,
    ID_COLUMNS,
    LOCATION_ID_COLUMNS,
    LOCATION_REQUIRED_COLUMNS,
    LOCATION_TEXT_COLUMNS,
    NUMERIC_COLUMNS,
    OPTIONAL_COLUMNS,
    REQUIRED_COLUMNS,
)
from .errors import DataError
from .models import Asset, OwnershipRecord

logger = logging.getLogger(__name__)

_TEXT_COLUMNS = ("owner_name", "immediate_owner_name", "asset_name",
                 "tracker", "status", "country", "state")
_ASSET_ATTRS = ("name", "tracker", "status", "capacity", "location_id",
                "country", "state")
_RECORD_ATTR = {"name": "asset_name"}


@dataclass
class OwnershipGraph:
    """Indexed ownership edges for one build."""
    records_by_asset: Dict[str, List[OwnershipRecord]] = field(default_factory=dict)
    assets_by_owner: Dict[str, List[str]] = field(default_factory=dict)
    assets_by_location: Dict[str, List[str]] = field(default_factory=dict)
    entity_names: Dict[str, str] = field(default_factory=dict)
    entity_ids: set = field(default_factory=set)
    assets: Dict[str, Asset] = field(default_factory=dict)
    missing_columns: tuple = ()
    row_count: int = 0
    duplicate_rows: int = 0
    dropped_rows: int = 0
    clamped_shares: int = 0
    implied_edges: int = 0

    def is_entity(self, node_id: str) -> bool:
        return node_id in self.entity_ids

    def records_for(self, node_id: str) -> List[OwnershipRecord]:
        return self.records_by_asset.get(node_id, [])

    def owned_assets(self, owner_id: Optional[str]) -> List[str]:
        if not owner_id:
            return []
        return self.assets_by_owner.get(owner_id, [])

    def located_assets(self, location_id: Optional[str]) -> List[str]:
        if not location_id:
            return []
        return self.assets_by_location.get(location_id, [])

    def entity_name(self, entity_id: str) -> Optional[str]:
        return self.entity_names.get(entity_id)

    def summary(self) -> dict:
        return {
            "rows": self.row_count,
            "assets": len(self.assets),
            "entities": len(self.entity_ids),
            "owners": len(self.assets_by_owner),
            "locations": len(self.assets_by_location),
            "duplicate_rows": self.duplicate_rows,
            "dropped_rows": self.dropped_rows,
            "clamped_shares": self.clamped_shares,
            "implied_edges": self.implied_edges,
            "missing_columns": list(self.missing_columns),
        }


# ============================================================================
# Row normalisation
# ============================================================================

def normalise_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Rename warehouse headers to canonical fields.

    Canonical names pass through untouched. When two headers map to the
    same field, the first one present wins.
    """
    renames = {}
    taken = set(c for c in df.columns if c in REQUIRED_COLUMNS + OPTIONAL_COLUMNS)
    for col in df.columns:
        target = COLUMN_ALIASES.get(col)
        if target is None or target in taken:
            continue
        renames[col] = target
        taken.add(target)
    return df.rename(columns=renames)


def _is_blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() in ("", "nan", "None", "NaN")
    return bool(pd.isna(value))


def _clean_text(series: pd.Series) -> pd.Series:
    """Stripped strings, blank / NaN -> None. Always object dtype."""
    values = [None if _is_blank(v) else str(v).strip() for v in series.tolist()]
    return pd.Series(values, index=series.index, dtype=object)


def _clean_id(series: pd.Series) -> pd.Series:
    # Numeric ids read from spreadsheets come back as 123.0
    def fix(v):
        if v is None:
            return None
        if v.endswith(".0") and v[:-2].lstrip("-").isdigit():
            return v[:-2]
        return v
    values = [fix(v) for v in _clean_text(series).tolist()]
    return pd.Series(values, index=series.index, dtype=object)


def prepare_frame(df: pd.DataFrame, strict: bool = False) -> tuple:
    """Validate and coerce a raw frame.

    Returns:
        (clean_df, stats) where stats holds missing_columns, dropped_rows,
        duplicate_rows and clamped_shares.

    Raises:
        DataError: a required column is absent, or (strict) a row has a
            blank asset_id.
    """
    df = normalise_columns(df)

    missing_required = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing_required:
        raise DataError(
            f"Ownership rows are missing required column(s): {', '.join(missing_required)}. "
            f"Found: {', '.join(map(str, df.columns)) or '(none)'}",
            missing=missing_required,
        )

    missing_optional = tuple(c for c in OPTIONAL_COLUMNS if c not in df.columns)
    if missing_optional:
        logger.warning(f"Optional columns absent, treated as null: {', '.join(missing_optional)}")

    df = df.copy()
    for col in missing_optional:
        df[col] = None
    df = df[list(REQUIRED_COLUMNS) + list(OPTIONAL_COLUMNS)]

    for col in ID_COLUMNS:
        df[col] = _clean_id(df[col])
    for col in _TEXT_COLUMNS:
        df[col] = _clean_text(df[col])
    for col in NUMERIC_COLUMNS:
        df[col] = pd.to_numeric(df[col], errors="coerce").astype(float)
        df.loc[~np.isfinite(df[col]), col] = np.nan

    # Shares live in [0, 100]
    share = df["share"]
    out_of_range = share.notna() & ((share < 0) | (share > 100))
    clamped = int(out_of_range.sum())
    if clamped:
        logger.warning(f"Clamped {clamped} ownership share(s) outside [0, 100]")
        df["share"] = share.clip(lower=0, upper=100)

    blank_asset = df["asset_id"].isna()
    dropped = int(blank_asset.sum())
    if dropped:
        if strict:
            raise DataError(f"{dropped} row(s) have a blank asset_id", missing=("asset_id",))
        logger.warning(f"Dropped {dropped} row(s) with a blank asset_id")
        df = df[~blank_asset]

    before = len(df)
    df = df.drop_duplicates(subset=DEDUPE_KEY, keep="first").reset_index(drop=True)
    duplicates = before - len(df)
    if duplicates:
        logger.info(f"Removed {duplicates} duplicate ownership row(s)")

    stats = {
        "missing_columns": missing_optional,
        "dropped_rows": dropped,
        "duplicate_rows": duplicates,
        "clamped_shares": clamped,
    }
    return df, stats


def _to_records(df: pd.DataFrame) -> List[OwnershipRecord]:
    records = []
    for row in df.to_dict(orient="records"):
        for col in NUMERIC_COLUMNS:
            if pd.isna(row[col]):
                row[col] = None
        records.append(OwnershipRecord(**row))
    return records


# ============================================================================
# Index building
# ============================================================================

def _append_unique(index: dict, key: str, value: str, seen: set):
    if (key, value) in seen:
        return
    seen.add((key, value))
    index.setdefault(key, []).append(value)


def _merge_asset(asset_id: str, records: List[OwnershipRecord]) -> Asset:
    """First non-null value of each attribute across the asset's rows."""
    asset = Asset(id=asset_id, row_count=len(records))
    for attr in _ASSET_ATTRS:
        source_attr = _RECORD_ATTR.get(attr, attr)
        for rec in records:
            value = getattr(rec, source_attr)
            if value is not None:
                setattr(asset, attr, value)
                break
    # Coordinates only count as a pair from the same row
    for rec in records:
        if rec.latitude is not None and rec.longitude is not None:
            asset.latitude, asset.longitude = rec.latitude, rec.longitude
            break
    return asset


def _add_implied_parent_edges(graph: OwnershipGraph, records: List[OwnershipRecord]) -> int:
    """Turn (owner C, immediate owner B, asset A) rows into a B <- C edge.

    A row naming a different owner above the immediate owner says C sits
    above B in A's chain. Explicit entity rows for B take precedence; the
    implied edge carries no share, so it ranks below any edge with one.
    """
    added = 0
    for rec in records:
        parent, child = rec.owner_id, rec.immediate_owner_id
        if not parent or not child or parent == child:
            continue
        edges = graph.records_by_asset.setdefault(child, [])
        if any(e.direct_owner_id == parent for e in edges):
            continue
        edges.append(OwnershipRecord(
            owner_id=parent,
            asset_id=child,
            owner_name=rec.owner_name,
            asset_name=rec.immediate_owner_name,
        ))
        added += 1
    if added:
        logger.info(f"Added {added} parent edge(s) implied by owner / immediate owner pairs")
    return added


def build_graph(records: Iterable[OwnershipRecord]) -> OwnershipGraph:
    """Build the lookup indices from validated records."""
    graph = OwnershipGraph()
    records = list(records)

    for rec in records:
        for eid, name in ((rec.owner_id, rec.owner_name),
                          (rec.immediate_owner_id, rec.immediate_owner_name)):
            if eid:
                graph.entity_ids.add(eid)
                if name and eid not in graph.entity_names:
                    graph.entity_names[eid] = name

    owner_seen, location_seen = set(), set()
    for rec in records:
        graph.records_by_asset.setdefault(rec.asset_id, []).append(rec)
        if graph.is_entity(rec.asset_id):
            if rec.asset_name and rec.asset_id not in graph.entity_names:
                graph.entity_names[rec.asset_id] = rec.asset_name
            continue
        for owner in (rec.owner_id, rec.direct_owner_id):
            if owner:
                _append_unique(graph.assets_by_owner, owner, rec.asset_id, owner_seen)
        if rec.location_id:
            _append_unique(graph.assets_by_location, rec.location_id, rec.asset_id, location_seen)

    for asset_id, recs in graph.records_by_asset.items():
        if not graph.is_entity(asset_id):
            graph.assets[asset_id] = _merge_asset(asset_id, recs)

    graph.implied_edges = _add_implied_parent_edges(graph, records)
    graph.row_count = len(records)
    return graph


def load_graph(rows: Union[pd.DataFrame, Iterable[dict]], strict: bool = False) -> OwnershipGraph:
    """Validate raw ownership rows and build the OwnershipGraph.

    Args:
        rows: DataFrame or iterable of row mappings from a row source.
        strict: raise DataError on blank asset ids instead of dropping them.

    Raises:
        DataError: required columns (asset_id, owner_id) are absent.
    """
    df = rows if isinstance(rows, pd.DataFrame) else pd.DataFrame(list(rows))
    clean, stats = prepare_frame(df, strict=strict)
    graph = build_graph(_to_records(clean))
    graph.missing_columns = stats["missing_columns"]
    graph.dropped_rows = stats["dropped_rows"]
    graph.duplicate_rows = stats["duplicate_rows"]
    graph.clamped_shares = stats["clamped_shares"]

    logger.info(
        f"Loaded {graph.row_count} ownership rows: {len(graph.assets)} assets, "
        f"{len(graph.entity_ids)} entities, {len(graph.assets_by_owner)} owners, "
        f"{len(graph.assets_by_location)} locations"
    )
    return graph


# ============================================================================
# Locations table
# ============================================================================

def load_locations(rows: Union[pd.DataFrame, Iterable[dict]]) -> List[Asset]:
    """Point records for the tiler from a separate locations table.

    Each distinct id (asset_id, else location_id) becomes one Asset whose
    row_count is the number of location rows behind it. Coordinates are
    taken as a pair from the first row that has both.

    Raises:
        DataError: latitude / longitude, or both id columns, are absent.
    """
    df = rows if isinstance(rows, pd.DataFrame) else pd.DataFrame(list(rows))
    df = normalise_columns(df)

    missing = [c for c in LOCATION_REQUIRED_COLUMNS if c not in df.columns]
    if not any(c in df.columns for c in LOCATION_ID_COLUMNS):
        missing.append(" or ".join(LOCATION_ID_COLUMNS))
    if missing:
        raise DataError(
            f"Location rows are missing required column(s): {', '.join(missing)}",
            missing=missing,
        )

    df = df.copy()
    for col in LOCATION_ID_COLUMNS + LOCATION_TEXT_COLUMNS:
        if col not in df.columns:
            df[col] = None
    for col in LOCATION_ID_COLUMNS:
        df[col] = _clean_id(df[col])
    for col in LOCATION_TEXT_COLUMNS:
        df[col] = _clean_text(df[col])
    for col in LOCATION_REQUIRED_COLUMNS:
        df[col] = pd.to_numeric(df[col], errors="coerce").astype(float)

    points: Dict[str, Asset] = {}
    blank = 0
    for row in df.to_dict(orient="records"):
        key = row["asset_id"] or row["location_id"]
        if key is None:
            blank += 1
            continue
        point = points.get(key)
        if point is None:
            point = points[key] = Asset(id=key)
        point.row_count += 1
        for attr in ("location_id",) + LOCATION_TEXT_COLUMNS:
            if getattr(point, attr) is None and row[attr] is not None:
                setattr(point, attr, row[attr])
        lat, lon = row["latitude"], row["longitude"]
        if point.latitude is None and not (pd.isna(lat) or pd.isna(lon)):
            point.latitude, point.longitude = float(lat), float(lon)

    if blank:
        logger.warning(f"Dropped {blank} location row(s) with no asset or location id")
    logger.info(f"Loaded {len(points)} location points from {len(df)} rows")
    return list(points.values())
