"""
Configuration and path management for the asset-graph build.
All paths are relative to the project root (one level above asset_graph/).
"""

import os
from pathlib import Path

# Project root: one level up from asset_graph/
_THIS_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = _THIS_DIR.parent

# ── Data directories ──────────────────────────────────────────────────────────

RAW_DATA_DIR = PROJECT_ROOT / "data" / "raw"
OWNERSHIP_EXTRACT_FILE = RAW_DATA_DIR / "all_trackers_ownership.parquet"

# ── Output directories ────────────────────────────────────────────────────────

OUTPUTS_DIR = PROJECT_ROOT / "outputs"
RELATIONSHIP_CACHE_FILE = OUTPUTS_DIR / "relationships.json"
TILES_DIR = OUTPUTS_DIR / "tiles"
TILE_MANIFEST_NAME = "manifest.json"

# ── Build tunables ────────────────────────────────────────────────────────────

# Tile size in degrees (20° gives ~180 cells globally, far fewer non-empty)
TILE_SIZE = 20
TILE_COMPRESSION = "zstd"
MANIFEST_VERSION = 1

SAME_OWNER_CAP = 10
CO_LOCATED_CAP = None  # None = uncapped
COMPACT_SAME_OWNER_CAP = 5

# Matches the max_depth the asset pages request from the ownership API
MAX_CHAIN_DEPTH = 12

WORKERS = 4

# ── Row sources ───────────────────────────────────────────────────────────────

MOTHERDUCK_TOKEN = os.getenv("MOTHERDUCK_TOKEN") or os.getenv("PUBLIC_MOTHERDUCK_TOKEN")
MOTHERDUCK_DATABASE = os.getenv("MOTHERDUCK_DATABASE", "gem_data")
OWNERSHIP_TABLE = os.getenv("OWNERSHIP_TABLE", "main.all_trackers_ownership")
# Point table the map tiles are built from (one row per asset location)
LOCATIONS_TABLE = os.getenv("LOCATIONS_TABLE", "main.asset_locations")

OWNERSHIP_API_URL = os.getenv("OWNERSHIP_API_URL", "")
API_PAGE_SIZE = 1000
API_MAX_PAGES = 500
REQUEST_TIMEOUT = 60
REQUEST_HEADERS = {
    "User-Agent": "asset-graph/0.1 (build-time precompute)",
    "Accept": "application/json",
}

ROW_SOURCE_MAX_ATTEMPTS = 4
ROW_SOURCE_BACKOFF_MIN = 2  # seconds
ROW_SOURCE_BACKOFF_MAX = 30

# Fixed build timestamp for reproducible manifests (seconds since epoch)
SOURCE_DATE_EPOCH = os.getenv("SOURCE_DATE_EPOCH")

# ── Column mapping ────────────────────────────────────────────────────────────
# Warehouse / GEM spreadsheet headers -> canonical record fields.
# R's read.csv turns spaces into dots, so both spellings show up in extracts.

COLUMN_ALIASES = {
    # Owner (the entity listed on the row)
    "Owner": "owner_name",
    "Owner Name": "owner_name",
    "Owner GEM Entity ID": "owner_id",
    "Owner.GEM.Entity.ID": "owner_id",
    # Immediate (direct) owner of the asset
    "Immediate Owner": "immediate_owner_name",
    "Immediate Owner Name": "immediate_owner_name",
    "Immediate Owner GEM Entity ID": "immediate_owner_id",
    "Immediate.Owner.GEM.Entity.ID": "immediate_owner_id",
    "Parent": "immediate_owner_name",
    "Parent GEM Entity ID": "immediate_owner_id",
    # Asset
    "Project": "asset_name",
    "Project Name": "asset_name",
    "Asset Name": "asset_name",
    "AssetId": "asset_id",
    "GEM unit ID": "asset_id",
    "GEM.unit.ID": "asset_id",
    "Asset ID": "asset_id",
    "Tracker": "tracker",
    "Status": "status",
    "Capacity (MW)": "capacity",
    "Capacity": "capacity",
    "Share": "share",
    "Share (%)": "share",
    "Ownership Share": "share",
    # Location
    "GEM location ID": "location_id",
    "GEM.location.ID": "location_id",
    "Country.Area": "country",
    "Country/Area": "country",
    "Country": "country",
    "State.Province": "state",
    "State/Province": "state",
    "Latitude": "latitude",
    "Longitude": "longitude",
}

REQUIRED_COLUMNS = ("asset_id", "owner_id")

OPTIONAL_COLUMNS = (
    "owner_name",
    "immediate_owner_id",
    "immediate_owner_name",
    "asset_name",
    "tracker",
    "status",
    "capacity",
    "share",
    "location_id",
    "country",
    "state",
    "latitude",
    "longitude",
)

ID_COLUMNS = ("owner_id", "immediate_owner_id", "asset_id", "location_id")
NUMERIC_COLUMNS = ("capacity", "share", "latitude", "longitude")

# Locations table: coordinates are required, the id is asset_id or location_id
LOCATION_REQUIRED_COLUMNS = ("latitude", "longitude")
LOCATION_ID_COLUMNS = ("asset_id", "location_id")
LOCATION_TEXT_COLUMNS = ("country", "state", "tracker")

# Composite key for exact-duplicate ownership rows
DEDUPE_KEY = ["owner_id", "asset_id", "immediate_owner_id"]
