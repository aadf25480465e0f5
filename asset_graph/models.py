"""
Data models for the asset-graph build.

Records are validated once by the loader; everything downstream works on
these dataclasses. Output shapes serialize to the camelCase keys the page
generator and map client read.
"""

from dataclasses import dataclass, field, asdict
from typing import Optional


@dataclass(frozen=True)
class OwnershipRecord:
    """One ownership edge: direct owner -> asset (or -> child entity)."""
    owner_id: Optional[str]
    asset_id: str
    owner_name: Optional[str] = None
    immediate_owner_id: Optional[str] = None
    immediate_owner_name: Optional[str] = None
    asset_name: Optional[str] = None
    tracker: Optional[str] = None
    status: Optional[str] = None
    capacity: Optional[float] = None
    share: Optional[float] = None  # 0-100, the direct owner's stake
    location_id: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def direct_owner_id(self) -> Optional[str]:
        return self.immediate_owner_id or self.owner_id

    @property
    def direct_owner_name(self) -> Optional[str]:
        if self.immediate_owner_id:
            return self.immediate_owner_name
        return self.owner_name

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Asset:
    """A single infrastructure unit, merged over its ownership rows."""
    id: str
    name: Optional[str] = None
    tracker: Optional[str] = None
    status: Optional[str] = None
    capacity: Optional[float] = None
    location_id: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    row_count: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class AssetSummary:
    """Compact asset row embedded in sibling / co-located lists."""
    id: str
    name: Optional[str]
    tracker: Optional[str]
    status: Optional[str]
    capacity: Optional[float]
    country: Optional[str]
    owner_id: Optional[str]
    owner_name: Optional[str]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "tracker": self.tracker,
            "status": self.status,
            "capacity": self.capacity,
            "country": self.country,
            "ownerId": self.owner_id,
            "ownerName": self.owner_name,
        }


@dataclass(frozen=True)
class OwnershipChainStep:
    entity_id: str
    entity_name: Optional[str]
    share: float  # this hop, 0-100 (100 when inferred)
    cumulative_share: float
    share_inferred: bool = False
    depth: int = 0  # 0 = immediate owner

    def to_dict(self) -> dict:
        return {
            "entityId": self.entity_id,
            "entityName": self.entity_name,
            "share": self.share,
            "cumulativeShare": self.cumulative_share,
            "shareInferred": self.share_inferred,
            "depth": self.depth,
        }


@dataclass
class OwnershipChain:
    """Ordered chain from the immediate owner to the furthest ancestor."""
    asset_id: str
    steps: list = field(default_factory=list)  # List[OwnershipChainStep]
    cyclic: bool = False
    truncated: bool = False

    @property
    def share_inferred(self) -> bool:
        return any(s.share_inferred for s in self.steps)

    def flags(self) -> dict:
        return {
            "cyclic": self.cyclic,
            "truncated": self.truncated,
            "shareInferred": self.share_inferred,
        }


@dataclass(frozen=True)
class OwnerStats:
    owner_id: str
    total_assets: int
    total_capacity: float
    countries: int
    tracker_types: int

    def to_dict(self) -> dict:
        return {
            "totalAssets": self.total_assets,
            "totalCapacity": self.total_capacity,
            "countries": self.countries,
            "trackerTypes": self.tracker_types,
        }


@dataclass
class RelationshipBundle:
    """Everything an asset page needs about the asset's neighbourhood."""
    asset_id: str
    ownership_chain: OwnershipChain
    same_owner_assets: list = field(default_factory=list)  # List[AssetSummary]
    co_located_assets: list = field(default_factory=list)  # List[AssetSummary]
    owner_stats: Optional[OwnerStats] = None

    def to_dict(self) -> dict:
        return {
            "sameOwnerAssets": [a.to_dict() for a in self.same_owner_assets],
            "coLocatedAssets": [a.to_dict() for a in self.co_located_assets],
            "ownershipChain": [s.to_dict() for s in self.ownership_chain.steps],
            "chainFlags": self.ownership_chain.flags(),
            "ownerStats": self.owner_stats.to_dict() if self.owner_stats else None,
        }


@dataclass(frozen=True)
class Bounds:
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    def to_dict(self) -> dict:
        return {
            "minLat": self.min_lat,
            "maxLat": self.max_lat,
            "minLon": self.min_lon,
            "maxLon": self.max_lon,
        }


@dataclass
class Tile:
    name: str
    file: str  # content-addressed name once written
    tile_bounds: Bounds  # declared grid cell
    bounds: Bounds  # observed min/max of contained points
    asset_count: int
    row_count: int
    size_mb: float = 0.0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "file": self.file,
            "bounds": self.bounds.to_dict(),
            "tileBounds": self.tile_bounds.to_dict(),
            "assetCount": self.asset_count,
            "rowCount": self.row_count,
            "sizeMB": self.size_mb,
        }


@dataclass
class Manifest:
    tile_size: float
    generated: str
    tiles: list = field(default_factory=list)  # List[Tile]
    version: int = 1

    @property
    def total_assets(self) -> int:
        return sum(t.asset_count for t in self.tiles)

    @property
    def total_rows(self) -> int:
        return sum(t.row_count for t in self.tiles)

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "generated": self.generated,
            "tileSize": self.tile_size,
            "totalAssets": self.total_assets,
            "totalRows": self.total_rows,
            "tiles": [t.to_dict() for t in self.tiles],
        }
