"""
Relationship Aggregator - per-asset neighbourhood from the loader's indices.

For every asset A:
  - sameOwnerAssets: other assets of A's primary direct owner, capacity
    descending (nulls last, then id), capped at SAME_OWNER_CAP
  - coLocatedAssets: other assets sharing A's location id, same ordering,
    uncapped unless CO_LOCATED_CAP is set
  - ownerStats: portfolio totals for A's primary direct owner

Owner stats and asset summaries are computed once up front, so per-asset
work is dictionary lookups plus a sort of the sibling list.
"""

import logging
import math
from typing import Dict, Iterable, Optional

from .chain import primary_owner_edge, resolve_chain
from .config import (
    CO_LOCATED_CAP,
    COMPACT_SAME_OWNER_CAP,
    MAX_CHAIN_DEPTH,
    SAME_OWNER_CAP,
)
from .loader import OwnershipGraph
from .models import AssetSummary, OwnerStats, OwnershipChain, RelationshipBundle

logger = logging.getLogger(__name__)


def capacity_sort_key(summary: AssetSummary) -> tuple:
    """Capacity descending, missing capacity last, then id ascending."""
    cap = summary.capacity
    missing = cap is None or math.isnan(cap)
    return (missing, 0.0 if missing else -cap, summary.id)


def compute_owner_stats(graph: OwnershipGraph, owner_id: str) -> OwnerStats:
    assets = [graph.assets[i] for i in graph.owned_assets(owner_id) if i in graph.assets]
    total_capacity = 0.0
    for a in assets:
        if a.capacity is not None and not math.isnan(a.capacity):
            total_capacity += a.capacity
    return OwnerStats(
        owner_id=owner_id,
        total_assets=len(assets),
        total_capacity=total_capacity,
        countries=len({a.country for a in assets if a.country}),
        tracker_types=len({a.tracker for a in assets if a.tracker}),
    )


class RelationshipAggregator:
    """Builds RelationshipBundles. Safe to share across worker threads
    once constructed: every lookup table is filled in __init__."""

    def __init__(self, graph: OwnershipGraph,
                 same_owner_cap: int = SAME_OWNER_CAP,
                 co_located_cap: Optional[int] = CO_LOCATED_CAP,
                 max_depth: int = MAX_CHAIN_DEPTH):
        self.graph = graph
        self.same_owner_cap = same_owner_cap
        self.co_located_cap = co_located_cap
        self.max_depth = max_depth

        self.primary_owner: Dict[str, Optional[str]] = {}
        self.summaries: Dict[str, AssetSummary] = {}
        for asset_id, asset in graph.assets.items():
            edge = primary_owner_edge(graph, asset_id)
            owner_id = edge.direct_owner_id if edge else None
            self.primary_owner[asset_id] = owner_id
            owner_name = None
            if edge is not None:
                owner_name = graph.entity_name(owner_id) or edge.direct_owner_name
            self.summaries[asset_id] = AssetSummary(
                id=asset_id,
                name=asset.name,
                tracker=asset.tracker,
                status=asset.status,
                capacity=asset.capacity,
                country=asset.country,
                owner_id=owner_id,
                owner_name=owner_name,
            )

        self.owner_stats: Dict[str, OwnerStats] = {
            owner_id: compute_owner_stats(graph, owner_id)
            for owner_id in graph.assets_by_owner
        }

    def _ranked(self, asset_ids: Iterable[str], exclude: str, cap: Optional[int]) -> list:
        ranked = sorted(
            (self.summaries[i] for i in asset_ids if i != exclude and i in self.summaries),
            key=capacity_sort_key,
        )
        return ranked if cap is None else ranked[:cap]

    def same_owner_assets(self, asset_id: str) -> list:
        owner_id = self.primary_owner.get(asset_id)
        return self._ranked(self.graph.owned_assets(owner_id), asset_id, self.same_owner_cap)

    def co_located_assets(self, asset_id: str) -> list:
        asset = self.graph.assets.get(asset_id)
        if asset is None:
            return []
        return self._ranked(self.graph.located_assets(asset.location_id), asset_id, self.co_located_cap)

    def stats_for(self, asset_id: str) -> Optional[OwnerStats]:
        owner_id = self.primary_owner.get(asset_id)
        return self.owner_stats.get(owner_id) if owner_id else None

    def bundle(self, asset_id: str, chain: Optional[OwnershipChain] = None) -> RelationshipBundle:
        if chain is None:
            chain = resolve_chain(self.graph, asset_id, max_depth=self.max_depth)
        return RelationshipBundle(
            asset_id=asset_id,
            ownership_chain=chain,
            same_owner_assets=self.same_owner_assets(asset_id),
            co_located_assets=self.co_located_assets(asset_id),
            owner_stats=self.stats_for(asset_id),
        )

    def build_bundles(self, asset_ids: Iterable[str],
                      chains: Optional[Dict[str, OwnershipChain]] = None) -> Dict[str, RelationshipBundle]:
        chains = chains or {}
        return {asset_id: self.bundle(asset_id, chains.get(asset_id)) for asset_id in asset_ids}


# ============================================================================
# Compact cache form
# ============================================================================
# Short keys keep the cache small enough to embed in static pages.

def compact_bundle(bundle: dict, same_owner_cap: int = COMPACT_SAME_OWNER_CAP) -> dict:
    """Shrink a bundle dict (RelationshipBundle.to_dict()) to short keys."""
    stats = bundle.get("ownerStats")
    return {
        "so": [
            {"i": a["id"], "p": a["name"], "s": a["status"], "c": a["capacity"], "t": a["tracker"]}
            for a in bundle.get("sameOwnerAssets", [])[:same_owner_cap]
        ],
        "cl": [
            {"i": a["id"], "p": a["name"], "s": a["status"], "c": a["capacity"], "o": a["ownerName"]}
            for a in bundle.get("coLocatedAssets", [])
        ],
        "oc": [
            {"i": s["entityId"], "n": s["entityName"], "s": s["share"],
             "cs": s["cumulativeShare"], "x": s["shareInferred"]}
            for s in bundle.get("ownershipChain", [])
        ],
        "cf": bundle.get("chainFlags", {}),
        "os": {
            "a": stats["totalAssets"],
            "c": stats["totalCapacity"],
            "r": stats["countries"],
            "t": stats["trackerTypes"],
        } if stats else None,
    }


def expand_bundle(compact: dict) -> dict:
    """Inverse of compact_bundle (fields dropped by compaction come back None)."""
    stats = compact.get("os")
    return {
        "sameOwnerAssets": [
            {"id": a["i"], "name": a["p"], "tracker": a["t"], "status": a["s"],
             "capacity": a["c"], "country": None, "ownerId": None, "ownerName": None}
            for a in compact.get("so", [])
        ],
        "coLocatedAssets": [
            {"id": a["i"], "name": a["p"], "tracker": None, "status": a["s"],
             "capacity": a["c"], "country": None, "ownerId": None, "ownerName": a["o"]}
            for a in compact.get("cl", [])
        ],
        "ownershipChain": [
            {"entityId": s["i"], "entityName": s["n"], "share": s["s"],
             "cumulativeShare": s["cs"], "shareInferred": s["x"], "depth": depth}
            for depth, s in enumerate(compact.get("oc", []))
        ],
        "chainFlags": compact.get("cf", {}),
        "ownerStats": {
            "totalAssets": stats["a"],
            "totalCapacity": stats["c"],
            "countries": stats["r"],
            "trackerTypes": stats["t"],
        } if stats else None,
    }
