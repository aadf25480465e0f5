"""
Orchestrator - end-to-end build runner.

Reads the ownership table once, builds the graph, then runs the relationship
pipeline (chain + aggregation over disjoint asset partitions) and the
spatial tiler side by side. Both only read the graph; each worker returns
its own slice and the slices are merged afterwards.

Usage:
    cd asset-graph
    python -m asset_graph.orchestrator --input data/raw/all_trackers_ownership.parquet
    python -m asset_graph.orchestrator --motherduck-table main.all_trackers_ownership
    python -m asset_graph.orchestrator --motherduck-table main.all_trackers_ownership --locations-table
"""

import argparse
import logging
import sys
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from .chain import resolve_chains
from .config import (
    CO_LOCATED_CAP,
    LOCATIONS_TABLE,
    MAX_CHAIN_DEPTH,
    OWNERSHIP_API_URL,
    OWNERSHIP_EXTRACT_FILE,
    RELATIONSHIP_CACHE_FILE,
    SAME_OWNER_CAP,
    TILE_SIZE,
    TILES_DIR,
    WORKERS,
)
from .errors import AssetGraphError
from .loader import OwnershipGraph, load_graph, load_locations
from .models import Manifest, RelationshipBundle
from .relationships import RelationshipAggregator
from .row_source import (
    FileRowSource,
    MotherDuckRowSource,
    OwnershipApiRowSource,
    RowSource,
    fetch_rows,
)
from .tiler import coordinate_audit, partition_assets
from .writer import write_relationship_cache, write_tile_set

logger = logging.getLogger(__name__)


@dataclass
class BuildResult:
    """What one build produced."""
    graph_summary: dict
    cache_path: Path
    manifest: Manifest
    bundles: int = 0
    cyclic_chains: int = 0
    truncated_chains: int = 0
    inferred_chains: int = 0
    elapsed_s: float = 0.0
    tiles_dir: Optional[Path] = None
    excluded_from_tiles: int = 0
    out_of_range_coordinates: int = 0
    notes: List[str] = field(default_factory=list)


def split_partitions(asset_ids: List[str], workers: int) -> List[List[str]]:
    """Contiguous, non-overlapping slices of ``asset_ids``."""
    if not asset_ids:
        return []
    workers = max(1, min(workers, len(asset_ids)))
    size = -(-len(asset_ids) // workers)
    return [asset_ids[i:i + size] for i in range(0, len(asset_ids), size)]


def _relationship_slice(aggregator: RelationshipAggregator, asset_ids: List[str]) -> Dict[str, RelationshipBundle]:
    chains = resolve_chains(aggregator.graph, asset_ids, max_depth=aggregator.max_depth)
    return aggregator.build_bundles(asset_ids, chains)


def _tile_stage(graph: OwnershipGraph, locations: Optional[RowSource],
                location_rows: Optional[pd.DataFrame], tiles_dir: Path,
                tile_size: float, generated: Optional[str]) -> tuple:
    """Tile the locations table when one is given, else the graph's assets.

    Returns (manifest, coordinate audit).
    """
    if location_rows is None and locations is not None:
        location_rows = fetch_rows(locations)
    if location_rows is not None:
        points = load_locations(location_rows)
    else:
        points = list(graph.assets.values())
    audit = coordinate_audit(points)
    partitions = partition_assets(points, tile_size=tile_size)
    return write_tile_set(partitions, tiles_dir, tile_size, generated=generated), audit


def run_build(source: Optional[RowSource] = None,
              rows: Optional[pd.DataFrame] = None,
              locations: Optional[RowSource] = None,
              location_rows: Optional[pd.DataFrame] = None,
              cache_path: Path = RELATIONSHIP_CACHE_FILE,
              tiles_dir: Path = TILES_DIR,
              tile_size: float = TILE_SIZE,
              same_owner_cap: int = SAME_OWNER_CAP,
              co_located_cap: Optional[int] = CO_LOCATED_CAP,
              max_depth: int = MAX_CHAIN_DEPTH,
              workers: int = WORKERS,
              compact: bool = False,
              strict: bool = False,
              generated: Optional[str] = None) -> BuildResult:
    """Run the full build: read -> load -> {relationships, tiles} -> write.

    Either ``source`` (read with retries) or already-fetched ``rows`` must
    be given. Tiles come from ``locations`` / ``location_rows`` when set,
    otherwise from the coordinates on the ownership rows.
    """
    if source is None and rows is None:
        raise ValueError("run_build needs a row source or rows")

    start = time.time()
    logger.info("=" * 60)
    logger.info("ASSET GRAPH BUILD")
    logger.info("=" * 60)

    # Step 1: read + index (blocking; everything after needs complete indices)
    frame = rows if rows is not None else fetch_rows(source)
    graph = load_graph(frame, strict=strict)

    # Step 2: relationships and tiles side by side
    aggregator = RelationshipAggregator(
        graph,
        same_owner_cap=same_owner_cap,
        co_located_cap=co_located_cap,
        max_depth=max_depth,
    )
    asset_ids = sorted(graph.assets)
    slices = split_partitions(asset_ids, workers)
    logger.info(f"Resolving {len(asset_ids)} assets in {len(slices)} partition(s)")

    bundles: Dict[str, RelationshipBundle] = {}
    with ThreadPoolExecutor(max_workers=len(slices) + 1) as executor:
        tile_future = executor.submit(
            _tile_stage, graph, locations, location_rows, Path(tiles_dir), tile_size, generated
        )
        slice_futures = [executor.submit(_relationship_slice, aggregator, ids) for ids in slices]
        for future in slice_futures:
            bundles.update(future.result())
        manifest, audit = tile_future.result()

    # Step 3: publish the cache
    cache = write_relationship_cache(bundles, Path(cache_path), compact=compact)

    chains = [b.ownership_chain for b in bundles.values()]
    result = BuildResult(
        graph_summary=graph.summary(),
        cache_path=cache,
        manifest=manifest,
        bundles=len(bundles),
        cyclic_chains=sum(1 for c in chains if c.cyclic),
        truncated_chains=sum(1 for c in chains if c.truncated),
        inferred_chains=sum(1 for c in chains if c.share_inferred),
        elapsed_s=time.time() - start,
        tiles_dir=Path(tiles_dir),
        excluded_from_tiles=audit["missing"],
        out_of_range_coordinates=audit["out_of_range"],
    )
    if graph.missing_columns:
        result.notes.append(f"missing optional columns: {', '.join(graph.missing_columns)}")

    _print_summary(result)
    return result


def _print_summary(result: BuildResult):
    """Log a summary of the build."""
    g = result.graph_summary
    logger.info("\n" + "=" * 60)
    logger.info("BUILD SUMMARY")
    logger.info("=" * 60)
    logger.info(f"Ownership rows: {g['rows']} ({g['duplicate_rows']} duplicates, {g['dropped_rows']} dropped)")
    logger.info(f"Assets: {g['assets']}  Entities: {g['entities']}  Owners: {g['owners']}  Locations: {g['locations']}")
    logger.info(f"Relationship bundles: {result.bundles}")
    logger.info(f"  Chains cut at a cycle: {result.cyclic_chains}")
    logger.info(f"  Chains truncated at max depth: {result.truncated_chains}")
    logger.info(f"  Chains with an inferred 100% share: {result.inferred_chains}")
    m = result.manifest
    logger.info(f"Tiles: {len(m.tiles)} ({m.total_assets} assets, {m.total_rows} rows)")
    logger.info(f"  Points without coordinates (not tiled): {result.excluded_from_tiles}")
    if result.out_of_range_coordinates:
        logger.info(f"  Points outside lat/lon range (tiled as given): {result.out_of_range_coordinates}")
    if m.tiles:
        total_mb = sum(t.size_mb for t in m.tiles)
        logger.info(f"  Total size: {total_mb:.2f} MB, avg tile: {total_mb / len(m.tiles):.2f} MB")
    for note in result.notes:
        logger.info(f"Note: {note}")
    logger.info(f"Finished in {result.elapsed_s:.2f}s")
    logger.info("=" * 60)


def _build_source(args) -> RowSource:
    if args.api_url:
        return OwnershipApiRowSource(args.api_url)
    if args.motherduck_table:
        return MotherDuckRowSource(table=args.motherduck_table)
    return FileRowSource(Path(args.input), sheet_name=args.sheet)


def _build_locations_source(args) -> Optional[RowSource]:
    if args.locations_table:
        return MotherDuckRowSource(table=args.locations_table)
    if args.locations_input:
        return FileRowSource(Path(args.locations_input))
    return None


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="asset_graph",
        description="Precompute asset relationship cache and spatial tiles.",
    )
    src = parser.add_mutually_exclusive_group()
    src.add_argument("--input", default=str(OWNERSHIP_EXTRACT_FILE),
                     help="local ownership extract (.parquet, .csv, .xlsx)")
    src.add_argument("--motherduck-table", help="read from this MotherDuck table instead")
    src.add_argument("--api-url", default=None, help="read from the Ownership API instead")
    parser.add_argument("--sheet", default=None, help="worksheet name for .xlsx input")
    loc = parser.add_mutually_exclusive_group()
    loc.add_argument("--locations-table", nargs="?", const=LOCATIONS_TABLE, default=None,
                     help=f"tile from this MotherDuck locations table (default {LOCATIONS_TABLE})")
    loc.add_argument("--locations-input", default=None,
                     help="tile from a local locations extract instead of the ownership rows")
    parser.add_argument("--cache", default=str(RELATIONSHIP_CACHE_FILE))
    parser.add_argument("--tiles-dir", default=str(TILES_DIR))
    parser.add_argument("--tile-size", type=float, default=TILE_SIZE)
    parser.add_argument("--same-owner-cap", type=int, default=SAME_OWNER_CAP)
    parser.add_argument("--co-located-cap", type=int, default=CO_LOCATED_CAP)
    parser.add_argument("--max-depth", type=int, default=MAX_CHAIN_DEPTH)
    parser.add_argument("--workers", type=int, default=WORKERS)
    parser.add_argument("--compact", action="store_true", help="write the short-key cache form")
    parser.add_argument("--strict", action="store_true", help="fail on rows with a blank asset id")
    args = parser.parse_args(argv)
    if args.api_url is None and OWNERSHIP_API_URL and not args.motherduck_table \
            and args.input == str(OWNERSHIP_EXTRACT_FILE):
        args.api_url = OWNERSHIP_API_URL
    return args


def main(argv=None) -> int:
    """Entry point. Returns the process exit status."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    args = parse_args(argv)
    tile_size = int(args.tile_size) if float(args.tile_size).is_integer() else args.tile_size

    try:
        run_build(
            source=_build_source(args),
            locations=_build_locations_source(args),
            cache_path=Path(args.cache),
            tiles_dir=Path(args.tiles_dir),
            tile_size=tile_size,
            same_owner_cap=args.same_owner_cap,
            co_located_cap=args.co_located_cap,
            max_depth=args.max_depth,
            workers=args.workers,
            compact=args.compact,
            strict=args.strict,
        )
    except AssetGraphError as e:
        logger.error(f"Build failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
