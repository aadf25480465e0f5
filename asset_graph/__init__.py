"""
Asset Graph - Build-time ownership relationships & spatial tiles
================================================================

Reads the GEM ownership table once per build and precomputes the two
artifacts the static site and map client consume:

  1. relationships.json - per-asset ownership chain, same-owner assets,
     co-located assets and owner portfolio stats
  2. tiles/             - geographically partitioned point files + manifest

Usage:
    python -m asset_graph.orchestrator --input data/raw/all_trackers_ownership.parquet
"""

__version__ = "0.1.0"
