"""
Output writers: the relationship cache and the spatial tile set.

Filesystem contract (atomic_path, AtomicFileSink):
  - every file is written to a temp file in the target's own directory and
    published with os.replace, so readers see either the previous complete
    file or the new complete file, never a partial one
  - on any failure (including interrupt) the temp file is removed and the
    previously published file is left untouched
  - tile files are content-addressed (tile_<lat>_<lon>.<sha256[:12]>.parquet),
    so a new file never overwrites one the published manifest still points
    at; the manifest is written last and stale tile files are removed only
    after it is in place

Each run replaces its outputs wholesale. Nothing is merged.
"""

import hashlib
import io
import json
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pyarrow as pa

from .config import TILE_COMPRESSION, TILE_MANIFEST_NAME, MANIFEST_VERSION
from .errors import PartialWriteFailure
from .models import Manifest, RelationshipBundle
from .relationships import compact_bundle
from .tiler import TilePartition, manifest_timestamp

logger = logging.getLogger(__name__)


def _dumps(payload) -> bytes:
    # allow_nan=False: a NaN reaching the writer is a bug, not a value
    return json.dumps(payload, ensure_ascii=False, allow_nan=False,
                      separators=(",", ":")).encode("utf-8")


@contextmanager
def atomic_path(target: Path):
    """Yield a temp path beside ``target``; publish it over ``target`` on success.

    Raises:
        PartialWriteFailure: staging or publishing hit an OSError. Any other
            exception is re-raised after the temp file is removed.
    """
    target = Path(target)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{target.name}.", suffix=".tmp", dir=target.parent
        )
        os.close(fd)
    except OSError as e:
        raise PartialWriteFailure(f"Could not stage {target}: {e}") from e

    tmp_path = Path(tmp_name)
    try:
        yield tmp_path
        os.replace(tmp_path, target)
    except OSError as e:
        tmp_path.unlink(missing_ok=True)
        raise PartialWriteFailure(f"Failed to write {target}: {e}") from e
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


class AtomicFileSink:
    """Write-then-rename publisher rooted at one output directory."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def path_for(self, relative_path: str) -> Path:
        return self.root / relative_path

    def staged(self, relative_path: str):
        return atomic_path(self.path_for(relative_path))

    def write_bytes(self, relative_path: str, data: bytes) -> Path:
        with self.staged(relative_path) as tmp:
            with open(tmp, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
        return self.path_for(relative_path)

    def write_json(self, relative_path: str, payload) -> Path:
        return self.write_bytes(relative_path, _dumps(payload))

    def remove_stale(self, pattern: str, keep: Iterable[str]) -> List[str]:
        """Delete files matching ``pattern`` that are not in ``keep``."""
        keep = set(keep)
        removed = []
        for path in sorted(self.root.glob(pattern)):
            if path.name not in keep:
                try:
                    path.unlink()
                except OSError as e:
                    logger.warning(f"Could not remove stale file {path}: {e}")
                    continue
                removed.append(path.name)
        return removed


# ============================================================================
# Relationship cache
# ============================================================================

def serialise_bundles(bundles: Dict[str, RelationshipBundle], compact: bool = False) -> dict:
    """assetId -> bundle dict, keys in sorted order."""
    payload = {}
    for asset_id in sorted(bundles):
        data = bundles[asset_id].to_dict()
        payload[asset_id] = compact_bundle(data) if compact else data
    return payload


def write_relationship_cache(bundles: Dict[str, RelationshipBundle], path: Path,
                             compact: bool = False) -> Path:
    path = Path(path)
    try:
        data = _dumps(serialise_bundles(bundles, compact=compact))
    except (TypeError, ValueError) as e:
        raise PartialWriteFailure(f"Relationship cache for {path} is not serialisable: {e}") from e
    sink = AtomicFileSink(path.parent)
    out = sink.write_bytes(path.name, data)
    size_mb = out.stat().st_size / 1024 / 1024
    logger.info(f"Relationship cache saved: {out} ({len(bundles)} assets, {size_mb:.2f} MB)")
    return out


# ============================================================================
# Tile set
# ============================================================================

def _tile_bytes(partition: TilePartition) -> bytes:
    buf = io.BytesIO()
    try:
        partition.points.to_parquet(buf, index=False, compression=TILE_COMPRESSION)
    except (pa.ArrowException, TypeError, ValueError) as e:
        raise PartialWriteFailure(f"Could not encode {partition.tile.name}: {e}") from e
    return buf.getvalue()


def content_file_name(name: str, data: bytes) -> str:
    """tile_<lat>_<lon>.<first 12 hex of sha256>.parquet"""
    return f"{name}.{hashlib.sha256(data).hexdigest()[:12]}.parquet"


def _write_tile(sink: AtomicFileSink, partition: TilePartition):
    data = _tile_bytes(partition)
    partition.tile.file = content_file_name(partition.tile.name, data)
    sink.write_bytes(partition.tile.file, data)
    partition.tile.size_mb = round(len(data) / 1024 / 1024, 2)


def write_tile_set(partitions: List[TilePartition], out_dir: Path,
                   tile_size: float, generated: Optional[str] = None) -> Manifest:
    """Publish every tile file, then the manifest that references them."""
    sink = AtomicFileSink(out_dir)
    total = len(partitions)
    for i, partition in enumerate(partitions, start=1):
        _write_tile(sink, partition)
        logger.info(
            f"[{i}/{total}] {partition.tile.name}: {partition.tile.asset_count} assets, "
            f"{partition.tile.row_count} rows, {partition.tile.size_mb:.2f} MB"
        )

    manifest = Manifest(
        tile_size=tile_size,
        generated=manifest_timestamp(generated),
        tiles=[p.tile for p in partitions],
        version=MANIFEST_VERSION,
    )
    manifest_path = sink.path_for(TILE_MANIFEST_NAME)
    sink.write_bytes(TILE_MANIFEST_NAME, json.dumps(manifest.to_dict(), indent=2).encode("utf-8"))

    removed = sink.remove_stale("tile_*.parquet", keep=(t.file for t in manifest.tiles))
    if removed:
        logger.info(f"Removed {len(removed)} stale tile file(s)")

    total_mb = sum(t.size_mb for t in manifest.tiles)
    logger.info(
        f"Tile manifest saved: {manifest_path} ({len(manifest.tiles)} tiles, "
        f"{manifest.total_assets} assets, {manifest.total_rows} rows, {total_mb:.2f} MB)"
    )
    return manifest
