"""Tests for spatial tile assignment and partitioning."""

import math

import pytest

from asset_graph.errors import MissingCoordinate
from asset_graph.loader import load_graph
from asset_graph.models import Asset
from asset_graph.tiler import (
    coordinate_audit,
    in_range,
    manifest_timestamp,
    partition_assets,
    tile_cell,
    tile_name,
    valid_coordinate,
)


def _asset(asset_id, lat, lon, rows=1, **kw):
    return Asset(id=asset_id, latitude=lat, longitude=lon, row_count=rows, **kw)


class TestTileCell:

    def test_scenario_points_share_origin_tile(self):
        assert tile_cell(10, 15, 20) == (0.0, 0.0)
        assert tile_cell(10, 16, 20) == (0.0, 0.0)

    def test_negative_coordinates_floor_down(self):
        assert tile_cell(-0.5, -179.9, 20) == (-20.0, -180.0)
        assert tile_cell(-20.0, -20.0, 20) == (-20.0, -20.0)

    def test_point_lies_inside_its_cell(self):
        for lat, lon in [(89.9, 179.9), (-89.9, -179.9), (0.0, 0.0), (33.3, -117.2), (-12.5, 44.0)]:
            for size in (1, 5, 20, 45):
                tlat, tlon = tile_cell(lat, lon, size)
                assert tlat <= lat < tlat + size
                assert tlon <= lon < tlon + size

    @pytest.mark.parametrize("lat,lon", [(None, 1.0), (1.0, None), (math.nan, 1.0),
                                         (math.inf, 0.0), (0.0, -math.inf), ("n/a", 0.0)])
    def test_unusable_coordinates_raise(self, lat, lon):
        assert not valid_coordinate(lat, lon)
        with pytest.raises(MissingCoordinate):
            tile_cell(lat, lon, 20)

    def test_out_of_range_pair_still_has_a_cell(self):
        assert valid_coordinate(95.0, 10.0)
        assert not in_range(95.0, 10.0)
        assert tile_cell(95.0, 10.0, 20) == (80.0, 0.0)

    def test_names(self):
        assert tile_name(-20.0, 40.0) == "tile_-20_40"
        assert tile_name(-0.0, 0.0) == "tile_0_0"
        assert tile_name(2.5, -7.5) == "tile_2.5_-7.5"


class TestPartition:

    def test_scenario_single_tile(self, scenario_rows):
        graph = load_graph(scenario_rows)
        partitions = partition_assets(graph.assets.values(), tile_size=20)

        assert len(partitions) == 1
        tile = partitions[0].tile
        assert tile.name == "tile_0_0"
        assert tile.file == "tile_0_0.parquet"
        assert tile.asset_count == 2
        assert tile.tile_bounds.to_dict() == {"minLat": 0.0, "maxLat": 20.0, "minLon": 0.0, "maxLon": 20.0}
        assert tile.bounds.to_dict() == {"minLat": 10.0, "maxLat": 10.0, "minLon": 15.0, "maxLon": 16.0}

    def test_missing_coordinates_excluded(self, portfolio_rows):
        graph = load_graph(portfolio_rows)
        partitions = partition_assets(graph.assets.values(), tile_size=20)

        tiled = {pid for p in partitions for pid in p.points["id"]}
        # P4 has no coordinates; P5 (latitude 95) is finite, so it is tiled
        assert tiled == {"P1", "P2", "P3", "P5", "Q1"}
        located = [a for a in graph.assets.values() if valid_coordinate(a.latitude, a.longitude)]
        assert sum(p.tile.asset_count for p in partitions) == len(located) == 5

    def test_out_of_range_point_tiled(self):
        (partition,) = partition_assets([_asset("far", 95.0, 10.0)], tile_size=20)
        assert partition.tile.name == "tile_80_0"
        assert partition.tile.asset_count == 1

    def test_coordinate_audit(self, portfolio_rows):
        audit = coordinate_audit(load_graph(portfolio_rows).assets.values())
        assert audit == {"missing": 1, "out_of_range": 1}

    def test_every_point_inside_declared_bounds(self, portfolio_rows):
        partitions = partition_assets(load_graph(portfolio_rows).assets.values(), tile_size=10)
        for p in partitions:
            tb = p.tile.tile_bounds
            for lat, lon in zip(p.points["lat"], p.points["lon"]):
                assert tb.min_lat <= lat < tb.max_lat
                assert tb.min_lon <= lon < tb.max_lon

    def test_order_by_rows_then_cell(self):
        assets = [
            _asset("a", 5, 5, rows=1),
            _asset("b", -5, -5, rows=3),
            _asset("c", 45, 45, rows=1),
            _asset("d", 25, 5, rows=1),
        ]
        names = [p.tile.name for p in partition_assets(assets, tile_size=20)]
        assert names == ["tile_-20_-20", "tile_0_0", "tile_20_0", "tile_40_40"]

    def test_counts_and_point_columns(self):
        assets = [
            _asset("z", 1, 1, rows=4, country="Kenya", tracker="Gas Plant"),
            _asset("y", 2, 2, rows=2, country="Kenya", tracker="Coal Plant"),
        ]
        (partition,) = partition_assets(assets, tile_size=20)
        assert partition.tile.asset_count == 2
        assert partition.tile.row_count == 6
        assert list(partition.points.columns) == ["id", "location_id", "lat", "lon", "country", "state", "tracker"]
        assert list(partition.points["id"]) == ["y", "z"]

    def test_empty_input(self):
        assert partition_assets([], tile_size=20) == []

    def test_rejects_bad_tile_size(self):
        with pytest.raises(ValueError):
            partition_assets([_asset("a", 1, 1)], tile_size=0)


class TestTimestamp:

    def test_explicit_value_wins(self):
        assert manifest_timestamp("2025-01-01T00:00:00Z") == "2025-01-01T00:00:00Z"

    def test_source_date_epoch(self, monkeypatch):
        monkeypatch.setattr("asset_graph.tiler.SOURCE_DATE_EPOCH", "0")
        assert manifest_timestamp() == "1970-01-01T00:00:00Z"
