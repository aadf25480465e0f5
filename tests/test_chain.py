"""Tests for ownership chain resolution."""

import pytest

from asset_graph.chain import primary_owner_edge, resolve_chain, resolve_chains
from asset_graph.loader import load_graph


class TestResolveChain:

    def test_cumulative_share_across_two_hops(self, chain_rows):
        graph = load_graph(chain_rows)
        chain = resolve_chain(graph, "A")

        assert [s.entity_id for s in chain.steps] == ["B", "C"]
        assert chain.steps[0].share == 50.0
        assert chain.steps[0].cumulative_share == pytest.approx(50.0)
        assert chain.steps[1].cumulative_share == pytest.approx(20.0)
        assert [s.depth for s in chain.steps] == [0, 1]
        assert chain.steps[1].entity_name == "C Group"
        assert not chain.cyclic and not chain.truncated

    def test_cycle_terminates_and_is_flagged(self, cyclic_rows):
        graph = load_graph(cyclic_rows)
        chain = resolve_chain(graph, "X")

        assert chain.cyclic
        assert [s.entity_id for s in chain.steps] == ["E1", "E2"]
        assert chain.steps[-1].cumulative_share == pytest.approx(40.0)

    def test_self_owned_asset_is_a_cycle(self):
        graph = load_graph([
            {"asset_id": "S", "owner_id": "O", "share": 100},
            {"asset_id": "O", "owner_id": "S", "share": 100},
        ])
        # S owns O, so S is an entity here; walk from O instead
        chain = resolve_chain(graph, "O")
        assert chain.cyclic
        assert [s.entity_id for s in chain.steps] == ["S"]

    def test_missing_share_inferred_as_full_ownership(self):
        graph = load_graph([
            {"asset_id": "A", "owner_id": "B", "share": None},
            {"asset_id": "B", "owner_id": "C", "share": 25},
        ])
        chain = resolve_chain(graph, "A")

        first, second = chain.steps
        assert first.share == 100.0 and first.share_inferred
        assert second.share == 25.0 and not second.share_inferred
        assert second.cumulative_share == pytest.approx(25.0)
        assert chain.share_inferred
        assert chain.flags() == {"cyclic": False, "truncated": False, "shareInferred": True}

    def test_asset_without_owner_has_empty_chain(self):
        graph = load_graph([{"asset_id": "LONE", "owner_id": None}])
        chain = resolve_chain(graph, "LONE")
        assert chain.steps == []
        assert not chain.cyclic

    def test_unknown_asset_has_empty_chain(self, chain_rows):
        assert resolve_chain(load_graph(chain_rows), "missing").steps == []

    def test_depth_bound_truncates(self):
        rows = [{"asset_id": "A", "owner_id": "E0", "share": 90}]
        rows += [{"asset_id": f"E{i}", "owner_id": f"E{i + 1}", "share": 90} for i in range(20)]
        graph = load_graph(rows)

        chain = resolve_chain(graph, "A", max_depth=5)
        assert len(chain.steps) == 5
        assert chain.truncated and not chain.cyclic

        full = resolve_chain(graph, "A", max_depth=50)
        assert len(full.steps) == 21
        assert not full.truncated

    def test_immediate_owner_preferred_over_row_owner(self):
        graph = load_graph([
            {"asset_id": "A", "owner_id": "ULTIMATE", "immediate_owner_id": "SUB", "share": 70},
        ])
        chain = resolve_chain(graph, "A")
        assert [s.entity_id for s in chain.steps] == ["SUB", "ULTIMATE"]
        assert chain.steps[0].share == 70.0
        assert chain.steps[1].share_inferred
        assert chain.steps[1].cumulative_share == pytest.approx(70.0)

    def test_row_owner_above_immediate_owner_joins_chain(self):
        graph = load_graph([
            {"asset_id": "A", "owner_id": "C", "immediate_owner_id": "B", "share": 40},
        ])
        assert [s.entity_id for s in resolve_chain(graph, "A").steps] == ["B", "C"]

    def test_explicit_parent_share_used_over_implied_edge(self):
        graph = load_graph([
            {"asset_id": "A", "owner_id": "C", "immediate_owner_id": "B", "share": 40},
            {"asset_id": "B", "owner_id": "D", "immediate_owner_id": "D", "share": 60},
        ])
        chain = resolve_chain(graph, "A")
        # D has a known share, the implied B <- C edge has none
        assert [s.entity_id for s in chain.steps] == ["B", "D"]
        assert chain.steps[1].cumulative_share == pytest.approx(24.0)


class TestPrimaryOwner:

    def test_highest_known_share_wins(self):
        graph = load_graph([
            {"asset_id": "JV", "owner_id": "SMALL", "share": 30},
            {"asset_id": "JV", "owner_id": "BIG", "share": 70},
            {"asset_id": "JV", "owner_id": "UNKNOWN", "share": None},
        ])
        assert primary_owner_edge(graph, "JV").direct_owner_id == "BIG"

    def test_ties_break_on_entity_id(self):
        graph = load_graph([
            {"asset_id": "JV", "owner_id": "ZED", "share": 50},
            {"asset_id": "JV", "owner_id": "ALPHA", "share": 50},
        ])
        assert primary_owner_edge(graph, "JV").direct_owner_id == "ALPHA"


class TestResolveChains:

    def test_every_cumulative_share_in_range(self, portfolio_rows, chain_rows, cyclic_rows):
        import pandas as pd

        graph = load_graph(pd.concat([portfolio_rows, chain_rows, cyclic_rows], ignore_index=True))
        chains = resolve_chains(graph, sorted(graph.assets))

        assert set(chains) == set(graph.assets)
        for chain in chains.values():
            for step in chain.steps:
                assert 0.0 <= step.cumulative_share <= 100.0
            ids = [s.entity_id for s in chain.steps]
            assert len(ids) == len(set(ids))
