"""Shared fixtures: small ownership tables in the warehouse row shape."""

import pandas as pd
import pytest


def row(asset_id, owner_id, immediate_owner_id=None, share=None, **extra):
    data = {
        "asset_id": asset_id,
        "owner_id": owner_id,
        "immediate_owner_id": immediate_owner_id or owner_id,
        "share": share,
    }
    data.update(extra)
    return data


@pytest.fixture
def scenario_rows():
    """Two coal units of one owner, 1° apart, in the same 20° tile."""
    return pd.DataFrame([
        row("G1", "O1", share=100, asset_name="Unit 1", owner_name="Owner One",
            tracker="Coal Plant", status="operating", capacity=500,
            location_id="L1", country="India", state="Odisha",
            latitude=10.0, longitude=15.0),
        row("G2", "O1", share=100, asset_name="Unit 2", owner_name="Owner One",
            tracker="Coal Plant", status="operating", capacity=300,
            location_id="L2", country="India", state="Odisha",
            latitude=10.0, longitude=16.0),
    ])


@pytest.fixture
def chain_rows():
    """A <- B [50%] <- C [40%]."""
    return pd.DataFrame([
        row("A", "B", share=50, asset_name="Asset A", owner_name="B Holdings",
            tracker="Gas Plant", capacity=120, location_id="LA",
            latitude=51.5, longitude=-0.1),
        row("B", "C", share=40, asset_name="B Holdings", owner_name="C Group"),
    ])


@pytest.fixture
def cyclic_rows():
    """X <- E1 [80%] <- E2 [50%] <- E1 [50%] (injected cycle)."""
    return pd.DataFrame([
        row("X", "E1", share=80, asset_name="Asset X", owner_name="Entity One",
            tracker="Steel Plant", capacity=10),
        row("E1", "E2", share=50, asset_name="Entity One", owner_name="Entity Two"),
        row("E2", "E1", share=50, asset_name="Entity Two", owner_name="Entity One"),
    ])


@pytest.fixture
def portfolio_rows():
    """One owner with five assets, two sharing a location, one capacity unknown."""
    return pd.DataFrame([
        row("P1", "OW", share=100, capacity=50, location_id="SITE", country="Chile",
            tracker="Coal Mine", latitude=-33.4, longitude=-70.6),
        row("P2", "OW", share=100, capacity=None, location_id="SITE", country="Chile",
            tracker="Coal Mine", latitude=-33.4, longitude=-70.6),
        row("P3", "OW", share=100, capacity=900, location_id="L3", country="Peru",
            tracker="Gas Plant", latitude=-12.0, longitude=-77.0),
        row("P4", "OW", share=60, capacity=200, location_id="L4", country="Peru",
            tracker="Gas Plant", latitude=None, longitude=None),
        row("P5", "OW", share=100, capacity="n/a", location_id="L5", country=None,
            tracker="Gas Plant", latitude=95.0, longitude=10.0),
        row("Q1", "OTHER", share=100, capacity=75, location_id="SITE", country="Chile",
            tracker="Iron Mine", latitude=-33.4, longitude=-70.6),
    ])
