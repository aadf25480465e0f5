"""
Chain Resolver - walks owner -> parent edges upward from an asset.

Each hop follows the node's primary direct owner: the incoming edge with
the highest known share (unknown shares rank last, ties on entity id), so
the walk is deterministic for joint ventures.

Share policy: a hop without a recorded share is taken as 100% (full
ownership) and the step is flagged share_inferred.

The walk stops when:
  - the current node has no owner           -> complete chain
  - the next owner is already on the path   -> cyclic=True
  - MAX_CHAIN_DEPTH hops were taken         -> truncated=True
"""

import logging
from typing import Dict, Iterable, Optional

from .config import MAX_CHAIN_DEPTH
from .errors import CycleDetected
from .loader import OwnershipGraph
from .models import OwnershipChain, OwnershipChainStep, OwnershipRecord

logger = logging.getLogger(__name__)

FULL_OWNERSHIP = 100.0


def clamp_share(value: float) -> float:
    return min(max(value, 0.0), FULL_OWNERSHIP)


def primary_owner_edge(graph: OwnershipGraph, node_id: str) -> Optional[OwnershipRecord]:
    """The edge to ``node_id``'s primary direct owner, or None."""
    candidates = [r for r in graph.records_for(node_id) if r.direct_owner_id]
    if not candidates:
        return None
    return min(
        candidates,
        key=lambda r: (r.share is None, -(r.share or 0.0), r.direct_owner_id),
    )


def _next_owner(edge: OwnershipRecord, visited: set, path: list) -> str:
    owner_id = edge.direct_owner_id
    if owner_id in visited:
        raise CycleDetected(owner_id, path + [owner_id])
    return owner_id


def resolve_chain(graph: OwnershipGraph, asset_id: str,
                  max_depth: int = MAX_CHAIN_DEPTH) -> OwnershipChain:
    """Ownership chain for one asset, nearest owner first.

    An asset with no resolvable owner gets an empty chain.
    """
    chain = OwnershipChain(asset_id=asset_id)
    path = [asset_id]
    visited = {asset_id}
    fraction = 1.0
    node = asset_id

    while True:
        edge = primary_owner_edge(graph, node)
        if edge is None:
            break
        if len(chain.steps) >= max_depth:
            chain.truncated = True
            break
        try:
            owner_id = _next_owner(edge, visited, path)
        except CycleDetected as e:
            logger.debug(str(e))
            chain.cyclic = True
            break

        inferred = edge.share is None
        share = FULL_OWNERSHIP if inferred else clamp_share(edge.share)
        fraction *= share / FULL_OWNERSHIP

        chain.steps.append(OwnershipChainStep(
            entity_id=owner_id,
            entity_name=graph.entity_name(owner_id) or edge.direct_owner_name,
            share=share,
            cumulative_share=round(clamp_share(fraction * FULL_OWNERSHIP), 6),
            share_inferred=inferred,
            depth=len(chain.steps),
        ))
        visited.add(owner_id)
        path.append(owner_id)
        node = owner_id

    return chain


def resolve_chains(graph: OwnershipGraph, asset_ids: Iterable[str],
                   max_depth: int = MAX_CHAIN_DEPTH) -> Dict[str, OwnershipChain]:
    """Resolve a partition of assets. Reads the graph only."""
    chains = {}
    for asset_id in asset_ids:
        chains[asset_id] = resolve_chain(graph, asset_id, max_depth=max_depth)

    cyclic = sum(1 for c in chains.values() if c.cyclic)
    truncated = sum(1 for c in chains.values() if c.truncated)
    if cyclic or truncated:
        logger.warning(
            f"{cyclic} chain(s) cut at an ownership cycle, "
            f"{truncated} truncated at depth {max_depth}"
        )
    return chains
