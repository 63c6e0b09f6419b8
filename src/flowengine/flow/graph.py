"""Graph checks and traversals over a `Flow`.

All walks keep an explicit visited set keyed by block id: transforms may be
reachable through several edges (fan-in, diamonds), and a flow loaded from
disk is not guaranteed to be acyclic until `validate_flow` has run.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

from .models import Block, BlockKind, Edge, Flow


# Allowed edge transitions (source kind -> target kinds).
ALLOWED_TRANSITIONS: Dict[BlockKind, frozenset[BlockKind]] = {
    BlockKind.IMPORT: frozenset({BlockKind.TRANSFORM, BlockKind.COMPARISON}),
    BlockKind.TRANSFORM: frozenset({BlockKind.TRANSFORM, BlockKind.EXPORT, BlockKind.COMPARISON}),
    BlockKind.COMPARISON: frozenset({BlockKind.EXPORT}),
    BlockKind.EXPORT: frozenset(),
}

# Required inbound arity for kinds that enforce one.
REQUIRED_INBOUND: Dict[BlockKind, int] = {
    BlockKind.COMPARISON: 2,
    BlockKind.EXPORT: 1,
}


class GraphError(ValueError):
    """Raised when a flow violates a structural invariant (bad transition, cycle)."""


@dataclass(frozen=True)
class GraphIssue:
    """A non-fatal problem found while checking a flow."""

    block_id: Optional[str]
    message: str


def connected_edges(flow: Flow) -> Tuple[List[Edge], List[GraphIssue]]:
    """Return edges whose endpoints exist, plus an issue per dangling edge."""
    ids = {b.id for b in flow.blocks}
    kept: list[Edge] = []
    issues: list[GraphIssue] = []
    for e in flow.edges:
        if e.source not in ids or e.target not in ids:
            issues.append(GraphIssue(None, f"Edge '{e.id}' references an unknown block ({e.source} -> {e.target}); ignored"))
            continue
        kept.append(e)
    return kept, issues


def check_transitions(flow: Flow, edges: List[Edge]) -> None:
    by_id = {b.id: b for b in flow.blocks}
    for e in edges:
        src = by_id[e.source]
        tgt = by_id[e.target]
        if tgt.kind not in ALLOWED_TRANSITIONS[src.kind]:
            raise GraphError(
                f"Edge '{e.id}' connects {src.kind.value} block '{src.display_name}' "
                f"to {tgt.kind.value} block '{tgt.display_name}', which is not allowed"
            )


def find_cycle(flow: Flow, edges: List[Edge]) -> Optional[List[str]]:
    """Return the block ids of one directed cycle, or None when the graph is acyclic."""
    adj: Dict[str, List[str]] = {}
    for e in edges:
        adj.setdefault(e.source, []).append(e.target)

    WHITE, GREY, BLACK = 0, 1, 2
    color: Dict[str, int] = {b.id: WHITE for b in flow.blocks}
    stack: list[str] = []

    def _visit(node_id: str) -> Optional[List[str]]:
        color[node_id] = GREY
        stack.append(node_id)
        for nxt in adj.get(node_id, []):
            if color.get(nxt) == GREY:
                return stack[stack.index(nxt):] + [nxt]
            if color.get(nxt) == WHITE:
                found = _visit(nxt)
                if found:
                    return found
        stack.pop()
        color[node_id] = BLACK
        return None

    for b in flow.blocks:
        if color[b.id] == WHITE:
            found = _visit(b.id)
            if found:
                return found
    return None


def validate_flow(flow: Flow) -> Tuple[List[Edge], List[GraphIssue]]:
    """Check structural invariants.

    Returns the usable edges and non-fatal issues. Raises `GraphError` for
    transition-table violations and directed cycles.
    """
    edges, issues = connected_edges(flow)
    check_transitions(flow, edges)
    cycle = find_cycle(flow, edges)
    if cycle:
        raise GraphError("Flow contains a directed cycle: " + " -> ".join(cycle))
    return edges, issues


def incoming(edges: List[Edge], block_id: str) -> List[Edge]:
    return [e for e in edges if e.target == block_id]


def outgoing(edges: List[Edge], block_id: str) -> List[Edge]:
    # List order is edge-declaration order.
    return [e for e in edges if e.source == block_id]


def transform_chain(flow: Flow, edges: List[Edge], import_id: str) -> List[Tuple[str, str]]:
    """Depth-first walk of transforms reachable from an import.

    Returns `(transform_id, parent_id)` pairs in visit order, where `parent_id`
    is the stage whose output feeds the transform. Each transform appears once
    even when several edges reach it.
    """
    by_id = {b.id: b for b in flow.blocks}
    visited: Set[str] = {import_id}
    out: list[Tuple[str, str]] = []

    def _walk(node_id: str) -> None:
        for e in outgoing(edges, node_id):
            target = by_id.get(e.target)
            if target is None or target.kind != BlockKind.TRANSFORM:
                continue
            if target.id in visited:
                continue
            visited.add(target.id)
            out.append((target.id, node_id))
            _walk(target.id)

    _walk(import_id)
    return out


def nearest_import(flow: Flow, edges: List[Edge], block_id: str) -> Optional[Block]:
    """Walk backwards to the first import ancestor (edge-declaration order wins ties)."""
    by_id = {b.id: b for b in flow.blocks}
    visited: Set[str] = set()

    def _walk(node_id: str) -> Optional[Block]:
        if node_id in visited:
            return None
        visited.add(node_id)
        current = by_id.get(node_id)
        if current is None:
            return None
        if current.kind == BlockKind.IMPORT:
            return current
        for e in incoming(edges, node_id):
            found = _walk(e.source)
            if found is not None:
                return found
        return None

    return _walk(block_id)
