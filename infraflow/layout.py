"""
Spec ⇄ rendering boundary: converts specs to render nodes/edges and back,
and merges previous canvas positions into a regenerated spec so a user's
manual arrangement is never lost. Deterministic: same inputs, same layout.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from infraflow.catalog import tier_for_type
from infraflow.spec import Connection, Node, Position, RenderEdge, RenderNode, Spec

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Layout constants (tier columns, left to right)
# ---------------------------------------------------------------------------
TIER_COLUMNS: dict[str, float] = {
    "external": 100.0,
    "dmz": 360.0,
    "internal": 620.0,
    "data": 880.0,
}
ROW_TOP = 100.0
ROW_GAP = 140.0
NEIGHBOUR_OFFSET = 260.0


def _tier(node: Node) -> str:
    return node.tier or tier_for_type(node.type)


def _neighbours(spec: Spec) -> tuple[dict[str, list[str]], dict[str, list[str]]]:
    preds: dict[str, list[str]] = {n.id: [] for n in spec.nodes}
    succs: dict[str, list[str]] = {n.id: [] for n in spec.nodes}
    for c in spec.connections:
        if c.target in preds and c.source not in preds[c.target]:
            preds[c.target].append(c.source)
        if c.source in succs and c.target not in succs[c.source]:
            succs[c.source].append(c.target)
    return preds, succs


def _free(pos: Position, taken: set[tuple[float, float]]) -> Position:
    x, y = pos.x, pos.y
    while (x, y) in taken:
        y += ROW_GAP / 2
    return Position(x=x, y=y)


def merge_positions(spec: Spec, previous: Mapping[str, Position] | None = None) -> dict[str, Position]:
    """
    Position for every node in spec:
    - nodes that existed before keep their previous position;
    - a new node between a positioned predecessor and successor goes to their midpoint;
    - a new node with one positioned neighbour is offset horizontally from it;
    - anything else is stacked in its tier column.
    """
    previous = previous or {}
    result: dict[str, Position] = {}
    for n in spec.nodes:
        if n.id in previous:
            p = previous[n.id]
            result[n.id] = Position(x=p.x, y=p.y)
    taken = {(p.x, p.y) for p in result.values()}
    preds, succs = _neighbours(spec)
    column_fill: dict[str, int] = {}
    for n in spec.nodes:
        if n.id in result:
            column_fill[_tier(n)] = column_fill.get(_tier(n), 0) + 1

    pending = [n for n in spec.nodes if n.id not in result]
    while pending:
        progressed = False
        for n in list(pending):
            pred = next((result[i] for i in preds[n.id] if i in result), None)
            succ = next((result[i] for i in succs[n.id] if i in result), None)
            if pred is not None and succ is not None:
                pos = Position(x=(pred.x + succ.x) / 2, y=(pred.y + succ.y) / 2)
            elif pred is not None:
                pos = Position(x=pred.x + NEIGHBOUR_OFFSET, y=pred.y)
            elif succ is not None:
                pos = Position(x=succ.x - NEIGHBOUR_OFFSET, y=succ.y)
            else:
                continue
            pos = _free(pos, taken)
            result[n.id] = pos
            taken.add((pos.x, pos.y))
            pending.remove(n)
            progressed = True
        if progressed:
            continue
        # Nothing anchored: seed the first pending node from its tier column
        n = pending.pop(0)
        tier = _tier(n)
        row = column_fill.get(tier, 0)
        column_fill[tier] = row + 1
        pos = _free(Position(x=TIER_COLUMNS.get(tier, TIER_COLUMNS["internal"]), y=ROW_TOP + ROW_GAP * row), taken)
        result[n.id] = pos
        taken.add((pos.x, pos.y))
    return result


def _edge_id(c: Connection, index: int) -> str:
    return f"e-{c.source}-{c.target}-{index}"


def spec_to_render(
    spec: Spec,
    positions: Mapping[str, Position] | None = None,
) -> tuple[list[RenderNode], list[RenderEdge]]:
    """Render nodes/edges for the canvas; missing positions are filled by merge_positions."""
    placed = merge_positions(spec, positions)
    nodes = [
        RenderNode(
            id=n.id,
            node_type=n.type,
            label=n.label,
            tier=n.tier,
            description=n.description,
            position=placed[n.id],
        )
        for n in spec.nodes
    ]
    edges = [
        RenderEdge(id=_edge_id(c, i), source=c.source, target=c.target, flow_type=c.flow_type, label=c.label)
        for i, c in enumerate(spec.connections)
    ]
    return nodes, edges


def render_to_spec(
    nodes: list[RenderNode],
    edges: list[RenderEdge],
    name: str = "",
    description: str = "",
) -> Spec:
    """Inverse of spec_to_render; edges pointing at unknown nodes are dropped."""
    known = {n.id for n in nodes}
    connections = []
    for e in edges:
        if e.source not in known or e.target not in known:
            logger.warning("Dropping render edge %s with unknown endpoint", e.id)
            continue
        connections.append(Connection(source=e.source, target=e.target, flow_type=e.flow_type, label=e.label))
    return Spec(
        name=name,
        description=description,
        nodes=[
            Node(id=n.id, type=n.node_type, label=n.label, tier=n.tier, description=n.description)
            for n in nodes
        ],
        connections=connections,
    )


def positions_of(nodes: list[RenderNode]) -> dict[str, Position]:
    return {n.id: n.position for n in nodes}
