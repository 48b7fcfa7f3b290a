# citation_explorer/layout/engine.py

"""
Hierarchical tree layout with variable-size annotation panels.

`layout(nodes, edges, panels)` is a pure function: same input, same output.
It never looks at a renderer; whatever draws the tree consumes the returned
positions and panel placements.

Steps:
  1. x = depth * level_spacing
  2. siblings spread symmetrically around their parent's y (nodes that were
     laid out before keep their previous y)
  3. bounding box per node = glyph + annotation panel
  4. bounded passes pushing overlapping pairs apart vertically, half each,
     then clamping into the viewport
  5. per sibling group, enforce centre distance >= half the summed heights
     plus a margin, cascading down the group
  6. panel side per node (right/left/below/above)
and a final settle sweep that moves any box still overlapping an earlier one
down below it.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .geometry import Box, LayoutConfig, bounding
from .panels import PanelSide, PanelSize, choose_side, glyph_box, panel_box, panel_size

if TYPE_CHECKING:
    from citation_explorer.graph.filters import TreeFilter
    from citation_explorer.graph.model import GraphModel

logger = logging.getLogger("citation_explorer.layout")


@dataclass(frozen=True)
class LayoutNode:
    node_id: str
    depth: int
    label: str = ""


@dataclass(frozen=True)
class PanelPlacement:
    side: PanelSide
    box: Box


@dataclass(frozen=True)
class NodePosition:
    node_id: str
    x: float
    y: float
    box: Box
    panel: Optional[PanelPlacement] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.node_id,
            "x": self.x,
            "y": self.y,
            "box": self.box.to_payload(),
            "panel": None
            if self.panel is None
            else {"side": self.panel.side.value, "box": self.panel.box.to_payload()},
        }


@dataclass
class LayoutResult:
    positions: Dict[str, NodePosition] = field(default_factory=dict)
    bounds: Optional[Box] = None
    iterations: int = 0

    def __getitem__(self, node_id: str) -> NodePosition:
        return self.positions[node_id]

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.positions

    def __len__(self) -> int:
        return len(self.positions)

    def y_positions(self) -> Dict[str, float]:
        return {k: p.y for k, p in self.positions.items()}

    def overlapping_pairs(self) -> List[Tuple[str, str]]:
        items = list(self.positions.values())
        return [
            (a.node_id, b.node_id)
            for i, a in enumerate(items)
            for b in items[i + 1:]
            if a.box.overlaps(b.box)
        ]

    def to_payload(self) -> Dict[str, Any]:
        return {
            "positions": [p.to_payload() for p in self.positions.values()],
            "bounds": None if self.bounds is None else self.bounds.to_payload(),
            "iterations": self.iterations,
        }


Previous = Union[LayoutResult, Mapping[str, float], None]


@dataclass
class _Slot:
    """Mutable per-node working state; the box is stored relative to y."""

    index: int
    node: LayoutNode
    x: float
    y: float
    rel: Box = field(default_factory=lambda: Box(0.0, 0.0, 0.0, 0.0))
    panel_side: Optional[PanelSide] = None
    panel_rel: Optional[Box] = None

    @property
    def box(self) -> Box:
        return self.rel.shifted(dy=self.y)

    @property
    def top_offset(self) -> float:
        return self.rel.top

    @property
    def bottom_offset(self) -> float:
        return self.rel.bottom


def _previous_y(previous: Previous) -> Dict[str, float]:
    if previous is None:
        return {}
    if isinstance(previous, LayoutResult):
        return previous.y_positions()
    return dict(previous)


def _tree(
    nodes: Sequence[LayoutNode],
    edges: Iterable[Tuple[str, str]],
) -> Tuple[List[str], Dict[str, List[str]]]:
    """Roots and ordered children among the visible nodes."""
    present = {n.node_id for n in nodes}
    children: Dict[str, List[str]] = defaultdict(list)
    has_parent = set()
    for parent, child in edges:
        if parent not in present or child not in present or child in has_parent:
            continue
        children[parent].append(child)
        has_parent.add(child)
    roots = [n.node_id for n in nodes if n.node_id not in has_parent]
    return roots, children


def layout(
    nodes: Sequence[LayoutNode],
    edges: Iterable[Tuple[str, str]],
    panels: Optional[Mapping[str, PanelSize]] = None,
    config: Optional[LayoutConfig] = None,
    previous: Previous = None,
) -> LayoutResult:
    config = config or LayoutConfig()
    panels = panels or {}
    if not nodes:
        return LayoutResult()

    prev_y = _previous_y(previous)
    roots, children = _tree(nodes, edges)
    by_id = {n.node_id: n for n in nodes}

    # 1 + 2: initial positions
    slots: Dict[str, _Slot] = {}
    base_y = config.viewport_height / 2
    queue: List[str] = []
    for i, root_id in enumerate(roots):
        y = prev_y.get(root_id, base_y + i * config.sibling_spacing * 2)
        slots[root_id] = _Slot(0, by_id[root_id], by_id[root_id].depth * config.level_spacing, y)
        queue.append(root_id)

    while queue:
        parent_id = queue.pop(0)
        parent = slots[parent_id]
        kids = children.get(parent_id, [])
        mid = (len(kids) - 1) / 2
        for i, child_id in enumerate(kids):
            node = by_id[child_id]
            y = prev_y.get(child_id, parent.y + (i - mid) * config.sibling_spacing)
            slots[child_id] = _Slot(0, node, node.depth * config.level_spacing, y)
            queue.append(child_id)

    ordered = [slots[n.node_id] for n in nodes if n.node_id in slots]
    for i, slot in enumerate(ordered):
        slot.index = i

    # 6 (placement) + 3: glyph boxes, panel sides, combined boxes
    viewport = Box(0.0, 0.0, config.viewport_width, config.viewport_height)
    glyphs = {s.node.node_id: glyph_box(s.x, s.y, s.node.label, config) for s in ordered}
    for slot in ordered:
        glyph = glyphs[slot.node.node_id]
        rel = glyph.shifted(dy=-slot.y)
        size = panels.get(slot.node.node_id)
        if size is not None:
            others = [g for k, g in glyphs.items() if k != slot.node.node_id]
            side = choose_side(slot.x, slot.y, glyph, size, others, viewport, config)
            panel = panel_box(side, slot.x, slot.y, glyph, size, config)
            slot.panel_side = side
            slot.panel_rel = panel.shifted(dy=-slot.y)
            rel = rel.union(slot.panel_rel)
        slot.rel = rel

    # Grow the usable height so every box can fit stacked.
    stacked = sum(s.rel.height for s in ordered) + config.margin * (len(ordered) + 1)
    height = max(config.viewport_height, stacked)

    # 4: pairwise push-apart
    iterations = 0
    for iterations in range(1, config.max_iterations + 1):
        moved = _push_apart(ordered, config.margin)
        for slot in ordered:
            _clamp(slot, height)
        if not moved:
            break

    # 5: sibling spacing
    groups = [roots] + [children[k] for k in children]
    for group in groups:
        _space_siblings([slots[c] for c in group], config.margin)
    for slot in ordered:
        _clamp(slot, height)

    if any(a.box.overlaps(b.box) for i, a in enumerate(ordered) for b in ordered[i + 1:]):
        logger.debug("Layout still overlapping after %d passes; settling", iterations)
        _settle(ordered, config.margin)

    positions: Dict[str, NodePosition] = {}
    for slot in ordered:
        placement = None
        if slot.panel_side is not None and slot.panel_rel is not None:
            placement = PanelPlacement(slot.panel_side, slot.panel_rel.shifted(dy=slot.y))
        positions[slot.node.node_id] = NodePosition(
            node_id=slot.node.node_id,
            x=slot.x,
            y=slot.y,
            box=slot.box,
            panel=placement,
        )

    return LayoutResult(
        positions=positions,
        bounds=bounding(p.box for p in positions.values()),
        iterations=iterations,
    )


def _upper_lower(a: _Slot, b: _Slot) -> Tuple[_Slot, _Slot]:
    if (a.box.center_y, a.index) <= (b.box.center_y, b.index):
        return a, b
    return b, a


def _push_apart(slots: List[_Slot], margin: float) -> bool:
    moved = False
    for i, a in enumerate(slots):
        for b in slots[i + 1:]:
            box_a, box_b = a.box, b.box
            if not box_a.overlaps(box_b):
                continue
            upper, lower = _upper_lower(a, b)
            shortfall = upper.box.bottom + margin - lower.box.top
            if shortfall <= 0:
                continue
            upper.y -= shortfall / 2
            lower.y += shortfall / 2
            moved = True
    return moved


def _clamp(slot: _Slot, height: float) -> None:
    low = -slot.top_offset
    high = height - slot.bottom_offset
    if high < low:
        high = low
    slot.y = min(max(slot.y, low), high)


def _space_siblings(group: List[_Slot], margin: float) -> None:
    if len(group) < 2:
        return
    group = sorted(group, key=lambda s: (s.box.center_y, s.index))
    for i in range(1, len(group)):
        prev, cur = group[i - 1], group[i]
        need = (prev.box.height + cur.box.height) / 2 + margin
        gap = cur.box.center_y - prev.box.center_y
        if gap < need:
            # Cascade: everything after `prev` in this group moves down together.
            for later in group[i:]:
                later.y += need - gap


def _settle(slots: List[_Slot], margin: float) -> None:
    placed: List[_Slot] = []
    for slot in sorted(slots, key=lambda s: (s.box.top, s.index)):
        moved = True
        while moved:
            moved = False
            for other in placed:
                if slot.box.overlaps(other.box):
                    slot.y = other.box.bottom + margin - slot.top_offset
                    moved = True
        placed.append(slot)


# ---------------------------------------------------------------------------
# GraphModel adapter
# ---------------------------------------------------------------------------


def layout_graph(
    graph: "GraphModel",
    config: Optional[LayoutConfig] = None,
    previous: Previous = None,
    tree_filter: Optional["TreeFilter"] = None,
) -> LayoutResult:
    """Lay out the visible part of a GraphModel, sizing panels from annotations."""
    config = config or LayoutConfig()
    visible = graph.visible_nodes(tree_filter)
    nodes = [LayoutNode(n.node_id, n.depth, n.label) for n in visible]

    present = {n.node_id for n in visible}
    edges = [(n.parent_id, n.node_id) for n in visible if n.parent_id in present]

    panels: Dict[str, PanelSize] = {}
    for n in visible:
        if n.is_placeholder or n.paper is None:
            continue
        size = panel_size(n.keywords, graph.field_values(n.node_id), config)
        if size is not None:
            panels[n.node_id] = size

    return layout(nodes, edges, panels, config=config, previous=previous)
