# citation_explorer/layout/panels.py

"""
Sizing and side selection for node glyphs and their annotation panels.

A node glyph is a circle with a wrapped label to its right. An annotation
panel holds a node's keyword tags and/or its selected metadata fields and sits
on one side of the glyph.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

from .geometry import Box, LayoutConfig


class PanelSide(str, Enum):
    RIGHT = "right"
    LEFT = "left"
    BELOW = "below"
    ABOVE = "above"


# Tie-break order when two sides are equally good.
SIDE_PREFERENCE = (PanelSide.RIGHT, PanelSide.LEFT, PanelSide.BELOW, PanelSide.ABOVE)


@dataclass(frozen=True)
class PanelSize:
    width: float
    height: float


def wrap_count(text: str, max_chars: int) -> int:
    """Number of lines `text` wraps to at `max_chars` per line (word wrap)."""
    max_chars = max(1, max_chars)
    lines = 1
    current = 0
    for word in text.split():
        # Words longer than a line are hard-broken.
        while len(word) > max_chars:
            if current:
                lines += 1
                current = 0
            word = word[max_chars:]
            lines += 1
        needed = len(word) if current == 0 else current + 1 + len(word)
        if needed > max_chars:
            lines += 1
            current = len(word)
        else:
            current = needed
    return lines


def label_extent(label: str, config: LayoutConfig) -> Tuple[float, float]:
    """(width, height) of a wrapped node label."""
    if not label:
        return 0.0, 0.0
    max_chars = int(config.label_max_width // config.label_char_width)
    lines = min(wrap_count(label, max_chars), config.label_max_lines)
    width = min(config.label_max_width, len(label) * config.label_char_width)
    return width, lines * config.label_line_height


def circle_box(x: float, y: float, config: LayoutConfig) -> Box:
    r = config.node_radius
    return Box(x - r, y - r, x + r, y + r)


def glyph_box(x: float, y: float, label: str, config: LayoutConfig) -> Box:
    """Circle plus label."""
    r = config.node_radius
    width, height = label_extent(label, config)
    half = max(r, height / 2)
    right = x + r + (config.label_gap + width if width else 0.0)
    return Box(x - r, y - half, right, y + half)


def panel_size(
    keywords: Sequence[str] = (),
    fields: Optional[Mapping[str, str]] = None,
    config: Optional[LayoutConfig] = None,
) -> Optional[PanelSize]:
    """
    Size of the annotation panel for a node, or None when there is nothing
    to show. Tags flow left to right and wrap into rows; each field is a
    "name: value" line that wraps at the panel width.
    """
    config = config or LayoutConfig()
    fields = fields or {}
    if not keywords and not fields:
        return None

    inner = config.panel_max_width - 2 * config.panel_padding
    width = 0.0
    height = 0.0

    if keywords:
        rows = 1
        row = 0.0
        for tag in keywords:
            tag_w = min(inner, len(tag) * config.tag_char_width + config.tag_padding)
            if row and row + config.tag_gap + tag_w > inner:
                width = max(width, row)
                rows += 1
                row = tag_w
            else:
                row = row + config.tag_gap + tag_w if row else tag_w
        width = max(width, row)
        height += rows * config.tag_height + (rows - 1) * config.tag_gap

    if fields:
        if keywords:
            height += config.tag_gap
        max_chars = int(inner // config.field_char_width)
        for name, value in fields.items():
            text = f"{name}: {value}"
            width = max(width, min(inner, len(text) * config.field_char_width))
            height += wrap_count(text, max_chars) * config.field_line_height

    return PanelSize(width + 2 * config.panel_padding, height + 2 * config.panel_padding)


def panel_box(
    side: PanelSide,
    x: float,
    y: float,
    glyph: Box,
    size: PanelSize,
    config: LayoutConfig,
) -> Box:
    gap = config.panel_gap
    if side == PanelSide.RIGHT:
        return Box.from_size(glyph.right + gap, y - size.height / 2, size.width, size.height)
    if side == PanelSide.LEFT:
        return Box.from_size(glyph.left - gap - size.width, y - size.height / 2, size.width, size.height)
    if side == PanelSide.BELOW:
        return Box.from_size(glyph.left, glyph.bottom + gap, size.width, size.height)
    return Box.from_size(glyph.left, glyph.top - gap - size.height, size.width, size.height)


def _room(side: PanelSide, candidate: Box, viewport: Box) -> float:
    if side == PanelSide.RIGHT:
        return viewport.right - candidate.right
    if side == PanelSide.LEFT:
        return candidate.left - viewport.left
    if side == PanelSide.BELOW:
        return viewport.bottom - candidate.bottom
    return candidate.top - viewport.top


def choose_side(
    x: float,
    y: float,
    glyph: Box,
    size: PanelSize,
    obstacles: Iterable[Box],
    viewport: Box,
    config: LayoutConfig,
) -> PanelSide:
    """
    Pick the panel side with the least overlap against the node's own circle
    and the surrounding glyphs. When even the best side collides, take the
    side with the most room left against the viewport edges.
    """
    blockers: List[Box] = [circle_box(x, y, config), *obstacles]
    candidates = [(side, panel_box(side, x, y, glyph, size, config)) for side in SIDE_PREFERENCE]

    costs = [sum(box.overlap_area(b) for b in blockers) for _, box in candidates]
    best = min(range(len(candidates)), key=lambda i: (costs[i], i))
    if costs[best] <= 0:
        return candidates[best][0]

    rooms = [_room(side, box, viewport) for side, box in candidates]
    roomiest = max(range(len(candidates)), key=lambda i: (rooms[i], -i))
    return candidates[roomiest][0]
