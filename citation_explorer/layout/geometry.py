# citation_explorer/layout/geometry.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

# Tolerance for overlap tests; boxes that touch are not overlapping.
EPSILON = 1e-6


@dataclass(frozen=True)
class LayoutConfig:
    """Spacing constants for the tree layout, all in abstract pixel units."""

    level_spacing: float = 260.0
    sibling_spacing: float = 90.0
    margin: float = 12.0
    max_iterations: int = 60

    viewport_width: float = 1200.0
    viewport_height: float = 800.0

    # node glyph: circle plus a wrapped label to its right
    node_radius: float = 12.0
    label_gap: float = 6.0
    label_max_width: float = 160.0
    label_char_width: float = 6.5
    label_line_height: float = 14.0
    label_max_lines: int = 3

    # annotation panels
    panel_gap: float = 8.0
    panel_padding: float = 6.0
    panel_max_width: float = 220.0
    tag_height: float = 20.0
    tag_gap: float = 4.0
    tag_char_width: float = 6.5
    tag_padding: float = 10.0
    field_line_height: float = 16.0
    field_char_width: float = 6.0


@dataclass(frozen=True)
class Box:
    left: float
    top: float
    right: float
    bottom: float

    @classmethod
    def from_size(cls, left: float, top: float, width: float, height: float) -> "Box":
        return cls(left, top, left + width, top + height)

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    @property
    def center_y(self) -> float:
        return (self.top + self.bottom) / 2

    def shifted(self, dx: float = 0.0, dy: float = 0.0) -> "Box":
        return Box(self.left + dx, self.top + dy, self.right + dx, self.bottom + dy)

    def union(self, other: Optional["Box"]) -> "Box":
        if other is None:
            return self
        return Box(
            min(self.left, other.left),
            min(self.top, other.top),
            max(self.right, other.right),
            max(self.bottom, other.bottom),
        )

    def overlaps_horizontally(self, other: "Box") -> bool:
        return self.left < other.right - EPSILON and other.left < self.right - EPSILON

    def overlaps(self, other: "Box") -> bool:
        return (
            self.overlaps_horizontally(other)
            and self.top < other.bottom - EPSILON
            and other.top < self.bottom - EPSILON
        )

    def overlap_area(self, other: "Box") -> float:
        w = min(self.right, other.right) - max(self.left, other.left)
        h = min(self.bottom, other.bottom) - max(self.top, other.top)
        if w <= 0 or h <= 0:
            return 0.0
        return w * h

    def to_payload(self) -> dict:
        return {
            "x": self.left,
            "y": self.top,
            "width": self.width,
            "height": self.height,
        }


def bounding(boxes: Iterable[Box]) -> Optional[Box]:
    result: Optional[Box] = None
    for b in boxes:
        result = b if result is None else result.union(b)
    return result
