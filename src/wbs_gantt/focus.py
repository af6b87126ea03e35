from __future__ import annotations

import math

from .task_models import BarGeometry, Geometry, MilestoneMarker, RowWindow, ScrollTarget, Viewport

WIDE_BAR_FRACTION = 0.8


def focus_target(geometry: Geometry, row_index: int, viewport: Viewport) -> ScrollTarget:
    """
    Scroll offsets that bring a task into the middle of the viewport.

    The bar is centred horizontally and its row vertically. Bars wider than
    80% of the viewport centre their start instead of their middle.
    Offsets never go below zero.
    """

    half_width = viewport.width / 2
    if isinstance(geometry, MilestoneMarker):
        bar_start, bar_width = geometry.center, 0.0
    else:
        bar_start, bar_width = geometry.left, geometry.width

    if bar_width > viewport.width * WIDE_BAR_FRACTION:
        scroll_left = bar_start - half_width
    else:
        scroll_left = bar_start + bar_width / 2 - half_width

    row_center = row_index * viewport.row_height + viewport.row_height / 2
    scroll_top = row_center - viewport.height / 2

    return ScrollTarget(scroll_left=max(0.0, scroll_left), scroll_top=max(0.0, scroll_top))


def visible_row_window(scroll_top: float, viewport: Viewport, row_count: int) -> RowWindow | None:
    """Rows intersecting the viewport, for virtualized row rendering."""

    if row_count <= 0 or viewport.row_height <= 0:
        return None
    start = int(math.floor(max(0.0, scroll_top) / viewport.row_height))
    start = min(start, row_count - 1)
    end = min(row_count - 1, int(math.ceil((max(0.0, scroll_top) + viewport.height) / viewport.row_height)))
    return RowWindow(start_index=start, end_index=max(start, end))


def bar_extent(geometry: Geometry) -> tuple[float, float]:
    """Left and right pixel edges of a bar or marker."""

    if isinstance(geometry, BarGeometry):
        return geometry.left, geometry.left + geometry.width
    return geometry.marker_left, geometry.marker_left + geometry.size
