from __future__ import annotations

import datetime as dt
import math
from typing import Iterable

from .caching import LRUCache
from .task_models import (
    BarGeometry,
    Geometry,
    HeaderCell,
    MilestoneMarker,
    Task,
    TimelineBounds,
    TimelineLayout,
    ZoomLevel,
)

TIMELINE_PAD_DAYS = 7  # breathing room before first and after last date
EMPTY_TIMELINE_DAYS = 30
MIN_BAR_WIDTH = 20.0
MILESTONE_SIZE = 14.0

PX_PER_UNIT: dict[ZoomLevel, int] = {
    ZoomLevel.DAY: 30,
    ZoomLevel.WEEK: 100,
    ZoomLevel.MONTH: 120,
    ZoomLevel.QUARTER: 150,
    ZoomLevel.YEAR: 200,
}

DAYS_PER_UNIT: dict[ZoomLevel, int] = {
    ZoomLevel.DAY: 1,
    ZoomLevel.WEEK: 7,
    ZoomLevel.MONTH: 30,
    ZoomLevel.QUARTER: 90,
    ZoomLevel.YEAR: 365,
}

PositionKey = tuple[str, dt.date | None, dt.date | None, int, dt.date, dt.date]


def compute_bounds(tasks: Iterable[Task], today: dt.date | None = None) -> TimelineBounds:
    """
    Shared date window: earliest start and latest finish padded by a week.

    An empty task set yields [today, today + 30 days].
    """

    starts: list[dt.date] = []
    finishes: list[dt.date] = []
    for task in tasks:
        if task.start is not None:
            starts.append(task.start)
            finishes.append(task.start)
        if task.finish is not None:
            finishes.append(task.finish)
            starts.append(task.finish)

    if not starts:
        anchor = today or dt.date.today()
        return TimelineBounds(anchor, anchor + dt.timedelta(days=EMPTY_TIMELINE_DAYS))

    pad = dt.timedelta(days=TIMELINE_PAD_DAYS)
    return TimelineBounds(min(starts) - pad, max(finishes) + pad)


def pixels_per_zoom(zoom: ZoomLevel, start: dt.date, end: dt.date) -> int:
    """Total timeline width: whole units covering [start, end] times px per unit."""

    zoom = ZoomLevel(zoom)
    total_days = max(0, math.ceil((end - start).days))
    units = math.ceil(total_days / DAYS_PER_UNIT[zoom])
    return units * PX_PER_UNIT[zoom]


def date_to_px(day: dt.date, bounds: TimelineBounds, total_width_px: float) -> float:
    span = bounds.span_days
    if span <= 0 or total_width_px <= 0:
        return 0.0
    return (day - bounds.start).days / span * total_width_px


def position(task: Task, bounds: TimelineBounds, total_width_px: float) -> Geometry:
    """
    Place one task on the timeline.

    Bars never get narrower than MIN_BAR_WIDTH, which also covers inverted
    date ranges. Milestones ignore duration and get a fixed-size marker
    centred on their start.
    """

    start = task.start or bounds.start
    finish = task.finish or start
    left = max(0.0, date_to_px(start, bounds, total_width_px))

    if task.is_milestone:
        return MilestoneMarker(marker_left=left - MILESTONE_SIZE / 2, size=MILESTONE_SIZE)

    span = bounds.span_days
    raw_width = 0.0
    if span > 0 and total_width_px > 0:
        raw_width = (finish - start).days / span * total_width_px
    return BarGeometry(left=left, width=max(raw_width, MIN_BAR_WIDTH))


def position_key(task: Task, bounds: TimelineBounds, total_width_px: int) -> PositionKey:
    return (task.id, task.start, task.finish, total_width_px, bounds.start, bounds.end)


def cached_position(
    task: Task,
    bounds: TimelineBounds,
    total_width_px: int,
    cache: LRUCache[Geometry],
) -> Geometry:
    key = position_key(task, bounds, total_width_px)
    geometry = cache.get(key)
    if geometry is None:
        geometry = position(task, bounds, total_width_px)
        cache.put(key, geometry)
    return geometry


def header_cells(zoom: ZoomLevel, bounds: TimelineBounds, total_width_px: float) -> list[HeaderCell]:
    """
    One labelled cell per calendar unit overlapping the bounds.

    Offsets use the same date to pixel mapping as position(); the first and
    last cells are clipped to the timeline.
    """

    zoom = ZoomLevel(zoom)
    if bounds.span_days <= 0 or total_width_px <= 0:
        return []

    cells: list[HeaderCell] = []
    current = _unit_floor(zoom, bounds.start)
    while current <= bounds.end:
        following = _unit_next(zoom, current)
        left = max(0.0, date_to_px(current, bounds, total_width_px))
        right = min(float(total_width_px), date_to_px(following, bounds, total_width_px))
        if right > left:
            cells.append(HeaderCell(label=_unit_label(zoom, current), left=left, width=right - left, start=current))
        current = following
    return cells


def build_layout(
    zoom: ZoomLevel,
    all_tasks: Iterable[Task],
    visible_tasks: Iterable[Task],
    cache: LRUCache[Geometry] | None = None,
    today: dt.date | None = None,
) -> TimelineLayout:
    """Bounds over every task; bars only for the visible ones."""

    zoom = ZoomLevel(zoom)
    bounds = compute_bounds(all_tasks, today=today)
    total = pixels_per_zoom(zoom, bounds.start, bounds.end)
    bars: dict[str, Geometry] = {}
    for task in visible_tasks:
        if cache is None:
            bars[task.id] = position(task, bounds, total)
        else:
            bars[task.id] = cached_position(task, bounds, total, cache)
    return TimelineLayout(
        zoom=zoom,
        total_width_px=total,
        bounds=bounds,
        header_cells=header_cells(zoom, bounds, total),
        bars_by_task_id=bars,
    )


def _unit_floor(zoom: ZoomLevel, day: dt.date) -> dt.date:
    if zoom is ZoomLevel.DAY:
        return day
    if zoom is ZoomLevel.WEEK:
        # Weeks start on Sunday.
        return day - dt.timedelta(days=(day.weekday() + 1) % 7)
    if zoom is ZoomLevel.MONTH:
        return day.replace(day=1)
    if zoom is ZoomLevel.QUARTER:
        return dt.date(day.year, (day.month - 1) // 3 * 3 + 1, 1)
    return dt.date(day.year, 1, 1)


def _unit_next(zoom: ZoomLevel, day: dt.date) -> dt.date:
    if zoom is ZoomLevel.DAY:
        return day + dt.timedelta(days=1)
    if zoom is ZoomLevel.WEEK:
        return day + dt.timedelta(days=7)
    if zoom is ZoomLevel.MONTH:
        return _add_months(day, 1)
    if zoom is ZoomLevel.QUARTER:
        return _add_months(day, 3)
    return dt.date(day.year + 1, 1, 1)


def _add_months(day: dt.date, months: int) -> dt.date:
    index = day.year * 12 + (day.month - 1) + months
    return dt.date(index // 12, index % 12 + 1, 1)


def _unit_label(zoom: ZoomLevel, day: dt.date) -> str:
    if zoom is ZoomLevel.DAY:
        return f"{day:%b} {day.day}"
    if zoom is ZoomLevel.WEEK:
        end = day + dt.timedelta(days=6)
        return f"{day:%b} {day.day} - {end:%b} {end.day}"
    if zoom is ZoomLevel.MONTH:
        return f"{day:%B %Y}"
    if zoom is ZoomLevel.QUARTER:
        return f"Q{(day.month - 1) // 3 + 1} {day.year}"
    return str(day.year)
