from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date
from typing import Literal


Phase = Literal["Initiation", "Planning", "Selection", "Execution", "Closure"]
"""Lifecycle phase used for colouring only."""

PHASES: tuple[Phase, ...] = ("Initiation", "Planning", "Selection", "Execution", "Closure")

DependencyKind = Literal["StartToStart", "FinishToStart", "FinishToFinish", "StartToFinish"]
"""Dependency type stored for display; never evaluated."""


class ZoomLevel(str, enum.Enum):
    """Timeline granularity controlling pixels per unit."""

    DAY = "Day"
    WEEK = "Week"
    MONTH = "Month"
    QUARTER = "Quarter"
    YEAR = "Year"


class RepairMode(str, enum.Enum):
    """How the hierarchy builder resolves parent references to unknown ids."""

    STRICT = "strict"
    SYNTHESIZE = "synthesize"


@dataclass(frozen=True)
class Task:
    """
    One WBS node of a snapshot.

    Tasks are never mutated; the builder returns repaired copies.
    """

    id: str
    name: str
    phase: Phase = "Planning"
    start: date | None = None
    finish: date | None = None
    duration: int | None = None
    progress: float = 0.0
    is_summary: bool = False
    parent_id: str | None = None
    sort_key: int | None = None
    wbs_code: str | None = None
    number: str | None = None
    successor_id: str | None = None
    dependency_kind: DependencyKind | None = None
    is_milestone: bool = False
    project_id: str | None = None
    is_synthetic: bool = False
    is_heuristic: bool = False
    # Unknown parent reference dropped by strict repair; kept for display.
    detached_parent_id: str | None = None


@dataclass
class TreeNode:
    """Task plus its ordered children, as produced by to_tree."""

    task: Task
    depth: int
    children: list["TreeNode"] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.task.id


@dataclass(frozen=True)
class VisibleRow:
    """
    Render-ready row.

    Only the fields the render surface needs are kept: the task, its
    indentation depth, and its expand/collapse affordance state.
    """

    task: Task
    depth: int
    has_children: bool
    is_expanded: bool


@dataclass(frozen=True)
class TimelineBounds:
    """Inclusive date window shared by every bar on the timeline."""

    start: date
    end: date

    @property
    def span_days(self) -> int:
        return (self.end - self.start).days


@dataclass(frozen=True)
class BarGeometry:
    """Horizontal placement of a regular bar in pixels."""

    left: float
    width: float


@dataclass(frozen=True)
class MilestoneMarker:
    """Fixed-size marker centred on the milestone date."""

    marker_left: float
    size: float

    @property
    def center(self) -> float:
        return self.marker_left + self.size / 2


Geometry = BarGeometry | MilestoneMarker
"""Convenience alias for anything position() can return."""


@dataclass(frozen=True)
class HeaderCell:
    """One labelled unit of the timeline header."""

    label: str
    left: float
    width: float
    start: date


@dataclass(frozen=True)
class TimelineLayout:
    """Everything the render surface needs to draw the time axis and bars."""

    zoom: ZoomLevel
    total_width_px: int
    bounds: TimelineBounds | None = None
    header_cells: list[HeaderCell] = field(default_factory=list)
    bars_by_task_id: dict[str, Geometry] = field(default_factory=dict)


@dataclass(frozen=True)
class Viewport:
    """Visible area of the timeline in pixels."""

    width: float
    height: float
    row_height: float = 36.0


@dataclass(frozen=True)
class ScrollTarget:
    scroll_left: float
    scroll_top: float


@dataclass(frozen=True)
class RowWindow:
    """Inclusive index range of rows intersecting the viewport."""

    start_index: int
    end_index: int
