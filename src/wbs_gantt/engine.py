from __future__ import annotations

import datetime as dt
import logging
from typing import Callable, Iterable

from .caching import DerivedCache, LRUCache, snapshot_key
from .config import EngineConfig
from .focus import focus_target
from .hierarchy import build
from .sources import TaskSource
from .task_models import Geometry, ScrollTarget, Task, TimelineLayout, Viewport, VisibleRow, ZoomLevel
from .timeline import build_layout, cached_position, compute_bounds, pixels_per_zoom
from .tree import descendant_ids, to_visible_rows, toggle

logger = logging.getLogger(__name__)

TaskClickedCallback = Callable[[Task], None]
ExpandChangedCallback = Callable[[str, bool], None]


class FetchError(Exception):
    """Raised (or recorded) when the task source fails to deliver a snapshot."""

    @classmethod
    def wrap(cls, exc: BaseException) -> "FetchError":
        error = cls(str(exc) or type(exc).__name__)
        # Recorded on the engine instead of raised, so chain the cause by hand.
        error.__cause__ = exc
        return error


class GanttEngine:
    """
    Owns one working snapshot plus all state derived from it.

    A snapshot is replaced wholesale; every cache is dropped on replacement.
    Query methods never raise: before the first snapshot they return empty
    rows and a zero-width timeline.
    """

    def __init__(
        self,
        source: TaskSource | None = None,
        config: EngineConfig | None = None,
        today: dt.date | None = None,
        viewport: Viewport | None = None,
    ) -> None:
        self.source = source
        self.config = config or EngineConfig()
        self.today = today
        self.viewport = viewport or Viewport(width=1200.0, height=600.0, row_height=self.config.row_height)
        self.error: FetchError | None = None

        self._tasks: list[Task] = []
        self._by_id: dict[str, Task] = {}
        self._snapshot_key = snapshot_key([])
        self._loaded = False
        self._expanded: frozenset[str] = frozenset()
        self._zoom = self.config.default_zoom
        self._selected: str | None = None
        self._last_request: tuple[bool, str | None] | None = None

        self._derived = DerivedCache()
        self._positions: LRUCache[Geometry] = LRUCache(self.config.position_cache_size)
        self._task_clicked: list[TaskClickedCallback] = []
        self._expand_changed: list[ExpandChangedCallback] = []

    @property
    def tasks(self) -> list[Task]:
        return list(self._tasks)

    @property
    def has_snapshot(self) -> bool:
        return self._loaded

    @property
    def expanded(self) -> frozenset[str]:
        return self._expanded

    @property
    def zoom(self) -> ZoomLevel:
        return self._zoom

    @property
    def selected_task_id(self) -> str | None:
        return self._selected

    @property
    def is_stale(self) -> bool:
        """True when the last fetch failed and an older snapshot is displayed."""
        return self.error is not None and self._loaded

    def task(self, task_id: str) -> Task | None:
        return self._by_id.get(task_id)

    # Snapshot lifecycle

    def load_snapshot(self, tasks: Iterable[Task]) -> None:
        """Repair and swap in a new snapshot, discarding all derived state."""

        working = build(
            tasks,
            mode=self.config.repair_mode,
            grouping=self.config.grouping_strategy(),
        )
        self._tasks = working
        self._by_id = {task.id: task for task in working}
        self._snapshot_key = snapshot_key(working)
        self._loaded = True
        self._expanded = frozenset(task_id for task_id in self._expanded if task_id in self._by_id)
        if self._selected not in self._by_id:
            self._selected = None
        self._derived.invalidate()
        self._positions.clear()
        logger.debug("Loaded snapshot with %d task(s)", len(working))

    async def load(self, project_id: str | None = None) -> bool:
        return await self._fetch(refresh=False, project_id=project_id)

    async def refresh(self, project_id: str | None = None) -> bool:
        return await self._fetch(refresh=True, project_id=project_id)

    async def retry(self) -> bool:
        """Repeat the last load or refresh request."""
        if self._last_request is None:
            return await self.load()
        refresh, project_id = self._last_request
        return await self._fetch(refresh=refresh, project_id=project_id)

    async def _fetch(self, refresh: bool, project_id: str | None) -> bool:
        self._last_request = (refresh, project_id)
        if self.source is None:
            self.error = FetchError("no task source configured")
            return False
        try:
            if refresh:
                tasks = await self.source.refresh(project_id)
            else:
                tasks = await self.source.fetch_tasks(project_id)
        except Exception as exc:
            logger.exception("Fetching tasks failed; keeping the last snapshot")
            self.error = FetchError.wrap(exc)
            return False

        self.error = None
        self.load_snapshot(tasks)
        return True

    # Render surface queries

    def get_visible_rows(self) -> list[VisibleRow]:
        if not self._tasks:
            return []
        nodes = self._derived.flattened(self._tasks, self._snapshot_key, self._expanded)
        return to_visible_rows(nodes, self._expanded)

    def get_timeline_layout(self, zoom: ZoomLevel | str | None = None) -> TimelineLayout:
        level = self._zoom if zoom is None else ZoomLevel(zoom)
        if not self._tasks:
            return TimelineLayout(zoom=level, total_width_px=0)
        visible = [row.task for row in self.get_visible_rows()]
        return build_layout(level, self._tasks, visible, cache=self._positions, today=self.today)

    def geometry(self, task_id: str) -> Geometry | None:
        task = self._by_id.get(task_id)
        if task is None:
            return None
        bounds = compute_bounds(self._tasks, today=self.today)
        total = pixels_per_zoom(self._zoom, bounds.start, bounds.end)
        return cached_position(task, bounds, total, self._positions)

    # Interaction

    def toggle_expand(self, task_id: str) -> bool:
        """Toggle one node and return its new expansion state; leaves stay collapsed."""

        task = self._by_id.get(task_id)
        if task is None or not task.is_summary:
            logger.debug("toggle_expand: %s is not an expandable task", task_id)
            return False
        self._set_expanded(toggle(task_id, self._expanded, self._tasks))
        return task_id in self._expanded

    def expand_all(self) -> None:
        self._set_expanded(frozenset(task.id for task in self._tasks if task.is_summary))

    def collapse_all(self) -> None:
        self._set_expanded(frozenset())

    def collapse_subtree(self, task_id: str) -> None:
        """Collapse a node and everything below it without toggling."""
        self._set_expanded(self._expanded - {task_id} - descendant_ids(self._tasks, task_id))

    def _set_expanded(self, expanded: frozenset[str]) -> None:
        changed = self._expanded ^ expanded
        self._expanded = expanded
        self._derived.invalidate()
        for task_id in sorted(changed):
            for callback in self._expand_changed:
                callback(task_id, task_id in expanded)

    def select_task(self, task_id: str) -> Task | None:
        task = self._by_id.get(task_id)
        if task is None:
            return None
        self._selected = task_id
        for callback in self._task_clicked:
            callback(task)
        return task

    def set_zoom(self, level: ZoomLevel | str) -> None:
        level = ZoomLevel(level)
        if level is self._zoom:
            return
        self._zoom = level
        self._positions.clear()

    def focus_task(self, task_id: str, viewport: Viewport | None = None) -> ScrollTarget | None:
        """Scroll offsets centring a visible task; None when it is not on screen."""

        rows = self.get_visible_rows()
        row_index = next((idx for idx, row in enumerate(rows) if row.task.id == task_id), None)
        if row_index is None:
            return None
        geometry = self.geometry(task_id)
        if geometry is None:
            return None
        return focus_target(geometry, row_index, viewport or self.viewport)

    # Listeners

    def on_task_clicked(self, callback: TaskClickedCallback) -> TaskClickedCallback:
        self._task_clicked.append(callback)
        return callback

    def on_expand_changed(self, callback: ExpandChangedCallback) -> ExpandChangedCallback:
        self._expand_changed.append(callback)
        return callback
