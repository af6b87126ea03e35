import asyncio
import datetime as dt

import pytest

from wbs_gantt.config import EngineConfig
from wbs_gantt.engine import FetchError, GanttEngine
from wbs_gantt.sources import StaticTaskSource
from wbs_gantt.task_models import BarGeometry, RepairMode, Task, Viewport, ZoomLevel


def _task(task_id, parent=None, start=dt.date(2025, 1, 2), finish=dt.date(2025, 1, 5), **kwargs):
    return Task(id=task_id, name=f"Task {task_id}", parent_id=parent, start=start, finish=finish, **kwargs)


def _wbs():
    return [
        _task("a", start=dt.date(2025, 1, 1), finish=dt.date(2025, 1, 10), sort_key=1),
        _task("b", parent="a", sort_key=1),
        _task("c", parent="b"),
        _task("d", parent="a", sort_key=2),
        _task("e", sort_key=2, start=dt.date(2025, 1, 20), finish=dt.date(2025, 1, 24), project_id="other"),
    ]


class _FlakySource:
    def __init__(self, tasks):
        self.tasks = tasks
        self.fail = False
        self.calls = []

    async def fetch_tasks(self, project_id=None):
        self.calls.append(("fetch", project_id))
        if self.fail:
            raise ConnectionError("transport down")
        return list(self.tasks)

    async def refresh(self, project_id=None):
        self.calls.append(("refresh", project_id))
        if self.fail:
            raise ConnectionError("transport down")
        return list(self.tasks)


def _ids(rows):
    return [row.task.id for row in rows]


def _loaded_engine(**kwargs):
    engine = GanttEngine(source=StaticTaskSource(_wbs()), **kwargs)
    assert asyncio.run(engine.load()) is True
    return engine


def test_queries_before_any_snapshot_are_safe():
    engine = GanttEngine()

    assert engine.get_visible_rows() == []
    layout = engine.get_timeline_layout()
    assert layout.total_width_px == 0
    assert layout.bars_by_task_id == {}
    assert engine.focus_task("a") is None
    assert engine.geometry("a") is None
    assert engine.toggle_expand("a") is False


def test_load_shows_roots_collapsed():
    engine = _loaded_engine()

    rows = engine.get_visible_rows()

    assert _ids(rows) == ["a", "e"]
    assert rows[0].has_children is True
    assert rows[0].is_expanded is False
    assert engine.error is None


def test_toggle_expand_notifies_listeners():
    engine = _loaded_engine()
    events = []
    engine.on_expand_changed(lambda task_id, expanded: events.append((task_id, expanded)))

    assert engine.toggle_expand("a") is True
    assert _ids(engine.get_visible_rows()) == ["a", "b", "d", "e"]
    assert engine.toggle_expand("a") is False

    assert events == [("a", True), ("a", False)]


def test_collapsing_forgets_expanded_descendants():
    engine = _loaded_engine()
    engine.toggle_expand("a")
    engine.toggle_expand("b")
    assert _ids(engine.get_visible_rows()) == ["a", "b", "c", "d", "e"]

    engine.toggle_expand("a")
    engine.toggle_expand("a")

    assert _ids(engine.get_visible_rows()) == ["a", "b", "d", "e"]
    assert engine.expanded == {"a"}


def test_expand_all_and_collapse_all():
    engine = _loaded_engine()

    engine.expand_all()
    assert _ids(engine.get_visible_rows()) == ["a", "b", "c", "d", "e"]

    engine.collapse_all()
    assert _ids(engine.get_visible_rows()) == ["a", "e"]


def test_collapse_subtree_keeps_siblings():
    engine = _loaded_engine()
    engine.expand_all()

    engine.collapse_subtree("b")

    assert engine.expanded == {"a"}


def test_reload_replaces_snapshot_and_caches():
    source = StaticTaskSource(_wbs())
    engine = GanttEngine(source=source)
    asyncio.run(engine.load())
    engine.toggle_expand("a")
    before = engine.get_timeline_layout(ZoomLevel.DAY)

    source.tasks = _wbs() + [_task("f", parent="a", sort_key=3, finish=dt.date(2025, 3, 1))]
    assert asyncio.run(engine.refresh()) is True

    assert _ids(engine.get_visible_rows()) == ["a", "b", "d", "f", "e"]
    after = engine.get_timeline_layout(ZoomLevel.DAY)
    assert after.total_width_px > before.total_width_px
    assert after.bounds.end == dt.date(2025, 3, 8)
    assert "f" in after.bars_by_task_id


def test_reload_drops_expansion_of_vanished_tasks():
    source = StaticTaskSource(_wbs())
    engine = GanttEngine(source=source)
    asyncio.run(engine.load())
    engine.expand_all()
    engine.select_task("c")

    source.tasks = [_task("a"), _task("x", parent="a")]
    asyncio.run(engine.refresh())

    assert engine.expanded == {"a"}
    assert engine.selected_task_id is None
    assert _ids(engine.get_visible_rows()) == ["a", "x"]


def test_fetch_failure_keeps_last_snapshot():
    source = _FlakySource(_wbs())
    engine = GanttEngine(source=source)
    asyncio.run(engine.load("p1"))

    source.fail = True
    assert asyncio.run(engine.refresh("p1")) is False

    assert isinstance(engine.error, FetchError)
    assert isinstance(engine.error.__cause__, ConnectionError)
    assert engine.is_stale is True
    assert _ids(engine.get_visible_rows()) == ["a", "e"]

    source.fail = False
    assert asyncio.run(engine.retry()) is True
    assert engine.error is None
    assert source.calls[-1] == ("refresh", "p1")


def test_failure_before_first_snapshot_is_not_stale():
    source = _FlakySource([])
    source.fail = True
    engine = GanttEngine(source=source)

    assert asyncio.run(engine.load()) is False
    assert engine.error is not None
    assert engine.is_stale is False
    assert engine.get_visible_rows() == []


def test_load_without_source_records_error():
    engine = GanttEngine()

    assert asyncio.run(engine.load()) is False
    assert "no task source" in str(engine.error)


def test_project_filter_is_passed_to_source():
    engine = GanttEngine(source=StaticTaskSource(_wbs()))

    asyncio.run(engine.load("other"))

    assert _ids(engine.get_visible_rows()) == ["e"]


def test_select_task_notifies_listener():
    engine = _loaded_engine()
    clicked = []
    engine.on_task_clicked(clicked.append)

    task = engine.select_task("e")

    assert task.id == "e"
    assert engine.selected_task_id == "e"
    assert [t.id for t in clicked] == ["e"]
    assert engine.select_task("missing") is None
    assert engine.selected_task_id == "e"


def test_set_zoom_changes_layout_width():
    engine = _loaded_engine()

    engine.set_zoom("Day")
    day = engine.get_timeline_layout()
    engine.set_zoom(ZoomLevel.MONTH)
    month = engine.get_timeline_layout()

    assert engine.zoom is ZoomLevel.MONTH
    # bounds 2024-12-25 .. 2025-01-31
    assert day.total_width_px == 37 * 30
    assert month.total_width_px == 2 * 120
    assert set(day.bars_by_task_id) == {"a", "e"}


def test_layout_bars_follow_visible_rows():
    engine = _loaded_engine()
    engine.toggle_expand("a")

    layout = engine.get_timeline_layout(ZoomLevel.DAY)

    assert set(layout.bars_by_task_id) == {"a", "b", "d", "e"}
    assert layout.bars_by_task_id["a"] == BarGeometry(left=7 * 30.0, width=9 * 30.0)


def test_focus_task_targets_visible_row():
    engine = _loaded_engine(config=EngineConfig(default_zoom=ZoomLevel.DAY))
    viewport = Viewport(width=200, height=100, row_height=36)

    target = engine.focus_task("e", viewport)

    # e: left = 26 days * 30px, width = 4 days * 30px, second row
    assert target.scroll_left == pytest.approx(26 * 30 + 60 - 100)
    assert target.scroll_top == pytest.approx(36 + 18 - 50)
    assert engine.focus_task("c", viewport) is None


def test_synthesize_mode_from_config():
    source = StaticTaskSource([_task("c", parent="zzz")])
    engine = GanttEngine(source=source, config=EngineConfig(repair_mode=RepairMode.SYNTHESIZE))

    asyncio.run(engine.load())

    rows = engine.get_visible_rows()
    assert _ids(rows) == ["zzz"]
    assert rows[0].task.is_synthetic is True


def test_toggling_a_leaf_is_ignored():
    engine = _loaded_engine()
    events = []
    engine.on_expand_changed(lambda task_id, expanded: events.append((task_id, expanded)))

    assert engine.toggle_expand("e") is False

    assert engine.expanded == frozenset()
    assert events == []
    assert engine.get_visible_rows()[1].is_expanded is False


def test_bulk_expansion_changes_notify_listeners():
    engine = _loaded_engine()
    events = []
    engine.on_expand_changed(lambda task_id, expanded: events.append((task_id, expanded)))

    engine.expand_all()
    engine.collapse_subtree("b")
    engine.collapse_all()
    engine.collapse_all()

    assert events == [("a", True), ("b", True), ("b", False), ("a", False)]


def test_fetch_error_wraps_cause():
    cause = TimeoutError()

    error = FetchError.wrap(cause)

    assert error.__cause__ is cause
    assert str(error) == "TimeoutError"
