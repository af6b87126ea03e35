import datetime as dt

import pytest

from wbs_gantt.__main__ import main
from wbs_gantt.hierarchy import build
from wbs_gantt.render_gantt import render_gantt, truncate_label
from wbs_gantt.task_models import Task, TimelineLayout, ZoomLevel
from wbs_gantt.timeline import build_layout
from wbs_gantt.tree import flatten, to_tree, to_visible_rows

TASKS_YAML = """
tasks:
  - id: "1"
    name: Design package
    start: 2025-01-06
    finish: 2025-01-20
  - id: "2"
    name: Review drawings
    parent: "1"
    start: 2025-01-08
    finish: 2025-01-12
    progress: 0.5
  - id: "3"
    name: Sign-off
    parent: "1"
    start: 2025-01-20
    finish: 2025-01-20
    milestone: true
"""


def _rows_and_layout(expanded):
    tasks = build(
        [
            Task(id="a", name="Alpha", start=dt.date(2024, 1, 1), finish=dt.date(2024, 1, 10)),
            Task(id="b", name="Beta", parent_id="a", start=dt.date(2024, 1, 2), finish=dt.date(2024, 1, 4), progress=0.3),
            Task(id="m", name="Milestone", parent_id="a", start=dt.date(2024, 1, 3), is_milestone=True),
        ]
    )
    rows = to_visible_rows(flatten(to_tree(tasks), expanded), expanded)
    layout = build_layout(ZoomLevel.DAY, tasks, [row.task for row in rows])
    return rows, layout


def test_renderer_produces_svg(tmp_path):
    rows, layout = _rows_and_layout({"a"})

    out_file = tmp_path / "nested" / "chart.svg"
    render_gantt(rows, layout, out_path=str(out_file), title="WBS", selected_id="b")

    assert out_file.exists()
    assert out_file.read_text(encoding="utf-8").lstrip().startswith("<?xml")


def test_renderer_rejects_empty_input(tmp_path):
    rows, _ = _rows_and_layout(set())

    with pytest.raises(ValueError):
        render_gantt([], TimelineLayout(zoom=ZoomLevel.DAY, total_width_px=900), out_path=str(tmp_path / "x.svg"))
    with pytest.raises(ValueError):
        render_gantt(rows, TimelineLayout(zoom=ZoomLevel.DAY, total_width_px=0), out_path=str(tmp_path / "x.svg"))


def test_truncate_label():
    assert truncate_label("Short", 300) == "Short"
    truncated = truncate_label("x" * 60, 300)
    assert truncated.endswith("...")
    assert len(truncated) == 41


def test_cli_renders_chart(tmp_path):
    tasks_file = tmp_path / "tasks.yaml"
    tasks_file.write_text(TASKS_YAML, encoding="utf-8")
    out_file = tmp_path / "out" / "chart.svg"

    code = main([str(tasks_file), "--out", str(out_file), "--expand", "1", "--zoom", "Day", "--no-view"])

    assert code == 0
    assert out_file.exists()


def test_cli_reports_missing_task_file(tmp_path, capsys):
    code = main([str(tmp_path / "absent.yaml"), "--no-view"])

    assert code == 1
    assert "not found" in capsys.readouterr().err


def test_cli_reports_malformed_task_file(tmp_path, capsys):
    tasks_file = tmp_path / "tasks.yaml"
    tasks_file.write_text("tasks: [oops\n", encoding="utf-8")

    code = main([str(tasks_file), "--out", str(tmp_path / "chart.svg"), "--no-view"])

    assert code == 2
    assert "Error" in capsys.readouterr().err


def test_cli_reports_invalid_config(tmp_path, capsys):
    tasks_file = tmp_path / "tasks.yaml"
    tasks_file.write_text(TASKS_YAML, encoding="utf-8")
    config_file = tmp_path / "engine.yaml"
    config_file.write_text("unknown_knob: 1\n", encoding="utf-8")

    code = main([str(tasks_file), "--config", str(config_file), "--no-view"])

    assert code == 2
    assert "unexpected fields" in capsys.readouterr().err


def test_cli_rejects_empty_project(tmp_path):
    tasks_file = tmp_path / "tasks.yaml"
    tasks_file.write_text(TASKS_YAML, encoding="utf-8")

    code = main([str(tasks_file), "--project", "nope", "--out", str(tmp_path / "chart.svg"), "--no-view"])

    assert code == 2
