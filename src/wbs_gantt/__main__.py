from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import webbrowser
from dataclasses import replace
from pathlib import Path

import yaml

from .config import ConfigError, EngineConfig, load_config
from .engine import GanttEngine
from .parse_tasks import TaskFileError, parse_date
from .render_gantt import render_gantt
from .sources import YamlTaskSource
from .task_models import RepairMode, ZoomLevel


def _parse_date(value: str):
    parsed = parse_date(value)
    if parsed is None:
        raise argparse.ArgumentTypeError(f"invalid date '{value}', expected YYYY-MM-DD")
    return parsed


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="WBS Gantt chart viewer",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("tasks", help="Path to task records YAML")
    parser.add_argument("--config", help="Path to engine config YAML")
    parser.add_argument("--out", default="output/gantt_chart.svg", help="Output SVG path")
    parser.add_argument("--zoom", choices=[level.value for level in ZoomLevel], help="Timeline zoom level")
    parser.add_argument("--mode", choices=[mode.value for mode in RepairMode], help="Repair mode for unknown parents")
    parser.add_argument("--project", help="Only show tasks of this project id")
    parser.add_argument("--expand", action="append", default=[], metavar="ID", help="Expand a task (repeatable)")
    parser.add_argument("--expand-all", action="store_true", help="Expand every summary task")
    parser.add_argument("--title", default="", help="Chart title")
    parser.add_argument("--today", type=_parse_date, help="Anchor date for empty timelines (YYYY-MM-DD)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log hierarchy repairs")
    parser.add_argument(
        "--view",
        dest="view",
        action="store_true",
        default=True,
        help="Best-effort open the output file after rendering",
    )
    parser.add_argument(
        "--no-view",
        dest="view",
        action="store_false",
        help="Do not open the output file after rendering",
    )
    return parser


def _resolve_config(args: argparse.Namespace) -> EngineConfig:
    config = load_config(args.config) if args.config else EngineConfig()
    if args.mode:
        config = replace(config, repair_mode=RepairMode(args.mode))
    if args.zoom:
        config = replace(config, default_zoom=ZoomLevel(args.zoom))
    return config


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = _resolve_config(args)
    except (yaml.YAMLError, ConfigError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    except FileNotFoundError:
        print(f"Error: config file not found: {args.config}", file=sys.stderr)
        return 1

    tasks_path = Path(args.tasks)
    if not tasks_path.exists():
        print(f"Error: task file not found: {tasks_path}", file=sys.stderr)
        return 1

    engine = GanttEngine(source=YamlTaskSource(str(tasks_path)), config=config, today=args.today)
    if not asyncio.run(engine.load(args.project)):
        cause = engine.error.__cause__ if engine.error else None
        if isinstance(cause, (yaml.YAMLError, TaskFileError)):
            print(f"Error: {cause}", file=sys.stderr)
            return 2
        print(f"Unexpected error while loading tasks: {engine.error}", file=sys.stderr)
        return 1

    if args.expand_all:
        engine.expand_all()
    for task_id in args.expand:
        if engine.task(task_id) is None:
            print(f"Warning: unknown task id '{task_id}'", file=sys.stderr)
        elif task_id not in engine.expanded:
            engine.toggle_expand(task_id)

    rows = engine.get_visible_rows()
    if not rows:
        print("Error: no tasks to render", file=sys.stderr)
        return 2

    try:
        render_gantt(rows, engine.get_timeline_layout(), out_path=args.out, title=args.title)
    except Exception as exc:
        print(f"Unexpected error while rendering: {exc}", file=sys.stderr)
        return 1

    if args.view:
        try:
            webbrowser.open(Path(args.out).resolve().as_uri())
        except Exception:
            pass

    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
