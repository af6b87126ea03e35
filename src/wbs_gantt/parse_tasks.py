from __future__ import annotations

import datetime as _dt
import logging
from dataclasses import dataclass
from typing import Any

import yaml

from .task_models import PHASES, DependencyKind, Phase, Task

logger = logging.getLogger(__name__)


class TaskFileError(Exception):
    """Raised when a task file does not have the expected overall shape."""


@dataclass(frozen=True)
class _Path:
    """Helper to produce readable YAML path strings like tasks[3]."""

    parts: tuple[str, ...] = ()

    def child(self, segment: str) -> "_Path":
        return _Path(self.parts + (segment,))

    def __str__(self) -> str:  # pragma: no cover - trivial
        return ".".join(self.parts) if self.parts else "root"


# Each field accepts the snake_case name first, then the names used by the
# CRM record exports.
_ALIASES: dict[str, tuple[str, ...]] = {
    "id": ("id", "taskDataId", "pme_taskdataid"),
    "name": ("name", "taskName", "pme_taskname"),
    "phase": ("phase", "taskPhase", "pme_taskphase"),
    "start": ("start", "startDate", "pme_startdate"),
    "finish": ("finish", "finishDate", "pme_finishdate"),
    "duration": ("duration",),
    "progress": ("progress",),
    "is_summary": ("is_summary", "isSummaryTask"),
    "parent_id": ("parent", "parent_id", "parentTask", "pme_parenttask"),
    "sort_key": ("sort_key", "taskIndex", "pme_taskindex", "taskindex"),
    "wbs_code": ("wbs", "wbs_code", "taskWBS"),
    "number": ("number", "taskNumber", "pme_tasknumber"),
    "successor_id": ("successor", "successor_id", "successorId", "pme_successor"),
    "dependency_kind": ("dependency", "dependency_kind", "dependencyType", "pme_dependencytype"),
    "is_milestone": ("milestone", "is_milestone", "isMilestone"),
    "project_id": ("project", "project_id", "projectId", "pme_projectid"),
}

_PHASE_CODES: dict[int, Phase] = {
    893360000: "Initiation",
    893360001: "Planning",
    893360002: "Selection",
    893360003: "Execution",
    893360004: "Closure",
    1: "Initiation",
    2: "Planning",
    3: "Selection",
    4: "Execution",
    5: "Closure",
}

_DEPENDENCY_CODES: dict[int, DependencyKind] = {
    1: "FinishToStart",
    2: "StartToStart",
    3: "FinishToFinish",
    4: "StartToFinish",
}

_DEPENDENCY_KINDS: tuple[DependencyKind, ...] = ("StartToStart", "FinishToStart", "FinishToFinish", "StartToFinish")


def load_tasks(path: str) -> list[Task]:
    """Load task records from a YAML file (no hierarchy repair)."""

    with open(path, "r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh)

    return parse_tasks(raw)


def parse_tasks(data: Any) -> list[Task]:
    """
    Convert a decoded YAML document into Task records.

    The document is either a list of records or a mapping with a `tasks`
    list. Only the overall shape is strict; individual field values are
    normalized and never rejected.
    """

    path = _Path()
    if isinstance(data, dict):
        records = data.get("tasks")
        path = path.child("tasks")
        if records is None:
            raise TaskFileError(f"{_Path()}: missing required field 'tasks'")
    else:
        records = data

    if records is None:
        return []
    if not isinstance(records, list):
        raise TaskFileError(f"{path}: expected list of task records")

    tasks: list[Task] = []
    for idx, record in enumerate(records):
        if not isinstance(record, dict):
            raise TaskFileError(f"{path.child(f'[{idx}]')}: expected mapping for task record")
        tasks.append(normalize_record(record, idx))
    return tasks


def normalize_record(record: dict[str, Any], index: int) -> Task:
    """Build a Task from one raw record, defaulting anything unusable."""

    task_id = _as_str(_field(record, "id")) or f"task-{index}"
    name = _as_str(_field(record, "name")) or f"Task {index + 1}"

    start = parse_date(_field(record, "start"))
    finish = parse_date(_field(record, "finish"))
    if _field(record, "start") is not None and start is None:
        logger.debug("Task %s: unparseable start %r", task_id, _field(record, "start"))
    if _field(record, "finish") is not None and finish is None:
        logger.debug("Task %s: unparseable finish %r", task_id, _field(record, "finish"))

    return Task(
        id=task_id,
        name=name,
        phase=parse_phase(_field(record, "phase")),
        start=start,
        finish=finish,
        duration=_as_int(_field(record, "duration")),
        progress=parse_progress(_field(record, "progress")),
        is_summary=bool(_field(record, "is_summary")),
        parent_id=_as_str(_field(record, "parent_id")),
        sort_key=_as_int(_field(record, "sort_key")),
        wbs_code=_as_str(_field(record, "wbs_code")),
        number=_as_str(_field(record, "number")),
        successor_id=_as_str(_field(record, "successor_id")),
        dependency_kind=parse_dependency(_field(record, "dependency_kind")),
        is_milestone=bool(_field(record, "is_milestone")),
        project_id=_as_str(_field(record, "project_id")),
    )


def parse_date(value: Any) -> _dt.date | None:
    if isinstance(value, _dt.datetime):
        return value.date()
    if isinstance(value, _dt.date):
        return value
    if isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            return _dt.date.fromisoformat(text[:10])
        except ValueError:
            return None
    return None


def parse_progress(value: Any) -> float:
    """Accept a fraction or a percentage; clamp into [0, 1]."""

    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number:  # NaN
        return 0.0
    if number > 1:
        number = number / 100
    return min(max(number, 0.0), 1.0)


def parse_phase(value: Any) -> Phase:
    if value is None or isinstance(value, bool):
        return "Planning"
    if isinstance(value, int):
        return _PHASE_CODES.get(value, "Planning")
    text = str(value).strip()
    if text.isdigit():
        return _PHASE_CODES.get(int(text), "Planning")
    lowered = text.lower()
    for phase in PHASES:
        if lowered == phase.lower():
            return phase
    if "initiat" in lowered:
        return "Initiation"
    if "plan" in lowered:
        return "Planning"
    if "select" in lowered:
        return "Selection"
    if "execut" in lowered or "implement" in lowered:
        return "Execution"
    if "closur" in lowered or "complet" in lowered:
        return "Closure"
    return "Planning"


def parse_dependency(value: Any) -> DependencyKind | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return _DEPENDENCY_CODES.get(value, "FinishToStart")
    text = str(value).strip()
    for kind in _DEPENDENCY_KINDS:
        if text.lower() == kind.lower():
            return kind
    if text.isdigit():
        return _DEPENDENCY_CODES.get(int(text), "FinishToStart")
    return None


def _field(record: dict[str, Any], key: str) -> Any:
    for alias in _ALIASES[key]:
        value = record.get(alias)
        if value is not None:
            return value
    return None


def _as_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _as_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
