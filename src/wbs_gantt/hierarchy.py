from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date, timedelta
from typing import Iterable, Sequence

from .grouping import GroupingStrategy, GroupRule, NamePatternGrouping
from .task_models import RepairMode, Task

logger = logging.getLogger(__name__)

PLACEHOLDER_EPOCH = date(2024, 1, 1)
PLACEHOLDER_STEP_DAYS = 7
PLACEHOLDER_LENGTH_DAYS = 14

DEFAULT_GROUPING: GroupingStrategy = NamePatternGrouping()


@dataclass(frozen=True)
class Cycle:
    """Represents a detected parent cycle for logging."""

    path: list[str]

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return " -> ".join(self.path)


def build(
    tasks: Iterable[Task],
    *,
    mode: RepairMode = RepairMode.STRICT,
    grouping: GroupingStrategy | None = DEFAULT_GROUPING,
    placeholder_epoch: date = PLACEHOLDER_EPOCH,
) -> list[Task]:
    """
    Repair a raw snapshot into an internally consistent working set.

    - Drops duplicate ids (first occurrence wins) and self references.
    - Resolves parent references to unknown ids with the selected repair mode.
    - Groups tasks by name when the input carries no parent reference at all,
      dangling ones included.
    - Breaks indirect parent cycles by dropping one edge per cycle.
    - Recomputes is_summary for every task.

    Never raises for data problems; the result is a fixed point of build().
    """

    working = _deduplicate(tasks)
    working = [_normalize(task, idx, placeholder_epoch) for idx, task in enumerate(working)]

    # Decided before repair: demoted orphans still count as parented.
    had_parents = any(task.parent_id or task.detached_parent_id for task in working)

    existing = {task.id for task in working}
    missing = _missing_parents(working, existing)
    if missing:
        if mode is RepairMode.SYNTHESIZE:
            working = _synthesize_parents(working, missing) + working
        else:
            working = _demote_orphans(working, set(missing))

    if grouping is not None and working and not had_parents:
        working = _apply_grouping(working, grouping)

    working = _break_cycles(working)
    return _mark_summaries(working)


def _deduplicate(tasks: Iterable[Task]) -> list[Task]:
    seen: set[str] = set()
    unique: list[Task] = []
    dropped = 0
    for task in tasks:
        if task.id in seen:
            dropped += 1
            continue
        seen.add(task.id)
        unique.append(task)
    if dropped:
        logger.debug("Dropped %d duplicate task record(s)", dropped)
    return unique


def _normalize(task: Task, index: int, epoch: date) -> Task:
    start, finish = task.start, task.finish
    if start is None and finish is None:
        start = epoch + timedelta(days=index * PLACEHOLDER_STEP_DAYS)
        finish = start + timedelta(days=PLACEHOLDER_LENGTH_DAYS)
    elif start is None:
        start = finish - timedelta(days=_span_hint(task))
    elif finish is None:
        finish = start + timedelta(days=_span_hint(task))

    duration = task.duration
    if duration is None or duration < 1:
        duration = max(1, (finish - start).days)

    progress = task.progress
    if progress != progress:  # NaN
        progress = 0.0
    progress = min(max(progress, 0.0), 1.0)

    parent_id = task.parent_id or None
    if parent_id == task.id:
        logger.debug("Task %s references itself as parent; treating as root", task.id)
        parent_id = None

    normalized = replace(
        task,
        start=start,
        finish=finish,
        duration=duration,
        progress=progress,
        parent_id=parent_id,
    )
    return task if normalized == task else normalized


def _span_hint(task: Task) -> int:
    if task.duration is not None and task.duration >= 1:
        return task.duration
    return PLACEHOLDER_LENGTH_DAYS


def _missing_parents(tasks: Sequence[Task], existing: set[str]) -> list[str]:
    """Unknown parent ids in order of first reference."""
    missing: list[str] = []
    for task in tasks:
        if task.parent_id and task.parent_id not in existing and task.parent_id not in missing:
            missing.append(task.parent_id)
    return missing


def _demote_orphans(tasks: list[Task], missing: set[str]) -> list[Task]:
    result: list[Task] = []
    for task in tasks:
        if task.parent_id in missing:
            logger.debug("Task %s references unknown parent %s; demoted to root", task.id, task.parent_id)
            task = replace(task, parent_id=None, detached_parent_id=task.parent_id)
        result.append(task)
    return result


def _synthesize_parents(tasks: list[Task], missing: list[str]) -> list[Task]:
    created: list[Task] = []
    for index, parent_id in enumerate(missing):
        children = [task for task in tasks if task.parent_id == parent_id]
        name = _infer_parent_name(children, index)
        summary = _summary_for(parent_id, name, children)
        logger.debug("Synthesized parent %s (%s) for %d child task(s)", parent_id, name, len(children))
        created.append(summary)
    return created


def _infer_parent_name(children: Sequence[Task], index: int) -> str:
    if not children:
        return f"Parent Group {index + 1}"
    words = children[0].name.split()
    if not words:
        return f"Parent Group {index + 1}"
    return " ".join(words[:2]) + " Group"


def _summary_for(task_id: str, name: str, children: Sequence[Task], heuristic: bool = False) -> Task:
    start = min(child.start for child in children)
    finish = max(child.finish for child in children)
    sort_keys = [child.sort_key for child in children if child.sort_key is not None]
    sort_key = min(sort_keys) if sort_keys else None
    return Task(
        id=task_id,
        name=name,
        phase=children[0].phase,
        start=start,
        finish=finish,
        duration=max(1, (finish - start).days),
        progress=sum(child.progress for child in children) / len(children),
        is_summary=True,
        parent_id=None,
        sort_key=sort_key,
        number=f"P{sort_key}" if sort_key is not None else None,
        project_id=children[0].project_id,
        is_synthetic=True,
        is_heuristic=heuristic,
    )


def _apply_grouping(tasks: list[Task], grouping: GroupingStrategy) -> list[Task]:
    assignments = grouping.assign(tasks)
    if not assignments:
        return tasks

    taken = {task.id for task in tasks}
    group_ids: dict[GroupRule, str] = {}
    for rule in assignments.values():
        if rule in group_ids:
            continue
        group_id = rule.group_id
        suffix = 2
        while group_id in taken:
            group_id = f"{rule.group_id}-{suffix}"
            suffix += 1
        taken.add(group_id)
        group_ids[rule] = group_id

    members: dict[str, list[Task]] = {group_id: [] for group_id in group_ids.values()}
    grouped: list[Task] = []
    for task in tasks:
        rule = assignments.get(task.id)
        if rule is not None:
            task = replace(task, parent_id=group_ids[rule])
            members[task.parent_id].append(task)
        grouped.append(task)

    groups = [
        replace(_summary_for(group_id, rule.label, members[group_id], heuristic=True), phase=rule.phase)
        for rule, group_id in group_ids.items()
    ]
    logger.info(
        "No parent references in snapshot; grouped %d of %d task(s) into %d heuristic group(s)",
        len(assignments),
        len(tasks),
        len(groups),
    )
    return groups + grouped


def _break_cycles(tasks: list[Task]) -> list[Task]:
    parents = {task.id: task.parent_id for task in tasks}
    safe: set[str] = set()
    cut: set[str] = set()

    for node_id in sorted(parents):
        while True:
            cycle = _find_cycle(node_id, parents, safe)
            if cycle is None:
                break
            victim = min(cycle.path[:-1])
            parents[victim] = None
            cut.add(victim)
            logger.warning("Parent cycle detected: %s; dropping parent of %s", cycle, victim)

    if not cut:
        return tasks
    return [replace(task, parent_id=None) if task.id in cut else task for task in tasks]


def _find_cycle(node_id: str, parents: dict[str, str | None], safe: set[str]) -> Cycle | None:
    stack: list[str] = []
    positions: dict[str, int] = {}
    current: str | None = node_id

    while current is not None and current not in safe:
        if current in positions:
            return Cycle(stack[positions[current] :] + [current])
        positions[current] = len(stack)
        stack.append(current)
        current = parents.get(current)

    safe.update(stack)
    return None


def _mark_summaries(tasks: list[Task]) -> list[Task]:
    with_children = {task.parent_id for task in tasks if task.parent_id}
    result: list[Task] = []
    for task in tasks:
        is_summary = task.id in with_children
        if task.is_summary != is_summary:
            task = replace(task, is_summary=is_summary)
        result.append(task)
    return result
