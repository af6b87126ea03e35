from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Protocol, Sequence

from .task_models import Phase, Task


@dataclass(frozen=True)
class GroupRule:
    """Name pattern that assigns matching tasks to a labelled group."""

    pattern: str
    label: str
    phase: Phase = "Planning"

    def matches(self, name: str) -> bool:
        return re.search(self.pattern, name, flags=re.IGNORECASE) is not None

    @property
    def group_id(self) -> str:
        slug = re.sub(r"[^a-z0-9]+", "-", self.label.lower()).strip("-")
        return f"group:{slug or 'unnamed'}"


DEFAULT_RULES: tuple[GroupRule, ...] = (
    GroupRule(r"initiat|\bstart|\bbegin", "Initiation", "Initiation"),
    GroupRule(r"plan|design|prepar", "Planning", "Planning"),
    GroupRule(r"submi|review|select", "Selection", "Selection"),
    GroupRule(r"execut|implement|complet|conduct", "Execution", "Execution"),
    GroupRule(r"approv|closure|final|decision", "Closure", "Closure"),
)


class GroupingStrategy(Protocol):
    """Assigns ungrouped tasks to synthetic group ids; tasks left out stay roots."""

    def assign(self, tasks: Sequence[Task]) -> dict[str, GroupRule]:
        ...


class NamePatternGrouping:
    """First matching rule wins; matching is case-insensitive."""

    def __init__(self, rules: Iterable[GroupRule] = DEFAULT_RULES) -> None:
        self.rules = tuple(rules)

    def assign(self, tasks: Sequence[Task]) -> dict[str, GroupRule]:
        assignments: dict[str, GroupRule] = {}
        for task in tasks:
            for rule in self.rules:
                if rule.matches(task.name):
                    assignments[task.id] = rule
                    break
        return assignments
