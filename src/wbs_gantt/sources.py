from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Protocol

from .parse_tasks import load_tasks
from .task_models import Task

logger = logging.getLogger(__name__)


class TaskSource(Protocol):
    """Data-access collaborator delivering whole snapshots of task records."""

    async def fetch_tasks(self, project_id: str | None = None) -> list[Task]:
        ...

    async def refresh(self, project_id: str | None = None) -> list[Task]:
        ...


def filter_by_project(tasks: Iterable[Task], project_id: str | None) -> list[Task]:
    if project_id is None:
        return list(tasks)
    return [task for task in tasks if task.project_id == project_id]


class StaticTaskSource:
    """In-memory source, mostly useful for tests and embedding."""

    def __init__(self, tasks: Iterable[Task] = ()) -> None:
        self.tasks = list(tasks)

    async def fetch_tasks(self, project_id: str | None = None) -> list[Task]:
        return filter_by_project(self.tasks, project_id)

    async def refresh(self, project_id: str | None = None) -> list[Task]:
        return filter_by_project(self.tasks, project_id)


class YamlTaskSource:
    """
    File-backed source.

    fetch_tasks() parses the file once and serves later calls from memory;
    refresh() always re-reads it.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self._cached: list[Task] | None = None

    async def fetch_tasks(self, project_id: str | None = None) -> list[Task]:
        if self._cached is None:
            self._cached = await self._read()
        return filter_by_project(self._cached, project_id)

    async def refresh(self, project_id: str | None = None) -> list[Task]:
        self._cached = await self._read()
        return filter_by_project(self._cached, project_id)

    async def _read(self) -> list[Task]:
        tasks = await asyncio.to_thread(load_tasks, self.path)
        logger.debug("Read %d task record(s) from %s", len(tasks), self.path)
        return tasks
