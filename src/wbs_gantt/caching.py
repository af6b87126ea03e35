"""Content-keyed caches for derived layout state."""

from __future__ import annotations

import hashlib
from collections import OrderedDict
from typing import AbstractSet, Generic, Hashable, Sequence, TypeVar

from .task_models import Task, TreeNode
from .tree import flatten, to_tree

DEFAULT_POSITION_CACHE_SIZE = 1000

V = TypeVar("V")


def snapshot_key(tasks: Sequence[Task]) -> str:
    """
    Stable digest of a working set's full content.

    Every task field takes part, so a reload that only renames or redates
    tasks still yields a new key. Input order does not affect it.
    """

    digest = hashlib.sha1()
    for task_id, text in sorted((t.id, repr(t)) for t in tasks):
        digest.update(f"{task_id}\x1f{text}\x1e".encode("utf-8"))
    return f"{len(tasks)}_{digest.hexdigest()}"


def expansion_key(expanded: AbstractSet[str]) -> str:
    return "|".join(sorted(expanded))


class DerivedCache:
    """
    Memoizes the tree and its flattened order.

    The tree is keyed by the snapshot digest; the flattened order by the
    snapshot digest plus the sorted expanded ids. invalidate() drops both and
    is called whenever a snapshot is replaced or the expansion set changes.
    """

    def __init__(self) -> None:
        self._tree_key = ""
        self._tree: list[TreeNode] | None = None
        self._flat_key = ""
        self._flat: list[TreeNode] | None = None
        self.tree_builds = 0
        self.flat_builds = 0

    def tree(self, tasks: Sequence[Task], key: str) -> list[TreeNode]:
        if self._tree is None or self._tree_key != key:
            self._tree = to_tree(tasks)
            self._tree_key = key
            self._flat = None
            self._flat_key = ""
            self.tree_builds += 1
        return self._tree

    def flattened(self, tasks: Sequence[Task], key: str, expanded: AbstractSet[str]) -> list[TreeNode]:
        tree = self.tree(tasks, key)
        flat_key = f"{key}_{expansion_key(expanded)}"
        if self._flat is None or self._flat_key != flat_key:
            self._flat = flatten(tree, expanded)
            self._flat_key = flat_key
            self.flat_builds += 1
        return self._flat

    def invalidate(self) -> None:
        self._tree_key = ""
        self._tree = None
        self._flat_key = ""
        self._flat = None


class LRUCache(Generic[V]):
    """Bounded mapping that evicts the least recently used entry."""

    def __init__(self, capacity: int = DEFAULT_POSITION_CACHE_SIZE) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._entries: OrderedDict[Hashable, V] = OrderedDict()

    def get(self, key: Hashable) -> V | None:
        value = self._entries.get(key)
        if value is not None:
            self._entries.move_to_end(key)
        return value

    def put(self, key: Hashable, value: V) -> None:
        self._entries[key] = value
        self._entries.move_to_end(key)
        while len(self._entries) > self.capacity:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
