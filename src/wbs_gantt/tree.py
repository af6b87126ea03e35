from __future__ import annotations

from typing import AbstractSet, Iterable, List, Sequence

from .task_models import Task, TreeNode, VisibleRow


def sibling_sort_key(task: Task) -> tuple[int, int, str]:
    """
    Total order among siblings.

    Tasks with a sort_key come first in ascending key order; ties and tasks
    without a key are ordered by id.
    """
    if task.sort_key is None:
        return (1, 0, task.id)
    return (0, task.sort_key, task.id)


def children_index(tasks: Sequence[Task]) -> dict[str | None, list[Task]]:
    """Map each parent id (None for roots) to its ordered children."""

    ids = {task.id for task in tasks}
    index: dict[str | None, list[Task]] = {}
    for task in tasks:
        parent = task.parent_id if task.parent_id in ids and task.parent_id != task.id else None
        index.setdefault(parent, []).append(task)
    for siblings in index.values():
        siblings.sort(key=sibling_sort_key)
    return index


def to_tree(tasks: Sequence[Task]) -> list[TreeNode]:
    """
    Build root nodes with recursive children from a repaired working set.

    Tasks whose parent is not present are treated as roots. Nodes already
    placed are never revisited, so unrepaired cyclic input cannot recurse
    forever; tasks only reachable through a cycle are left out.
    """

    index = children_index(tasks)
    placed: set[str] = set()

    def visit(task: Task, depth: int) -> TreeNode:
        placed.add(task.id)
        node = TreeNode(task=task, depth=depth)
        for child in index.get(task.id, []):
            if child.id not in placed:
                node.children.append(visit(child, depth + 1))
        return node

    return [visit(task, 0) for task in index.get(None, [])]


def flatten(tree: Sequence[TreeNode], expanded: AbstractSet[str]) -> list[TreeNode]:
    """
    Depth-first display order: parents before children.

    Roots are always emitted; a node's children are emitted only while the
    node's id is in `expanded`.
    """

    rows: List[TreeNode] = []

    def append(node: TreeNode) -> None:
        rows.append(node)
        if node.id in expanded:
            for child in node.children:
                append(child)

    for root in tree:
        append(root)
    return rows


def to_visible_rows(nodes: Iterable[TreeNode], expanded: AbstractSet[str]) -> list[VisibleRow]:
    return [
        VisibleRow(
            task=node.task,
            depth=node.depth,
            has_children=bool(node.children),
            is_expanded=bool(node.children) and node.id in expanded,
        )
        for node in nodes
    ]


def descendant_ids(tasks: Sequence[Task], task_id: str) -> set[str]:
    """All ids below task_id, following parent references."""

    index = children_index(tasks)
    found: set[str] = set()
    pending = [task_id]
    while pending:
        current = pending.pop()
        for child in index.get(current, []):
            if child.id not in found and child.id != task_id:
                found.add(child.id)
                pending.append(child.id)
    return found


def toggle(task_id: str, expanded: AbstractSet[str], tasks: Sequence[Task]) -> frozenset[str]:
    """
    Flip one node's expansion.

    Collapsing removes the node and every descendant, so a later re-expand
    starts with all children collapsed. Expanding adds only the node itself.
    """

    if task_id in expanded:
        return frozenset(expanded) - {task_id} - descendant_ids(tasks, task_id)
    return frozenset(expanded) | {task_id}
