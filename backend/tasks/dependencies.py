"""Task dependency management.

Contains utilities for:
- detecting circular dependencies (before an edge is added, and across a whole project),
- adding and removing dependency edges,
- keeping a task's blocked ("waiting") status in line with its prerequisites.
"""

import logging
from typing import Dict, List, Mapping, Optional, Sequence

from django.db import IntegrityError, transaction

from .models import STATUS_COMPLETED, STATUS_PENDING, STATUS_WAITING, Task, TaskDependency

logger = logging.getLogger(__name__)


class DependencyError(Exception):
    """Raised when a dependency edge would break a graph rule."""


def would_create_cycle(task_id: int, depends_on_id: int) -> bool:
    """Return True if adding `task_id -> depends_on_id` closes a cycle.

    Walks the existing edges from `depends_on_id`; reaching `task_id` means the
    new edge would make the graph circular.
    """
    if task_id == depends_on_id:
        return True

    visited = set()
    stack = [depends_on_id]
    while stack:
        current = stack.pop()
        if current == task_id:
            return True
        if current in visited:
            continue
        visited.add(current)
        next_ids = TaskDependency.objects.filter(task_id=current).values_list("depends_on_task_id", flat=True)
        stack.extend(n for n in next_ids if n not in visited)
    return False


def detect_circular_dependencies(graph: Mapping[int, Sequence[int]]) -> List[List[int]]:
    """Detect cycles in a dependency graph.

    Args:
        graph: mapping of task id -> ids of the tasks it depends on.

    Returns:
        A list of cycles. Each cycle is the path closing on its first node, rotated
        to start at its smallest id (e.g. [1, 2, 3, 1]). Each cycle is reported once.
    """
    visited = set()            # permanently visited nodes
    stack: List[int] = []      # current DFS path
    cycles: List[List[int]] = []
    seen_cycles = set()

    def dfs(node: int) -> None:
        if node in stack:
            cycle = stack[stack.index(node):]
            min_idx = cycle.index(min(cycle))
            ordered = cycle[min_idx:] + cycle[:min_idx]
            key = tuple(ordered)
            if key not in seen_cycles:
                seen_cycles.add(key)
                cycles.append(ordered + [ordered[0]])
            return
        if node in visited:
            return

        visited.add(node)
        stack.append(node)
        for neighbour in graph.get(node, []):
            dfs(neighbour)
        stack.pop()

    for n in sorted(graph):
        if n not in visited:
            dfs(n)

    return cycles


def project_dependency_graph(project_id: int) -> Dict[int, List[int]]:
    """Adjacency map of every dependency edge between tasks of a project."""
    graph: Dict[int, List[int]] = {
        pk: [] for pk in Task.objects.filter(project_id=project_id).values_list("pk", flat=True)
    }
    edges = TaskDependency.objects.filter(task__project_id=project_id).order_by("pk")
    for task_id, depends_on_id in edges.values_list("task_id", "depends_on_task_id"):
        graph.setdefault(task_id, []).append(depends_on_id)
    return graph


def is_task_blocked(task: Task) -> bool:
    """A task is blocked while any of its prerequisites is not completed."""
    return task.dependencies.exclude(depends_on_task__status=STATUS_COMPLETED).exists()


def refresh_blocking_status(task: Task) -> str:
    """Move a task into or out of the waiting state. Returns the resulting status."""
    blocked = is_task_blocked(task)
    new_status = task.status
    if blocked and task.status not in (STATUS_WAITING, STATUS_COMPLETED):
        new_status = STATUS_WAITING
    elif not blocked and task.status == STATUS_WAITING:
        new_status = STATUS_PENDING

    if new_status != task.status:
        logger.info("task %s status %s -> %s", task.pk, task.status, new_status)
        task.status = new_status
        task.save(update_fields=["status"])
    return task.status


def _edge_exists(task: Task, depends_on: Task) -> bool:
    return TaskDependency.objects.filter(task=task, depends_on_task=depends_on).exists()


def add_dependency(task: Task, depends_on: Task, created_by=None,
                   dependency_type: str = TaskDependency.FINISH_TO_START) -> TaskDependency:
    """Create the edge `task -> depends_on` and re-evaluate whether `task` is blocked.

    Raises:
        DependencyError: self dependency, tasks in different projects, a cycle,
            or an edge that already exists.
    """
    if task.pk == depends_on.pk:
        raise DependencyError("A task cannot depend on itself.")
    if task.project_id != depends_on.project_id:
        raise DependencyError("Tasks must belong to the same project.")

    with transaction.atomic():
        if _edge_exists(task, depends_on):
            raise DependencyError("Dependency already exists.")
        if would_create_cycle(task.pk, depends_on.pk):
            logger.warning("rejected circular dependency %s -> %s", task.pk, depends_on.pk)
            raise DependencyError("Circular dependency detected. Cannot create this dependency.")

        try:
            with transaction.atomic():
                edge = TaskDependency.objects.create(
                    task=task,
                    depends_on_task=depends_on,
                    dependency_type=dependency_type,
                    created_by=created_by,
                )
        except IntegrityError:
            # a concurrent request created the same edge
            raise DependencyError("Dependency already exists.")
        refresh_blocking_status(task)

    logger.info("dependency added: task %s depends on %s", task.pk, depends_on.pk)
    return edge


def remove_dependency(task_id: int, depends_on_id: int) -> bool:
    """Delete an edge; returns False if it did not exist."""
    with transaction.atomic():
        deleted, _ = TaskDependency.objects.filter(task_id=task_id, depends_on_task_id=depends_on_id).delete()
        if not deleted:
            return False
        task: Optional[Task] = Task.objects.filter(pk=task_id).first()
        if task is not None:
            refresh_blocking_status(task)

    logger.info("dependency removed: task %s no longer depends on %s", task_id, depends_on_id)
    return True
