from __future__ import annotations

import unicodedata
from datetime import date
from enum import Enum
from typing import Iterable, List, Union

from pydantic import BaseModel

from taskboard.domain.task_models import Task, TaskPriority, TaskStatus, priority_rank


class TaskFilter(str, Enum):
    all = "all"
    pending = "pending"
    completed = "completed"


class SortKey(str, Enum):
    due_date = "dueDate"
    priority = "priority"
    title = "title"
    created_at = "createdAt"


class TaskStats(BaseModel):
    total: int = 0
    completed: int = 0
    pending: int = 0
    urgent: int = 0


class TaskView(BaseModel):
    tasks: List[Task]
    stats: TaskStats
    filter: TaskFilter
    sort: SortKey


def _coerce(enum_cls, value, fallback):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return fallback


def resolve_filter(value: Union[TaskFilter, str]) -> TaskFilter:
    return _coerce(TaskFilter, value, TaskFilter.all)


def resolve_sort(value: Union[SortKey, str]) -> SortKey:
    # accept python-style names too ("due_date")
    if isinstance(value, str) and value in SortKey.__members__:
        return SortKey[value]
    return _coerce(SortKey, value, SortKey.created_at)


def _title_key(title: str) -> tuple[str, str]:
    folded = unicodedata.normalize("NFKD", title).casefold()
    primary = "".join(ch for ch in folded if not unicodedata.combining(ch))
    return primary, title


def filter_tasks(tasks: Iterable[Task], value: Union[TaskFilter, str]) -> List[Task]:
    selected = resolve_filter(value)
    if selected is TaskFilter.all:
        return list(tasks)
    status = TaskStatus(selected.value)
    return [t for t in tasks if t.status == status]


def sort_tasks(tasks: Iterable[Task], value: Union[SortKey, str]) -> List[Task]:
    """Stable sort; reverse=True keeps equal items in their original order."""
    key = resolve_sort(value)
    if key is SortKey.priority:
        return sorted(tasks, key=lambda t: priority_rank(t.priority), reverse=True)
    if key is SortKey.due_date:
        return sorted(tasks, key=lambda t: (t.due_date is None, t.due_date or date.min))
    if key is SortKey.title:
        return sorted(tasks, key=lambda t: _title_key(t.title))
    return sorted(tasks, key=lambda t: t.created_at, reverse=True)


def compute_stats(tasks: Iterable[Task]) -> TaskStats:
    stats = TaskStats()
    for t in tasks:
        stats.total += 1
        if t.status == TaskStatus.completed:
            stats.completed += 1
        else:
            stats.pending += 1
            # only actionable urgency counts
            if t.priority == TaskPriority.urgent:
                stats.urgent += 1
    return stats


def build_view(
    tasks: Iterable[Task],
    filter_value: Union[TaskFilter, str] = TaskFilter.all,
    sort_value: Union[SortKey, str] = SortKey.due_date,
) -> TaskView:
    everything = list(tasks)
    visible = sort_tasks(filter_tasks(everything, filter_value), sort_value)
    return TaskView(
        tasks=visible,
        stats=compute_stats(everything),
        filter=resolve_filter(filter_value),
        sort=resolve_sort(sort_value),
    )
