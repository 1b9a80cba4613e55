"""
Read-only projections of the task collection.

Every function here is a pure function of (tasks, now, controls): it never
mutates the tasks it is given and returns the same result when called
again on an unchanged collection.
"""

import unicodedata
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, NamedTuple, Optional

from taskcache.models import Task

DUE_SOON_HOURS = 48


class FilterStatus(str, Enum):
    ALL = "all"
    ACTIVE = "active"
    COMPLETED = "completed"


class SortBy(str, Enum):
    DATE = "date"
    PRIORITY = "priority"
    TITLE = "title"


class UrgencyBucket(str, Enum):
    OVERDUE = "overdue"
    DUE_TODAY = "dueToday"
    DUE_SOON = "dueSoon"


class DueStatus(str, Enum):
    OVERDUE = "overdue"
    DUE_SOON = "due_soon"
    OK = "ok"


@dataclass(frozen=True)
class TaskSummary:
    total: int
    completed: int
    pending: int
    overdue: int


class UrgentGroup(NamedTuple):
    bucket: UrgencyBucket
    tasks: list[Task]


def local_now() -> datetime:
    return datetime.now().astimezone()


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def _align(value: datetime, now: datetime) -> datetime:
    """Make value comparable with now (naive values are taken as local time)."""
    if now.tzinfo is None and value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    if now.tzinfo is not None and value.tzinfo is None:
        return value.replace(tzinfo=now.tzinfo)
    return value


def is_overdue(task: Task, now: datetime) -> bool:
    """Incomplete and due before the start of today."""
    if task.completed or task.due_date is None:
        return False
    return _align(task.due_date, now) < start_of_day(now)


def summarize(tasks: Iterable[Task], now: Optional[datetime] = None) -> TaskSummary:
    now = now or local_now()
    tasks = list(tasks)
    completed = sum(1 for task in tasks if task.completed)
    return TaskSummary(
        total=len(tasks),
        completed=completed,
        pending=len(tasks) - completed,
        overdue=sum(1 for task in tasks if is_overdue(task, now)),
    )


def matches_search(task: Task, search: str) -> bool:
    if not search.strip():
        return True
    term = search.lower()
    if term in task.title.lower():
        return True
    return task.description is not None and term in task.description.lower()


def matches_status(task: Task, status: FilterStatus) -> bool:
    if status is FilterStatus.ACTIVE:
        return not task.completed
    if status is FilterStatus.COMPLETED:
        return task.completed
    return True


def title_sort_key(title: str) -> str:
    # Accent- and case-insensitive ordering
    decomposed = unicodedata.normalize("NFKD", title)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.casefold()


def created_sort_key(task: Task) -> datetime:
    # Naive timestamps are read as local time so they compare with aware ones
    created_at = task.created_at
    if created_at.tzinfo is None:
        return created_at.astimezone()
    return created_at


def filter_and_sort(
    tasks: Iterable[Task],
    search: str = "",
    status: FilterStatus | str = FilterStatus.ALL,
    sort_by: SortBy | str = SortBy.DATE,
) -> list[Task]:
    status = FilterStatus(status)
    sort_by = SortBy(sort_by)

    selected = [
        task
        for task in tasks
        if matches_search(task, search) and matches_status(task, status)
    ]

    if sort_by is SortBy.DATE:
        return sorted(selected, key=created_sort_key, reverse=True)
    if sort_by is SortBy.PRIORITY:
        return sorted(selected, key=lambda task: task.priority.rank, reverse=True)
    return sorted(selected, key=lambda task: title_sort_key(task.title))


def urgency_bucket(
    task: Task, now: datetime, due_soon_hours: int = DUE_SOON_HOURS
) -> UrgencyBucket | None:
    if task.completed or task.due_date is None:
        return None

    due = _align(task.due_date, now)
    today = start_of_day(now)
    tomorrow = today + timedelta(days=1)

    if due < today:
        return UrgencyBucket.OVERDUE
    if due < tomorrow:
        return UrgencyBucket.DUE_TODAY
    if due <= now + timedelta(hours=due_soon_hours):
        return UrgencyBucket.DUE_SOON
    return None


def group_urgent_tasks(
    tasks: Iterable[Task],
    now: Optional[datetime] = None,
    due_soon_hours: int = DUE_SOON_HOURS,
    exclude_ids: Iterable[int] = (),
) -> list[UrgentGroup]:
    """
    Partition incomplete tasks with a due date into urgency buckets.

    Groups come back in overdue, due today, due soon order; empty groups
    are omitted, as are tasks whose ids are in exclude_ids.
    """
    now = now or local_now()
    excluded = set(exclude_ids)
    buckets: dict[UrgencyBucket, list[Task]] = {bucket: [] for bucket in UrgencyBucket}

    for task in tasks:
        if task.id in excluded:
            continue
        bucket = urgency_bucket(task, now, due_soon_hours)
        if bucket is not None:
            buckets[bucket].append(task)

    return [UrgentGroup(bucket, members) for bucket, members in buckets.items() if members]


def due_date_status(
    task: Task, now: Optional[datetime] = None, due_soon_hours: int = DUE_SOON_HOURS
) -> DueStatus | None:
    """Badge state for a single task card; None when no badge applies."""
    if task.completed or task.due_date is None:
        return None

    now = now or local_now()
    due = _align(task.due_date, now)
    if due < now:
        return DueStatus.OVERDUE

    hours_left = int((due - now).total_seconds() // 3600)
    if hours_left <= due_soon_hours:
        return DueStatus.DUE_SOON
    return DueStatus.OK
