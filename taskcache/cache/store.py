import logging
from typing import Callable, Iterable

from taskcache.models import Task

logger = logging.getLogger(__name__)

Listener = Callable[[tuple[Task, ...]], None]


class TaskStore:
    """
    Holder of the single in-memory task collection for a session.

    The collection is an immutable tuple that is replaced wholesale on
    every transition (optimistic apply, rollback, authoritative refresh),
    so a reader always sees a complete state. Task ids are unique within
    it at all times.
    """

    def __init__(self, tasks: Iterable[Task] = ()):
        self._tasks: tuple[Task, ...] = ()
        self._listeners: list[Listener] = []
        self.version = 0
        self.replace(tasks)

    @property
    def tasks(self) -> tuple[Task, ...]:
        return self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self):
        return iter(self._tasks)

    def get(self, task_id: int) -> Task | None:
        for task in self._tasks:
            if task.id == task_id:
                return task
        return None

    def snapshot(self) -> tuple[Task, ...]:
        """Copy of the collection by value, for rollback."""
        return tuple(task.model_copy(deep=True) for task in self._tasks)

    def replace(self, tasks: Iterable[Task]) -> None:
        tasks = tuple(tasks)
        ids = [task.id for task in tasks]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Duplicate task ids in collection: {ids}")

        self._tasks = tasks
        self.version += 1
        logger.debug(f"Collection replaced (version={self.version}, size={len(tasks)})")

        for listener in list(self._listeners):
            listener(tasks)

    def clear(self) -> None:
        self.replace(())

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener called with every new collection; returns unsubscribe."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
