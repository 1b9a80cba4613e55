import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from pydantic import ValidationError

from taskcache.cache.activity import ActivityView
from taskcache.cache.mutations import FailureListener, OptimisticMutationEngine
from taskcache.cache.store import TaskStore
from taskcache.core.config import Settings, get_settings
from taskcache.core.errors import (
    SessionClosedError,
    SessionExpiredError,
    TaskValidationError,
)
from taskcache.models import ActivityLogEntry, Task, TaskCreate, TaskUpdate
from taskcache.services import similarity, views
from taskcache.services.gateway import TaskGateway

logger = logging.getLogger(__name__)


@dataclass
class CreateOutcome:
    """Result of submit_create: either the created task or a duplicate warning."""

    task: Optional[Task] = None
    similar: list[Task] = field(default_factory=list)
    pending: Optional[TaskCreate] = None

    @property
    def created(self) -> bool:
        return self.task is not None


def _validate(model, values: Any):
    if isinstance(values, model):
        return values
    try:
        return model.model_validate(values)
    except ValidationError as e:
        raise TaskValidationError(str(e), errors=e.errors()) from e


class TaskService:
    """
    The current user's task list and every operation on it.

    One instance exists per authenticated session and is passed to
    whatever needs it; it owns the collection, the mutation engine, and
    the activity view. Once closed (logout or an expired session) every
    operation raises SessionClosedError.
    """

    def __init__(self, gateway: TaskGateway, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.gateway = gateway
        self.store = TaskStore()
        self.activity_view = ActivityView(
            gateway.list_activity, ttl_seconds=self.settings.activity_ttl_seconds
        )
        self.engine = OptimisticMutationEngine(
            self.store, gateway, activity=self.activity_view
        )
        self.engine.add_refresh_failure_listener(self._on_refresh_failure)
        self.dismissed_ids: set[int] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def tasks(self) -> tuple[Task, ...]:
        self._check_open()
        return self.store.tasks

    def _check_open(self):
        if self._closed:
            raise SessionClosedError()

    # Lifecycle

    async def load(self) -> None:
        self._check_open()
        try:
            await self.engine.load()
        except SessionExpiredError:
            self.expire()
            raise

    def expire(self) -> None:
        """Discard all session state; used on logout and on 401."""
        if self._closed:
            return
        self._closed = True
        self.engine.close()
        self.store.clear()
        self.activity_view.invalidate()
        self.dismissed_ids.clear()
        logger.info("Task session closed")

    async def close(self) -> None:
        self.expire()
        await self.engine.settle()

    def _on_refresh_failure(self, error: Exception) -> None:
        if isinstance(error, SessionExpiredError):
            self.expire()

    def on_failure(self, listener: FailureListener) -> None:
        """Register a callback for failed mutations (e.g. a toast)."""
        self.engine.add_failure_listener(listener)

    async def settle(self) -> None:
        await self.engine.settle()

    async def _run(self, operation):
        try:
            return await operation
        except Exception as e:
            if isinstance(getattr(e, "cause", None), SessionExpiredError):
                self.expire()
            raise

    # Writes

    def find_similar(self, title: str) -> list[Task]:
        self._check_open()
        return similarity.find_similar_tasks(
            title,
            self.store.tasks,
            min_containment_length=self.settings.similarity_min_containment_length,
            word_overlap_threshold=self.settings.similarity_word_overlap_threshold,
        )

    async def submit_create(self, values: Any, force: bool = False) -> CreateOutcome:
        """
        Create a task unless its title looks like a duplicate.

        When similar tasks exist and force is False nothing is created; the
        outcome carries the similar tasks and the pending values so the
        caller can confirm with force=True.
        """
        self._check_open()
        fields = _validate(TaskCreate, values)

        if not force:
            similar = self.find_similar(fields.title)
            if similar:
                logger.info(f"Create held back: {len(similar)} similar task(s)")
                return CreateOutcome(similar=similar, pending=fields)

        task = await self.create(fields)
        return CreateOutcome(task=task)

    async def create(self, values: Any) -> Task:
        self._check_open()
        fields = _validate(TaskCreate, values)
        return await self._run(self.engine.create(fields))

    async def update(self, task_id: int, values: Any) -> None:
        self._check_open()
        changes = _validate(TaskUpdate, values)
        await self._run(self.engine.update(task_id, changes))

    async def toggle(self, task_id: int) -> None:
        self._check_open()
        await self._run(self.engine.toggle(task_id))

    async def delete(self, task_id: int) -> None:
        self._check_open()
        await self._run(self.engine.delete(task_id))

    # Reads

    def summary(self, now: Optional[datetime] = None) -> views.TaskSummary:
        return views.summarize(self.tasks, now)

    def visible_tasks(
        self,
        search: str = "",
        status: views.FilterStatus | str = views.FilterStatus.ALL,
        sort_by: views.SortBy | str = views.SortBy.DATE,
    ) -> list[Task]:
        return views.filter_and_sort(self.tasks, search, status, sort_by)

    def urgent_groups(self, now: Optional[datetime] = None) -> list[views.UrgentGroup]:
        return views.group_urgent_tasks(
            self.tasks,
            now,
            due_soon_hours=self.settings.due_soon_hours,
            exclude_ids=self.dismissed_ids,
        )

    def notification_count(self, now: Optional[datetime] = None) -> int:
        return sum(len(group.tasks) for group in self.urgent_groups(now))

    def due_status(
        self, task: Task, now: Optional[datetime] = None
    ) -> views.DueStatus | None:
        return views.due_date_status(task, now, self.settings.due_soon_hours)

    def dismiss_notification(self, task_id: int) -> None:
        self._check_open()
        self.dismissed_ids.add(task_id)

    def dismiss_all_notifications(self, now: Optional[datetime] = None) -> None:
        for group in self.urgent_groups(now):
            self.dismissed_ids.update(task.id for task in group.tasks)

    async def activity(self) -> list[ActivityLogEntry]:
        self._check_open()
        try:
            return await self.activity_view.get()
        except SessionExpiredError:
            self.expire()
            raise
