import asyncio
import itertools
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional

from taskcache.cache.activity import ActivityView
from taskcache.cache.store import TaskStore
from taskcache.core.errors import MutationError, TaskNotFoundError, TaskValidationError
from taskcache.models import Task, TaskCreate, TaskUpdate, get_utc_now
from taskcache.services.gateway import TaskGateway

logger = logging.getLogger(__name__)

Apply = Callable[[tuple[Task, ...]], Iterable[Task]]
FailureListener = Callable[[MutationError], None]
RefreshFailureListener = Callable[[Exception], None]


class ProvisionalIds:
    """
    Ids for optimistic inserts before the server assigns a real one.

    Server ids are positive integers, so a decreasing negative counter
    never collides with a real id or with another provisional id.
    """

    def __init__(self):
        self._counter = itertools.count(-1, -1)

    def next(self) -> int:
        return next(self._counter)


class OptimisticMutationEngine:
    """
    Applies every write to the shared collection before the server answers.

    Each mutation follows the same protocol:

    1. Snapshot the collection by value.
    2. Install the optimistic state.
    3. Submit the request through the gateway.
    4. On success: invalidate the activity view.
       On failure: restore the snapshot and raise MutationError.
    5. Either way, schedule an authoritative refresh.

    Concurrent mutations each roll back to their own snapshot, which can
    drop another mutation's optimistic change from view. The refresh every
    settled mutation schedules restores server truth.
    """

    def __init__(
        self,
        store: TaskStore,
        gateway: TaskGateway,
        activity: Optional[ActivityView] = None,
    ):
        self.store = store
        self.gateway = gateway
        self.activity = activity
        self.provisional_ids = ProvisionalIds()

        self._refreshes: set[asyncio.Task] = set()
        self._closed = False
        self._failure_listeners: list[FailureListener] = []
        self._refresh_failure_listeners: list[RefreshFailureListener] = []

        self.stats = {
            "applied": 0,
            "committed": 0,
            "rolled_back": 0,
            "refreshes": 0,
            "refresh_failures": 0,
        }

    def add_failure_listener(self, listener: FailureListener) -> None:
        self._failure_listeners.append(listener)

    def add_refresh_failure_listener(self, listener: RefreshFailureListener) -> None:
        self._refresh_failure_listeners.append(listener)

    # Authoritative state

    async def load(self) -> None:
        """Populate the collection from the server; errors propagate."""
        tasks = await self.gateway.list()
        self.store.replace(tasks)
        logger.info(f"Loaded {len(tasks)} tasks")

    async def refresh(self) -> bool:
        """
        Replace the collection with the server's list.

        A failed refresh is soft: the collection keeps its last known state
        and False is returned.
        """
        try:
            tasks = await self.gateway.list()
        except Exception as e:
            self.stats["refresh_failures"] += 1
            logger.warning(f"Refresh failed, keeping last known state: {e}")
            for listener in list(self._refresh_failure_listeners):
                try:
                    listener(e)
                except Exception:
                    logger.exception("Refresh failure listener raised")
            return False

        if self._closed:
            return False
        self.store.replace(tasks)
        self.stats["refreshes"] += 1
        logger.debug(f"Refresh applied ({len(tasks)} tasks)")
        return True

    def schedule_refresh(self) -> Optional[asyncio.Task]:
        """Start a background refresh, superseding any still in flight."""
        self.cancel_refreshes()
        if self._closed:
            return None
        task = asyncio.get_running_loop().create_task(self.refresh())
        self._refreshes.add(task)
        task.add_done_callback(self._refreshes.discard)
        return task

    def cancel_refreshes(self) -> None:
        for task in list(self._refreshes):
            task.cancel()

    def close(self) -> None:
        """Stop scheduling refreshes and ignore late mutation results."""
        self._closed = True
        self.cancel_refreshes()

    @property
    def refresh_pending(self) -> bool:
        return any(not task.done() for task in self._refreshes)

    async def settle(self) -> None:
        """Wait until no scheduled refresh is in flight."""
        while True:
            pending = [task for task in self._refreshes if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # Mutation protocol

    async def _mutate(
        self,
        action: str,
        task_id: Optional[int],
        apply: Apply,
        submit: Callable[[], Awaitable[Any]],
        confirm: Optional[Callable[[Any], None]] = None,
    ) -> Any:
        # A refresh started before this change would overwrite it on arrival
        self.cancel_refreshes()

        snapshot = self.store.snapshot()
        self.store.replace(apply(self.store.tasks))
        self.stats["applied"] += 1
        logger.debug(f"Optimistic {action} applied to task {task_id}")

        try:
            result = await submit()
        except asyncio.CancelledError:
            self._rollback(snapshot, action, task_id, "cancelled")
            raise
        except Exception as e:
            self._rollback(snapshot, action, task_id, str(e))
            error = MutationError(action, task_id, e)
            self._notify_failure(error)
            raise error from e

        if confirm is not None and not self._closed:
            confirm(result)
        self.stats["committed"] += 1
        if self.activity is not None:
            self.activity.invalidate()
        self.schedule_refresh()
        return result

    def _rollback(self, snapshot, action, task_id, reason) -> None:
        # A closed session stays empty
        if not self._closed:
            self.store.replace(snapshot)
        self.stats["rolled_back"] += 1
        logger.warning(f"Rolled back {action} of task {task_id}: {reason}")
        self.schedule_refresh()

    def _notify_failure(self, error: MutationError) -> None:
        for listener in list(self._failure_listeners):
            try:
                listener(error)
            except Exception:
                logger.exception("Mutation failure listener raised")

    def _require(self, task_id: int) -> Task:
        task = self.store.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        if task.is_provisional:
            raise TaskValidationError(f"Task {task_id} is still being created")
        return task

    # Operations

    async def create(self, fields: TaskCreate) -> Task:
        provisional = Task(
            id=self.provisional_ids.next(),
            title=fields.title,
            description=fields.description,
            priority=fields.priority,
            due_date=fields.due_date,
            completed=False,
            created_at=get_utc_now(),
        )

        def apply(tasks):
            return (*tasks, provisional)

        def confirm(created: Task):
            tasks = self.store.tasks
            if any(task.id == created.id for task in tasks):
                # A refresh already brought the real task in
                tasks = [task for task in tasks if task.id != provisional.id]
            else:
                tasks = [created if task.id == provisional.id else task for task in tasks]
            self.store.replace(tasks)

        return await self._mutate(
            "create",
            provisional.id,
            apply,
            lambda: self.gateway.create(fields),
            confirm=confirm,
        )

    async def update(self, task_id: int, changes: TaskUpdate) -> None:
        self._require(task_id)
        values = changes.changes()

        def apply(tasks):
            return tuple(
                task.model_copy(update=values) if task.id == task_id else task
                for task in tasks
            )

        await self._mutate(
            "update", task_id, apply, lambda: self.gateway.update(task_id, changes)
        )

    async def toggle(self, task_id: int) -> None:
        """Flip only the completed flag of one task."""
        current = self._require(task_id)
        changes = TaskUpdate(completed=not current.completed)

        def apply(tasks):
            return tuple(
                task.model_copy(update={"completed": changes.completed})
                if task.id == task_id
                else task
                for task in tasks
            )

        await self._mutate(
            "toggle", task_id, apply, lambda: self.gateway.update(task_id, changes)
        )

    async def delete(self, task_id: int) -> None:
        self._require(task_id)

        def apply(tasks):
            return tuple(task for task in tasks if task.id != task_id)

        await self._mutate(
            "delete", task_id, apply, lambda: self.gateway.delete(task_id)
        )
