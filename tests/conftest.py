"""
Shared fixtures: a scripted in-memory gateway for engine/service tests and
a FastAPI fake of the task REST API for HttpTaskGateway tests.
"""

import asyncio
from datetime import datetime, timezone
from itertools import count
from typing import Optional

import pytest
from fastapi import APIRouter, FastAPI, Header, HTTPException, status

from taskcache.core.config import Settings
from taskcache.core.errors import GatewayError
from taskcache.models import (
    ActivityAction,
    ActivityLogEntry,
    Priority,
    Task,
    TaskCreate,
    TaskUpdate,
)
from taskcache.services.task_service import TaskService

TOKEN = "test-token"


def make_task(id: int, title: str, **fields) -> Task:
    fields.setdefault("created_at", datetime(2024, 1, 1, tzinfo=timezone.utc))
    return Task(id=id, title=title, **fields)


class FakeGateway:
    """
    In-memory stand-in for the remote task API.

    fail(op, exc) makes the next call of op raise exc; hold(op) makes the
    next call of op wait until the returned event is set, so tests can
    observe the collection while the request is in flight.
    """

    def __init__(self, tasks=()):
        self.tasks: dict[int, Task] = {task.id: task for task in tasks}
        self.activity: list[ActivityLogEntry] = []
        self.calls: list[tuple] = []
        self._ids = count(max(self.tasks, default=0) + 1)
        self._activity_ids = count(1)
        self._failures: dict[str, list[Exception]] = {}
        self._holds: dict[str, list[asyncio.Event]] = {}

    def fail(self, op: str, exc: Optional[Exception] = None) -> None:
        self._failures.setdefault(op, []).append(exc or GatewayError("boom", 500))

    def hold(self, op: str) -> asyncio.Event:
        event = asyncio.Event()
        self._holds.setdefault(op, []).append(event)
        return event

    async def _enter(self, op: str, *args) -> None:
        self.calls.append((op, *args))
        holds = self._holds.get(op)
        if holds:
            await holds.pop(0).wait()
        failures = self._failures.get(op)
        if failures:
            raise failures.pop(0)

    def _log(self, action: ActivityAction, task: Task) -> None:
        self.activity.append(
            ActivityLogEntry(
                id=next(self._activity_ids),
                user_id=1,
                action=action,
                task_id=task.id,
                task_title=task.title,
                task_description=task.description,
                task_due_date=task.due_date,
                task_completed=task.completed,
                created_at=datetime.now(timezone.utc),
            )
        )

    async def list(self):
        await self._enter("list")
        return sorted(self.tasks.values(), key=lambda task: task.created_at, reverse=True)

    async def create(self, fields: TaskCreate) -> Task:
        await self._enter("create", fields)
        task = Task(
            id=next(self._ids),
            title=fields.title,
            description=fields.description,
            priority=fields.priority,
            due_date=fields.due_date,
            created_at=datetime.now(timezone.utc),
            user_id=1,
        )
        self.tasks[task.id] = task
        self._log(ActivityAction.CREATED, task)
        return task

    async def update(self, task_id: int, changes: TaskUpdate) -> None:
        await self._enter("update", task_id, changes)
        if task_id not in self.tasks:
            raise GatewayError("Task not found", 404)
        values = changes.changes()
        task = self.tasks[task_id].model_copy(update=values)
        self.tasks[task_id] = task
        completing = values.get("completed") is True and len(values) == 1
        self._log(ActivityAction.COMPLETED if completing else ActivityAction.UPDATED, task)

    async def delete(self, task_id: int) -> None:
        await self._enter("delete", task_id)
        if task_id not in self.tasks:
            raise GatewayError("Task not found", 404)
        self._log(ActivityAction.DELETED, self.tasks.pop(task_id))

    async def list_activity(self):
        await self._enter("list_activity")
        return list(reversed(self.activity))


@pytest.fixture
def settings():
    return Settings(api_url="http://testserver", activity_ttl_seconds=60)


@pytest.fixture
def gateway():
    return FakeGateway(
        [
            make_task(1, "Buy milk", created_at=datetime(2024, 1, 1, tzinfo=timezone.utc)),
            make_task(
                2,
                "Submit report",
                priority=Priority.HIGH,
                created_at=datetime(2024, 1, 2, tzinfo=timezone.utc),
            ),
        ]
    )


@pytest.fixture
async def service(gateway, settings):
    service = TaskService(gateway, settings=settings)
    await service.load()
    yield service
    await service.close()


# Fake REST API


def build_fake_api(tasks: Optional[list[dict]] = None) -> FastAPI:
    db: dict[int, dict] = {task["id"]: dict(task) for task in tasks or []}
    activity: list[dict] = []
    ids = count(max(db, default=0) + 1)

    def authorize(authorization: Optional[str]):
        if authorization != f"Bearer {TOKEN}":
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    router = APIRouter(prefix="/tasks", tags=["tasks"])

    @router.get("")
    async def get_tasks(authorization: Optional[str] = Header(default=None)):
        authorize(authorization)
        return sorted(db.values(), key=lambda task: task["createdAt"], reverse=True)

    @router.post("", status_code=status.HTTP_201_CREATED)
    async def create_task(payload: dict, authorization: Optional[str] = Header(default=None)):
        authorize(authorization)
        if not payload.get("title", "").strip():
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Title is required")
        task = {
            "id": next(ids),
            "title": payload["title"].strip(),
            "description": payload.get("description"),
            "completed": False,
            "priority": payload.get("priority") or "medium",
            "dueDate": payload.get("dueDate"),
            "createdAt": datetime.now(timezone.utc).isoformat(),
            "userId": 1,
        }
        db[task["id"]] = task
        activity.append({"action": "created", "task": dict(task)})
        return task

    @router.put("/{task_id}")
    async def update_task(
        task_id: int, payload: dict, authorization: Optional[str] = Header(default=None)
    ):
        authorize(authorization)
        if task_id not in db:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Task with id {task_id} not found",
            )
        db[task_id].update(payload)
        activity.append({"action": "updated", "task": dict(db[task_id])})
        return db[task_id]

    @router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_task(task_id: int, authorization: Optional[str] = Header(default=None)):
        authorize(authorization)
        if task_id not in db:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Task with id {task_id} not found",
            )
        activity.append({"action": "deleted", "task": db.pop(task_id)})

    app = FastAPI(title="Fake Task API")
    app.include_router(router)

    @app.get("/activity")
    async def get_activity(authorization: Optional[str] = Header(default=None)):
        authorize(authorization)
        return [
            {
                "id": index,
                "userId": 1,
                "action": item["action"],
                "taskId": item["task"]["id"],
                "taskTitle": item["task"]["title"],
                "taskDescription": item["task"]["description"],
                "taskDueDate": item["task"]["dueDate"],
                "taskCompleted": item["task"]["completed"],
                "createdAt": datetime.now(timezone.utc).isoformat(),
            }
            for index, item in reversed(list(enumerate(activity, start=1)))
        ]

    app.state.db = db
    return app


@pytest.fixture
def fake_api():
    return build_fake_api(
        [
            {
                "id": 1,
                "title": "Buy milk",
                "description": None,
                "completed": False,
                "priority": "low",
                "dueDate": None,
                "createdAt": "2024-01-01T09:00:00.000Z",
                "userId": 1,
            }
        ]
    )
