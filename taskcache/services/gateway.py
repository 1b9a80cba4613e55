from __future__ import annotations

import logging
from typing import Optional, Protocol

import httpx

from taskcache.core.config import Settings, get_settings
from taskcache.core.errors import GatewayError, SessionExpiredError
from taskcache.models import ActivityLogEntry, Task, TaskCreate, TaskUpdate

logger = logging.getLogger(__name__)


class TaskGateway(Protocol):
    """Remote operations the cache consumes. Any of them may raise."""

    async def list(self) -> list[Task]: ...

    async def create(self, fields: TaskCreate) -> Task: ...

    async def update(self, task_id: int, changes: TaskUpdate) -> None: ...

    async def delete(self, task_id: int) -> None: ...

    async def list_activity(self) -> list[ActivityLogEntry]: ...


class HttpTaskGateway:
    """
    TaskGateway over the task REST API.

    Every request carries the session's bearer token. Transport errors and
    non-2xx responses surface as GatewayError; a 401 surfaces as
    SessionExpiredError so the owner can tear the session down.
    """

    def __init__(
        self,
        token: str,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = settings or get_settings()
        self._client = httpx.AsyncClient(
            base_url=settings.api_url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=settings.request_timeout_seconds,
            transport=transport,
        )

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.warning(f"{method} {url} rejected with {status_code}")
            if status_code == 401:
                raise SessionExpiredError() from e
            raise GatewayError(
                f"{method} {url} failed with status {status_code}",
                status_code=status_code,
            ) from e
        except httpx.TransportError as e:
            logger.warning(f"{method} {url} transport error: {e}")
            raise GatewayError(f"Cannot reach task API: {e}") from e

    async def list(self) -> list[Task]:
        response = await self._request("GET", "/tasks")
        return [Task.model_validate(item) for item in response.json()]

    async def create(self, fields: TaskCreate) -> Task:
        payload = fields.model_dump(by_alias=True, mode="json")
        response = await self._request("POST", "/tasks", json=payload)
        return Task.model_validate(response.json())

    async def update(self, task_id: int, changes: TaskUpdate) -> None:
        await self._request("PUT", f"/tasks/{task_id}", json=changes.to_payload())

    async def delete(self, task_id: int) -> None:
        await self._request("DELETE", f"/tasks/{task_id}")

    async def list_activity(self) -> list[ActivityLogEntry]:
        response = await self._request("GET", "/activity")
        return [ActivityLogEntry.model_validate(item) for item in response.json()]

    async def aclose(self) -> None:
        await self._client.aclose()
