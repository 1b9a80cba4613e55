import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx

from taskcache.core.config import Settings, get_settings
from taskcache.core.errors import SessionClosedError
from taskcache.services.gateway import HttpTaskGateway
from taskcache.services.task_service import TaskService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def open_session(
    token: Optional[str],
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AsyncIterator[TaskService]:
    """
    Task cache for one authenticated session.

    The collection is populated on entry and discarded on exit (logout).
    Without a token no cache is built.
    """
    if not token:
        raise SessionClosedError("No authenticated session")

    settings = settings or get_settings()
    gateway = HttpTaskGateway(token, settings=settings, transport=transport)
    service = TaskService(gateway, settings=settings)
    try:
        await service.load()
        logger.info("Task session opened")
        yield service
    finally:
        await service.close()
        await gateway.aclose()
