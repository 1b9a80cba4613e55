import asyncio
import logging
from typing import Awaitable, Callable

from cachetools import TTLCache

from taskcache.models import ActivityLogEntry

logger = logging.getLogger(__name__)

ACTIVITY_KEY = "activity"

Loader = Callable[[], Awaitable[list[ActivityLogEntry]]]


class ActivityView:
    """
    Read-through cache of the current user's activity log.

    The entries are owned by the server; this view only holds the last
    fetched list until it expires or a confirmed mutation invalidates it.
    Concurrent readers of a stale view share one load (per-view lock).
    """

    def __init__(self, loader: Loader, ttl_seconds: int = 60):
        self._loader = loader
        self._cache: TTLCache = TTLCache(maxsize=1, ttl=ttl_seconds)
        self._lock = asyncio.Lock()
        self._generation = 0

        self.stats = {
            "hits": 0,
            "misses": 0,
            "invalidations": 0,
        }

    @property
    def stale(self) -> bool:
        return ACTIVITY_KEY not in self._cache

    async def get(self) -> list[ActivityLogEntry]:
        """Return the cached activity list, loading it on a miss."""
        if ACTIVITY_KEY in self._cache:
            self.stats["hits"] += 1
            logger.debug("Activity cache hit")
            return list(self._cache[ACTIVITY_KEY])

        async with self._lock:
            # Double-check after acquiring lock
            if ACTIVITY_KEY in self._cache:
                self.stats["hits"] += 1
                return list(self._cache[ACTIVITY_KEY])

            self.stats["misses"] += 1
            logger.debug("Loading activity from source")
            generation = self._generation
            entries = await self._loader()
            # An invalidation during the load means the result may predate it
            if generation == self._generation:
                self._cache[ACTIVITY_KEY] = tuple(entries)
            return list(entries)

    def invalidate(self) -> None:
        """Mark the activity list stale; the next read re-fetches it."""
        self._cache.pop(ACTIVITY_KEY, None)
        self._generation += 1
        self.stats["invalidations"] += 1
        logger.debug("Activity view invalidated")

    def get_stats(self) -> dict:
        return {**self.stats, "cached": not self.stale}
