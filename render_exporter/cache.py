"""Resource cache.

Holds the last complete listing of services, Redis and Postgres instances.
Readers never wait: a stale read schedules one background refresh and gets
the current snapshot straight away. A refresh swaps in a whole new snapshot,
so readers see either the old listing or the new one, never a mix.
"""

import asyncio
import logging
import time
from typing import Callable

from render_exporter.models.resource import EMPTY_SNAPSHOT, ResourceSnapshot
from render_exporter.providers.base import BaseProvider

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE = 60 * 60.0  # seconds


async def fetch_snapshot(
    provider: BaseProvider,
    name_filter: str = "",
    clock: Callable[[], float] = time.monotonic,
) -> ResourceSnapshot:
    """List every resource kind concurrently into one snapshot."""
    services, caches, databases = await asyncio.gather(
        provider.list_services(name_filter),
        provider.list_caches(name_filter),
        provider.list_databases(name_filter),
    )
    return ResourceSnapshot(
        services=tuple(services),
        caches=tuple(caches),
        databases=tuple(databases),
        refreshed_at=clock(),
    )


class ResourceCache:
    """Serves resource snapshots and refreshes them when they are too old."""

    def __init__(
        self,
        provider: BaseProvider,
        name_filter: str = "",
        max_age: float = DEFAULT_MAX_AGE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._provider = provider
        self._name_filter = name_filter
        self._max_age = max_age
        self._clock = clock
        self._snapshot: ResourceSnapshot = EMPTY_SNAPSHOT
        self._refresh_task: asyncio.Task | None = None
        self.last_error: BaseException | None = None

    @property
    def snapshot(self) -> ResourceSnapshot:
        return self._snapshot

    @property
    def refreshing(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    def is_stale(self) -> bool:
        refreshed_at = self._snapshot.refreshed_at
        if refreshed_at is None:
            return True
        return self._clock() - refreshed_at > self._max_age

    def get(self) -> ResourceSnapshot:
        """Return the current snapshot, scheduling a refresh if it is stale.

        Must be called from inside the running event loop.
        """
        if self.is_stale() and not self.refreshing:
            self._refresh_task = asyncio.get_running_loop().create_task(
                self._refresh()
            )
        return self._snapshot

    async def refresh(self) -> None:
        """Refresh now, joining a refresh that is already in flight."""
        task = self._refresh_task
        if task is None or task.done():
            task = asyncio.get_running_loop().create_task(self._refresh())
            self._refresh_task = task
        await asyncio.shield(task)

    async def _refresh(self) -> None:
        try:
            snapshot = await fetch_snapshot(
                self._provider, self._name_filter, clock=self._clock
            )
        except Exception as exc:
            # keep serving the previous snapshot; the next stale read retries
            self.last_error = exc
            logger.error("Failed to refresh resources: %s", exc)
            return

        self._snapshot = snapshot
        self.last_error = None
        logger.info(
            "Refreshed resources: %d services, %d caches, %d databases",
            len(snapshot.services),
            len(snapshot.caches),
            len(snapshot.databases),
        )

    async def close(self) -> None:
        task = self._refresh_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._refresh_task = None
