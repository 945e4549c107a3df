"""Tests for the background-refreshed resource cache."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from render_exporter.cache import ResourceCache, fetch_snapshot
from render_exporter.errors import UpstreamCallError
from render_exporter.models.resource import EMPTY_SNAPSHOT, Resource, ResourceKind

WEB = Resource(id="srv-web", name="storefront", kind=ResourceKind.SERVICE)
WEB2 = Resource(id="srv-web2", name="storefront-2", kind=ResourceKind.SERVICE)
REDIS = Resource(id="red-1", name="cache", kind=ResourceKind.CACHE)
PG = Resource(id="dpg-1", name="db", kind=ResourceKind.DATABASE)


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _provider(services=(WEB,), caches=(REDIS,), databases=(PG,)) -> AsyncMock:
    provider = AsyncMock()
    provider.list_services.return_value = list(services)
    provider.list_caches.return_value = list(caches)
    provider.list_databases.return_value = list(databases)
    return provider


async def _drain(cache: ResourceCache) -> None:
    while cache.refreshing:
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_fetch_snapshot_lists_every_kind():
    provider = _provider()
    snapshot = await fetch_snapshot(provider, "prod", clock=lambda: 5.0)

    provider.list_services.assert_awaited_once_with("prod")
    provider.list_caches.assert_awaited_once_with("prod")
    provider.list_databases.assert_awaited_once_with("prod")
    assert snapshot.resources == [WEB, REDIS, PG]
    assert snapshot.refreshed_at == 5.0


@pytest.mark.asyncio
async def test_first_get_serves_empty_snapshot_and_refreshes_once():
    release = asyncio.Event()
    provider = _provider()

    async def slow_services(name_filter):
        await release.wait()
        return [WEB]

    provider.list_services.side_effect = slow_services
    cache = ResourceCache(provider, max_age=60, clock=FakeClock())

    first = cache.get()
    await asyncio.sleep(0)
    second = cache.get()
    for _ in range(5):
        await asyncio.sleep(0)

    assert first is EMPTY_SNAPSHOT
    assert second is EMPTY_SNAPSHOT
    assert provider.list_services.await_count == 1

    release.set()
    await _drain(cache)

    assert cache.get().resources == [WEB, REDIS, PG]
    assert provider.list_services.await_count == 1


@pytest.mark.asyncio
async def test_explicit_refresh_joins_inflight_refresh():
    release = asyncio.Event()
    provider = _provider()

    async def slow_services(name_filter):
        await release.wait()
        return [WEB2]

    provider.list_services.side_effect = slow_services
    cache = ResourceCache(provider, max_age=60, clock=FakeClock())

    cache.get()
    for _ in range(5):
        await asyncio.sleep(0)
    assert cache.refreshing

    joined = asyncio.ensure_future(cache.refresh())
    for _ in range(5):
        await asyncio.sleep(0)
    assert not joined.done()

    release.set()
    await joined

    assert provider.list_services.await_count == 1
    assert cache.snapshot.services == (WEB2,)


@pytest.mark.asyncio
async def test_fresh_snapshot_does_not_refresh():
    clock = FakeClock()
    provider = _provider()
    cache = ResourceCache(provider, max_age=60, clock=clock)
    await cache.refresh()

    clock.now += 59
    cache.get()
    await _drain(cache)

    assert provider.list_services.await_count == 1


@pytest.mark.asyncio
async def test_stale_snapshot_served_while_refreshing():
    clock = FakeClock()
    provider = _provider()
    cache = ResourceCache(provider, max_age=60, clock=clock)
    await cache.refresh()
    old = cache.snapshot

    provider.list_services.return_value = [WEB, WEB2]
    clock.now += 61

    assert cache.get() is old
    await _drain(cache)

    assert cache.get().services == (WEB, WEB2)
    assert provider.list_services.await_count == 2


@pytest.mark.asyncio
async def test_failed_refresh_keeps_previous_snapshot():
    clock = FakeClock()
    provider = _provider()
    cache = ResourceCache(provider, max_age=60, clock=clock)
    await cache.refresh()
    old = cache.snapshot

    provider.list_caches.side_effect = UpstreamCallError("down", status=503)
    clock.now += 120
    assert cache.get() is old
    await _drain(cache)

    assert cache.snapshot is old
    assert isinstance(cache.last_error, UpstreamCallError)

    # the next stale read retries
    provider.list_caches.side_effect = None
    cache.get()
    await _drain(cache)
    assert cache.snapshot is not old
    assert cache.last_error is None


@pytest.mark.asyncio
async def test_snapshot_swapped_as_one_unit():
    clock = FakeClock()
    provider = _provider()
    cache = ResourceCache(provider, max_age=60, clock=clock)
    await cache.refresh()

    release = asyncio.Event()

    async def slow_databases(name_filter):
        await release.wait()
        return []

    provider.list_services.return_value = [WEB2]
    provider.list_databases.side_effect = slow_databases
    clock.now += 61
    cache.get()
    for _ in range(5):
        await asyncio.sleep(0)

    # services already fetched, databases pending: readers still see the old set
    assert cache.get().services == (WEB,)
    assert cache.get().databases == (PG,)

    release.set()
    await _drain(cache)
    assert cache.get().services == (WEB2,)
    assert cache.get().databases == ()


@pytest.mark.asyncio
async def test_close_cancels_inflight_refresh():
    provider = _provider()

    async def hang(name_filter):
        await asyncio.sleep(10)

    provider.list_services.side_effect = hang
    cache = ResourceCache(provider, clock=FakeClock())
    cache.get()
    await asyncio.sleep(0)

    await cache.close()

    assert not cache.refreshing
    assert cache.snapshot is EMPTY_SNAPSHOT
