"""Render REST API provider

Lists services, Redis and Postgres instances and range-queries their usage
metrics. Every HTTP call is bounded by the session's ClientTimeout; failures
surface as UpstreamCallError so the caller can fail just one metric family.
"""

import asyncio
import logging
from typing import Any, Sequence

import aiohttp

from render_exporter.errors import UpstreamCallError, UpstreamTimeoutError
from render_exporter.models.metric import MetricSeries
from render_exporter.models.resource import Resource, ResourceKind
from render_exporter.providers.base import BaseProvider

logger = logging.getLogger(__name__)

RENDER_API_URL = "https://api.render.com/v1"
PAGE_LIMIT = 100


class RenderProvider(BaseProvider):
    """Render API client backed by a single aiohttp session."""

    def __init__(
        self,
        api_token: str,
        base_url: str = RENDER_API_URL,
        timeout_seconds: float = 30.0,
        page_limit: int = PAGE_LIMIT,
    ) -> None:
        self._api_token = api_token
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._page_limit = page_limit
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> "RenderProvider":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def connect(self) -> aiohttp.ClientSession:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self._timeout)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers={
                    "Authorization": f"Bearer {self._api_token}",
                    "Accept": "application/json",
                },
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    # -----------------------------------------------------------------------
    # HTTP
    # -----------------------------------------------------------------------

    async def _get(self, path: str, params: list[tuple[str, str]]) -> Any:
        session = await self.connect()
        url = f"{self._base_url}{path}"
        try:
            async with session.get(url, params=params) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    raise UpstreamCallError(
                        f"GET {path} returned {resp.status}: {body[:200]}",
                        status=resp.status,
                    )
                return await resp.json()
        except asyncio.TimeoutError as exc:
            raise UpstreamTimeoutError(
                f"GET {path} timed out after {self._timeout}s"
            ) from exc
        except aiohttp.ClientError as exc:
            raise UpstreamCallError(f"GET {path} failed: {exc}") from exc

    async def _list(
        self, path: str, item_key: str, kind: ResourceKind, name_filter: str
    ) -> list[Resource]:
        resources: list[Resource] = []
        cursor: str | None = None
        while True:
            params = [("limit", str(self._page_limit))]
            if name_filter:
                params.append(("name", name_filter))
            if cursor:
                params.append(("cursor", cursor))

            page = await self._get(path, params)
            for item in page:
                resources.append(Resource.from_api(item[item_key], kind))

            if len(page) < self._page_limit:
                break
            cursor = page[-1].get("cursor")
            if not cursor:
                break

        logger.debug("listed %d resources from %s", len(resources), path)
        return resources

    # -----------------------------------------------------------------------
    # BaseProvider
    # -----------------------------------------------------------------------

    async def list_services(self, name_filter: str = "") -> list[Resource]:
        return await self._list("/services", "service", ResourceKind.SERVICE, name_filter)

    async def list_caches(self, name_filter: str = "") -> list[Resource]:
        return await self._list("/redis", "redis", ResourceKind.CACHE, name_filter)

    async def list_databases(self, name_filter: str = "") -> list[Resource]:
        return await self._list("/postgres", "postgres", ResourceKind.DATABASE, name_filter)

    async def query_metric(
        self, metric: str, resource_ids: Sequence[str], start_time: str
    ) -> list[MetricSeries]:
        params = [("resource", rid) for rid in resource_ids]
        params.append(("startTime", start_time))
        data = await self._get(f"/metrics/{metric}", params)
        return [MetricSeries.from_api(series) for series in data or [] if series]
