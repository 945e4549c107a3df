"""/metrics request orchestration"""

import asyncio
import logging
from typing import Awaitable, Callable, Sequence

from aiohttp import web

from render_exporter.collector import FamilyCollector
from render_exporter.errors import TotalCollectionError
from render_exporter.formatter import format_result
from render_exporter.models.resource import Resource

logger = logging.getLogger(__name__)

ResourceSource = Callable[[], Awaitable[Sequence[Resource]]]


class MetricsHandler:
    """Runs every family collector for one scrape and renders the body.

    Families fail independently: a failed family is logged and left out of
    the body. Only when every family fails does the scrape itself fail.
    """

    def __init__(
        self, resource_source: ResourceSource, collectors: list[FamilyCollector]
    ) -> None:
        self._resource_source = resource_source
        self._collectors = collectors

    async def _run(
        self, collector: FamilyCollector, resources: Sequence[Resource]
    ) -> str | None:
        """Collect and render one family; None if either step failed."""
        try:
            return format_result(await collector.collect(resources))
        except Exception as exc:
            logger.error("Error collecting %s: %s", collector.name, exc)
            return None

    async def render(self) -> str:
        resources = await self._resource_source()
        logger.debug(
            "resources: %s", ", ".join(f"{r.id} {r.name}" for r in resources)
        )

        results = await asyncio.gather(
            *(self._run(collector, resources) for collector in self._collectors)
        )

        failed = [c.name for c, result in zip(self._collectors, results) if result is None]
        if self._collectors and len(failed) == len(self._collectors):
            raise TotalCollectionError(failed)
        if failed:
            logger.warning(
                "%d of %d collectors failed: %s",
                len(failed),
                len(self._collectors),
                ", ".join(failed),
            )

        return "\n".join(block for block in results if block)

    async def handle(self, request: web.Request) -> web.Response:
        try:
            body = await self.render()
        except TotalCollectionError:
            logger.error("All metric collections failed")
            return web.Response(
                status=500, text="Error fetching metrics: all collectors failed"
            )
        except Exception:
            logger.exception("Error fetching metrics")
            return web.Response(status=500, text="Error fetching metrics")

        return web.Response(text=body, content_type="text/plain")
