"""Upstream provider abstract base class"""

from abc import ABC, abstractmethod
from typing import Sequence

from render_exporter.models.metric import MetricSeries
from render_exporter.models.resource import Resource


class BaseProvider(ABC):
    """Base class for the hosting API that owns the monitored resources.

    A provider holds its own credential, so callers only pass identifiers
    and time windows. Listing methods return resources already tagged with
    their kind.
    """

    @abstractmethod
    async def list_services(self, name_filter: str = "") -> list[Resource]:
        """Compute services (web services, workers, cron jobs, ...)"""
        ...

    @abstractmethod
    async def list_caches(self, name_filter: str = "") -> list[Resource]:
        """Redis / Key Value instances"""
        ...

    @abstractmethod
    async def list_databases(self, name_filter: str = "") -> list[Resource]:
        """Postgres instances"""
        ...

    @abstractmethod
    async def query_metric(
        self, metric: str, resource_ids: Sequence[str], start_time: str
    ) -> list[MetricSeries]:
        """Range-query one usage metric for a batch of resources since start_time."""
        ...

    async def instance_count(
        self, resource_ids: Sequence[str], start_time: str
    ) -> list[MetricSeries]:
        return await self.query_metric("instance-count", resource_ids, start_time)

    async def cpu_usage(
        self, resource_ids: Sequence[str], start_time: str
    ) -> list[MetricSeries]:
        return await self.query_metric("cpu", resource_ids, start_time)

    async def memory_usage(
        self, resource_ids: Sequence[str], start_time: str
    ) -> list[MetricSeries]:
        return await self.query_metric("memory", resource_ids, start_time)

    async def bandwidth(
        self, resource_ids: Sequence[str], start_time: str
    ) -> list[MetricSeries]:
        return await self.query_metric("bandwidth", resource_ids, start_time)

    async def active_connections(
        self, resource_ids: Sequence[str], start_time: str
    ) -> list[MetricSeries]:
        return await self.query_metric("active-connections", resource_ids, start_time)

    async def close(self) -> None:
        """Release any network resources. No-op by default."""
