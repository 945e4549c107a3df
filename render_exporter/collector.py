"""Metric family collection.

Each family is collected by fanning out one range query per batch of
resource ids, all concurrently, then merging every returned series into a
labeled point. A single failed batch fails the whole family; the handler
isolates families from each other.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Sequence

from render_exporter.batching import chunk
from render_exporter.errors import EmptyMetricsError, UpstreamTimeoutError
from render_exporter.models.metric import (
    CollectionResult,
    MetricDefinition,
    MetricPoint,
    MetricSeries,
)
from render_exporter.models.resource import Resource, ResourceKind
from render_exporter.providers.base import BaseProvider

logger = logging.getLogger(__name__)

QueryFn = Callable[[Sequence[str], str], Awaitable[list[MetricSeries]]]

DEFAULT_WINDOW = timedelta(minutes=2)
# Bandwidth is aggregated hourly upstream.
BANDWIDTH_WINDOW = timedelta(hours=1)
UNKNOWN_SERVICE = "unknown"

# ---------------------------------------------------------------------------
# Family definitions
# ---------------------------------------------------------------------------

SERVICE_COUNT = MetricDefinition(
    name="render_service_count",
    help="Total number of services",
)
INSTANCE_COUNT = MetricDefinition(
    name="render_service_instance_count",
    help="Current number of instances for a Render service",
)
CPU_USAGE = MetricDefinition(
    name="render_service_cpu_usage",
    help="CPU usage for a Render service",
)
MEMORY_USAGE = MetricDefinition(
    name="render_service_memory_usage",
    help="Memory usage for a Render service in bytes",
)
BANDWIDTH = MetricDefinition(
    name="render_service_bandwidth",
    help="Bandwidth used by a Render service",
)
ACTIVE_CONNECTIONS = MetricDefinition(
    name="render_service_active_connections",
    help="Active connections for Redis or Postgres instances",
)


def iso_timestamp(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


def window_start(window: timedelta, now: datetime | None = None) -> str:
    return iso_timestamp((now or datetime.now(timezone.utc)) - window)


async def _query_batch(
    query: QueryFn, batch: list[str], start_time: str, timeout: float | None
) -> list[MetricSeries]:
    if timeout is None:
        return await query(batch, start_time)
    try:
        return await asyncio.wait_for(query(batch, start_time), timeout)
    except asyncio.TimeoutError as exc:
        raise UpstreamTimeoutError(
            f"batch of {len(batch)} resources timed out after {timeout}s"
        ) from exc


def _series_to_point(series: MetricSeries, by_id: dict[str, Resource]) -> MetricPoint:
    resource_id = series.label("resource") or series.label("service") or ""
    resource = by_id.get(resource_id)
    labels = {
        "unit": series.unit,
        "service_name": resource.name if resource else UNKNOWN_SERVICE,
    }
    # upstream labels win over the two defaults above
    labels.update(series.labels)
    return MetricPoint(value=series.values[-1].value, labels=labels)


async def collect_metrics(
    resources: Sequence[Resource],
    query: QueryFn,
    definition: MetricDefinition,
    *,
    batch_size: int,
    start_time: str | None = None,
    timeout: float | None = None,
    now: datetime | None = None,
) -> CollectionResult:
    """Collect one family for ``resources`` and name it after its unit.

    Raises UpstreamCallError if any batch fails and EmptyMetricsError if
    upstream answered without any usable data point.
    """
    by_id = {resource.id: resource for resource in resources}
    batches = chunk([resource.id for resource in resources], batch_size)
    start = start_time or window_start(DEFAULT_WINDOW, now)

    responses = await asyncio.gather(
        *(_query_batch(query, batch, start, timeout) for batch in batches)
    )

    values = [
        _series_to_point(series, by_id)
        for response in responses
        for series in response
        if series is not None and series.labels and series.values
    ]

    if not values:
        query_name = getattr(query, "__name__", repr(query))
        logger.debug("full results for %s: %r", query_name, responses)
        raise EmptyMetricsError(
            f"Empty metrics result {query_name} "
            + ", ".join(f"«{r.id} {r.name}»" for r in resources)
        )

    # The unit of the first point names the family; the per-point unit label
    # stays accurate if later points disagree.
    return CollectionResult(
        definition=definition.with_unit(values[0].labels["unit"]),
        values=values,
    )


# ---------------------------------------------------------------------------
# Specialized collectors
# ---------------------------------------------------------------------------


def collect_service_count(resources: Sequence[Resource]) -> CollectionResult:
    return CollectionResult(
        definition=SERVICE_COUNT,
        values=[MetricPoint(value=len(resources))],
    )


def _of_kind(resources: Sequence[Resource], *kinds: ResourceKind) -> list[Resource]:
    return [resource for resource in resources if resource.kind in kinds]


async def collect_instance_count(
    resources: Sequence[Resource], provider: BaseProvider, batch_size: int, **kwargs
) -> CollectionResult:
    return await collect_metrics(
        resources, provider.instance_count, INSTANCE_COUNT, batch_size=batch_size, **kwargs
    )


async def collect_cpu(
    resources: Sequence[Resource], provider: BaseProvider, batch_size: int, **kwargs
) -> CollectionResult:
    return await collect_metrics(
        resources, provider.cpu_usage, CPU_USAGE, batch_size=batch_size, **kwargs
    )


async def collect_memory(
    resources: Sequence[Resource], provider: BaseProvider, batch_size: int, **kwargs
) -> CollectionResult:
    return await collect_metrics(
        resources, provider.memory_usage, MEMORY_USAGE, batch_size=batch_size, **kwargs
    )


async def collect_bandwidth(
    resources: Sequence[Resource],
    provider: BaseProvider,
    batch_size: int,
    now: datetime | None = None,
    **kwargs,
) -> CollectionResult:
    services = [resource for resource in resources if resource.reports_bandwidth]
    if not services:
        logger.debug("No srv- services found for bandwidth")
        return CollectionResult(definition=BANDWIDTH)

    return await collect_metrics(
        services,
        provider.bandwidth,
        BANDWIDTH,
        batch_size=batch_size,
        start_time=window_start(BANDWIDTH_WINDOW, now),
        **kwargs,
    )


async def collect_active_connections(
    resources: Sequence[Resource], provider: BaseProvider, batch_size: int, **kwargs
) -> CollectionResult:
    datastores = _of_kind(resources, ResourceKind.CACHE, ResourceKind.DATABASE)
    if not datastores:
        logger.debug("No Redis or Postgres instances found for active connections")
        return CollectionResult(definition=ACTIVE_CONNECTIONS)

    return await collect_metrics(
        datastores,
        provider.active_connections,
        ACTIVE_CONNECTIONS,
        batch_size=batch_size,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

FamilyFn = Callable[[Sequence[Resource]], Awaitable[CollectionResult]]


@dataclass(frozen=True)
class FamilyCollector:
    """A named family collection the handler can run and isolate."""

    name: str
    collect: FamilyFn


def default_collectors(
    provider: BaseProvider, batch_size: int, timeout: float | None = None
) -> list[FamilyCollector]:
    """All families the exporter serves, in output order."""

    async def service_count(resources: Sequence[Resource]) -> CollectionResult:
        return collect_service_count(resources)

    def bind(fn):
        async def run(resources: Sequence[Resource]) -> CollectionResult:
            return await fn(resources, provider, batch_size, timeout=timeout)

        return run

    return [
        FamilyCollector("instance counts", bind(collect_instance_count)),
        FamilyCollector("service count", service_count),
        FamilyCollector("CPU metrics", bind(collect_cpu)),
        FamilyCollector("memory metrics", bind(collect_memory)),
        FamilyCollector("bandwidth metrics", bind(collect_bandwidth)),
        FamilyCollector("active connections", bind(collect_active_connections)),
    ]
