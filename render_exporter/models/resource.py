"""Render resource models"""

from dataclasses import dataclass
from enum import Enum

BANDWIDTH_PREFIX = "srv-"


class ResourceKind(str, Enum):
    """What kind of Render resource an identifier belongs to."""

    SERVICE = "service"  # web services, workers, cron jobs, static sites
    CACHE = "cache"  # Redis / Key Value
    DATABASE = "database"  # Postgres

    @classmethod
    def from_identifier(cls, resource_id: str) -> "ResourceKind":
        """Classify a bare Render identifier by its prefix."""
        if resource_id.startswith("red-"):
            return cls.CACHE
        if resource_id.startswith("dpg-"):
            return cls.DATABASE
        return cls.SERVICE


@dataclass(frozen=True)
class Resource:
    """A monitored Render resource, as of the last listing."""

    id: str
    name: str
    kind: ResourceKind
    # Upstream serves bandwidth for srv- services only; cron jobs and
    # datastores are rejected.
    reports_bandwidth: bool = False

    @classmethod
    def from_api(cls, data: dict, kind: ResourceKind | None = None) -> "Resource":
        resource_id = data["id"]
        kind = kind or ResourceKind.from_identifier(resource_id)
        return cls(
            id=resource_id,
            name=data.get("name") or resource_id,
            kind=kind,
            reports_bandwidth=kind is ResourceKind.SERVICE
            and resource_id.startswith(BANDWIDTH_PREFIX),
        )


@dataclass(frozen=True)
class ResourceSnapshot:
    """One internally consistent set of listed resources.

    Snapshots are never mutated; a refresh builds a new one and swaps it in.
    """

    services: tuple[Resource, ...] = ()
    caches: tuple[Resource, ...] = ()
    databases: tuple[Resource, ...] = ()
    refreshed_at: float | None = None

    @property
    def resources(self) -> list[Resource]:
        return [*self.services, *self.caches, *self.databases]


# Shared empty snapshot, served before the first refresh completes.
EMPTY_SNAPSHOT = ResourceSnapshot()

