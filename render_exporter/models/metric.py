"""Metric models: upstream series in, labeled families out"""

from dataclasses import dataclass, field, replace


@dataclass(frozen=True)
class MetricDefinition:
    """Name, help text and type of one exposed metric family."""

    name: str
    help: str
    type: str = "gauge"

    def with_unit(self, unit: str) -> "MetricDefinition":
        return replace(self, name=f"{self.name}_{unit}")


@dataclass
class MetricPoint:
    """One labeled value of a family."""

    value: float
    labels: dict[str, str] = field(default_factory=dict)


@dataclass
class CollectionResult:
    """A family definition with its current values; empty means no output."""

    definition: MetricDefinition
    values: list[MetricPoint] = field(default_factory=list)


@dataclass(frozen=True)
class SeriesPoint:
    timestamp: str
    value: float


@dataclass
class MetricSeries:
    """One per-resource time series as returned by the Render metrics API.

    Points are ordered oldest to newest.
    """

    unit: str
    labels: list[tuple[str, str]] = field(default_factory=list)
    values: list[SeriesPoint] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict) -> "MetricSeries":
        labels = [
            (label["field"], str(label["value"]))
            for label in data.get("labels") or []
            if label.get("field") and label.get("value") is not None
        ]
        values = [
            SeriesPoint(timestamp=point.get("timestamp", ""), value=point["value"])
            for point in data.get("values") or []
            if point.get("value") is not None
        ]
        return cls(unit=data.get("unit") or "", labels=labels, values=values)

    def label(self, name: str) -> str | None:
        for label_field, value in self.labels:
            if label_field == name:
                return value
        return None
