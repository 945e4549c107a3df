"""Exporter error taxonomy"""


class ExporterError(Exception):
    """Base class for every error raised by the exporter."""


class ConfigurationError(ExporterError):
    """Required configuration is missing or invalid. Fatal at startup."""


class UpstreamCallError(ExporterError):
    """A call to the Render API was rejected or failed on the network."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class UpstreamTimeoutError(UpstreamCallError):
    """A call to the Render API did not finish within its deadline."""


class EmptyMetricsError(ExporterError):
    """Upstream answered, but no usable data points survived the merge."""


class TotalCollectionError(ExporterError):
    """Every metric family failed during one scrape."""

    def __init__(self, failed: list[str]) -> None:
        super().__init__(f"all collectors failed: {', '.join(failed)}")
        self.failed = failed
