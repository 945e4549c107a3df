"""Render exporter configuration"""

import logging
import os
from dataclasses import dataclass, field
from typing import Mapping

from render_exporter.errors import ConfigurationError
from render_exporter.providers.render import RENDER_API_URL

# Default log level per ENVIRONMENT
ENVIRONMENTS: dict[str, str] = {
    "development": "DEBUG",
    "production": "INFO",
    "test": "WARNING",
}


@dataclass(frozen=True)
class AuthConfig:
    username: str | None = None
    password: str | None = None
    bearer_token: str | None = None

    @property
    def mode(self) -> str:
        """Which gate protects /metrics: bearer takes precedence over basic."""
        if self.bearer_token:
            return "bearer"
        if self.username and self.password:
            return "basic"
        return "none"


@dataclass(frozen=True)
class Config:
    env: str
    render_api_token: str
    port: int = 3000
    service_name_filter: str = ""
    batch_size: int = 50
    auth: AuthConfig = field(default_factory=AuthConfig)
    resource_cache_max_age: float = 3600.0  # seconds; 0 disables the cache
    upstream_timeout: float = 30.0
    render_api_url: str = RENDER_API_URL
    log_level: str = "INFO"


def _required(environ: Mapping[str, str], name: str) -> str:
    value = environ.get(name)
    if not value:
        raise ConfigurationError(f"Required environment variable {name} is not set")
    return value


def _number(environ: Mapping[str, str], name: str, default, cast, minimum):
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")
    return value


def load_config(environ: Mapping[str, str] = os.environ) -> Config:
    env = _required(environ, "ENVIRONMENT")
    if env not in ENVIRONMENTS:
        raise ConfigurationError(
            f"Invalid ENVIRONMENT {env!r}, expected one of {', '.join(ENVIRONMENTS)}"
        )

    log_level = environ.get("LOG_LEVEL", ENVIRONMENTS[env]).upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ConfigurationError(f"Invalid LOG_LEVEL {log_level!r}")

    return Config(
        env=env,
        render_api_token=_required(environ, "RENDER_API_TOKEN"),
        port=_number(environ, "PORT", 3000, int, 1),
        service_name_filter=environ.get("SERVICE_NAME_FILTER", ""),
        batch_size=_number(environ, "BATCH_SIZE", 50, int, 1),
        auth=AuthConfig(
            username=environ.get("AUTH_USERNAME") or None,
            password=environ.get("AUTH_PASSWORD") or None,
            bearer_token=environ.get("AUTH_BEARER_TOKEN") or None,
        ),
        resource_cache_max_age=_number(
            environ, "RESOURCE_CACHE_MAX_AGE", 3600.0, float, 0
        ),
        upstream_timeout=_number(environ, "UPSTREAM_TIMEOUT", 30.0, float, 0.001),
        render_api_url=environ.get("RENDER_API_URL", RENDER_API_URL),
        log_level=log_level,
    )
