"""Render Prometheus exporter - Entrypoint

Serves /metrics (optionally behind bearer or basic auth), / and /healthz.
Resources come from a background-refreshed cache unless
RESOURCE_CACHE_MAX_AGE=0, in which case every scrape lists them directly.
"""

import asyncio
import hmac
import logging
from typing import Sequence

from aiohttp import BasicAuth, hdrs, web

from render_exporter.cache import ResourceCache, fetch_snapshot
from render_exporter.collector import default_collectors
from render_exporter.config import AuthConfig, Config, load_config
from render_exporter.errors import ConfigurationError
from render_exporter.handler import MetricsHandler
from render_exporter.models.resource import Resource
from render_exporter.providers.base import BaseProvider
from render_exporter.providers.render import RenderProvider

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"

logger = logging.getLogger(__name__)

PROTECTED_PATHS = frozenset({"/metrics"})
BASIC_REALM = "Metrics API"


def _matches(supplied: str, expected: str) -> bool:
    return hmac.compare_digest(supplied.encode(), expected.encode())


def auth_middleware(auth: AuthConfig):
    """Gate PROTECTED_PATHS behind bearer or basic auth, whichever is set."""

    def unauthorized_bearer(message: str) -> web.Response:
        return web.json_response({"error": f"Unauthorized: {message}"}, status=401)

    def unauthorized_basic() -> web.Response:
        return web.Response(
            status=401,
            text="Unauthorized",
            headers={hdrs.WWW_AUTHENTICATE: f'Basic realm="{BASIC_REALM}"'},
        )

    @web.middleware
    async def middleware(request: web.Request, handler):
        if request.path not in PROTECTED_PATHS or auth.mode == "none":
            return await handler(request)

        header = request.headers.get(hdrs.AUTHORIZATION, "")

        if auth.mode == "bearer":
            if not header.startswith("Bearer "):
                return unauthorized_bearer("Bearer token required")
            if not _matches(header[len("Bearer "):], auth.bearer_token or ""):
                return unauthorized_bearer("Invalid token")
            return await handler(request)

        try:
            credentials = BasicAuth.decode(header)
        except ValueError:
            return unauthorized_basic()
        if not (
            _matches(credentials.login, auth.username or "")
            & _matches(credentials.password, auth.password or "")
        ):
            return unauthorized_basic()
        return await handler(request)

    return middleware


async def handle_root(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok"})


async def handle_healthz(request: web.Request) -> web.Response:
    return web.Response(text="ok")


async def handle_favicon(request: web.Request) -> web.Response:
    return web.Response(status=204)


def create_app(config: Config, provider: BaseProvider | None = None) -> web.Application:
    """Build the exporter application from an explicit config."""
    if provider is None:
        provider = RenderProvider(
            config.render_api_token,
            base_url=config.render_api_url,
            timeout_seconds=config.upstream_timeout,
        )

    cache: ResourceCache | None = None
    if config.resource_cache_max_age > 0:
        cache = ResourceCache(
            provider,
            name_filter=config.service_name_filter,
            max_age=config.resource_cache_max_age,
        )

        async def resource_source() -> Sequence[Resource]:
            return cache.get().resources

    else:

        async def resource_source() -> Sequence[Resource]:
            snapshot = await fetch_snapshot(provider, config.service_name_filter)
            return snapshot.resources

    handler = MetricsHandler(
        resource_source,
        default_collectors(provider, config.batch_size, timeout=config.upstream_timeout),
    )

    async def lifecycle(app: web.Application):
        yield
        if cache is not None:
            await cache.close()
        await provider.close()

    logger.info("auth mode for /metrics: %s", config.auth.mode)

    app = web.Application(middlewares=[auth_middleware(config.auth)])
    app.cleanup_ctx.append(lifecycle)
    app.router.add_get("/", handle_root)
    app.router.add_get("/healthz", handle_healthz)
    app.router.add_get("/favicon.ico", handle_favicon)
    app.router.add_get("/metrics", handler.handle)
    return app


async def main(config: Config) -> None:
    app = create_app(config)

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", config.port)
    await site.start()

    logger.info("Render exporter started on port %d", config.port)
    try:
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()


def run() -> None:
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    try:
        config = load_config()
    except ConfigurationError as exc:
        logger.error("%s", exc)
        raise SystemExit(1) from exc

    logging.getLogger().setLevel(config.log_level)
    try:
        asyncio.run(main(config))
    except KeyboardInterrupt:
        logger.info("Shutting down.")


if __name__ == "__main__":
    run()
