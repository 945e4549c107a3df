"""
End-to-end tests for the exporter app.

Runs the fake Render API on a local test server and the exporter app in a
test client pointed at it, then scrapes /metrics the way Prometheus would.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import replace

import pytest
from aiohttp import BasicAuth
from aiohttp.test_utils import TestClient, TestServer

from render_exporter.config import AuthConfig, Config
from render_exporter.main import create_app
from render_exporter.mock.fake_render_api import FakeRenderState, create_fake_render_api
from render_exporter.providers.render import RenderProvider

TOKEN = "rnd_test"

BASE_CONFIG = Config(
    env="test",
    render_api_token=TOKEN,
    resource_cache_max_age=0,
    upstream_timeout=5.0,
)


@asynccontextmanager
async def _exporter(config: Config = BASE_CONFIG, state: FakeRenderState | None = None):
    state = state or FakeRenderState(token=TOKEN)
    async with TestServer(create_fake_render_api(state)) as upstream:
        provider = RenderProvider(
            config.render_api_token,
            base_url=str(upstream.make_url("/v1")),
            timeout_seconds=config.upstream_timeout,
        )
        async with TestClient(TestServer(create_app(config, provider))) as client:
            yield client, state


def _sample_lines(body: str, name: str) -> list[str]:
    return [line for line in body.splitlines() if line.startswith(name + "{") or line.startswith(name + " ")]


@pytest.mark.asyncio
async def test_scrape_renders_every_family():
    async with _exporter() as (client, _):
        resp = await client.get("/metrics")
        body = await resp.text()

    assert resp.status == 200
    assert resp.headers["Content-Type"].startswith("text/plain")

    assert _sample_lines(body, "render_service_count") == ["render_service_count 6"]
    assert len(_sample_lines(body, "render_service_instance_count_instances")) == 6
    assert len(_sample_lines(body, "render_service_cpu_usage_percent")) == 6
    assert len(_sample_lines(body, "render_service_memory_usage_bytes")) == 6
    # only srv- services report bandwidth; the cron job is never queried
    assert len(_sample_lines(body, "render_service_bandwidth_megabytes")) == 3
    assert len(_sample_lines(body, "render_service_active_connections_connections")) == 2

    assert "# HELP render_service_cpu_usage_percent CPU usage for a Render service" in body
    assert "# TYPE render_service_cpu_usage_percent gauge" in body
    assert body.count("# HELP ") == 6
    assert "\n\n# HELP " in body


@pytest.mark.asyncio
async def test_points_carry_service_name_and_upstream_labels():
    async with _exporter() as (client, _):
        body = await (await client.get("/metrics")).text()

    cpu = [line for line in _sample_lines(body, "render_service_cpu_usage_percent") if "srv-web01" in line]
    assert len(cpu) == 1
    assert cpu[0].startswith(
        'render_service_cpu_usage_percent{instance="srv-web01-5f7c9", '
        'resource="srv-web01", service_name="storefront", unit="percent"} '
    )


@pytest.mark.asyncio
async def test_bandwidth_not_queried_for_cron_jobs():
    async with _exporter() as (client, state):
        await client.get("/metrics")

    bandwidth_ids = [rid for metric, ids in state.metric_calls if metric == "bandwidth" for rid in ids]
    assert sorted(bandwidth_ids) == ["srv-api01", "srv-web01", "srv-wrk01"]


@pytest.mark.asyncio
async def test_failed_family_left_out_of_scrape():
    state = FakeRenderState(token=TOKEN, failing={"cpu": 500})
    async with _exporter(state=state) as (client, _):
        resp = await client.get("/metrics")
        body = await resp.text()

    assert resp.status == 200
    assert "render_service_cpu_usage" not in body
    assert _sample_lines(body, "render_service_memory_usage_bytes")


@pytest.mark.asyncio
async def test_listing_failure_is_500():
    async with _exporter(config=replace(BASE_CONFIG, render_api_token="revoked")) as (client, _):
        resp = await client.get("/metrics")
        assert resp.status == 500
        assert await resp.text() == "Error fetching metrics"


@pytest.mark.asyncio
async def test_queries_respect_batch_size():
    async with _exporter(config=replace(BASE_CONFIG, batch_size=4)) as (client, state):
        await client.get("/metrics")

    cpu_calls = [ids for metric, ids in state.metric_calls if metric == "cpu"]
    assert sorted(len(ids) for ids in cpu_calls) == [2, 4]


@pytest.mark.asyncio
async def test_cached_resources_served_after_background_refresh():
    config = replace(BASE_CONFIG, resource_cache_max_age=3600)
    async with _exporter(config=config) as (client, state):
        first = await (await client.get("/metrics")).text()
        # the first scrape sees the empty snapshot and kicks off a refresh
        assert _sample_lines(first, "render_service_count") == ["render_service_count 0"]
        assert state.metric_calls == []

        for _ in range(100):
            body = await (await client.get("/metrics")).text()
            if "render_service_count 6" in body:
                break
            await asyncio.sleep(0.01)

    assert "render_service_count 6" in body
    assert _sample_lines(body, "render_service_cpu_usage_percent")


@pytest.mark.asyncio
async def test_unprotected_routes():
    config = replace(BASE_CONFIG, auth=AuthConfig(bearer_token="s3cret"))
    async with _exporter(config=config) as (client, _):
        root = await client.get("/")
        assert root.status == 200
        assert await root.json() == {"status": "ok"}

        healthz = await client.get("/healthz")
        assert await healthz.text() == "ok"

        favicon = await client.get("/favicon.ico")
        assert favicon.status == 204


@pytest.mark.asyncio
async def test_bearer_auth():
    config = replace(BASE_CONFIG, auth=AuthConfig(bearer_token="s3cret", username="prom", password="pw"))
    async with _exporter(config=config) as (client, _):
        missing = await client.get("/metrics")
        assert missing.status == 401
        assert await missing.json() == {"error": "Unauthorized: Bearer token required"}

        # bearer takes precedence, so basic credentials are not accepted
        basic = await client.get("/metrics", auth=BasicAuth("prom", "pw"))
        assert basic.status == 401

        wrong = await client.get("/metrics", headers={"Authorization": "Bearer nope"})
        assert wrong.status == 401
        assert await wrong.json() == {"error": "Unauthorized: Invalid token"}

        ok = await client.get("/metrics", headers={"Authorization": "Bearer s3cret"})
        assert ok.status == 200


@pytest.mark.asyncio
async def test_basic_auth():
    config = replace(BASE_CONFIG, auth=AuthConfig(username="prom", password="pw"))
    async with _exporter(config=config) as (client, _):
        missing = await client.get("/metrics")
        assert missing.status == 401
        assert missing.headers["WWW-Authenticate"] == 'Basic realm="Metrics API"'

        wrong = await client.get("/metrics", auth=BasicAuth("prom", "nope"))
        assert wrong.status == 401

        ok = await client.get("/metrics", auth=BasicAuth("prom", "pw"))
        assert ok.status == 200
