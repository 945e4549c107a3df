"""Fake Render API for local runs and integration tests.

Imitates the listing (/v1/services, /v1/redis, /v1/postgres) and usage
metric (/v1/metrics/<metric>) endpoints closely enough for the exporter:
cursor pagination, bearer auth, repeated ``resource`` query parameters and a
per-call resource limit.

    python -m render_exporter.mock.fake_render_api
    RENDER_API_URL=http://localhost:9091/v1 RENDER_API_TOKEN=fake ...
"""

import math
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from aiohttp import web

# ---------------------------------------------------------------------------
# Mock resource definitions
# ---------------------------------------------------------------------------

SERVICES = [
    {"id": "srv-web01", "name": "storefront", "type": "web_service"},
    {"id": "srv-api01", "name": "public-api", "type": "web_service"},
    {"id": "srv-wrk01", "name": "queue-worker", "type": "background_worker"},
    {"id": "crn-nightly", "name": "nightly-report", "type": "cron_job"},
]
REDISES = [
    {"id": "red-cache01", "name": "session-cache"},
]
POSTGRESES = [
    {"id": "dpg-main01", "name": "main-db"},
]

# metric -> (unit, base, amplitude, accepted id prefixes; None means all)
METRICS: dict[str, tuple[str, float, float, tuple[str, ...] | None]] = {
    "cpu": ("percent", 35.0, 15.0, None),
    "memory": ("bytes", 512 * 1024**2, 128 * 1024**2, None),
    "instance-count": ("instances", 2.0, 0.0, None),
    "bandwidth": ("megabytes", 120.0, 40.0, ("srv-",)),
    "active-connections": ("connections", 12.0, 6.0, ("red-", "dpg-")),
}

MAX_RESOURCES_PER_QUERY = 50
PORT = 9091
BIND = "0.0.0.0"

# ---------------------------------------------------------------------------
# Helper
# ---------------------------------------------------------------------------


def _wave(base: float, amplitude: float, period_minutes: float = 60.0) -> float:
    """Return a realistic time-varying value using sine wave + noise."""
    t = time.time()
    wave = math.sin(2 * math.pi * t / (period_minutes * 60))
    noise = random.uniform(-amplitude * 0.2, amplitude * 0.2)
    return max(0.0, base + amplitude * wave + noise)


def _iso(moment: datetime) -> str:
    return moment.isoformat(timespec="seconds").replace("+00:00", "Z")


@dataclass
class FakeRenderState:
    """What the fake API serves and what it has been asked."""

    services: list[dict] = field(default_factory=lambda: list(SERVICES))
    redises: list[dict] = field(default_factory=lambda: list(REDISES))
    postgreses: list[dict] = field(default_factory=lambda: list(POSTGRESES))
    token: str | None = None
    # metric name -> HTTP status to answer with instead of data
    failing: dict[str, int] = field(default_factory=dict)
    # every /metrics call: (metric, resource ids)
    metric_calls: list[tuple[str, list[str]]] = field(default_factory=list)


STATE_KEY = web.AppKey("state", FakeRenderState)

# ---------------------------------------------------------------------------
# Series generation
# ---------------------------------------------------------------------------


def _series(metric: str, resource_id: str) -> dict:
    unit, base, amplitude, _ = METRICS[metric]
    now = datetime.now(timezone.utc)
    labels = [{"field": "resource", "value": resource_id}]
    if metric in ("cpu", "memory"):
        labels.append({"field": "instance", "value": f"{resource_id}-5f7c9"})

    return {
        "unit": unit,
        "labels": labels,
        "values": [
            {
                "timestamp": _iso(now - timedelta(minutes=minutes_ago)),
                "value": round(_wave(base, amplitude), 4),
            }
            for minutes_ago in (2, 1, 0)
        ],
    }


# ---------------------------------------------------------------------------
# HTTP Handlers
# ---------------------------------------------------------------------------


@web.middleware
async def _auth(request: web.Request, handler):
    token = request.app[STATE_KEY].token
    if token and request.headers.get("Authorization") != f"Bearer {token}":
        return web.json_response({"message": "unauthorized"}, status=401)
    return await handler(request)


def _list_handler(attr: str, item_key: str):
    async def handle(request: web.Request) -> web.Response:
        items = getattr(request.app[STATE_KEY], attr)
        name = request.query.get("name", "")
        limit = int(request.query.get("limit", "20"))
        cursor = request.query.get("cursor")

        matching = [item for item in items if name in item["name"]]
        start = int(cursor) + 1 if cursor else 0
        page = [
            {"cursor": str(index), item_key: item}
            for index, item in enumerate(matching)
        ][start : start + limit]
        return web.json_response(page)

    return handle


async def handle_metric(request: web.Request) -> web.Response:
    state = request.app[STATE_KEY]
    metric = request.match_info["metric"]
    if metric not in METRICS:
        return web.json_response({"message": f"unknown metric {metric}"}, status=404)

    resource_ids = request.query.getall("resource", [])
    state.metric_calls.append((metric, resource_ids))

    if metric in state.failing:
        return web.json_response(
            {"message": "internal error"}, status=state.failing[metric]
        )
    if not resource_ids or len(resource_ids) > MAX_RESOURCES_PER_QUERY:
        return web.json_response(
            {"message": f"between 1 and {MAX_RESOURCES_PER_QUERY} resources required"},
            status=400,
        )

    prefixes = METRICS[metric][3]
    if prefixes is not None:
        rejected = [rid for rid in resource_ids if not rid.startswith(prefixes)]
        if rejected:
            return web.json_response(
                {"message": f"{metric} not available for {', '.join(rejected)}"},
                status=400,
            )

    return web.json_response([_series(metric, rid) for rid in resource_ids])


def create_fake_render_api(state: FakeRenderState | None = None) -> web.Application:
    app = web.Application(middlewares=[_auth])
    app[STATE_KEY] = state or FakeRenderState()
    app.router.add_get("/v1/services", _list_handler("services", "service"))
    app.router.add_get("/v1/redis", _list_handler("redises", "redis"))
    app.router.add_get("/v1/postgres", _list_handler("postgreses", "postgres"))
    app.router.add_get("/v1/metrics/{metric}", handle_metric)
    return app


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    print(f"Fake Render API starting on {BIND}:{PORT}", flush=True)
    print(f"  /v1/services, /v1/redis, /v1/postgres", flush=True)
    print(f"  /v1/metrics/{{{', '.join(METRICS)}}}", flush=True)
    web.run_app(create_fake_render_api(), host=BIND, port=PORT, print=None)
