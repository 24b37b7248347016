"""Tests for the HTTP scrape handler."""

import time
from unittest.mock import AsyncMock

import httpx
import pytest
from prometheus_client import generate_latest

from mssql_exporter.collectors.base import register_collectors
from mssql_exporter.server import create_app
from tests.conftest import FakeFactory, Slow, make_collector


def client_for(app):
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


def transforms(events):
    return [e for e in events if e[0] == "transform"]


@pytest.fixture
def build_app(registry, logger, events):
    def build(collectors, responses, failures=None, **kwargs):
        factory = FakeFactory(responses, events, failures=failures)
        app = create_app(register_collectors(collectors), factory, registry, logger, **kwargs)
        return app, factory
    return build


@pytest.mark.asyncio
async def test_index_redirects_to_metrics(build_app, registry, events):
    app, _ = build_app([make_collector("mssql_up", events, registry)], {})

    async with client_for(app) as client:
        response = await client.get("/")

    assert response.status_code in (302, 307)
    assert response.headers["location"] == "/metrics"


@pytest.mark.asyncio
async def test_scrape_sets_up_metric(build_app, registry, events):
    """One sync collector returning one row shows up in the response."""
    app, factory = build_app(
        [make_collector("mssql_up", events, registry)],
        {"SELECT mssql_up": [{"value": 1}]}
    )

    async with client_for(app) as client:
        response = await client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert "mssql_up 1.0" in response.text
    assert "x-error" not in response.headers
    assert factory.opened[0].closed is True


@pytest.mark.asyncio
async def test_scrape_with_empty_result_keeps_prior_value(build_app, registry, events):
    """Zero rows skip the transform; the scrape still succeeds."""
    up = make_collector("mssql_up", events, registry)
    up.metrics["mssql_up"].set(1)
    app, _ = build_app([up], {"SELECT mssql_up": []})

    async with client_for(app) as client:
        response = await client.get("/metrics")

    assert response.status_code == 200
    assert transforms(events) == []
    assert "mssql_up 1.0" in response.text


@pytest.mark.asyncio
async def test_connect_failure_returns_only_down_indicator(build_app, registry, events):
    """A failed primary connection yields just mssql_up=0 and the error header."""
    up = make_collector("mssql_up", events, registry)
    other = make_collector("other", events, registry)
    up.metrics["mssql_up"].set(1)
    app, factory = build_app([up, other], {}, failures=["login failed"])

    async with client_for(app) as client:
        response = await client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["x-error"] == "login failed"
    assert response.content == generate_latest(registry.restricted_registry(["mssql_up"]))
    assert "mssql_up 0.0" in response.text
    assert "other" not in response.text
    assert factory.opened == []


@pytest.mark.asyncio
async def test_connect_failure_header_is_single_line(build_app, registry, events):
    app, _ = build_app(
        [make_collector("mssql_up", events, registry)],
        {},
        failures=["Login failed\r\nfor user 'exporter'"]
    )

    async with client_for(app) as client:
        response = await client.get("/metrics")

    assert response.headers["x-error"] == "Login failed for user 'exporter'"


@pytest.mark.asyncio
async def test_scrape_does_not_wait_for_async_collectors(build_app, registry, events):
    """The response is produced before the async collector's query finishes."""
    app, factory = build_app(
        [
            make_collector("mssql_up", events, registry),
            make_collector("slow", events, registry, is_async=True, timeout=10),
        ],
        {"SELECT mssql_up": [{"value": 1}], "SELECT slow": Slow(5, [{"value": 1}])}
    )

    start = time.monotonic()
    async with client_for(app) as client:
        response = await client.get("/metrics")
    elapsed = time.monotonic() - start

    assert response.status_code == 200
    assert elapsed < 1.0
    assert "mssql_up 1.0" in response.text

    orchestrator = app.state.orchestrator
    assert orchestrator.pending == 1
    orchestrator.shutdown()
    await orchestrator.drain()
    assert all(connection.closed for connection in factory.opened)


@pytest.mark.asyncio
async def test_async_results_land_in_later_scrape(build_app, registry, events):
    """Async metric values written after a response appear in the next scrape."""
    app, _ = build_app(
        [
            make_collector("mssql_up", events, registry),
            make_collector("background", events, registry, is_async=True, timeout=5),
        ],
        {"SELECT mssql_up": [{"value": 1}], "SELECT background": Slow(0.01, [{"value": 42}])}
    )

    async with client_for(app) as client:
        await client.get("/metrics")
        await app.state.orchestrator.drain()
        response = await client.get("/metrics")
    await app.state.orchestrator.drain()

    assert "background 42.0" in response.text


@pytest.mark.asyncio
async def test_openmetrics_negotiation(build_app, registry, events):
    app, _ = build_app(
        [make_collector("mssql_up", events, registry)],
        {"SELECT mssql_up": [{"value": 1}]}
    )

    async with client_for(app) as client:
        response = await client.get("/metrics", headers={"Accept": "application/openmetrics-text; version=1.0.0"})

    assert response.headers["content-type"].startswith("application/openmetrics-text")
    assert response.text.rstrip().endswith("# EOF")


@pytest.mark.asyncio
async def test_primary_connection_closed_when_collection_raises(build_app, registry, events):
    orchestrator = AsyncMock()
    orchestrator.collect.side_effect = RuntimeError("unexpected")
    app, factory = build_app(
        [make_collector("mssql_up", events, registry)],
        {},
        orchestrator=orchestrator
    )

    async with client_for(app) as client:
        with pytest.raises(RuntimeError):
            await client.get("/metrics")

    assert factory.opened[0].closed is True


@pytest.mark.asyncio
async def test_lifespan_shutdown_cancels_background_collections(build_app, registry, events):
    app, factory = build_app(
        [
            make_collector("mssql_up", events, registry),
            make_collector("slow", events, registry, is_async=True, timeout=10),
        ],
        {"SELECT mssql_up": [{"value": 1}], "SELECT slow": Slow(5)}
    )

    async with app.router.lifespan_context(app):
        async with client_for(app) as client:
            await client.get("/metrics")

    assert app.state.orchestrator.pending == 0
    assert all(connection.closed for connection in factory.opened)


def test_create_app_requires_down_indicator(registry, logger, events):
    with pytest.raises(ValueError, match="mssql_up"):
        create_app(register_collectors([make_collector("other", events, registry)]),
                   FakeFactory({}), registry, logger)
