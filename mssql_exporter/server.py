"""HTTP endpoints serving the collected metrics."""

import logging
from contextlib import asynccontextmanager
from typing import Mapping, Optional

from fastapi import FastAPI, Request, Response
from fastapi.responses import RedirectResponse
from prometheus_client import CollectorRegistry
from prometheus_client.exposition import choose_encoder

from .collectors.base import Collector
from .collectors.executor import QueryExecutor
from .collectors.mssql import UP_METRIC
from .collectors.orchestrator import CollectionOrchestrator
from .database.connection import ConnectionFactory
from .utils.errors import ConnectError

# Seconds to wait for cancelled background collections to close their connections
SHUTDOWN_GRACE = 5.0


def _header_value(message: str) -> str:
    """Flatten an error message into a single latin-1 header line."""
    flat = " ".join(message.split())
    return flat.encode("latin-1", errors="replace").decode("latin-1")


def _find_metric(collectors: Mapping[str, Collector], metric_name: str):
    for collector in collectors.values():
        if metric_name in collector.metrics:
            return collector.metrics[metric_name]
    raise ValueError(f"No collector owns the '{metric_name}' metric")


def create_app(
    collectors: Mapping[str, Collector],
    factory: ConnectionFactory,
    registry: CollectorRegistry,
    logger: logging.Logger,
    orchestrator: Optional[CollectionOrchestrator] = None,
    up_metric: str = UP_METRIC
) -> FastAPI:
    """
    Build the exporter application.

    Every ``GET /metrics`` runs one collection cycle on a fresh primary
    connection. When that connection cannot be opened the response holds
    only the ``up_metric`` gauge set to 0, with the error in ``X-Error``.

    Args:
        collectors: Ordered collector registry
        factory: Opens database connections
        registry: prometheus_client registry holding every collector's metrics
        logger: Parent logger; requests are logged on its ``app`` child
        orchestrator: Optional orchestrator, built from the other arguments if omitted
        up_metric: Name of the gauge used as the down indicator

    Returns:
        FastAPI: Configured application
    """
    app_logger = logger.getChild("app")
    up_gauge = _find_metric(collectors, up_metric)

    if orchestrator is None:
        orchestrator = CollectionOrchestrator(collectors, factory, QueryExecutor(logger), logger)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        orchestrator.shutdown()
        await orchestrator.drain(timeout=SHUTDOWN_GRACE)

    app = FastAPI(
        title="mssql-exporter",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None
    )
    app.state.orchestrator = orchestrator

    @app.get("/")
    async def index() -> RedirectResponse:
        return RedirectResponse(url="/metrics")

    @app.get("/metrics")
    async def metrics(request: Request) -> Response:
        """Collect from the database and expose the registry."""
        encoder, content_type = choose_encoder(request.headers.get("accept"))
        app_logger.debug("Received /metrics request")

        try:
            connection = await factory.open()
        except ConnectError as e:
            app_logger.error("Error handling /metrics request", extra={"error": str(e)})
            up_gauge.set(0)
            return Response(
                content=encoder(registry.restricted_registry([up_metric])),
                media_type=content_type,
                headers={"X-Error": _header_value(str(e))}
            )

        try:
            await orchestrator.collect(connection)
        finally:
            await connection.close()

        app_logger.debug("Successfully processed /metrics request")
        return Response(content=encoder(registry), media_type=content_type)

    return app
