from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

from adapters.metrics.prometheus import PrometheusMetrics
from app.bootstrap import build_dispatcher, load_environment
from app.dependencies import get_dispatcher
from app.exception_handlers import register_exception_handlers
from app.routers import resources, tools
from app.settings import Settings, get_settings
from sqlgate.dispatcher import Dispatcher
from sqlgate.prom import REGISTRY

log = logging.getLogger(__name__)

# ----------------------------------------------------------------------------
#  Prometheus HTTP metrics
# ----------------------------------------------------------------------------
REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["path", "method", "status_code"],
    registry=REGISTRY,
)
REQUEST_LATENCY = Histogram(
    "http_request_latency_seconds",
    "Request latency (seconds)",
    ["path", "method"],
    registry=REGISTRY,
)


def create_app(
    settings: Optional[Settings] = None, *, dispatcher: Optional[Dispatcher] = None
) -> FastAPI:
    """
    Build the HTTP app.

    The adapter is created and initialized in the lifespan, once per
    process, and closed on shutdown. Pass `dispatcher` to serve an existing
    one (tests, embedding).
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        d = dispatcher or build_dispatcher(settings, metrics=PrometheusMetrics())
        await d.start()
        app.state.dispatcher = d
        log.info("HTTP transport ready", extra={"backend": d.adapter.metadata().type})
        try:
            yield
        finally:
            app.state.dispatcher = None
            await d.aclose()

    application = FastAPI(
        title="sqlgate",
        version=settings.app_version,
        description="Uniform SQL tool server over SQLite, SQL Server, PostgreSQL and MySQL",
        lifespan=lifespan,
    )
    application.state.settings = settings
    application.state.dispatcher = None
    register_exception_handlers(application)

    application.include_router(tools.router, prefix="/api/v1")
    application.include_router(resources.router, prefix="/api/v1")

    @application.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        start = time.perf_counter()
        response: Response = await call_next(request)
        elapsed = time.perf_counter() - start
        route = request.scope.get("route")
        path = getattr(route, "path", None) or request.url.path
        name = getattr(route, "name", None) or path

        REQUEST_COUNT.labels(
            path=name,
            method=request.method,
            status_code=str(getattr(response, "status_code", 500)),
        ).inc()
        REQUEST_LATENCY.labels(path=name, method=request.method).observe(elapsed)
        return response

    # ------------------------------------------------------------------------
    #  System Endpoints
    # ------------------------------------------------------------------------
    @application.get("/healthz", response_class=PlainTextResponse, tags=["system"])
    def healthz() -> str:
        return "ok"

    @application.get("/readyz", response_class=PlainTextResponse, tags=["system"])
    async def readyz(d: Dispatcher = Depends(get_dispatcher)) -> str:
        """Ready once the backend answers a list-tables query."""
        try:
            await d.adapter.query_all(d.adapter.list_tables_statement())
        except Exception as exc:
            log.warning("Readiness check failed: %s", exc)
            raise HTTPException(status_code=503, detail="not ready")
        return "ready"

    @application.get("/metrics", tags=["system"])
    def metrics() -> Response:
        data = generate_latest(REGISTRY)
        return Response(content=data, media_type=CONTENT_TYPE_LATEST)

    return application


def run_http(settings: Settings) -> None:
    """Serve the HTTP transport with uvicorn (blocking)."""
    import uvicorn

    uvicorn.run(
        create_app(settings),
        host=settings.http_host,
        port=settings.http_port,
        log_level=settings.log_level.lower(),
    )


load_environment()
application = create_app()
app = application
