"""
FastAPI application factory for the live reconciler.

Creates the app with:
- Operator force-refresh routes
- Observability routes (latency, broadcast health, job outcomes)
- WebSocket endpoint for live match events
- Middleware stack
- Health check endpoints
- Lifespan management: one ReconcilerRuntime per process, started on
  startup and stopped on shutdown
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Union

from fastapi import FastAPI, WebSocket

from shared.config import get_settings
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server

from api.dependencies import get_runtime, init_runtime
from api.middleware import setup_middleware
from api.routes.admin import router as admin_router
from api.routes.observability import router as observability_router
from reconciler.runtime import ReconcilerRuntime

logger = get_logger(__name__)


@asynccontextmanager
async def _noop_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """No-op lifespan for testing without DB/Redis."""
    yield


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.
    Builds and starts the reconciler runtime (store, provider, broadcaster,
    scheduler, push feed) and stops it on shutdown.
    """
    settings = get_settings()
    setup_logging("api")
    start_metrics_server(settings.metrics_port)

    runtime = ReconcilerRuntime(settings)
    await runtime.start()
    init_runtime(runtime)

    logger.info(
        "api_service_started",
        host=settings.api_host,
        port=settings.api_port,
    )

    yield

    init_runtime(None)
    await runtime.stop()
    logger.info("api_service_stopped")


def create_app(*, use_lifespan: bool = True) -> FastAPI:
    """Create and configure the FastAPI application. Set use_lifespan=False for testing without DB/Redis."""
    app = FastAPI(
        title="Live Reconciler",
        description="Live match-state reconciliation and event broadcast",
        version="1.0.0",
        lifespan=lifespan if use_lifespan else _noop_lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    setup_middleware(app)

    app.include_router(admin_router)
    app.include_router(observability_router)

    @app.get("/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "reconciler"}

    @app.get("/ready", tags=["system"])
    async def readiness() -> dict[str, Union[str, bool]]:
        """Readiness probe: checks the match store and Redis."""
        checks = await get_runtime().readiness()
        return {"status": "ok" if all(checks.values()) else "degraded", **checks}

    @app.websocket("/v1/ws")
    async def websocket_endpoint(ws: WebSocket) -> None:
        """
        WebSocket endpoint for live match events.

        Server messages:
        - CONNECTED: acknowledgement with the connection id
        - PING: heartbeat every ws_ping_interval_s
        - PONG: response to a client PING
        - GOAL, CARD, SUBSTITUTION, SCORE_CHANGE, GOAL_CANCELLED,
          MATCH_STATE_CHANGE, MINUTE_UPDATE: live events
        """
        try:
            runtime = get_runtime()
        except RuntimeError:
            await ws.close(code=1013, reason="service_unavailable")
            return
        await runtime.broadcaster.handle_connection(ws)

    return app


# For running with uvicorn directly
app = create_app()
