from __future__ import annotations

from dataclasses import dataclass

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from status_dashboard.collector import CollectorRunner
from status_dashboard.config import DashboardConfig
from status_dashboard.refresh import RefreshCoordinator
from status_dashboard.service import NO_CACHE_HEADERS, StatusService
from status_dashboard.snapshot_store import SnapshotStore


logger = structlog.get_logger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


@dataclass
class Components:
    store: SnapshotStore
    coordinator: RefreshCoordinator
    service: StatusService


def build_components(config: DashboardConfig) -> Components:
    store = SnapshotStore()
    runner = CollectorRunner(
        config.collector_command,
        cwd=config.collector_workdir,
        timeout_seconds=config.collector_timeout_seconds,
    )
    coordinator = RefreshCoordinator(
        store,
        runner,
        config.status_file_path,
        interval_seconds=config.refresh_interval_seconds,
    )
    service = StatusService(
        store,
        coordinator,
        refresh_interval_minutes=config.refresh_interval_minutes,
    )
    return Components(store=store, coordinator=coordinator, service=service)


def create_app(
    config: DashboardConfig | None = None,
    *,
    components: Components | None = None,
    schedule: bool = True,
) -> FastAPI:
    """Build the HTTP app. With ``schedule`` the refresh cycle runs for the app's lifetime."""
    config = config or DashboardConfig()
    components = components or build_components(config)

    app = FastAPI(
        title="Status Dashboard",
        version="0.1.0",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        redirect_slashes=False,
    )
    app.state.config = config
    app.state.components = components

    @app.on_event("startup")
    async def _startup() -> None:
        logger.info(
            "Server listening",
            port=config.port,
            refresh_interval_minutes=config.refresh_interval_minutes,
            refresh_interval_ms=config.refresh_interval_ms,
            status_url=f"http://localhost:{config.port}/",
            health_url=f"http://localhost:{config.port}/health",
        )
        if schedule:
            components.coordinator.schedule_periodic(config.refresh_interval_seconds)

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await components.coordinator.stop()
        logger.info("Server closed")

    @app.middleware("http")
    async def _method_and_cors(request: Request, call_next):
        if request.method == "OPTIONS":
            response = Response(status_code=200)
        elif request.method != "GET":
            response = PlainTextResponse("Method Not Allowed\n", status_code=405)
        else:
            response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(_request: Request, exc: StarletteHTTPException) -> PlainTextResponse:
        if exc.status_code == 404:
            return PlainTextResponse("Not Found\n", status_code=404)
        return PlainTextResponse(f"{exc.detail}\n", status_code=exc.status_code)

    async def _status_page() -> Response:
        content, content_type = components.service.get_status_page()
        return Response(content=content, media_type=None, headers={**NO_CACHE_HEADERS, "Content-Type": content_type})

    async def _health() -> JSONResponse:
        return JSONResponse(content=components.service.get_health().to_payload())

    app.add_api_route("/", _status_page, methods=["GET"], include_in_schema=False)
    app.add_api_route("/status", _status_page, methods=["GET"], include_in_schema=False)
    app.add_api_route("/health", _health, methods=["GET"], include_in_schema=False)
    app.add_api_route("/api/status", _health, methods=["GET"], include_in_schema=False)

    return app
