from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from .api.router import router as scope_router
from .config.settings import Settings
from .management.router import router as management_router
from .scope.session import configure_session, shutdown_session
from .scope.state import create_state_store

logger = structlog.get_logger(__name__)


ACCESS_LOGGER_NAME = "http.access"


def _access_level(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Log failed and unusual control API requests; plain 200s stay quiet."""

    def __init__(self, app: FastAPI) -> None:
        super().__init__(app)
        self._logger = logging.getLogger(ACCESS_LOGGER_NAME)

    @staticmethod
    def _context(request: Request, started: float) -> dict[str, object]:
        return {
            "method": request.method,
            "path": request.url.path,
            "query": request.url.query,
            "client": request.client.host if request.client else None,
            "duration_ms": round((time.perf_counter() - started) * 1000.0, 2),
        }

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            self._logger.error("http.request.error", extra=self._context(request, started), exc_info=True)
            raise

        if response.status_code != 200:
            extra = self._context(request, started)
            extra["status_code"] = response.status_code
            self._logger.log(_access_level(response.status_code), "http.request", extra=extra)
        return response


def build_app(settings: Settings) -> FastAPI:
    """Create the FastAPI application exposing the telescope session."""

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        try:
            yield
        finally:
            await shutdown_session()

    app = FastAPI(title="WiFi Telescope Bridge", version="0.1.0", lifespan=_lifespan)
    configure_session(settings, state_store=create_state_store(settings.state_directory))
    app.include_router(management_router, prefix="/management")
    app.include_router(scope_router, prefix="/api/v1/scope")
    app.add_middleware(AccessLogMiddleware)
    return app


def configure_structlog() -> None:
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


async def run_server(settings: Settings) -> None:
    """Serve the control API until interrupted."""
    configure_structlog()
    app = build_app(settings)

    config = uvicorn.Config(
        app=app,
        host=settings.http_host,
        port=settings.http_port,
        log_level="info",
        access_log=False,
    )
    server = uvicorn.Server(config)
    logger.info(
        "server.starting",
        host=settings.http_host,
        port=settings.http_port,
        telescope_host=settings.telescope_host,
        simulation=settings.force_simulation,
    )
    await server.serve()
    logger.info("server.stopped")
