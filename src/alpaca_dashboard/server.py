from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from . import __version__
from .alpaca.errors import AlpacaError
from .api.devices import router as devices_router
from .api.errors import install_exception_handlers
from .api.events import router as events_router
from .api.images import router as images_router
from .api.management import router as management_router
from .config.settings import Settings
from .devices.controller import DeviceLifecycleController
from .devices.errors import DuplicateDeviceError

logger = structlog.get_logger(__name__)


class AccessLogMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: FastAPI) -> None:
        super().__init__(app)
        self._logger = logging.getLogger("http.access")

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000.0
            self._logger.error(
                "http.request.error",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "query": request.url.query or None,
                    "duration_ms": duration_ms,
                },
                exc_info=True,
            )
            raise

        status = response.status_code
        if status != 200:
            duration_ms = (time.perf_counter() - start) * 1000.0
            extra = {
                "method": request.method,
                "path": request.url.path,
                "query": request.url.query or None,
                "status_code": status,
                "duration_ms": duration_ms,
            }
            if status >= 500:
                self._logger.error("http.request", extra=extra)
            elif status >= 400:
                self._logger.warning("http.request", extra=extra)
            else:
                self._logger.info("http.request", extra=extra)
        return response


async def register_configured_devices(controller: DeviceLifecycleController, settings: Settings) -> None:
    """Add every device from the settings and connect the ones marked ``auto_connect``."""
    for config in settings.devices:
        try:
            controller.add_device(config)
        except (DuplicateDeviceError, ValueError) as exc:
            logger.warning("server.device.skipped", device_id=config.id, error=str(exc))
            continue
        if not config.auto_connect:
            continue
        try:
            await controller.connect(config.id)
        except AlpacaError as exc:
            logger.warning("server.device.auto_connect_failed", device_id=config.id, error=exc.message)


def build_app(settings: Settings, controller: Optional[DeviceLifecycleController] = None) -> FastAPI:
    """Create the FastAPI application with the dashboard endpoints mounted."""
    app = FastAPI(title="Alpaca Dashboard", version=__version__)
    app.state.settings = settings
    app.state.controller = controller or DeviceLifecycleController(settings)

    app.include_router(management_router)
    app.include_router(devices_router, prefix="/api/devices")
    app.include_router(images_router, prefix="/api/images")
    app.include_router(events_router, prefix="/api")
    app.add_middleware(AccessLogMiddleware)
    install_exception_handlers(app)

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        await register_configured_devices(app.state.controller, settings)
        try:
            yield
        finally:
            await app.state.controller.shutdown()

    app.router.lifespan_context = _lifespan

    return app


def configure_logging() -> None:
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
    """Launch the dashboard API server."""
    configure_logging()

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
        devices=len(settings.devices),
        simulation=settings.force_simulation,
    )
    await server.serve()

    logger.info("server.stopped")
