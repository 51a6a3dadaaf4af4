from __future__ import annotations

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..alpaca.errors import AlpacaError, ErrorType
from ..devices.errors import DeviceNotFoundError, DeviceOperationError, DuplicateDeviceError
from ..imaging.imagebytes import ImageBytesError

logger = structlog.get_logger(__name__)


async def _device_not_found(request: Request, exc: DeviceNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc), "device_id": exc.device_id})


async def _conflict(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


async def _alpaca_error(request: Request, exc: AlpacaError) -> JSONResponse:
    status = 504 if exc.error_type is ErrorType.TIMEOUT else 502
    logger.warning("api.alpaca_error", path=request.url.path, error_type=exc.error_type.value, error=exc.message)
    return JSONResponse(status_code=status, content={"detail": exc.message, "error": exc.to_dict()})


async def _unprocessable(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


def install_exception_handlers(app: FastAPI) -> None:
    """Map domain errors onto HTTP status codes."""
    app.add_exception_handler(DeviceNotFoundError, _device_not_found)
    app.add_exception_handler(DuplicateDeviceError, _conflict)
    app.add_exception_handler(DeviceOperationError, _conflict)
    app.add_exception_handler(AlpacaError, _alpaca_error)
    app.add_exception_handler(ImageBytesError, _unprocessable)
