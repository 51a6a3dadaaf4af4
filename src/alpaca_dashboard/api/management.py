from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from .. import __version__
from ..devices.controller import DeviceLifecycleController
from .dependencies import get_controller

router = APIRouter()


@router.get("/health")
def healthcheck(controller: DeviceLifecycleController = Depends(get_controller)) -> dict[str, Any]:
    """Basic health endpoint for monitoring and tests."""
    return {"status": "ok", "version": __version__, "devices": len(controller.list_devices())}
