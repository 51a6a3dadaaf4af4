from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel, Field

from ..config.settings import DeviceConfig
from ..devices.controller import DeviceLifecycleController
from ..devices.errors import DeviceNotFoundError
from ..devices.models import DeviceType
from ..imaging.bayer import BayerPattern
from .dependencies import get_controller

router = APIRouter()


class ConnectedRequest(BaseModel):
    connected: bool


class PropertyWrite(BaseModel):
    value: Any = None


class DeviceUpdate(BaseModel):
    name: Optional[str] = None
    poll_interval_seconds: Optional[float] = Field(default=None, gt=0)
    bayer_pattern: Optional[str] = None


class PollingRequest(BaseModel):
    interval: Optional[float] = Field(default=None, gt=0)


def _device_payload(controller: DeviceLifecycleController, device_id: str) -> dict[str, Any]:
    device = controller.get_device_snapshot(device_id)
    if device is None:
        raise DeviceNotFoundError(device_id)
    payload = device.to_dict()
    payload["polling"] = controller.is_polling(device_id)
    return payload


def _validate_bayer_pattern(value: Optional[str]) -> None:
    try:
        BayerPattern.parse(value)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@router.get("")
def list_devices(controller: DeviceLifecycleController = Depends(get_controller)) -> list[dict[str, Any]]:
    return [
        {**device.to_dict(), "polling": controller.is_polling(device.id)}
        for device in controller.list_devices()
    ]


@router.post("", status_code=201)
async def add_device(
    config: DeviceConfig,
    controller: DeviceLifecycleController = Depends(get_controller),
) -> dict[str, Any]:
    """Register a device; connects straight away when ``auto_connect`` is set."""
    try:
        DeviceType.parse(config.type)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=f"Unknown device type {config.type!r}") from exc
    _validate_bayer_pattern(config.bayer_pattern)

    device = controller.add_device(config)
    if config.auto_connect:
        await controller.connect(device.id)
    return _device_payload(controller, device.id)


@router.get("/{device_id}")
def get_device(device_id: str, controller: DeviceLifecycleController = Depends(get_controller)) -> dict[str, Any]:
    return _device_payload(controller, device_id)


@router.patch("/{device_id}")
def update_device(
    device_id: str,
    update: DeviceUpdate,
    controller: DeviceLifecycleController = Depends(get_controller),
) -> dict[str, Any]:
    changes = update.model_dump(exclude_unset=True)
    if "bayer_pattern" in changes:
        _validate_bayer_pattern(changes["bayer_pattern"])
    controller.update_device(device_id, **changes)
    return _device_payload(controller, device_id)


@router.delete("/{device_id}")
async def remove_device(
    device_id: str,
    controller: DeviceLifecycleController = Depends(get_controller),
) -> dict[str, Any]:
    await controller.remove_device(device_id)
    return {"removed": device_id}


@router.put("/{device_id}/connected")
async def set_connected(
    device_id: str,
    request: ConnectedRequest,
    controller: DeviceLifecycleController = Depends(get_controller),
) -> dict[str, Any]:
    if request.connected:
        await controller.connect(device_id)
    else:
        await controller.disconnect(device_id)
    return _device_payload(controller, device_id)


@router.post("/{device_id}/polling/start")
async def start_polling(
    device_id: str,
    request: Optional[PollingRequest] = Body(default=None),
    controller: DeviceLifecycleController = Depends(get_controller),
) -> dict[str, Any]:
    device = controller.get_device_snapshot(device_id)
    if device is None:
        raise DeviceNotFoundError(device_id)
    if not device.is_connected:
        raise HTTPException(status_code=409, detail=f"Device {device_id!r} is not connected")
    interval = request.interval if request is not None else None
    handle = await controller.start_polling(device_id, interval)
    return {"device_id": device_id, "polling": True, "interval": handle.interval}


@router.post("/{device_id}/polling/stop")
async def stop_polling(
    device_id: str,
    controller: DeviceLifecycleController = Depends(get_controller),
) -> dict[str, Any]:
    if controller.get_device_snapshot(device_id) is None:
        raise DeviceNotFoundError(device_id)
    await controller.stop_polling(device_id)
    return {"device_id": device_id, "polling": False}


@router.get("/{device_id}/properties")
async def fetch_properties(
    device_id: str,
    controller: DeviceLifecycleController = Depends(get_controller),
) -> dict[str, Any]:
    values = await controller.fetch_device_properties(device_id)
    return {"device_id": device_id, "properties": values}


@router.get("/{device_id}/properties/{name}")
async def get_property(
    device_id: str,
    name: str,
    controller: DeviceLifecycleController = Depends(get_controller),
) -> dict[str, Any]:
    value = await controller.get_device_property(device_id, name)
    return {"device_id": device_id, "property": name, "value": value}


@router.put("/{device_id}/properties/{name}")
async def set_property(
    device_id: str,
    name: str,
    request: PropertyWrite,
    controller: DeviceLifecycleController = Depends(get_controller),
) -> dict[str, Any]:
    await controller.set_device_property(device_id, name, request.value)
    return {"device_id": device_id, "property": name, "value": request.value}


@router.post("/{device_id}/methods/{method}")
async def call_method(
    device_id: str,
    method: str,
    args: Optional[dict[str, Any]] = Body(default=None),
    controller: DeviceLifecycleController = Depends(get_controller),
) -> dict[str, Any]:
    result = await controller.call_device_method(device_id, method, args or {})
    return {"device_id": device_id, "method": method, "result": result}


@router.get("/{device_id}/image")
def get_latest_image(
    device_id: str,
    controller: DeviceLifecycleController = Depends(get_controller),
) -> dict[str, Any]:
    if controller.get_device_snapshot(device_id) is None:
        raise DeviceNotFoundError(device_id)
    image = controller.get_latest_image(device_id)
    if image is None:
        raise HTTPException(status_code=404, detail=f"No image downloaded for {device_id!r}")
    return image.summary()


@router.post("/{device_id}/image/download")
async def download_image(
    device_id: str,
    controller: DeviceLifecycleController = Depends(get_controller),
) -> dict[str, Any]:
    image = await controller.download_image(device_id)
    if image is None:
        raise HTTPException(status_code=502, detail=f"Image download failed for {device_id!r}")
    return image.summary()
