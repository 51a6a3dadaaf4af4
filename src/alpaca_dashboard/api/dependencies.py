from __future__ import annotations

from fastapi import Request

from ..config.settings import Settings
from ..devices.controller import DeviceLifecycleController


def get_controller(request: Request) -> DeviceLifecycleController:
    return request.app.state.controller


def get_settings(request: Request) -> Settings:
    return request.app.state.settings
