from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional, Protocol, runtime_checkable

import httpx

from ..alpaca.client import AlpacaClient
from ..alpaca.factory import create_alpaca_client
from ..config.settings import Settings
from .models import Device
from .simulation import SimulatedTransport


@runtime_checkable
class DeviceTransport(Protocol):
    """What the lifecycle controller needs from a device endpoint."""

    simulated: bool

    async def get_property(self, name: str) -> Any: ...

    async def set_property(self, name: str, value: Any) -> Any: ...

    async def call_method(self, name: str, params: Optional[Mapping[str, Any]] = None) -> Any: ...

    async def get_properties(self, names: Iterable[str]) -> dict[str, Any]: ...

    async def fetch_image_bytes(self) -> bytes: ...

    async def aclose(self) -> None: ...


class AlpacaTransport:
    simulated = False

    def __init__(self, client: AlpacaClient) -> None:
        self.client = client

    async def get_property(self, name: str) -> Any:
        return await self.client.get_property(name)

    async def set_property(self, name: str, value: Any) -> Any:
        return await self.client.set_property(name, value)

    async def call_method(self, name: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        return await self.client.call_method(name, params)

    async def get_properties(self, names: Iterable[str]) -> dict[str, Any]:
        return await self.client.get_properties(names)

    async def fetch_image_bytes(self) -> bytes:
        return await self.client.fetch_image_bytes()

    async def aclose(self) -> None:
        await self.client.aclose()


def create_transport(
    device: Device,
    settings: Settings,
    *,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> DeviceTransport:
    """Pick the real or simulated transport once, at registration."""
    if device.api_base_url and not settings.force_simulation:
        client = create_alpaca_client(
            device.api_base_url,
            device.type.value,
            device.device_number,
            timeout=settings.client_timeout_seconds,
            retries=settings.client_retries,
            retry_delay=settings.client_retry_delay_seconds,
            transport=http_transport,
        )
        return AlpacaTransport(client)

    return SimulatedTransport(device.type, name=device.name or device.id)
