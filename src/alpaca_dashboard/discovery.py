from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
import structlog

from .config.settings import DeviceConfig, Settings
from .devices.models import DeviceType

logger = structlog.get_logger(__name__)

# 15 bytes of "alpacadiscovery", the protocol version at byte 15, zero padding to 64.
DISCOVERY_MESSAGE = b"alpacadiscovery1".ljust(64, b"\x00")


@dataclass
class DiscoveredServer:
    address: str
    port: int
    server_name: str = ""
    manufacturer: str = ""
    location: str = ""
    discovered_at: float = field(default_factory=time.time)
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return f"{self.address}:{self.port}"

    @property
    def base_url(self) -> str:
        return f"http://{self.address}:{self.port}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "port": self.port,
            "server_name": self.server_name,
            "manufacturer": self.manufacturer,
            "location": self.location,
            "discovered_at": self.discovered_at,
            "base_url": self.base_url,
        }


def parse_discovery_response(data: bytes, addr: tuple[str, int]) -> Optional[DiscoveredServer]:
    """Turn one discovery reply into a server, or ``None`` if it is not one."""
    try:
        payload = json.loads(data.decode("utf-8", errors="ignore"))
    except ValueError:
        logger.debug("discovery.reply.unparsable", address=addr[0])
        return None
    if not isinstance(payload, dict):
        return None
    port = payload.get("AlpacaPort")
    if not isinstance(port, int) or isinstance(port, bool) or port <= 0:
        return None
    return DiscoveredServer(
        address=addr[0],
        port=port,
        server_name=str(payload.get("ServerName") or ""),
        manufacturer=str(payload.get("Manufacturer") or ""),
        location=str(payload.get("Location") or ""),
        extra=payload,
    )


class _DiscoveryClientProtocol(asyncio.DatagramProtocol):
    def __init__(self) -> None:
        super().__init__()
        self.transport: asyncio.transports.DatagramTransport | None = None
        self.servers: dict[str, DiscoveredServer] = {}

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = transport  # type: ignore[assignment]

    def datagram_received(self, data: bytes, addr) -> None:
        server = parse_discovery_response(data, addr)
        if server is None:
            return
        self.servers[server.key] = server
        logger.debug("discovery.reply", address=server.address, port=server.port, server_name=server.server_name)

    def error_received(self, exc: Exception) -> None:
        logger.warning("discovery.error", error=str(exc))


async def discover_servers(
    settings: Settings,
    *,
    timeout: Optional[float] = None,
    broadcast_address: Optional[str] = None,
) -> list[DiscoveredServer]:
    """Broadcast an Alpaca discovery request and collect replies until ``timeout``."""
    loop = asyncio.get_running_loop()
    transport, protocol = await loop.create_datagram_endpoint(
        _DiscoveryClientProtocol,
        local_addr=("0.0.0.0", 0),
        allow_broadcast=True,
    )
    target = (broadcast_address or settings.discovery_broadcast_address, settings.discovery_port)
    wait = settings.discovery_timeout_seconds if timeout is None else timeout
    try:
        transport.sendto(DISCOVERY_MESSAGE, target)
        logger.info("discovery.broadcast", address=target[0], port=target[1], timeout=wait)
        await asyncio.sleep(wait)
    finally:
        transport.close()

    servers = sorted(protocol.servers.values(), key=lambda server: server.key)
    logger.info("discovery.completed", servers=len(servers))
    return servers


async def fetch_configured_devices(
    server: DiscoveredServer,
    *,
    timeout: float = 10.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> list[DeviceConfig]:
    """Read a server's configured devices and describe each as a :class:`DeviceConfig`.

    Device types the dashboard does not know are skipped.
    """
    url = f"{server.base_url}/management/v1/configureddevices"
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        response = await client.get(url)
        response.raise_for_status()
        payload = response.json()

    configs: list[DeviceConfig] = []
    for entry in payload.get("Value") or []:
        raw_type = str(entry.get("DeviceType", ""))
        try:
            device_type = DeviceType.parse(raw_type)
        except ValueError:
            logger.debug("discovery.device.unsupported", server=server.key, device_type=raw_type)
            continue
        number = int(entry.get("DeviceNumber", 0))
        configs.append(
            DeviceConfig(
                id=f"{server.key}:{device_type.value}:{number}",
                type=device_type.value,
                name=str(entry.get("DeviceName") or f"{raw_type} {number}"),
                api_base_url=f"{server.base_url}/api/v1/{device_type.value}/{number}",
                device_number=number,
            )
        )
    logger.info("discovery.devices", server=server.key, devices=len(configs))
    return configs
