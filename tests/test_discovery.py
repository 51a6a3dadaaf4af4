import json

import httpx
import pytest

from alpaca_dashboard.discovery import (
    DISCOVERY_MESSAGE,
    DiscoveredServer,
    fetch_configured_devices,
    parse_discovery_response,
)


def test_discovery_message_layout():
    assert len(DISCOVERY_MESSAGE) == 64
    assert DISCOVERY_MESSAGE[:15] == b"alpacadiscovery"
    assert DISCOVERY_MESSAGE[15:16] == b"1"
    assert DISCOVERY_MESSAGE[16:] == bytes(48)


def test_parse_discovery_response_keys_by_address_and_port():
    payload = json.dumps({"AlpacaPort": 11111, "ServerName": "Observatory"}).encode()

    server = parse_discovery_response(payload, ("192.168.1.50", 32227))

    assert server.key == "192.168.1.50:11111"
    assert server.base_url == "http://192.168.1.50:11111"
    assert server.server_name == "Observatory"


@pytest.mark.parametrize(
    "payload",
    [b"not json", b"[1, 2]", json.dumps({"ServerName": "x"}).encode(), json.dumps({"AlpacaPort": "80"}).encode()],
)
def test_parse_discovery_response_ignores_other_datagrams(payload):
    assert parse_discovery_response(payload, ("10.0.0.2", 32227)) is None


@pytest.mark.asyncio
async def test_fetch_configured_devices_builds_device_configs():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/management/v1/configureddevices"
        return httpx.Response(
            200,
            json={
                "Value": [
                    {"DeviceName": "Main Camera", "DeviceType": "Camera", "DeviceNumber": 0, "UniqueID": "a"},
                    {"DeviceName": "Focuser", "DeviceType": "Focuser", "DeviceNumber": 1, "UniqueID": "b"},
                    {"DeviceName": "Mystery", "DeviceType": "Teleporter", "DeviceNumber": 0, "UniqueID": "c"},
                ],
                "ErrorNumber": 0,
                "ErrorMessage": "",
            },
        )

    server = DiscoveredServer(address="192.168.1.50", port=11111)
    configs = await fetch_configured_devices(server, transport=httpx.MockTransport(handler))

    assert [config.id for config in configs] == ["192.168.1.50:11111:camera:0", "192.168.1.50:11111:focuser:1"]
    assert configs[1].api_base_url == "http://192.168.1.50:11111/api/v1/focuser/1"
    assert configs[1].device_number == 1
    assert configs[0].name == "Main Camera"
