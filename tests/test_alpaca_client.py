from urllib.parse import parse_qs

import httpx
import numpy as np
import pytest

from alpaca_dashboard.alpaca.client import IMAGEBYTES_MEDIA_TYPE, AlpacaClient, parameter_name
from alpaca_dashboard.alpaca.errors import AlpacaError, ErrorType
from alpaca_dashboard.imaging.imagebytes import encode_image_bytes, parse_header

BASE_URL = "http://alpaca.local:11111"


def _client(handler, **kwargs) -> AlpacaClient:
    kwargs.setdefault("retry_delay", 0.0)
    return AlpacaClient(
        BASE_URL,
        "focuser",
        0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def _ok(value, **extra):
    return httpx.Response(200, json={"Value": value, "ErrorNumber": 0, "ErrorMessage": "", **extra})


def test_build_url_appends_device_path():
    client = AlpacaClient(BASE_URL + "/", "Camera", 1)

    assert client.build_url("ImageReady") == f"{BASE_URL}/api/v1/camera/1/imageready"


def test_build_url_replaces_existing_api_path():
    client = AlpacaClient(f"{BASE_URL}/api/v1/focuser/0", "focuser", 0)

    assert client.build_url("position") == f"{BASE_URL}/api/v1/focuser/0/position"


def test_parameter_names_follow_alpaca_capitalisation():
    assert parameter_name("tempcomp") == "TempComp"
    assert parameter_name("setccdtemperature") == "SetCCDTemperature"
    assert parameter_name("brightness") == "Brightness"


@pytest.mark.asyncio
async def test_get_property_sends_client_ids_and_returns_value():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return _ok(1234)

    async with _client(handler, client_id=42) as client:
        assert await client.get_property("position") == 1234
        await client.get_property("position")

    assert seen[0].method == "GET"
    assert seen[0].url.path == "/api/v1/focuser/0/position"
    assert seen[0].url.params["ClientID"] == "42"
    assert seen[0].url.params["ClientTransactionID"] == "1"
    assert seen[1].url.params["ClientTransactionID"] == "2"


@pytest.mark.asyncio
async def test_put_sends_form_encoded_parameters():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(parse_qs(request.content.decode()))
        assert request.headers["content-type"].startswith("application/x-www-form-urlencoded")
        return _ok(None)

    async with _client(handler) as client:
        await client.set_property("tempcomp", True)
        await client.call_method("move", {"Position": 1500})

    assert bodies[0]["TempComp"] == ["True"]
    assert bodies[1]["Position"] == ["1500"]
    assert "ClientTransactionID" in bodies[1]


@pytest.mark.asyncio
async def test_device_error_in_body_is_not_retried():
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, json={"Value": None, "ErrorNumber": 1035, "ErrorMessage": "Invalid operation"})

    async with _client(handler, retries=3) as client:
        with pytest.raises(AlpacaError) as excinfo:
            await client.get_property("position")

    error = excinfo.value
    assert calls == 1
    assert error.error_type is ErrorType.DEVICE
    assert error.device_error.error_number == 1035
    assert error.message == "Invalid operation"
    assert error.retry is False
    assert error.url == f"{BASE_URL}/api/v1/focuser/0/position"


@pytest.mark.asyncio
async def test_server_errors_are_retried_then_raised():
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(503, text="unavailable")

    async with _client(handler, retries=2) as client:
        with pytest.raises(AlpacaError) as excinfo:
            await client.get_property("position")

    assert calls == 3
    assert excinfo.value.error_type is ErrorType.SERVER
    assert excinfo.value.status_code == 503
    assert excinfo.value.retry is True


@pytest.mark.asyncio
async def test_client_errors_are_not_retried():
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(400, text="Bad parameter")

    async with _client(handler, retries=2) as client:
        with pytest.raises(AlpacaError) as excinfo:
            await client.get_property("position")

    assert calls == 1
    assert excinfo.value.error_type is ErrorType.SERVER
    assert excinfo.value.retry is False


@pytest.mark.asyncio
async def test_error_status_with_alpaca_body_is_a_device_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"ErrorNumber": 1025, "ErrorMessage": "Invalid value"})

    async with _client(handler) as client:
        with pytest.raises(AlpacaError) as excinfo:
            await client.get_property("position")

    assert excinfo.value.error_type is ErrorType.DEVICE
    assert excinfo.value.device_error.error_number == 1025


@pytest.mark.asyncio
async def test_timeout_recovers_on_retry():
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise httpx.ReadTimeout("timed out", request=request)
        return _ok(7)

    async with _client(handler, retries=1) as client:
        assert await client.get_property("position") == 7

    assert calls == 2


@pytest.mark.asyncio
async def test_timeout_exhausting_retries_is_classified():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    async with _client(handler, retries=1) as client:
        with pytest.raises(AlpacaError) as excinfo:
            await client.get_property("position")

    assert excinfo.value.error_type is ErrorType.TIMEOUT
    assert excinfo.value.retry is True


@pytest.mark.asyncio
async def test_connection_failure_is_a_network_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler, retries=0) as client:
        with pytest.raises(AlpacaError) as excinfo:
            await client.get_property("position")

    assert excinfo.value.error_type is ErrorType.NETWORK


@pytest.mark.asyncio
async def test_unparsable_body_is_unknown():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>not json</html>")

    async with _client(handler) as client:
        with pytest.raises(AlpacaError) as excinfo:
            await client.get_property("position")

    assert excinfo.value.error_type is ErrorType.UNKNOWN


@pytest.mark.asyncio
async def test_get_properties_skips_failures():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/temperature"):
            return httpx.Response(200, json={"Value": 0, "ErrorNumber": 1024, "ErrorMessage": "Not implemented"})
        return _ok(10)

    async with _client(handler) as client:
        values = await client.get_properties(["position", "temperature", "maxstep"])

    assert values == {"position": 10, "maxstep": 10}


@pytest.mark.asyncio
async def test_device_state_is_flattened():
    def handler(request: httpx.Request) -> httpx.Response:
        return _ok([{"Name": "Position", "Value": 100}, {"Name": "IsMoving", "Value": False}])

    async with _client(handler) as client:
        assert await client.get_device_state() == {"position": 100, "ismoving": False}


@pytest.mark.asyncio
async def test_device_state_missing_returns_none():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"Value": None, "ErrorNumber": 1024, "ErrorMessage": "Not implemented"})

    async with _client(handler) as client:
        assert await client.get_device_state() is None


@pytest.mark.asyncio
async def test_fetch_image_bytes_requests_binary_media_type():
    frame = np.arange(6, dtype=np.uint16).reshape(3, 2)
    payload = encode_image_bytes(frame)

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["accept"] == IMAGEBYTES_MEDIA_TYPE
        assert request.url.path.endswith("/imagearray")
        return httpx.Response(200, content=payload, headers={"content-type": IMAGEBYTES_MEDIA_TYPE})

    async with AlpacaClient(BASE_URL, "camera", transport=httpx.MockTransport(handler)) as client:
        assert await client.fetch_image_bytes() == payload


@pytest.mark.asyncio
async def test_fetch_image_bytes_falls_back_to_json_array():
    def handler(request: httpx.Request) -> httpx.Response:
        return _ok([[1, 2], [3, 4], [5, 6]], Type=2, Rank=2)

    async with AlpacaClient(BASE_URL, "camera", transport=httpx.MockTransport(handler)) as client:
        buffer = await client.fetch_image_bytes()

    metadata = parse_header(buffer)
    assert (metadata.width, metadata.height) == (3, 2)
