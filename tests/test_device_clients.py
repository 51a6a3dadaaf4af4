from urllib.parse import parse_qs

import httpx
import pytest

from alpaca_dashboard.alpaca.camera import CameraClient
from alpaca_dashboard.alpaca.client import AlpacaClient
from alpaca_dashboard.alpaca.factory import create_alpaca_client
from alpaca_dashboard.alpaca.focuser import FocuserClient
from alpaca_dashboard.alpaca.telescope import TelescopeClient

BASE_URL = "http://alpaca.local:11111"


class _Recorder:
    def __init__(self, values=None, failing=()):
        self.values = values or {}
        self.failing = set(failing)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        name = request.url.path.rsplit("/", 1)[-1]
        form = parse_qs(request.content.decode()) if request.method == "PUT" else {}
        self.requests.append((request.method, name, form))
        if name in self.failing:
            return httpx.Response(200, json={"Value": None, "ErrorNumber": 1024, "ErrorMessage": "Not implemented"})
        return httpx.Response(200, json={"Value": self.values.get(name), "ErrorNumber": 0, "ErrorMessage": ""})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def test_factory_returns_typed_clients():
    assert isinstance(create_alpaca_client(BASE_URL, "Focuser"), FocuserClient)
    assert isinstance(create_alpaca_client(BASE_URL, "camera", 2), CameraClient)
    assert isinstance(create_alpaca_client(BASE_URL, "telescope"), TelescopeClient)
    generic = create_alpaca_client(BASE_URL, "dome", 1)
    assert type(generic) is AlpacaClient
    assert generic.build_url("azimuth") == f"{BASE_URL}/api/v1/dome/1/azimuth"


@pytest.mark.asyncio
async def test_focuser_move_and_status():
    recorder = _Recorder({"position": 4200, "ismoving": True, "maxstep": 50000})
    async with FocuserClient(BASE_URL, transport=recorder.transport) as focuser:
        await focuser.move(4500)
        assert await focuser.get_position() == 4200
        assert await focuser.is_moving() is True
        assert await focuser.get_max_step() == 50000

    method, name, form = recorder.requests[0]
    assert (method, name) == ("PUT", "move")
    assert form["Position"] == ["4500"]


@pytest.mark.asyncio
async def test_focuser_optional_readings_tolerate_missing_support():
    recorder = _Recorder(failing={"temperature", "tempcompavailable", "tempcomp"})
    async with FocuserClient(BASE_URL, transport=recorder.transport) as focuser:
        assert await focuser.get_temperature() is None
        assert await focuser.is_temp_comp_available() is False
        assert await focuser.get_temp_comp() is None


@pytest.mark.asyncio
async def test_camera_start_exposure_parameters():
    recorder = _Recorder({"imageready": False, "camerastate": 2})
    async with CameraClient(BASE_URL, transport=recorder.transport) as camera:
        await camera.start_exposure(1.5, light=False)
        assert await camera.get_camera_state() == 2
        assert await camera.is_image_ready() is False

    method, name, form = recorder.requests[0]
    assert (method, name) == ("PUT", "startexposure")
    assert form["Duration"] == ["1.5"]
    assert form["Light"] == ["False"]


@pytest.mark.asyncio
async def test_camera_info_defaults_missing_capabilities_to_false():
    recorder = _Recorder({"cameraxsize": 4144, "cameraysize": 2822}, failing={"cangetcoolerpower"})
    async with CameraClient(BASE_URL, transport=recorder.transport) as camera:
        info = await camera.get_camera_info()

    assert info["cangetcoolerpower"] is False
    assert info["cameraxsize"] == 4144
    assert info["cameraysize"] == 2822


@pytest.mark.asyncio
async def test_telescope_slew_uses_alpaca_parameter_names():
    recorder = _Recorder()
    async with TelescopeClient(BASE_URL, transport=recorder.transport) as telescope:
        await telescope.slew_to_coordinates_async(5.5, -20.25)
        await telescope.set_tracking(True)

    _, name, form = recorder.requests[0]
    assert name == "slewtocoordinatesasync"
    assert form["RightAscension"] == ["5.5"]
    assert form["Declination"] == ["-20.25"]
    _, name, form = recorder.requests[1]
    assert name == "tracking"
    assert form["Tracking"] == ["True"]
