from __future__ import annotations

from typing import Any

import structlog

from .client import AlpacaClient
from .errors import AlpacaError

logger = structlog.get_logger(__name__)

CAMERA_INFO_PROPERTIES = (
    "sensortype",
    "sensorname",
    "cameraxsize",
    "cameraysize",
    "pixelsizex",
    "pixelsizey",
    "maxadu",
    "bayeroffsetx",
    "bayeroffsety",
    "exposuremin",
    "exposuremax",
    "exposureresolution",
    "maxbinx",
    "maxbiny",
    "canabortexposure",
    "canasymmetricbin",
    "canpulseguide",
    "canstopexposure",
    "gainmin",
    "gainmax",
    "offsetmin",
    "offsetmax",
    "readoutmodes",
)

# Capabilities that read as False when the device cannot report them.
_DEFAULT_FALSE_CAPABILITIES = ("cangetcoolerpower", "cansetccdtemperature", "canfastreadout")

CAMERA_STATUS_PROPERTIES = (
    "camerastate",
    "imageready",
    "percentcompleted",
    "ccdtemperature",
    "cooleron",
    "coolerpower",
    "gain",
    "offset",
    "binx",
    "biny",
)


class CameraClient(AlpacaClient):
    def __init__(self, base_url: str, device_number: int = 0, **kwargs) -> None:
        super().__init__(base_url, "camera", device_number, **kwargs)

    async def start_exposure(self, duration: float, light: bool = True) -> None:
        await self.call_method("startexposure", {"Duration": duration, "Light": light})

    async def abort_exposure(self) -> None:
        await self.call_method("abortexposure")

    async def stop_exposure(self) -> None:
        await self.call_method("stopexposure")

    async def get_camera_state(self) -> int:
        return int(await self.get_property("camerastate"))

    async def is_image_ready(self) -> bool:
        return bool(await self.get_property("imageready"))

    async def get_image_data(self) -> bytes:
        return await self.fetch_image_bytes()

    async def set_gain(self, value: int) -> None:
        await self.set_property("gain", value)

    async def set_offset(self, value: int) -> None:
        await self.set_property("offset", value)

    async def set_readout_mode(self, value: int) -> None:
        await self.set_property("readoutmode", value)

    async def set_binning(self, bin_x: int, bin_y: int) -> None:
        await self.set_property("binx", bin_x)
        await self.set_property("biny", bin_y)

    async def set_cooler(self, enabled: bool) -> None:
        await self.set_property("cooleron", enabled)

    async def set_ccd_temperature(self, temperature: float) -> None:
        await self.set_property("setccdtemperature", temperature)

    async def set_subframe(self, start_x: int, start_y: int, num_x: int, num_y: int) -> None:
        await self.set_property("startx", start_x)
        await self.set_property("starty", start_y)
        await self.set_property("numx", num_x)
        await self.set_property("numy", num_y)

    async def pulse_guide(self, direction: int, duration: int) -> None:
        await self.call_method("pulseguide", {"Direction": direction, "Duration": duration})

    async def get_camera_info(self) -> dict[str, Any]:
        info: dict[str, Any] = {}
        for name in _DEFAULT_FALSE_CAPABILITIES:
            try:
                info[name] = bool(await self.get_property(name))
            except AlpacaError as exc:
                logger.debug("alpaca.camera.capability_unavailable", capability=name, error=exc.message)
                info[name] = False
        info.update(await self.get_properties(CAMERA_INFO_PROPERTIES))
        return info
