from __future__ import annotations

import asyncio
import time
from typing import Any, Iterable, Mapping, Optional

import numpy as np
import structlog

from ..alpaca.errors import AlpacaError, DeviceErrorDetail, ErrorType
from ..imaging.imagebytes import encode_image_bytes
from .models import DeviceType

logger = structlog.get_logger(__name__)

# ASCOM "not implemented" error number.
NOT_IMPLEMENTED = 0x400
INVALID_OPERATION = 0x40B

CAMERA_IDLE = 0
CAMERA_EXPOSING = 2

_COMMON_DEFAULTS: dict[str, Any] = {
    "connected": False,
    "interfaceversion": 3,
    "driverversion": "0.1.0",
    "supportedactions": [],
}

_TYPE_DEFAULTS: dict[DeviceType, dict[str, Any]] = {
    DeviceType.FOCUSER: {
        "absolute": True,
        "position": 5000,
        "ismoving": False,
        "maxstep": 20000,
        "maxincrement": 20000,
        "stepsize": 1.0,
        "temperature": 12.5,
        "tempcompavailable": True,
        "tempcomp": False,
    },
    DeviceType.CAMERA: {
        "cameraxsize": 64,
        "cameraysize": 48,
        "sensortype": 2,
        "sensorname": "Simulated CMOS",
        "bayeroffsetx": 0,
        "bayeroffsety": 0,
        "maxadu": 65535,
        "pixelsizex": 3.76,
        "pixelsizey": 3.76,
        "binx": 1,
        "biny": 1,
        "maxbinx": 4,
        "maxbiny": 4,
        "gain": 100,
        "gainmin": 0,
        "gainmax": 500,
        "offset": 10,
        "offsetmin": 0,
        "offsetmax": 100,
        "exposuremin": 0.0,
        "exposuremax": 3600.0,
        "exposureresolution": 0.001,
        "canabortexposure": True,
        "canstopexposure": True,
        "canasymmetricbin": False,
        "canpulseguide": False,
        "cangetcoolerpower": True,
        "cansetccdtemperature": True,
        "canfastreadout": False,
        "cooleron": False,
        "coolerpower": 0.0,
        "ccdtemperature": 20.0,
        "setccdtemperature": 0.0,
        "readoutmodes": ["Normal"],
        "readoutmode": 0,
        "camerastate": CAMERA_IDLE,
        "imageready": False,
        "percentcompleted": 0,
    },
    DeviceType.TELESCOPE: {
        "alignmentmode": 1,
        "altitude": 45.0,
        "azimuth": 180.0,
        "atpark": False,
        "athome": False,
        "canpark": True,
        "canunpark": True,
        "canfindhome": True,
        "canslew": True,
        "canslewasync": True,
        "canslewaltaz": True,
        "canslewaltazasync": True,
        "cansync": True,
        "cansettracking": True,
        "canpulseguide": False,
        "rightascension": 0.0,
        "declination": 0.0,
        "siderealtime": 0.0,
        "sitelatitude": 51.5,
        "sitelongitude": 0.0,
        "siteelevation": 10.0,
        "slewing": False,
        "tracking": False,
        "trackingrate": 0,
        "equatorialsystem": 2,
        "focallength": 0.8,
        "sideofpier": 0,
        "doesrefraction": False,
        "ispulseguiding": False,
    },
}


def _not_implemented(name: str) -> AlpacaError:
    message = f"{name} is not implemented by the simulator"
    return AlpacaError(
        message,
        ErrorType.DEVICE,
        status_code=200,
        device_error=DeviceErrorDetail(NOT_IMPLEMENTED, message),
    )


class SimulatedTransport:
    """In-memory device used when no Alpaca endpoint is configured."""

    simulated = True

    def __init__(self, device_type: DeviceType, *, name: str = "Simulator", seed: Optional[int] = None) -> None:
        self.device_type = device_type
        self.properties: dict[str, Any] = {**_COMMON_DEFAULTS, **_TYPE_DEFAULTS.get(device_type, {})}
        self.properties["name"] = name
        self.properties["description"] = f"Simulated {device_type.value}"
        self._exposure_started: float | None = None
        self._exposure_duration = 0.0
        self._rng = np.random.default_rng(seed)

    def _refresh_exposure(self) -> None:
        if self._exposure_started is None:
            return
        elapsed = time.monotonic() - self._exposure_started
        if elapsed >= self._exposure_duration:
            self._exposure_started = None
            self.properties.update(camerastate=CAMERA_IDLE, imageready=True, percentcompleted=100)
        else:
            percent = int(100 * elapsed / self._exposure_duration) if self._exposure_duration else 100
            self.properties["percentcompleted"] = percent

    async def get_property(self, name: str) -> Any:
        await asyncio.sleep(0)
        key = name.lower()
        if self.device_type is DeviceType.CAMERA:
            self._refresh_exposure()
        if key not in self.properties:
            raise _not_implemented(key)
        return self.properties[key]

    async def set_property(self, name: str, value: Any) -> Any:
        await asyncio.sleep(0)
        self.properties[name.lower()] = value
        return None

    async def get_properties(self, names: Iterable[str]) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for name in names:
            try:
                values[name] = await self.get_property(name)
            except AlpacaError:
                continue
        return values

    async def call_method(self, name: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        await asyncio.sleep(0)
        key = name.lower()
        args = {k.lower(): v for k, v in (params or {}).items()}
        handler = getattr(self, f"_method_{key}", None)
        if handler is None:
            raise _not_implemented(key)
        logger.debug("simulation.method", device_type=self.device_type.value, method=key, args=args)
        return handler(args)

    def _method_move(self, args: dict[str, Any]) -> None:
        max_step = int(self.properties.get("maxstep", 20000))
        self.properties["position"] = max(0, min(int(args.get("position", 0)), max_step))
        self.properties["ismoving"] = False

    def _method_halt(self, args: dict[str, Any]) -> None:
        self.properties["ismoving"] = False

    def _method_startexposure(self, args: dict[str, Any]) -> None:
        duration = float(args.get("duration", 0.0))
        if duration < 0:
            message = "Exposure duration must not be negative"
            raise AlpacaError(
                message,
                ErrorType.DEVICE,
                status_code=200,
                device_error=DeviceErrorDetail(INVALID_OPERATION, message),
            )
        self._exposure_started = time.monotonic()
        self._exposure_duration = duration
        self.properties.update(camerastate=CAMERA_EXPOSING, imageready=False, percentcompleted=0)

    def _method_abortexposure(self, args: dict[str, Any]) -> None:
        self._exposure_started = None
        self.properties.update(camerastate=CAMERA_IDLE, imageready=False, percentcompleted=0)

    def _method_stopexposure(self, args: dict[str, Any]) -> None:
        if self._exposure_started is not None:
            self._exposure_duration = 0.0
        self._refresh_exposure()

    def _method_park(self, args: dict[str, Any]) -> None:
        self.properties.update(atpark=True, tracking=False, slewing=False)

    def _method_unpark(self, args: dict[str, Any]) -> None:
        self.properties["atpark"] = False

    def _method_findhome(self, args: dict[str, Any]) -> None:
        self.properties.update(athome=True, atpark=False, azimuth=0.0, altitude=0.0)

    def _method_abortslew(self, args: dict[str, Any]) -> None:
        self.properties["slewing"] = False

    def _slew(self, args: dict[str, Any]) -> None:
        if self.properties.get("atpark"):
            message = "Cannot slew while parked"
            raise AlpacaError(
                message,
                ErrorType.DEVICE,
                status_code=200,
                device_error=DeviceErrorDetail(INVALID_OPERATION, message),
            )
        self.properties.update(
            rightascension=float(args.get("rightascension", 0.0)),
            declination=float(args.get("declination", 0.0)),
            slewing=False,
            athome=False,
        )

    _method_slewtocoordinates = _slew
    _method_slewtocoordinatesasync = _slew
    _method_synctocoordinates = _slew

    def _method_slewtoaltaz(self, args: dict[str, Any]) -> None:
        self.properties.update(
            altitude=float(args.get("altitude", 0.0)),
            azimuth=float(args.get("azimuth", 0.0)),
            athome=False,
        )

    _method_slewtoaltazasync = _method_slewtoaltaz

    async def fetch_image_bytes(self) -> bytes:
        if self.device_type is not DeviceType.CAMERA:
            raise _not_implemented("imagearray")
        self._refresh_exposure()
        if not self.properties.get("imageready"):
            message = "No image is ready"
            raise AlpacaError(
                message,
                ErrorType.DEVICE,
                status_code=200,
                device_error=DeviceErrorDetail(INVALID_OPERATION, message),
            )
        width = int(self.properties["cameraxsize"])
        height = int(self.properties["cameraysize"])
        xs = np.linspace(1000, 20000, width)[:, None]
        ys = np.linspace(0, 5000, height)[None, :]
        noise = self._rng.normal(0, 200, size=(width, height))
        frame = np.clip(xs + ys + noise, 0, 65535).astype(np.uint16)
        return encode_image_bytes(frame)

    async def aclose(self) -> None:
        return None
