from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Optional

import structlog

from ..alpaca.camera import CAMERA_INFO_PROPERTIES
from ..alpaca.errors import AlpacaError
from ..alpaca.telescope import TELESCOPE_STATE_PROPERTIES
from ..imaging.bayer import BayerPattern
from .models import Device, DeviceType
from .transport import DeviceTransport

logger = structlog.get_logger(__name__)

COMMON_DETAILS = ("name", "description", "driverinfo", "driverversion", "interfaceversion")

# ASCOM SensorType value for a one-shot-colour sensor with an RGGB mosaic.
SENSOR_TYPE_RGGB = 2


async def _read_required(transport: DeviceTransport, names: Iterable[str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for name in names:
        values[name] = await transport.get_property(name)
    return values


@dataclass(frozen=True)
class DeviceTypeHandler:
    """Which properties a device type reads after connecting and on each poll.

    Failures reading a ``required`` property fail the whole fetch; the
    ``optional`` ones are skipped when the device cannot report them.
    Everything listed in ``derived`` is reset to null on disconnect.
    """

    details_action: str = "fetchDeviceDetails"
    status_action: str = "fetchDeviceStatus"
    details_required: tuple[str, ...] = ()
    details_optional: tuple[str, ...] = COMMON_DETAILS
    status_required: tuple[str, ...] = ()
    status_optional: tuple[str, ...] = ()
    extra_derived: tuple[str, ...] = ()

    @property
    def derived(self) -> tuple[str, ...]:
        names = (
            self.details_required
            + self.status_required
            + self.status_optional
            + self.extra_derived
            + tuple(name for name in self.details_optional if name not in COMMON_DETAILS)
        )
        return tuple(dict.fromkeys(names))

    @property
    def property_names(self) -> tuple[str, ...]:
        return tuple(
            dict.fromkeys(self.details_required + self.details_optional + self.status_required + self.status_optional)
        )

    async def fetch_details(self, transport: DeviceTransport) -> dict[str, Any]:
        values = await _read_required(transport, self.details_required)
        values.update(await transport.get_properties(self.details_optional))
        return values

    async def fetch_status(self, transport: DeviceTransport) -> dict[str, Any]:
        values = await _read_required(transport, self.status_required)
        if self.status_optional:
            values.update(await transport.get_properties(self.status_optional))
        return values

    def wants_image(self, device: Device, status: dict[str, Any]) -> bool:
        return False


@dataclass(frozen=True)
class FocuserHandler(DeviceTypeHandler):
    details_action: str = "fetchFocuserDetails"
    status_action: str = "fetchFocuserStatus"
    details_required: tuple[str, ...] = ("maxstep", "maxincrement", "stepsize")
    details_optional: tuple[str, ...] = COMMON_DETAILS + ("absolute", "tempcompavailable")
    status_required: tuple[str, ...] = ("position", "ismoving")
    status_optional: tuple[str, ...] = ("temperature", "tempcomp")


@dataclass(frozen=True)
class CameraHandler(DeviceTypeHandler):
    details_action: str = "fetchCameraDetails"
    status_action: str = "fetchCameraStatus"
    details_required: tuple[str, ...] = ("cameraxsize", "cameraysize")
    details_optional: tuple[str, ...] = COMMON_DETAILS + CAMERA_INFO_PROPERTIES + (
        "cangetcoolerpower",
        "cansetccdtemperature",
        "canfastreadout",
    )
    status_required: tuple[str, ...] = ("camerastate", "imageready")
    status_optional: tuple[str, ...] = (
        "percentcompleted",
        "ccdtemperature",
        "cooleron",
        "coolerpower",
        "gain",
        "offset",
        "binx",
        "biny",
    )
    extra_derived: tuple[str, ...] = ("isexposing", "hasimage")

    def wants_image(self, device: Device, status: dict[str, Any]) -> bool:
        return bool(status.get("imageready")) and bool(device.value_of("isexposing"))


@dataclass(frozen=True)
class TelescopeHandler(DeviceTypeHandler):
    details_action: str = "fetchTelescopeDetails"
    status_action: str = "fetchTelescopeStatus"
    details_optional: tuple[str, ...] = COMMON_DETAILS + tuple(
        name for name in TELESCOPE_STATE_PROPERTIES if name.startswith("can")
    ) + ("alignmentmode", "equatorialsystem", "focallength", "sitelatitude", "sitelongitude", "siteelevation")
    status_required: tuple[str, ...] = ("rightascension", "declination", "slewing", "tracking", "atpark")
    status_optional: tuple[str, ...] = ("altitude", "azimuth", "athome", "sideofpier", "siderealtime")


_GENERIC_STATUS: dict[DeviceType, tuple[str, ...]] = {
    DeviceType.FILTERWHEEL: ("position", "names"),
    DeviceType.DOME: ("azimuth", "altitude", "shutterstatus", "slewing", "athome", "atpark"),
    DeviceType.ROTATOR: ("position", "mechanicalposition", "ismoving"),
    DeviceType.SWITCH: ("maxswitch",),
    DeviceType.SAFETYMONITOR: ("issafe",),
    DeviceType.OBSERVINGCONDITIONS: (
        "temperature",
        "humidity",
        "dewpoint",
        "pressure",
        "windspeed",
        "skyquality",
        "cloudcover",
    ),
    DeviceType.COVERCALIBRATOR: ("coverstate", "calibratorstate", "brightness"),
}

_HANDLERS: dict[DeviceType, DeviceTypeHandler] = {
    DeviceType.FOCUSER: FocuserHandler(),
    DeviceType.CAMERA: CameraHandler(),
    DeviceType.TELESCOPE: TelescopeHandler(),
}


def handler_for(device_type: DeviceType) -> DeviceTypeHandler:
    handler = _HANDLERS.get(device_type)
    if handler is not None:
        return handler
    return DeviceTypeHandler(status_optional=_GENERIC_STATUS.get(device_type, ()))


def resolve_bayer_pattern(device: Device) -> Optional[BayerPattern]:
    """Configured pattern first, else the one implied by the sensor type and offsets."""
    if device.bayer_pattern:
        return BayerPattern.parse(device.bayer_pattern)
    if device.value_of("sensortype") != SENSOR_TYPE_RGGB:
        return None
    offset_x = int(device.value_of("bayeroffsetx") or 0) % 2
    offset_y = int(device.value_of("bayeroffsety") or 0) % 2
    return {
        (0, 0): BayerPattern.RGGB,
        (1, 0): BayerPattern.GRBG,
        (0, 1): BayerPattern.GBRG,
        (1, 1): BayerPattern.BGGR,
    }[(offset_x, offset_y)]


async def safe_fetch_status(handler: DeviceTypeHandler, transport: DeviceTransport, device_id: str) -> Optional[dict[str, Any]]:
    """Status fetch whose failures are logged and reported as ``None``."""
    try:
        return await handler.fetch_status(transport)
    except AlpacaError as exc:
        logger.warning(
            "device.status.fetch_failed",
            device_id=device_id,
            action=handler.status_action,
            error_type=exc.error_type.value,
            error=exc.message,
        )
        return None
