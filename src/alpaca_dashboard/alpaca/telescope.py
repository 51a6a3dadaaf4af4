from __future__ import annotations

from typing import Any

from .client import AlpacaClient

TELESCOPE_STATE_PROPERTIES = (
    "alignmentmode",
    "altitude",
    "azimuth",
    "atpark",
    "athome",
    "canfindhome",
    "canpark",
    "canunpark",
    "canpulseguide",
    "cansettracking",
    "canslew",
    "canslewaltaz",
    "canslewasync",
    "canslewaltazasync",
    "cansync",
    "declination",
    "declinationrate",
    "doesrefraction",
    "equatorialsystem",
    "focallength",
    "rightascension",
    "rightascensionrate",
    "sideofpier",
    "siderealtime",
    "siteelevation",
    "sitelatitude",
    "sitelongitude",
    "slewing",
    "tracking",
    "trackingrate",
    "utcdate",
    "ispulseguiding",
)


class TelescopeClient(AlpacaClient):
    def __init__(self, base_url: str, device_number: int = 0, **kwargs) -> None:
        super().__init__(base_url, "telescope", device_number, **kwargs)

    async def park(self) -> None:
        await self.call_method("park")

    async def unpark(self) -> None:
        await self.call_method("unpark")

    async def set_park(self) -> None:
        await self.call_method("setpark")

    async def find_home(self) -> None:
        await self.call_method("findhome")

    async def abort_slew(self) -> None:
        await self.call_method("abortslew")

    async def slew_to_coordinates(self, right_ascension: float, declination: float) -> None:
        await self.call_method(
            "slewtocoordinates",
            {"RightAscension": right_ascension, "Declination": declination},
        )

    async def slew_to_coordinates_async(self, right_ascension: float, declination: float) -> None:
        await self.call_method(
            "slewtocoordinatesasync",
            {"RightAscension": right_ascension, "Declination": declination},
        )

    async def slew_to_alt_az(self, altitude: float, azimuth: float) -> None:
        await self.call_method("slewtoaltaz", {"Azimuth": azimuth, "Altitude": altitude})

    async def slew_to_alt_az_async(self, altitude: float, azimuth: float) -> None:
        await self.call_method("slewtoaltazasync", {"Azimuth": azimuth, "Altitude": altitude})

    async def sync_to_coordinates(self, right_ascension: float, declination: float) -> None:
        await self.call_method(
            "synctocoordinates",
            {"RightAscension": right_ascension, "Declination": declination},
        )

    async def set_tracking(self, enabled: bool) -> None:
        await self.set_property("tracking", enabled)

    async def set_tracking_rate(self, rate: int) -> None:
        await self.set_property("trackingrate", rate)

    async def move_axis(self, axis: int, rate: float) -> None:
        await self.call_method("moveaxis", {"Axis": axis, "Rate": rate})

    async def pulse_guide(self, direction: int, duration: int) -> None:
        await self.call_method("pulseguide", {"Direction": direction, "Duration": duration})

    async def get_telescope_state(self) -> dict[str, Any]:
        return await self.get_properties(TELESCOPE_STATE_PROPERTIES)
