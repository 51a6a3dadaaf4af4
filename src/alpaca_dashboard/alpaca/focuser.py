from __future__ import annotations

from typing import Optional

import structlog

from .client import AlpacaClient
from .errors import AlpacaError

logger = structlog.get_logger(__name__)


class FocuserClient(AlpacaClient):
    def __init__(self, base_url: str, device_number: int = 0, **kwargs) -> None:
        super().__init__(base_url, "focuser", device_number, **kwargs)

    async def is_moving(self) -> bool:
        return bool(await self.get_property("ismoving"))

    async def get_position(self) -> Optional[int]:
        return await self.get_property("position")

    async def get_step_size(self) -> Optional[float]:
        return await self.get_property("stepsize")

    async def get_max_step(self) -> Optional[int]:
        return await self.get_property("maxstep")

    async def get_max_increment(self) -> Optional[int]:
        return await self.get_property("maxincrement")

    async def get_temperature(self) -> Optional[float]:
        # Many focusers have no probe; a missing reading is not an error.
        try:
            value = await self.get_property("temperature")
        except AlpacaError as exc:
            logger.debug("alpaca.focuser.temperature_unavailable", error=exc.message)
            return None
        return value if isinstance(value, (int, float)) and not isinstance(value, bool) else None

    async def is_temp_comp_available(self) -> bool:
        try:
            return bool(await self.get_property("tempcompavailable"))
        except AlpacaError as exc:
            logger.debug("alpaca.focuser.tempcompavailable_unavailable", error=exc.message)
            return False

    async def get_temp_comp(self) -> Optional[bool]:
        try:
            return await self.get_property("tempcomp")
        except AlpacaError as exc:
            logger.debug("alpaca.focuser.tempcomp_unavailable", error=exc.message)
            return None

    async def set_temp_comp(self, enabled: bool) -> None:
        await self.set_property("tempcomp", enabled)

    async def halt(self) -> None:
        await self.call_method("halt")

    async def move(self, position: int) -> None:
        await self.call_method("move", {"Position": int(position)})
