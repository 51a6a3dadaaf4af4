from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from typing import Any, Iterable, Literal, Mapping, Optional

import httpx
import numpy as np
import structlog

from ..imaging.imagebytes import encode_image_bytes
from .errors import AlpacaError, DeviceErrorDetail, ErrorType


logger = structlog.get_logger(__name__)

IMAGEBYTES_MEDIA_TYPE = "application/imagebytes"

# Alpaca form parameter names whose capitalisation is not just a capital first letter.
PARAMETER_NAMES = {
    "connected": "Connected",
    "tempcomp": "TempComp",
    "tracking": "Tracking",
    "trackingrate": "TrackingRate",
    "gain": "Gain",
    "offset": "Offset",
    "binx": "BinX",
    "biny": "BinY",
    "numx": "NumX",
    "numy": "NumY",
    "startx": "StartX",
    "starty": "StartY",
    "cooleron": "CoolerOn",
    "setccdtemperature": "SetCCDTemperature",
    "readoutmode": "ReadoutMode",
    "targetrightascension": "TargetRightAscension",
    "targetdeclination": "TargetDeclination",
    "siteelevation": "SiteElevation",
    "sitelatitude": "SiteLatitude",
    "sitelongitude": "SiteLongitude",
    "slewsettletime": "SlewSettleTime",
    "sideofpier": "SideOfPier",
    "guideratedeclination": "GuideRateDeclination",
    "guideraterightascension": "GuideRateRightAscension",
    "declinationrate": "DeclinationRate",
    "rightascensionrate": "RightAscensionRate",
    "doesrefraction": "DoesRefraction",
    "utcdate": "UTCDate",
    "position": "Position",
}


def parameter_name(name: str) -> str:
    mapped = PARAMETER_NAMES.get(name.lower())
    if mapped:
        return mapped
    return name[:1].upper() + name[1:]


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "True" if value else "False"
    return str(value)


def _array_from_value(value: Any) -> np.ndarray:
    array = np.asarray(value)
    if array.dtype.kind == "f":
        return array.astype(np.float32)
    if array.dtype.kind not in {"i", "u", "b"}:
        raise AlpacaError("Image array holds non-numeric values", ErrorType.UNKNOWN)
    if array.size == 0:
        return array.astype(np.uint16)
    low, high = int(array.min()), int(array.max())
    if low >= 0 and high <= np.iinfo(np.uint16).max:
        return array.astype(np.uint16)
    if low >= 0 and high <= np.iinfo(np.uint32).max:
        return array.astype(np.uint32)
    return array.astype(np.int32)


@dataclass(slots=True)
class AlpacaClient:
    """Async client for one Alpaca device endpoint.

    Every request is classified into an :class:`AlpacaError` on failure.
    Timeouts, network failures and 5xx responses are retried ``retries``
    times with a linearly growing delay; device errors reported with a
    200 status and unparsable bodies are raised immediately.
    """

    base_url: str
    device_type: str
    device_number: int = 0
    timeout: float = 10.0
    retries: int = 2
    retry_delay: float = 1.0
    client_id: int = field(default_factory=lambda: random.randint(0, 65535))
    transport: Optional[httpx.AsyncBaseTransport] = None
    _client: httpx.AsyncClient | None = None
    _transaction_id: int = 0

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")
        self.device_type = self.device_type.lower()

    async def __aenter__(self) -> "AlpacaClient":
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self.transport,
                headers={"Accept": "application/json"},
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def build_url(self, name: str) -> str:
        path = f"/api/v1/{self.device_type}/{self.device_number}/{name.lower()}"
        index = self.base_url.lower().find("/api/v1/")
        if index != -1:
            return f"{self.base_url[:index]}{path}"
        return f"{self.base_url}{path}"

    def _next_transaction_id(self) -> int:
        self._transaction_id = (self._transaction_id % 4294967295) + 1
        return self._transaction_id

    def _envelope(self, params: Optional[Mapping[str, Any]]) -> dict[str, str]:
        payload = {
            key: _format_value(value)
            for key, value in (params or {}).items()
            if value is not None
        }
        payload["ClientID"] = str(self.client_id)
        payload["ClientTransactionID"] = str(self._next_transaction_id())
        return payload

    async def _send(
        self,
        method: Literal["GET", "PUT"],
        name: str,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> httpx.Response:
        client = await self._ensure_client()
        url = self.build_url(name)

        attempt = 0
        while True:
            attempt += 1
            envelope = self._envelope(params)
            try:
                if method == "GET":
                    response = await client.get(url, params=envelope, headers=headers)
                else:
                    response = await client.put(url, data=envelope, headers=headers)
                self._raise_for_status(response, url)
                return response
            except AlpacaError as exc:
                error = exc
            except httpx.TimeoutException as exc:
                error = AlpacaError(
                    f"Request timed out after {self.timeout}s",
                    ErrorType.TIMEOUT,
                    url=url,
                    retry=True,
                )
                error.__cause__ = exc
            except httpx.TransportError as exc:
                error = AlpacaError(
                    f"Network error: {exc}",
                    ErrorType.NETWORK,
                    url=url,
                    retry=True,
                )
                error.__cause__ = exc

            if not error.retry or attempt > self.retries:
                raise error
            logger.warning(
                "alpaca.http.retry",
                method=method,
                url=url,
                attempt=attempt,
                error_type=error.error_type.value,
                error=error.message,
            )
            await asyncio.sleep(self.retry_delay * attempt)

    @staticmethod
    def _raise_for_status(response: httpx.Response, url: str) -> None:
        if response.is_success:
            return
        status = response.status_code
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict) and payload.get("ErrorNumber") is not None:
            error_number = int(payload["ErrorNumber"])
            error_message = str(payload.get("ErrorMessage") or "")
            raise AlpacaError(
                error_message or f"Error {error_number}",
                ErrorType.DEVICE,
                url=url,
                status_code=status,
                device_error=DeviceErrorDetail(error_number, error_message),
                retry=status >= 500,
            )
        raise AlpacaError(
            f"HTTP error {status}: {response.reason_phrase}",
            ErrorType.SERVER,
            url=url,
            status_code=status,
            retry=status >= 500,
        )

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        url = str(response.url.copy_with(query=None))
        try:
            data = response.json()
        except ValueError as exc:
            raise AlpacaError(
                "Failed to parse response as JSON",
                ErrorType.UNKNOWN,
                url=url,
                status_code=response.status_code,
            ) from exc
        if not isinstance(data, dict):
            return data
        error_number = data.get("ErrorNumber") or 0
        if error_number:
            error_message = str(data.get("ErrorMessage") or "")
            raise AlpacaError(
                error_message or f"Error {error_number}",
                ErrorType.DEVICE,
                url=url,
                status_code=response.status_code,
                device_error=DeviceErrorDetail(int(error_number), error_message),
            )
        return data.get("Value")

    async def get(self, name: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        response = await self._send("GET", name, params)
        return self._decode(response)

    async def put(self, name: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        response = await self._send("PUT", name, params)
        return self._decode(response)

    async def get_property(self, name: str) -> Any:
        return await self.get(name)

    async def set_property(self, name: str, value: Any) -> Any:
        return await self.put(name, {parameter_name(name): value})

    async def call_method(self, name: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        return await self.put(name, params)

    async def get_properties(self, names: Iterable[str]) -> dict[str, Any]:
        """Fetch several properties, skipping the ones that fail."""
        values: dict[str, Any] = {}
        for name in names:
            try:
                values[name] = await self.get_property(name)
            except AlpacaError as exc:
                logger.debug(
                    "alpaca.property.fetch_failed",
                    device_type=self.device_type,
                    property=name,
                    error_type=exc.error_type.value,
                    error=exc.message,
                )
        return values

    async def get_device_state(self) -> Optional[dict[str, Any]]:
        """Read the ``devicestate`` summary, or ``None`` if the device lacks it."""
        try:
            entries = await self.get("devicestate")
        except AlpacaError as exc:
            if exc.error_type in (ErrorType.TIMEOUT, ErrorType.NETWORK):
                raise
            logger.debug("alpaca.devicestate.unavailable", device_type=self.device_type, error=exc.message)
            return None
        if not isinstance(entries, list):
            return None
        state: dict[str, Any] = {}
        for entry in entries:
            if isinstance(entry, dict) and isinstance(entry.get("Name"), str):
                state[entry["Name"].lower()] = entry.get("Value")
        return state

    async def fetch_image_bytes(self) -> bytes:
        """Download ``imagearray`` as an ImageBytes buffer.

        Servers that ignore the ImageBytes media type answer with a JSON
        array, which is re-encoded so callers always get the binary form.
        """
        response = await self._send("GET", "imagearray", headers={"Accept": IMAGEBYTES_MEDIA_TYPE})
        content_type = response.headers.get("content-type", "")
        if content_type.split(";")[0].strip().lower() == IMAGEBYTES_MEDIA_TYPE:
            return response.content
        value = self._decode(response)
        if value is None:
            raise AlpacaError("Image array response carried no value", ErrorType.UNKNOWN, url=str(response.url))
        return encode_image_bytes(_array_from_value(value))


__all__ = ["AlpacaClient", "IMAGEBYTES_MEDIA_TYPE", "parameter_name"]
