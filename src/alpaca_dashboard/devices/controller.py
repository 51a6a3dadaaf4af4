from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional

import structlog

from ..alpaca.errors import AlpacaError
from ..config.settings import DeviceConfig, Settings
from ..imaging.bayer import BayerPattern
from ..imaging.imagebytes import ImageBytesError
from ..imaging.pipeline import ProcessedImageData, decode_exposure_async
from .errors import DeviceNotFoundError, DeviceOperationError, DuplicateDeviceError
from .events import (
    DeviceAdded,
    DeviceApiError,
    DeviceEvent,
    DeviceMethodCalled,
    DevicePropertyChanged,
    DeviceRemoved,
    DeviceUpdated,
    EventBus,
)
from .handlers import handler_for, resolve_bayer_pattern, safe_fetch_status
from .models import (
    NULL,
    ConnectionState,
    Device,
    DeviceErrorInfo,
    DeviceType,
    StateTransition,
    to_property_value,
)
from .registry import DeviceRegistry
from .transport import DeviceTransport, create_transport

logger = structlog.get_logger(__name__)

TransportFactory = Callable[[Device, Settings], DeviceTransport]

MAX_STATE_HISTORY = 50


@dataclass
class PollingHandle:
    device_id: str
    interval: float
    task: Optional[asyncio.Task[None]] = None
    ticks: int = 0

    @property
    def is_polling(self) -> bool:
        return self.task is not None and not self.task.done()


@dataclass
class _DeviceSlot:
    transport: DeviceTransport
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    # Bumped on disconnect and removal; writes captured under an older epoch are dropped.
    epoch: int = 0


def device_from_config(config: DeviceConfig) -> Device:
    return Device(
        id=config.id,
        type=DeviceType.parse(config.type),
        name=config.name or config.id,
        api_base_url=config.api_base_url,
        device_number=config.device_number,
        poll_interval_seconds=config.poll_interval_seconds,
        bayer_pattern=_normalise_bayer_pattern(config.bayer_pattern),
    )


def _normalise_bayer_pattern(value: Optional[str]) -> Optional[str]:
    pattern = BayerPattern.parse(value)
    return pattern.value if pattern is not None else None


class DeviceLifecycleController:
    """Owns the device registry and drives every device through its lifecycle.

    Operations on one device are serialised by a per-device lock and run in
    the order they were issued. Different devices proceed independently.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        transport_factory: Optional[TransportFactory] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.events = EventBus()
        self._registry = DeviceRegistry()
        self._slots: dict[str, _DeviceSlot] = {}
        self._polling: dict[str, PollingHandle] = {}
        self._images: dict[str, ProcessedImageData] = {}
        self._transport_factory = transport_factory or create_transport

    # -- registry ---------------------------------------------------------

    def add_device(self, device: Device | DeviceConfig, *, transport: Optional[DeviceTransport] = None) -> Device:
        if isinstance(device, DeviceConfig):
            device = device_from_config(device)
        if device.id in self._registry:
            raise DuplicateDeviceError(device.id)
        transport = transport or self._transport_factory(device, self.settings)
        device.simulated = bool(getattr(transport, "simulated", False))
        self._registry.add(device)
        self._slots[device.id] = _DeviceSlot(transport=transport)
        logger.info(
            "device.added",
            device_id=device.id,
            device_type=device.type.value,
            simulated=device.simulated,
        )
        self._emit(DeviceAdded(device_id=device.id, device_type=device.type.value))
        return self._registry.snapshot(device.id)

    async def remove_device(self, device_id: str) -> bool:
        slot = self._slot(device_id)
        await self.stop_polling(device_id)
        slot.epoch += 1
        async with slot.lock:
            # a connect queued ahead of us may have restarted polling
            await self.stop_polling(device_id)
            self._registry.remove(device_id)
            self._slots.pop(device_id, None)
            self._images.pop(device_id, None)
        await slot.transport.aclose()
        logger.info("device.removed", device_id=device_id)
        self._emit(DeviceRemoved(device_id=device_id))
        return True

    def update_device(self, device_id: str, **changes: Any) -> Device:
        device = self._registry.get(device_id)
        allowed = {"name", "poll_interval_seconds", "bayer_pattern"}
        unknown = set(changes) - allowed
        if unknown:
            raise DeviceOperationError(device_id, "update", f"cannot change {', '.join(sorted(unknown))}")
        if "bayer_pattern" in changes:
            changes["bayer_pattern"] = _normalise_bayer_pattern(changes["bayer_pattern"])
        for key, value in changes.items():
            setattr(device, key, value)
        self._emit(DeviceUpdated(device_id=device_id, changes=dict(changes)))
        return self._registry.snapshot(device_id)

    def get_device_snapshot(self, device_id: str) -> Optional[Device]:
        return self._registry.snapshot(device_id)

    def list_devices(self) -> list[Device]:
        return self._registry.snapshots()

    def get_latest_image(self, device_id: str) -> Optional[ProcessedImageData]:
        return self._images.get(device_id)

    def subscribe(self, event_type: "str | type", handler: Callable[[DeviceEvent], None]) -> Callable[[], None]:
        return self.events.subscribe(event_type, handler)

    # -- connection -------------------------------------------------------

    async def connect(self, device_id: str) -> bool:
        device = self._registry.get(device_id)
        slot = self._slot(device_id)
        handler = handler_for(device.type)

        async with slot.lock:
            self._ensure_registered(device_id, slot)
            if device.state is ConnectionState.CONNECTED:
                return True
            epoch = slot.epoch
            self._set_state(device, ConnectionState.CONNECTING)
            try:
                await slot.transport.set_property("connected", True)
            except Exception as exc:
                device.error = self._error_info("connect", exc)
                self._set_state(device, ConnectionState.ERROR)
                self._emit_api_error(device_id, "connect", exc)
                raise

            device.error = None
            self._set_state(device, ConnectionState.CONNECTED)
            self._apply(device, {"connected": True})
            logger.info("device.connected", device_id=device_id, simulated=device.simulated)

            try:
                details = await handler.fetch_details(slot.transport)
            except AlpacaError as exc:
                logger.warning(
                    "device.details.fetch_failed",
                    device_id=device_id,
                    action=handler.details_action,
                    error=exc.message,
                )
                self._emit_api_error(device_id, handler.details_action, exc)
            else:
                if slot.epoch == epoch:
                    self._apply(device, details)

            status = await safe_fetch_status(handler, slot.transport, device_id)
            if status is not None and slot.epoch == epoch:
                self._apply(device, status, only_changed=True)

            if slot.epoch != epoch or not device.is_connected:
                return device.is_connected

        await self.start_polling(device_id)
        return True

    async def disconnect(self, device_id: str) -> bool:
        device = self._registry.get(device_id)
        slot = self._slot(device_id)
        handler = handler_for(device.type)

        await self.stop_polling(device_id)
        slot.epoch += 1
        async with slot.lock:
            self._ensure_registered(device_id, slot)
            never_connected = device.state is ConnectionState.ERROR and not device.value_of("connected")
            if device.state is ConnectionState.IDLE or never_connected:
                self._reset_derived(device, handler.derived)
                self._set_state(device, ConnectionState.IDLE)
                return True
            self._set_state(device, ConnectionState.DISCONNECTING)
            try:
                await slot.transport.set_property("connected", False)
            except Exception as exc:
                device.error = self._error_info("disconnect", exc)
                self._reset_derived(device, handler.derived)
                self._set_state(device, ConnectionState.ERROR)
                self._emit_api_error(device_id, "disconnect", exc)
                raise
            self._reset_derived(device, handler.derived)
            self._apply(device, {"connected": False})
            self._set_state(device, ConnectionState.IDLE)
        logger.info("device.disconnected", device_id=device_id)
        return True

    # -- polling ----------------------------------------------------------

    def is_polling(self, device_id: str) -> bool:
        handle = self._polling.get(device_id)
        return handle is not None and handle.is_polling

    def polling_handle(self, device_id: str) -> Optional[PollingHandle]:
        return self._polling.get(device_id)

    async def start_polling(self, device_id: str, interval: Optional[float] = None) -> PollingHandle:
        device = self._registry.get(device_id)
        while device_id in self._polling:
            await self.stop_polling(device_id)
        interval = interval or self.settings.poll_interval_for(device.type.value, device.poll_interval_seconds)
        handle = PollingHandle(device_id=device_id, interval=interval)
        handle.task = asyncio.create_task(self._poll_loop(handle), name=f"poll:{device_id}")
        self._polling[device_id] = handle
        logger.debug("device.poll.started", device_id=device_id, interval=interval)
        return handle

    async def stop_polling(self, device_id: str) -> None:
        handle = self._polling.pop(device_id, None)
        if handle is None or handle.task is None:
            return
        task = handle.task
        if task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.debug("device.poll.stopped", device_id=device_id, ticks=handle.ticks)

    async def _poll_loop(self, handle: PollingHandle) -> None:
        device_id = handle.device_id
        try:
            while True:
                await asyncio.sleep(handle.interval)
                slot = self._slots.get(device_id)
                device = self._registry.find(device_id)
                if slot is None or device is None:
                    return
                async with slot.lock:
                    if self._polling.get(device_id) is not handle:
                        return
                    if not device.is_connected:
                        logger.info("device.poll.device_disconnected", device_id=device_id)
                        return
                    handle.ticks += 1
                    try:
                        await self._poll_tick(device, slot, handle)
                    except Exception:
                        logger.exception("device.poll.tick_failed", device_id=device_id, tick=handle.ticks)
        finally:
            if self._polling.get(device_id) is handle:
                self._polling.pop(device_id, None)

    async def _poll_tick(self, device: Device, slot: _DeviceSlot, handle: PollingHandle) -> None:
        handler = handler_for(device.type)
        epoch = slot.epoch
        status = await safe_fetch_status(handler, slot.transport, device.id)
        if status is None:
            return
        if slot.epoch != epoch or self._polling.get(device.id) is not handle:
            logger.debug("device.poll.stale_result_dropped", device_id=device.id)
            return
        self._apply(device, status, only_changed=True)
        if handler.wants_image(device, status):
            await self._download_image(device, slot)

    # -- properties and methods ---------------------------------------------

    async def get_device_property(self, device_id: str, name: str) -> Any:
        device = self._registry.get(device_id)
        slot = self._slot(device_id)
        async with slot.lock:
            epoch = slot.epoch
            try:
                value = await slot.transport.get_property(name)
            except AlpacaError as exc:
                self._emit_api_error(device_id, "getProperty", exc, {"property": name})
                raise
            if slot.epoch == epoch:
                self._apply(device, {name.lower(): value})
            return value

    async def set_device_property(self, device_id: str, name: str, value: Any) -> bool:
        device = self._registry.get(device_id)
        slot = self._slot(device_id)
        params = {"property": name, "value": value}
        async with slot.lock:
            try:
                await slot.transport.set_property(name, value)
            except AlpacaError as exc:
                self._emit_api_error(device_id, "setProperty", exc, params)
                raise
            self._apply(device, {name.lower(): value})
            self._emit(DeviceMethodCalled(device_id=device_id, method=f"set:{name.lower()}", args=params))
        return True

    async def fetch_device_properties(self, device_id: str, names: Optional[Iterable[str]] = None) -> dict[str, Any]:
        device = self._registry.get(device_id)
        slot = self._slot(device_id)
        names = tuple(names) if names is not None else handler_for(device.type).property_names
        async with slot.lock:
            epoch = slot.epoch
            values = await slot.transport.get_properties(names)
            if slot.epoch == epoch:
                self._apply(device, values)
            return values

    async def call_device_method(
        self,
        device_id: str,
        method: str,
        args: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        return await self._run_action(
            device_id,
            method,
            lambda transport: transport.call_method(method, args),
            params=dict(args or {}),
        )

    async def _run_action(
        self,
        device_id: str,
        action: str,
        operation: Callable[[DeviceTransport], Awaitable[Any]],
        *,
        params: Optional[dict[str, Any]] = None,
        expected_type: Optional[DeviceType] = None,
        require_connected: bool = False,
        updates: Optional[dict[str, Any]] = None,
        refresh: bool = False,
    ) -> Any:
        device = self._registry.get(device_id)
        slot = self._slot(device_id)
        params = params or {}
        if expected_type is not None and device.type is not expected_type:
            raise DeviceOperationError(device_id, action, f"requires a {expected_type.value}, got {device.type.value}")

        async with slot.lock:
            self._ensure_registered(device_id, slot)
            if require_connected and not device.is_connected:
                raise DeviceOperationError(device_id, action, "device is not connected")
            epoch = slot.epoch
            try:
                result = await operation(slot.transport)
            except AlpacaError as exc:
                logger.warning("device.action.failed", device_id=device_id, action=action, error=exc.message)
                self._emit_api_error(device_id, action, exc, params)
                raise
            self._emit(DeviceMethodCalled(device_id=device_id, method=action, args=params, result=result))
            if updates and slot.epoch == epoch:
                self._apply(device, updates)
            if refresh:
                handler = handler_for(device.type)
                status = await safe_fetch_status(handler, slot.transport, device_id)
                if status is not None and slot.epoch == epoch:
                    self._apply(device, status, only_changed=True)
            return result

    # -- focuser ------------------------------------------------------------

    async def move_focuser(self, device_id: str, position: int) -> bool:
        await self._run_action(
            device_id,
            "move",
            lambda transport: transport.call_method("move", {"Position": int(position)}),
            params={"position": position},
            expected_type=DeviceType.FOCUSER,
            require_connected=True,
            refresh=True,
        )
        return True

    async def halt_focuser(self, device_id: str) -> bool:
        await self._run_action(
            device_id,
            "halt",
            lambda transport: transport.call_method("halt"),
            expected_type=DeviceType.FOCUSER,
            require_connected=True,
            refresh=True,
        )
        return True

    async def set_focuser_temp_comp(self, device_id: str, enabled: bool) -> bool:
        await self._run_action(
            device_id,
            "setTempComp",
            lambda transport: transport.set_property("tempcomp", enabled),
            params={"enabled": enabled},
            expected_type=DeviceType.FOCUSER,
            require_connected=True,
            refresh=True,
        )
        return True

    # -- camera -------------------------------------------------------------

    async def start_exposure(self, device_id: str, duration: float, light: bool = True) -> bool:
        await self._run_action(
            device_id,
            "startExposure",
            lambda transport: transport.call_method("startexposure", {"Duration": duration, "Light": light}),
            params={"duration": duration, "light": light},
            expected_type=DeviceType.CAMERA,
            require_connected=True,
            updates={"isexposing": True, "imageready": False},
        )
        return True

    async def abort_exposure(self, device_id: str) -> bool:
        await self._run_action(
            device_id,
            "abortExposure",
            lambda transport: transport.call_method("abortexposure"),
            expected_type=DeviceType.CAMERA,
            require_connected=True,
            updates={"isexposing": False, "imageready": False},
        )
        return True

    async def download_image(self, device_id: str) -> Optional[ProcessedImageData]:
        device = self._registry.get(device_id)
        slot = self._slot(device_id)
        if device.type is not DeviceType.CAMERA:
            raise DeviceOperationError(device_id, "downloadImage", "only cameras produce images")
        async with slot.lock:
            return await self._download_image(device, slot)

    async def _download_image(self, device: Device, slot: _DeviceSlot) -> Optional[ProcessedImageData]:
        epoch = slot.epoch
        pattern = resolve_bayer_pattern(device)
        try:
            buffer = await slot.transport.fetch_image_bytes()
            image = await decode_exposure_async(buffer, bayer_pattern=pattern)
        except (AlpacaError, ImageBytesError) as exc:
            logger.warning("device.image.download_failed", device_id=device.id, error=str(exc))
            self._emit_api_error(device.id, "downloadImage", exc)
            if slot.epoch == epoch:
                self._apply(device, {"isexposing": False})
            return None
        if slot.epoch != epoch:
            return None
        self._images[device.id] = image
        self._apply(device, {"isexposing": False, "hasimage": True})
        logger.info(
            "device.image.ready",
            device_id=device.id,
            width=image.width,
            height=image.height,
            image_type=image.image_type,
            is_debayered=image.is_debayered,
        )
        self._emit(DevicePropertyChanged(device_id=device.id, property="imageReady", value=image.summary()))
        return image

    # -- telescope ----------------------------------------------------------

    async def park_telescope(self, device_id: str) -> bool:
        await self._telescope_action(device_id, "park", lambda transport: transport.call_method("park"))
        return True

    async def unpark_telescope(self, device_id: str) -> bool:
        await self._telescope_action(device_id, "unpark", lambda transport: transport.call_method("unpark"))
        return True

    async def slew_to_coordinates(self, device_id: str, right_ascension: float, declination: float) -> bool:
        args = {"RightAscension": right_ascension, "Declination": declination}
        await self._telescope_action(
            device_id,
            "slewToCoordinates",
            lambda transport: transport.call_method("slewtocoordinatesasync", args),
            params={"right_ascension": right_ascension, "declination": declination},
        )
        return True

    async def abort_slew(self, device_id: str) -> bool:
        await self._telescope_action(device_id, "abortSlew", lambda transport: transport.call_method("abortslew"))
        return True

    async def set_tracking(self, device_id: str, enabled: bool) -> bool:
        await self._telescope_action(
            device_id,
            "setTracking",
            lambda transport: transport.set_property("tracking", enabled),
            params={"enabled": enabled},
        )
        return True

    async def _telescope_action(
        self,
        device_id: str,
        action: str,
        operation: Callable[[DeviceTransport], Awaitable[Any]],
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        return await self._run_action(
            device_id,
            action,
            operation,
            params=params,
            expected_type=DeviceType.TELESCOPE,
            require_connected=True,
            refresh=True,
        )

    # -- shutdown -----------------------------------------------------------

    async def shutdown(self) -> None:
        for device_id in list(self._polling):
            await self.stop_polling(device_id)
        for slot in list(self._slots.values()):
            await slot.transport.aclose()
        logger.info("controller.stopped", devices=len(self._registry))

    # -- internals ----------------------------------------------------------

    def _slot(self, device_id: str) -> _DeviceSlot:
        slot = self._slots.get(device_id)
        if slot is None:
            raise DeviceNotFoundError(device_id)
        return slot

    def _ensure_registered(self, device_id: str, slot: _DeviceSlot) -> None:
        if self._slots.get(device_id) is not slot:
            raise DeviceNotFoundError(device_id)

    def _emit(self, event: DeviceEvent) -> None:
        self.events.emit(event)

    def _emit_api_error(
        self,
        device_id: str,
        action: str,
        exc: Exception,
        params: Optional[dict[str, Any]] = None,
    ) -> None:
        error_type = exc.error_type.value if isinstance(exc, AlpacaError) else None
        self._emit(
            DeviceApiError(
                device_id=device_id,
                action=action,
                error=str(exc),
                params=dict(params or {}),
                error_type=error_type,
            )
        )

    @staticmethod
    def _error_info(action: str, exc: Exception) -> DeviceErrorInfo:
        if isinstance(exc, AlpacaError):
            return DeviceErrorInfo(
                action=action,
                message=exc.message,
                error_type=exc.error_type.value,
                status_code=exc.status_code,
            )
        return DeviceErrorInfo(action=action, message=str(exc))

    def _set_state(self, device: Device, state: ConnectionState) -> None:
        previous = device.state
        if previous is state:
            return
        device.state = state
        device.state_history.append(StateTransition(previous=previous, current=state))
        del device.state_history[:-MAX_STATE_HISTORY]
        logger.debug("device.state", device_id=device.id, previous=previous.value, current=state.value)
        self._emit(DeviceUpdated(device_id=device.id, changes={"state": state.value}))

    def _apply(self, device: Device, values: Mapping[str, Any], *, only_changed: bool = False) -> None:
        for name, raw in values.items():
            value = to_property_value(raw)
            if only_changed and device.properties.get(name) == value:
                continue
            device.properties[name] = value
            self._emit(DevicePropertyChanged(device_id=device.id, property=name, value=raw))

    def _reset_derived(self, device: Device, names: Iterable[str]) -> None:
        for name in names:
            if device.properties.get(name) != NULL:
                device.properties[name] = NULL
                self._emit(DevicePropertyChanged(device_id=device.id, property=name, value=None))
