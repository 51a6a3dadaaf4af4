from __future__ import annotations

import asyncio
import contextlib
from dataclasses import asdict, dataclass, field
from typing import Any, AsyncIterator, Callable, ClassVar, Optional, Union

import structlog

logger = structlog.get_logger(__name__)

WILDCARD = "*"


@dataclass(frozen=True, slots=True)
class DeviceAdded:
    EVENT_TYPE: ClassVar[str] = "deviceAdded"

    device_id: str
    device_type: str


@dataclass(frozen=True, slots=True)
class DeviceRemoved:
    EVENT_TYPE: ClassVar[str] = "deviceRemoved"

    device_id: str


@dataclass(frozen=True, slots=True)
class DeviceUpdated:
    EVENT_TYPE: ClassVar[str] = "deviceUpdated"

    device_id: str
    changes: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class DevicePropertyChanged:
    EVENT_TYPE: ClassVar[str] = "devicePropertyChanged"

    device_id: str
    property: str
    value: Any


@dataclass(frozen=True, slots=True)
class DeviceMethodCalled:
    EVENT_TYPE: ClassVar[str] = "deviceMethodCalled"

    device_id: str
    method: str
    args: dict[str, Any] = field(default_factory=dict)
    result: Any = None


@dataclass(frozen=True, slots=True)
class DeviceApiError:
    EVENT_TYPE: ClassVar[str] = "deviceApiError"

    device_id: str
    action: str
    error: str
    params: dict[str, Any] = field(default_factory=dict)
    error_type: Optional[str] = None


DeviceEvent = Union[
    DeviceAdded,
    DeviceRemoved,
    DeviceUpdated,
    DevicePropertyChanged,
    DeviceMethodCalled,
    DeviceApiError,
]

EVENT_TYPES: dict[str, type] = {
    cls.EVENT_TYPE: cls
    for cls in (DeviceAdded, DeviceRemoved, DeviceUpdated, DevicePropertyChanged, DeviceMethodCalled, DeviceApiError)
}

EventHandler = Callable[[DeviceEvent], None]


def event_to_dict(event: DeviceEvent) -> dict[str, Any]:
    payload = asdict(event)
    payload["type"] = event.EVENT_TYPE
    return payload


def _event_key(event_type: "str | type") -> str:
    if isinstance(event_type, type):
        key = getattr(event_type, "EVENT_TYPE", None)
        if key is None:
            raise ValueError(f"{event_type!r} is not a device event class")
        return key
    if event_type != WILDCARD and event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown device event type {event_type!r}")
    return event_type


class EventBus:
    """Synchronous fan-out of device events to registered handlers.

    Handlers are keyed by event type or ``"*"``. Subscribing the same handler
    twice is a no-op, as is unsubscribing one that is not registered. Dispatch
    iterates over a copy of the handler list, so handlers may subscribe or
    unsubscribe while an event is being delivered.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, dict[EventHandler, None]] = {}

    def subscribe(self, event_type: "str | type", handler: EventHandler) -> Callable[[], None]:
        key = _event_key(event_type)
        self._handlers.setdefault(key, {})[handler] = None

        def _unsubscribe() -> None:
            self.unsubscribe(key, handler)

        return _unsubscribe

    def unsubscribe(self, event_type: "str | type", handler: EventHandler) -> None:
        key = _event_key(event_type)
        handlers = self._handlers.get(key)
        if not handlers:
            return
        handlers.pop(handler, None)
        if not handlers:
            self._handlers.pop(key, None)

    def handler_count(self, event_type: "str | type" = WILDCARD) -> int:
        return len(self._handlers.get(_event_key(event_type), {}))

    def emit(self, event: DeviceEvent) -> None:
        snapshot = list(self._handlers.get(event.EVENT_TYPE, {})) + list(self._handlers.get(WILDCARD, {}))
        for handler in snapshot:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "events.handler_failed",
                    event_type=event.EVENT_TYPE,
                    device_id=event.device_id,
                )

    @contextlib.asynccontextmanager
    async def stream(self, maxsize: int = 1000) -> AsyncIterator["asyncio.Queue[DeviceEvent]"]:
        """Subscribe a bounded queue to every event for the life of the block."""
        queue: asyncio.Queue[DeviceEvent] = asyncio.Queue(maxsize=maxsize)

        def _enqueue(event: DeviceEvent) -> None:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("events.stream.dropped", event_type=event.EVENT_TYPE, device_id=event.device_id)

        unsubscribe = self.subscribe(WILDCARD, _enqueue)
        try:
            yield queue
        finally:
            unsubscribe()
