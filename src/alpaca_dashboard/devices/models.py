from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union


class DeviceType(str, Enum):
    CAMERA = "camera"
    TELESCOPE = "telescope"
    FOCUSER = "focuser"
    FILTERWHEEL = "filterwheel"
    DOME = "dome"
    ROTATOR = "rotator"
    SWITCH = "switch"
    SAFETYMONITOR = "safetymonitor"
    OBSERVINGCONDITIONS = "observingconditions"
    COVERCALIBRATOR = "covercalibrator"

    @classmethod
    def parse(cls, value: "DeviceType | str") -> "DeviceType":
        if isinstance(value, DeviceType):
            return value
        return cls(str(value).strip().lower())


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class BoolValue:
    value: bool


@dataclass(frozen=True, slots=True)
class NumberValue:
    value: float


@dataclass(frozen=True, slots=True)
class StringValue:
    value: str


@dataclass(frozen=True, slots=True)
class ArrayValue:
    items: tuple["PropertyValue", ...]


@dataclass(frozen=True, slots=True)
class NullValue:
    pass


PropertyValue = Union[BoolValue, NumberValue, StringValue, ArrayValue, NullValue]

NULL = NullValue()


def to_property_value(raw: Any) -> PropertyValue:
    """Wrap a decoded JSON value in its tagged form."""
    if raw is None:
        return NULL
    if isinstance(raw, (BoolValue, NumberValue, StringValue, ArrayValue, NullValue)):
        return raw
    if isinstance(raw, bool):
        return BoolValue(raw)
    if isinstance(raw, (int, float)):
        return NumberValue(raw)
    if isinstance(raw, str):
        return StringValue(raw)
    if isinstance(raw, (list, tuple)):
        return ArrayValue(tuple(to_property_value(item) for item in raw))
    if isinstance(raw, dict):
        return StringValue(json.dumps(raw, default=str, sort_keys=True))
    return StringValue(str(raw))


def from_property_value(value: PropertyValue) -> Any:
    if isinstance(value, ArrayValue):
        return [from_property_value(item) for item in value.items]
    if isinstance(value, NullValue):
        return None
    return value.value


@dataclass(frozen=True, slots=True)
class DeviceErrorInfo:
    action: str
    message: str
    error_type: Optional[str] = None
    status_code: Optional[int] = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "message": self.message,
            "error_type": self.error_type,
            "status_code": self.status_code,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True, slots=True)
class StateTransition:
    previous: ConnectionState
    current: ConnectionState
    timestamp: float = field(default_factory=time.time)


@dataclass(slots=True)
class Device:
    id: str
    type: DeviceType
    name: str = ""
    api_base_url: Optional[str] = None
    device_number: int = 0
    poll_interval_seconds: Optional[float] = None
    bayer_pattern: Optional[str] = None
    simulated: bool = False
    state: ConnectionState = ConnectionState.IDLE
    properties: dict[str, PropertyValue] = field(default_factory=dict)
    error: Optional[DeviceErrorInfo] = None
    state_history: list[StateTransition] = field(default_factory=list)

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def is_connecting(self) -> bool:
        return self.state is ConnectionState.CONNECTING

    @property
    def is_disconnecting(self) -> bool:
        return self.state is ConnectionState.DISCONNECTING

    def value_of(self, name: str) -> Any:
        return from_property_value(self.properties.get(name, NULL))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "name": self.name,
            "api_base_url": self.api_base_url,
            "device_number": self.device_number,
            "poll_interval_seconds": self.poll_interval_seconds,
            "bayer_pattern": self.bayer_pattern,
            "simulated": self.simulated,
            "state": self.state.value,
            "is_connected": self.is_connected,
            "is_connecting": self.is_connecting,
            "is_disconnecting": self.is_disconnecting,
            "properties": {key: from_property_value(value) for key, value in self.properties.items()},
            "error": self.error.to_dict() if self.error else None,
        }
