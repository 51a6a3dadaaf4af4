from .controller import DeviceLifecycleController, PollingHandle, device_from_config
from .errors import DeviceNotFoundError, DeviceOperationError, DuplicateDeviceError
from .events import (
    DeviceAdded,
    DeviceApiError,
    DeviceMethodCalled,
    DevicePropertyChanged,
    DeviceRemoved,
    DeviceUpdated,
    EventBus,
)
from .models import ConnectionState, Device, DeviceType, PropertyValue
from .transport import AlpacaTransport, DeviceTransport
from .simulation import SimulatedTransport

__all__ = [
    "AlpacaTransport",
    "ConnectionState",
    "Device",
    "DeviceAdded",
    "DeviceApiError",
    "DeviceLifecycleController",
    "DeviceMethodCalled",
    "DeviceNotFoundError",
    "DeviceOperationError",
    "DevicePropertyChanged",
    "DeviceRemoved",
    "DeviceTransport",
    "DeviceType",
    "DeviceUpdated",
    "DuplicateDeviceError",
    "EventBus",
    "PollingHandle",
    "PropertyValue",
    "SimulatedTransport",
    "device_from_config",
]
