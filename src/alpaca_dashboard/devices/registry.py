from __future__ import annotations

import copy
from typing import Iterator, Optional

from .errors import DeviceNotFoundError, DuplicateDeviceError
from .models import Device


class DeviceRegistry:
    """Devices keyed by id.

    Only the lifecycle controller holds a reference to the registry and
    mutates the devices inside it; everyone else reads deep-copied snapshots.
    """

    def __init__(self) -> None:
        self._devices: dict[str, Device] = {}

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._devices

    def __len__(self) -> int:
        return len(self._devices)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._devices))

    def add(self, device: Device) -> None:
        if device.id in self._devices:
            raise DuplicateDeviceError(device.id)
        self._devices[device.id] = device

    def remove(self, device_id: str) -> Device:
        try:
            return self._devices.pop(device_id)
        except KeyError:
            raise DeviceNotFoundError(device_id) from None

    def get(self, device_id: str) -> Device:
        try:
            return self._devices[device_id]
        except KeyError:
            raise DeviceNotFoundError(device_id) from None

    def find(self, device_id: str) -> Optional[Device]:
        return self._devices.get(device_id)

    def snapshot(self, device_id: str) -> Optional[Device]:
        device = self._devices.get(device_id)
        return copy.deepcopy(device) if device is not None else None

    def snapshots(self) -> list[Device]:
        return [copy.deepcopy(device) for device in self._devices.values()]
