from __future__ import annotations


class DeviceNotFoundError(LookupError):
    def __init__(self, device_id: str) -> None:
        super().__init__(f"Unknown device {device_id!r}")
        self.device_id = device_id


class DuplicateDeviceError(ValueError):
    def __init__(self, device_id: str) -> None:
        super().__init__(f"Device {device_id!r} is already registered")
        self.device_id = device_id


class DeviceOperationError(RuntimeError):
    """An operation does not apply to the device in its current type or state."""

    def __init__(self, device_id: str, operation: str, reason: str) -> None:
        super().__init__(f"{operation} on {device_id!r}: {reason}")
        self.device_id = device_id
        self.operation = operation
        self.reason = reason


__all__ = ["DeviceNotFoundError", "DeviceOperationError", "DuplicateDeviceError"]
