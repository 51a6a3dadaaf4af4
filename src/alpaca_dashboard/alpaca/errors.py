from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ErrorType(str, Enum):
    TIMEOUT = "timeout"
    NETWORK = "network"
    SERVER = "server"
    DEVICE = "device"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class DeviceErrorDetail:
    error_number: int
    error_message: str


class AlpacaError(RuntimeError):
    """Classified failure of an Alpaca request."""

    def __init__(
        self,
        message: str,
        error_type: ErrorType,
        *,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
        device_error: Optional[DeviceErrorDetail] = None,
        retry: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.url = url
        self.status_code = status_code
        self.device_error = device_error
        self.retry = retry

    @property
    def retryable(self) -> bool:
        return self.retry

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "message": self.message,
            "type": self.error_type.value,
            "url": self.url,
            "status_code": self.status_code,
            "retry": self.retry,
        }
        if self.device_error is not None:
            payload["error_number"] = self.device_error.error_number
            payload["error_message"] = self.device_error.error_message
        return payload

    def __repr__(self) -> str:
        return (
            f"AlpacaError({self.message!r}, type={self.error_type.value}, "
            f"status={self.status_code}, url={self.url!r})"
        )


__all__ = ["AlpacaError", "DeviceErrorDetail", "ErrorType"]
