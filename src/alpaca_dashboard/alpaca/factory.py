from __future__ import annotations

from .camera import CameraClient
from .client import AlpacaClient
from .focuser import FocuserClient
from .telescope import TelescopeClient

_CLIENT_CLASSES: dict[str, type[AlpacaClient]] = {
    "camera": CameraClient,
    "focuser": FocuserClient,
    "telescope": TelescopeClient,
}


def create_alpaca_client(base_url: str, device_type: str, device_number: int = 0, **kwargs) -> AlpacaClient:
    """Return the typed client for ``device_type``, or a generic one."""
    client_cls = _CLIENT_CLASSES.get(device_type.lower())
    if client_cls is None:
        return AlpacaClient(base_url, device_type, device_number, **kwargs)
    return client_cls(base_url, device_number, **kwargs)
