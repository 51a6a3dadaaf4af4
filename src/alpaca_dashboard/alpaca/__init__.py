from .camera import CameraClient
from .client import AlpacaClient
from .errors import AlpacaError, DeviceErrorDetail, ErrorType
from .factory import create_alpaca_client
from .focuser import FocuserClient
from .telescope import TelescopeClient

__all__ = [
    "AlpacaClient",
    "AlpacaError",
    "CameraClient",
    "DeviceErrorDetail",
    "ErrorType",
    "FocuserClient",
    "TelescopeClient",
    "create_alpaca_client",
]
