from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_POLL_INTERVALS: dict[str, float] = {
    "camera": 2.0,
    "telescope": 1.0,
    "focuser": 1.0,
    "filterwheel": 3.0,
    "switch": 3.0,
    "dome": 5.0,
    "safetymonitor": 5.0,
    "observingconditions": 5.0,
}


class DeviceConfig(BaseModel):
    """A device registered with the dashboard at startup."""

    id: str
    type: str
    name: str = ""
    api_base_url: Optional[str] = None
    device_number: int = 0
    poll_interval_seconds: Optional[float] = Field(default=None, gt=0)
    bayer_pattern: Optional[str] = None
    auto_connect: bool = False


class Settings(BaseSettings):
    """Runtime configuration for the Alpaca dashboard."""

    model_config = SettingsConfigDict(env_prefix="ALPACA_DASHBOARD_", env_file=".env", extra="allow")

    http_host: str = "0.0.0.0"
    http_port: int = 8080

    state_directory: Path = Path("var")

    client_timeout_seconds: float = 10.0
    client_retries: int = 2
    client_retry_delay_seconds: float = 1.0

    default_poll_interval_seconds: float = 1.0
    poll_intervals: dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_POLL_INTERVALS))

    discovery_port: int = 32227
    discovery_timeout_seconds: float = 2.0
    discovery_broadcast_address: str = "255.255.255.255"

    event_queue_size: int = 1000
    histogram_bins: int = 256

    devices: list[DeviceConfig] = Field(default_factory=list)

    force_simulation: bool = False

    def poll_interval_for(self, device_type: str, override: Optional[float] = None) -> float:
        if override:
            return override
        return self.poll_intervals.get(device_type.lower(), self.default_poll_interval_seconds)


def load_settings(config_path: Optional[str]) -> Settings:
    """Load settings optionally layering a YAML profile file."""
    settings = Settings()
    if config_path:
        from .yaml_loader import load_yaml_settings

        return load_yaml_settings(settings, config_path)
    return settings
