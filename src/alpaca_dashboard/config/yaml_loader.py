from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from .settings import Settings


def _merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_yaml_settings(base_settings: Settings, config_path: str | Path) -> Settings:
    """Overlay settings from a YAML file onto the base `Settings` instance.

    Nested mappings such as ``poll_intervals`` merge key by key; lists such
    as ``devices`` replace the base value.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with path.open("r", encoding="utf-8") as stream:
        data = yaml.safe_load(stream) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file {config_path} must contain a mapping")

    return Settings(**_merge(base_settings.model_dump(), data))
