from __future__ import annotations

from typing import Literal

import numpy as np

from .pipeline import ProcessedImageData

StretchMethod = Literal["linear", "log", "none"]

MAX_LUT_SIZE = 65536


def create_stretch_lut(
    min_value: float,
    max_value: float,
    method: StretchMethod = "linear",
    bits_per_pixel: int = 16,
    gamma: float = 1.0,
) -> np.ndarray:
    """Build a uint8 lookup table mapping raw pixel values to display levels.

    The table covers ``min(2**bits_per_pixel, 65536)`` entries; an empty or
    inverted range yields an all-zero table.
    """
    size = min(MAX_LUT_SIZE, 2 ** bits_per_pixel)
    lut = np.zeros(size, dtype=np.uint8)
    value_range = max_value - min_value
    if value_range <= 0:
        return lut
    if gamma <= 0:
        raise ValueError("gamma must be positive")

    values = np.clip(np.arange(size, dtype=np.float64), min_value, max_value)
    if method == "linear":
        norm = np.clip((values - min_value) / value_range, 0.0, 1.0)
        display = np.round(np.power(norm, 1.0 / gamma) * 255.0)
    elif method == "log":
        log_min = np.log(max(1.0, min_value))
        log_max = np.log(max(2.0, max_value))
        log_range = log_max - log_min
        if log_range <= 0:
            return lut
        norm = np.clip((np.log(np.maximum(1.0, values)) - log_min) / log_range, 0.0, 1.0)
        display = np.round(np.power(norm, 1.0 / gamma) * 255.0)
        display[values <= 0] = 0
    elif method == "none":
        display = np.round(values / (size - 1) * 255.0)
    else:
        raise ValueError(f"Unknown stretch method {method!r}")

    lut[:] = np.clip(display, 0, 255).astype(np.uint8)
    return lut


def calculate_histogram(image: ProcessedImageData, bins: int = 256) -> list[int]:
    """Histogram of raw values (single channel) or luminance (RGB).

    Bins span the image's own min/max statistics; a flat image yields an
    all-zero histogram.
    """
    histogram = np.zeros(bins, dtype=np.int64)
    low = image.min_pixel_value
    high = image.max_pixel_value
    value_range = high - low
    if image.width * image.height == 0 or value_range <= 0:
        return histogram.tolist()

    if image.channels == 3:
        samples = image.pixel_data.reshape(-1, 3).sum(axis=1, dtype=np.int64) / 3.0
    else:
        samples = image.pixel_data.astype(np.float64)

    scale = (bins - 1) / value_range
    indices = np.clip(np.floor((samples - low) * scale), 0, bins - 1).astype(np.int64)
    histogram += np.bincount(indices, minlength=bins)[:bins]
    return histogram.tolist()


def generate_display_image(image: ProcessedImageData, lut: np.ndarray) -> np.ndarray:
    """Map pixels through ``lut`` into a flat RGBA uint8 buffer.

    Values beyond the end of the table render black.
    """
    pixel_count = image.width * image.height
    rgba = np.zeros((pixel_count, 4), dtype=np.uint8)
    rgba[:, 3] = 255
    if pixel_count == 0:
        return rgba.ravel()

    padded = np.append(np.asarray(lut, dtype=np.uint8), np.uint8(0))
    overflow = padded.size - 1

    if image.channels == 3:
        samples = image.pixel_data.reshape(-1, 3).astype(np.int64)
        rgba[:, :3] = padded[np.minimum(samples, overflow)]
    else:
        samples = image.as_array()
        if samples.ndim == 3:
            samples = samples[:, :, 0]
        display = padded[np.minimum(samples.ravel().astype(np.int64), overflow)]
        rgba[:, 0] = display
        rgba[:, 1] = display
        rgba[:, 2] = display
    return rgba.ravel()
