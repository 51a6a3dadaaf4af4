from __future__ import annotations

from enum import Enum
from typing import Optional

import numpy as np

from .imagebytes import ImageElementType, output_bits_per_pixel, output_dtype


class BayerPattern(str, Enum):
    RGGB = "RGGB"
    GRBG = "GRBG"
    GBRG = "GBRG"
    BGGR = "BGGR"

    @classmethod
    def parse(cls, value: "BayerPattern | str | None") -> Optional["BayerPattern"]:
        if value is None or isinstance(value, BayerPattern):
            return value
        text = str(value).strip().upper()
        if not text or text in {"NONE", "MONO", "MONOCHROME"}:
            return None
        try:
            return cls(text)
        except ValueError as exc:
            raise ValueError(f"Unknown Bayer pattern {value!r}") from exc


def debayer(
    plane_col_major: np.ndarray,
    width: int,
    height: int,
    pattern: BayerPattern | str,
    bits_per_pixel: int,
    source_element_type: Optional[ImageElementType] = None,
) -> tuple[np.ndarray, int]:
    """Bilinear Bayer reconstruction.

    ``plane_col_major`` is the sensor plane in wire order: the sample at
    column ``x`` and row ``y`` sits at index ``x * height + y``. Each missing
    colour is the average of the 2 or 4 neighbours that hold it, always
    divided by the full neighbourhood size, so samples that fall outside the
    frame count as zero. Returns the row-major ``[R, G, B, ...]`` plane and
    the output depth (8, 16 or 32 bits).
    """
    pattern = BayerPattern(pattern)
    out_bpp = output_bits_per_pixel(bits_per_pixel)
    dtype = output_dtype(out_bpp)
    pixel_count = width * height
    if width <= 0 or height <= 0:
        return np.zeros(0, dtype=dtype), out_bpp

    samples = np.asarray(plane_col_major).ravel()
    if samples.size < pixel_count:
        raise ValueError(f"Bayer plane holds {samples.size} samples, {width}x{height} needs {pixel_count}")

    plane = samples[:pixel_count].astype(np.int64)
    if source_element_type == ImageElementType.INT16:
        plane &= 0xFFFF
    elif source_element_type == ImageElementType.INT32:
        plane &= 0xFFFFFFFF
    plane = plane.reshape(width, height).T

    padded = np.pad(plane, 1)
    north = padded[:-2, 1:-1]
    south = padded[2:, 1:-1]
    west = padded[1:-1, :-2]
    east = padded[1:-1, 2:]
    cross = (north + south + west + east) // 4
    diagonal = (padded[:-2, :-2] + padded[:-2, 2:] + padded[2:, :-2] + padded[2:, 2:]) // 4
    horizontal = (west + east) // 2
    vertical = (north + south) // 2

    tile = np.array(list(pattern.value))
    ys, xs = np.indices((height, width))
    role = tile[(ys % 2) * 2 + (xs % 2)]
    # Colour held by the left/right neighbours of each site.
    row_neighbour = tile[(ys % 2) * 2 + (1 - xs % 2)]

    red = np.where(
        role == "R",
        plane,
        np.where(role == "B", diagonal, np.where(row_neighbour == "R", horizontal, vertical)),
    )
    green = np.where(role == "G", plane, cross)
    blue = np.where(
        role == "B",
        plane,
        np.where(role == "R", diagonal, np.where(row_neighbour == "B", horizontal, vertical)),
    )

    rgb = np.stack((red, green, blue), axis=-1)
    np.clip(rgb, 0, np.iinfo(dtype).max, out=rgb)
    return rgb.astype(dtype).ravel(), out_bpp
