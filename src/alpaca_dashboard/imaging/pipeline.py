from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Literal, Optional

import numpy as np
import structlog

from .bayer import BayerPattern, debayer
from .imagebytes import ImageMetadata, output_bits_per_pixel, output_dtype, parse_header, read_elements

logger = structlog.get_logger(__name__)

ImageType = Literal["monochrome", "color"]


@dataclass(frozen=True, slots=True)
class ProcessedImageData:
    width: int
    height: int
    channels: int
    image_type: ImageType
    is_debayered: bool
    bits_per_pixel: int
    pixel_data: np.ndarray
    original_pixel_data: np.ndarray
    min_pixel_value: int
    max_pixel_value: int
    mean_pixel_value: float
    metadata: ImageMetadata
    bayer_pattern: Optional[BayerPattern] = None

    def as_array(self) -> np.ndarray:
        """Row-major view shaped ``(height, width)`` or ``(height, width, 3)``."""
        if self.channels == 3:
            return self.pixel_data.reshape(self.height, self.width, 3)
        if self.image_type == "color":
            return self.pixel_data.reshape(self.width, self.height, -1).transpose(1, 0, 2)
        return self.pixel_data.reshape(self.height, self.width)

    def summary(self) -> dict[str, Any]:
        return {
            "width": self.width,
            "height": self.height,
            "channels": self.channels,
            "image_type": self.image_type,
            "is_debayered": self.is_debayered,
            "bits_per_pixel": self.bits_per_pixel,
            "min_pixel_value": self.min_pixel_value,
            "max_pixel_value": self.max_pixel_value,
            "mean_pixel_value": self.mean_pixel_value,
            "bayer_pattern": self.bayer_pattern.value if self.bayer_pattern else None,
            "metadata": self.metadata.to_dict(),
        }


def _resolve_dimensions(metadata: ImageMetadata, width: int, height: int) -> tuple[int, int]:
    if metadata.rank >= 2:
        if (width and width != metadata.dimension1) or (height and height != metadata.dimension2):
            logger.debug(
                "image.decode.dimension_override",
                header_width=metadata.dimension1,
                header_height=metadata.dimension2,
                width=width,
                height=height,
            )
        return metadata.dimension1, metadata.dimension2
    if width > 0 and height > 0:
        if width * height > metadata.element_count:
            raise ValueError(
                f"{width}x{height} exceeds the {metadata.element_count} elements in the payload"
            )
        return width, height
    return metadata.dimension1, 1


def _statistics(values: np.ndarray) -> tuple[int, int, float]:
    if values.size == 0:
        return 0, 0, 0.0
    return int(np.floor(values.min())), int(np.floor(values.max())), float(values.mean())


def process_image_bytes(
    buffer: bytes | bytearray | memoryview,
    width: int = 0,
    height: int = 0,
    bayer_pattern: BayerPattern | str | None = None,
) -> ProcessedImageData:
    """Decode an ImageBytes buffer into display-ready pixel data.

    Header dimensions win; ``width``/``height`` only apply to rank-1 buffers.
    Colour frames (three or more planes) pass through untouched and any
    ``bayer_pattern`` is ignored for them. Otherwise the sensor plane is
    debayered when a pattern is given, or reordered to row-major as a
    monochrome frame.
    """
    metadata = parse_header(buffer)
    pixels = read_elements(buffer, metadata)
    pattern = BayerPattern.parse(bayer_pattern)
    width, height = _resolve_dimensions(metadata, width, height)
    pixel_count = width * height
    out_bpp = output_bits_per_pixel(pixels.bits_per_pixel)
    dtype = output_dtype(out_bpp)

    if metadata.is_color:
        if pattern is not None:
            logger.debug("image.decode.bayer_ignored", planes=metadata.dimension3, pattern=pattern.value)
        pixel_data = pixels.values.astype(dtype)
        low, high, mean = _statistics(pixels.values)
        result = ProcessedImageData(
            width=width,
            height=height,
            channels=1,
            image_type="color",
            is_debayered=False,
            bits_per_pixel=out_bpp,
            pixel_data=pixel_data,
            original_pixel_data=pixels.values,
            min_pixel_value=low,
            max_pixel_value=high,
            mean_pixel_value=mean,
            metadata=metadata,
        )
    elif pattern is not None:
        rgb, out_bpp = debayer(
            pixels.values,
            width,
            height,
            pattern,
            pixels.bits_per_pixel,
            pixels.element_type,
        )
        luminance = rgb.reshape(-1, 3).sum(axis=1, dtype=np.int64) / 3.0
        low, high, mean = _statistics(luminance)
        result = ProcessedImageData(
            width=width,
            height=height,
            channels=3,
            image_type="color",
            is_debayered=True,
            bits_per_pixel=out_bpp,
            pixel_data=rgb,
            original_pixel_data=pixels.values,
            min_pixel_value=low,
            max_pixel_value=high,
            mean_pixel_value=mean,
            metadata=metadata,
            bayer_pattern=pattern,
        )
    else:
        plane = pixels.values[:pixel_count].reshape(width, height).T
        pixel_data = np.ascontiguousarray(plane).ravel().astype(dtype)
        low, high, mean = _statistics(plane)
        result = ProcessedImageData(
            width=width,
            height=height,
            channels=1,
            image_type="monochrome",
            is_debayered=False,
            bits_per_pixel=out_bpp,
            pixel_data=pixel_data,
            original_pixel_data=pixels.values,
            min_pixel_value=low,
            max_pixel_value=high,
            mean_pixel_value=mean,
            metadata=metadata,
        )

    result.pixel_data.setflags(write=False)
    logger.debug(
        "image.decode.completed",
        width=result.width,
        height=result.height,
        image_type=result.image_type,
        is_debayered=result.is_debayered,
        bits_per_pixel=result.bits_per_pixel,
    )
    return result


def decode_exposure(
    buffer: bytes | bytearray | memoryview,
    width: int = 0,
    height: int = 0,
    bayer_pattern: BayerPattern | str | None = None,
) -> ProcessedImageData:
    return process_image_bytes(buffer, width, height, bayer_pattern)


async def decode_exposure_async(
    buffer: bytes | bytearray | memoryview,
    width: int = 0,
    height: int = 0,
    bayer_pattern: BayerPattern | str | None = None,
) -> ProcessedImageData:
    """Run :func:`process_image_bytes` on a worker thread."""
    return await asyncio.to_thread(process_image_bytes, buffer, width, height, bayer_pattern)
