from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional

import numpy as np


HEADER_SIZE = 44
METADATA_VERSION = 1
_HEADER = struct.Struct("<11i")


class ImageElementType(IntEnum):
    UNKNOWN = 0
    INT16 = 1
    INT32 = 2
    BYTE = 3
    SINGLE = 4
    DOUBLE = 5
    CURRENCY = 6
    UINT16 = 7
    UINT32 = 8
    INT64 = 9
    UINT64 = 10
    BOOLEAN = 11
    STRING = 12
    OBJECT = 13


RECOGNIZED_ELEMENT_TYPES = frozenset(
    {
        ImageElementType.INT16,
        ImageElementType.INT32,
        ImageElementType.BYTE,
        ImageElementType.SINGLE,
        ImageElementType.DOUBLE,
        ImageElementType.UINT16,
        ImageElementType.UINT32,
        ImageElementType.INT64,
        ImageElementType.UINT64,
    }
)

# Little-endian container for each transmission type the reader can widen.
_WIRE_DTYPES: dict[ImageElementType, np.dtype] = {
    ImageElementType.BYTE: np.dtype("u1"),
    ImageElementType.INT16: np.dtype("<i2"),
    ImageElementType.UINT16: np.dtype("<u2"),
    ImageElementType.INT32: np.dtype("<i4"),
    ImageElementType.UINT32: np.dtype("<u4"),
    ImageElementType.SINGLE: np.dtype("<f4"),
}

_BITS_PER_PIXEL = {
    ImageElementType.BYTE: 8,
    ImageElementType.INT16: 16,
    ImageElementType.UINT16: 16,
    ImageElementType.INT32: 32,
    ImageElementType.UINT32: 32,
    ImageElementType.SINGLE: 32,
    ImageElementType.DOUBLE: 64,
    ImageElementType.INT64: 64,
    ImageElementType.UINT64: 64,
}


class ImageBytesError(ValueError):
    """Base class for ImageBytes decoding failures."""


class TruncatedBuffer(ImageBytesError):
    def __init__(self, message: str, *, expected: int, actual: int) -> None:
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class UnsupportedElementType(ImageBytesError):
    def __init__(self, message: str, *, element_type: int) -> None:
        super().__init__(message)
        self.element_type = element_type


class InvalidMetadata(ImageBytesError):
    pass


class ImageBytesDeviceError(ImageBytesError):
    """The device answered with an error instead of an image."""

    def __init__(self, error_number: int, error_message: str) -> None:
        super().__init__(f"Device reported error {error_number}: {error_message}")
        self.error_number = error_number
        self.error_message = error_message


@dataclass(frozen=True, slots=True)
class ImageMetadata:
    metadata_version: int
    error_number: int
    client_transaction_id: int
    server_transaction_id: int
    data_start: int
    image_element_type: ImageElementType
    transmission_element_type: ImageElementType
    rank: int
    dimension1: int
    dimension2: int
    dimension3: int

    @property
    def width(self) -> int:
        return self.dimension1

    @property
    def height(self) -> int:
        return self.dimension2

    @property
    def planes(self) -> int:
        return max(self.dimension3, 1)

    @property
    def is_color(self) -> bool:
        return self.dimension3 >= 3

    @property
    def element_count(self) -> int:
        if self.rank == 1:
            return max(self.dimension1, 0)
        return self.dimension1 * self.dimension2 * self.planes

    def to_dict(self) -> dict[str, int | str]:
        return {
            "metadata_version": self.metadata_version,
            "error_number": self.error_number,
            "client_transaction_id": self.client_transaction_id,
            "server_transaction_id": self.server_transaction_id,
            "data_start": self.data_start,
            "image_element_type": self.image_element_type.name,
            "transmission_element_type": self.transmission_element_type.name,
            "rank": self.rank,
            "dimension1": self.dimension1,
            "dimension2": self.dimension2,
            "dimension3": self.dimension3,
        }


@dataclass(frozen=True, slots=True)
class PixelBuffer:
    values: np.ndarray
    element_type: ImageElementType
    bits_per_pixel: int

    def __len__(self) -> int:
        return int(self.values.size)


def bits_per_pixel(element_type: int) -> int:
    try:
        return _BITS_PER_PIXEL[ImageElementType(element_type)]
    except (KeyError, ValueError) as exc:
        raise UnsupportedElementType(
            f"No pixel depth for element type {element_type}",
            element_type=element_type,
        ) from exc


def output_bits_per_pixel(bits: int) -> int:
    """Canonical storage depth: 8, 16 or 32 bits."""
    if bits <= 8:
        return 8
    if bits <= 16:
        return 16
    return 32


def output_dtype(bits: int) -> np.dtype:
    return {8: np.dtype(np.uint8), 16: np.dtype(np.uint16), 32: np.dtype(np.uint32)}[
        output_bits_per_pixel(bits)
    ]


def _element_type(raw: int) -> ImageElementType:
    try:
        element_type = ImageElementType(raw)
    except ValueError:
        element_type = None
    if element_type not in RECOGNIZED_ELEMENT_TYPES:
        raise UnsupportedElementType(
            f"Unsupported ImageBytes element type {raw}",
            element_type=raw,
        )
    return element_type


def parse_header(buffer: bytes | bytearray | memoryview) -> ImageMetadata:
    """Parse and validate the fixed 44-byte ImageBytes header."""
    length = len(buffer)
    if length < HEADER_SIZE:
        raise TruncatedBuffer(
            f"ImageBytes buffer holds {length} bytes, header needs {HEADER_SIZE}",
            expected=HEADER_SIZE,
            actual=length,
        )

    (
        metadata_version,
        error_number,
        client_transaction_id,
        server_transaction_id,
        data_start,
        image_element_type,
        transmission_element_type,
        rank,
        dimension1,
        dimension2,
        dimension3,
    ) = _HEADER.unpack_from(buffer, 0)

    if data_start < HEADER_SIZE:
        raise InvalidMetadata(f"Data start {data_start} lies inside the {HEADER_SIZE}-byte header")
    if length < data_start:
        raise TruncatedBuffer(
            f"ImageBytes buffer holds {length} bytes, data starts at {data_start}",
            expected=data_start,
            actual=length,
        )

    # Error responses carry a UTF-8 message instead of pixels.
    if error_number != 0:
        message = bytes(buffer[data_start:]).decode("utf-8", errors="replace").strip("\x00 ")
        raise ImageBytesDeviceError(error_number, message)

    image_type = _element_type(image_element_type)
    transmission_type = _element_type(transmission_element_type)

    if rank not in (1, 2, 3):
        raise InvalidMetadata(f"Rank must be 1, 2 or 3, got {rank}")
    if dimension1 <= 0:
        raise InvalidMetadata(f"Dimension1 must be positive, got {dimension1}")
    if rank >= 2 and dimension2 <= 0:
        raise InvalidMetadata(f"Dimension2 must be positive for rank {rank}, got {dimension2}")
    if rank == 3 and dimension3 <= 0:
        raise InvalidMetadata(f"Dimension3 must be positive for rank 3, got {dimension3}")

    return ImageMetadata(
        metadata_version=metadata_version,
        error_number=error_number,
        client_transaction_id=client_transaction_id,
        server_transaction_id=server_transaction_id,
        data_start=data_start,
        image_element_type=image_type,
        transmission_element_type=transmission_type,
        rank=rank,
        dimension1=dimension1,
        dimension2=dimension2,
        dimension3=dimension3,
    )


def read_elements(buffer: bytes | bytearray | memoryview, metadata: ImageMetadata) -> PixelBuffer:
    """Widen the payload into an unsigned numeric array.

    Signed containers are reinterpreted as unsigned (Int16 values are masked
    with 0xFFFF, Int32 values with 0xFFFFFFFF). Single values are rounded
    and clamped into the 32-bit unsigned range.
    """
    element_type = metadata.transmission_element_type
    wire_dtype = _WIRE_DTYPES.get(element_type)
    if wire_dtype is None:
        raise UnsupportedElementType(
            f"Element type {element_type.name} cannot be decoded",
            element_type=int(element_type),
        )

    count = metadata.element_count
    end = metadata.data_start + count * wire_dtype.itemsize
    if len(buffer) < end:
        raise TruncatedBuffer(
            f"Payload needs {end} bytes for {count} {element_type.name} elements, buffer holds {len(buffer)}",
            expected=end,
            actual=len(buffer),
        )

    raw = np.frombuffer(buffer, dtype=wire_dtype, count=count, offset=metadata.data_start)
    if element_type is ImageElementType.BYTE:
        values = raw.copy()
    elif element_type in (ImageElementType.INT16, ImageElementType.UINT16):
        values = raw.view("<u2").astype(np.uint16)
    elif element_type in (ImageElementType.INT32, ImageElementType.UINT32):
        values = raw.view("<u4").astype(np.uint32)
    else:
        cleaned = np.nan_to_num(raw.astype(np.float64), nan=0.0, posinf=0.0, neginf=0.0)
        values = np.clip(np.rint(cleaned), 0, np.iinfo(np.uint32).max).astype(np.uint32)

    values.setflags(write=False)
    return PixelBuffer(
        values=values,
        element_type=element_type,
        bits_per_pixel=bits_per_pixel(metadata.image_element_type),
    )


_DTYPE_ELEMENT_TYPES: dict[np.dtype, ImageElementType] = {
    np.dtype(np.uint8): ImageElementType.BYTE,
    np.dtype(np.int16): ImageElementType.INT16,
    np.dtype(np.uint16): ImageElementType.UINT16,
    np.dtype(np.int32): ImageElementType.INT32,
    np.dtype(np.uint32): ImageElementType.UINT32,
    np.dtype(np.float32): ImageElementType.SINGLE,
}


def encode_image_bytes(
    image: np.ndarray,
    *,
    image_element_type: Optional[ImageElementType] = None,
    client_transaction_id: int = 0,
    server_transaction_id: int = 0,
) -> bytes:
    """Serialise an Alpaca ``[x][y]`` or ``[x][y][plane]`` array as ImageBytes.

    The payload is the C-order flattening of the array, so the element for
    column ``x`` and row ``y`` lands at index ``x * height + y``.
    """
    array = np.asarray(image)
    if array.ndim not in (1, 2, 3):
        raise ValueError(f"Image arrays must have rank 1-3, got {array.ndim}")
    transmission_type = _DTYPE_ELEMENT_TYPES.get(array.dtype)
    if transmission_type is None:
        raise ValueError(f"Cannot encode array of dtype {array.dtype}")

    dims = list(array.shape) + [0] * (3 - array.ndim)
    payload = np.ascontiguousarray(array).astype(array.dtype.newbyteorder("<"), copy=False).tobytes()
    header = _HEADER.pack(
        METADATA_VERSION,
        0,
        client_transaction_id,
        server_transaction_id,
        HEADER_SIZE,
        int(image_element_type or transmission_type),
        int(transmission_type),
        array.ndim,
        *dims,
    )
    return header + payload


def encode_error_response(error_number: int, message: str, *, client_transaction_id: int = 0) -> bytes:
    header = _HEADER.pack(
        METADATA_VERSION,
        error_number,
        client_transaction_id,
        0,
        HEADER_SIZE,
        0,
        0,
        0,
        0,
        0,
        0,
    )
    return header + message.encode("utf-8")


__all__ = [
    "HEADER_SIZE",
    "ImageBytesDeviceError",
    "ImageBytesError",
    "ImageElementType",
    "ImageMetadata",
    "InvalidMetadata",
    "PixelBuffer",
    "TruncatedBuffer",
    "UnsupportedElementType",
    "bits_per_pixel",
    "encode_error_response",
    "encode_image_bytes",
    "output_bits_per_pixel",
    "output_dtype",
    "parse_header",
    "read_elements",
]
