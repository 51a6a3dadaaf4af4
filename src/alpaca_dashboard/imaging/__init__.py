from .bayer import BayerPattern, debayer
from .imagebytes import (
    ImageBytesError,
    ImageElementType,
    ImageMetadata,
    TruncatedBuffer,
    UnsupportedElementType,
    parse_header,
    read_elements,
)
from .pipeline import ProcessedImageData, decode_exposure, decode_exposure_async, process_image_bytes

__all__ = [
    "BayerPattern",
    "ImageBytesError",
    "ImageElementType",
    "ImageMetadata",
    "ProcessedImageData",
    "TruncatedBuffer",
    "UnsupportedElementType",
    "debayer",
    "decode_exposure",
    "decode_exposure_async",
    "parse_header",
    "process_image_bytes",
    "read_elements",
]
