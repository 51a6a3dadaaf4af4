import asyncio

import numpy as np
import pytest

from alpaca_dashboard.imaging.bayer import BayerPattern
from alpaca_dashboard.imaging.imagebytes import ImageBytesDeviceError, encode_error_response, encode_image_bytes
from alpaca_dashboard.imaging.pipeline import decode_exposure_async, process_image_bytes

# Alpaca [x][y] layout: columns first.
SENSOR = np.array([[100, 60], [50, 200]], dtype=np.uint8)


def test_debayered_statistics_use_luminance():
    image = process_image_bytes(encode_image_bytes(SENSOR), bayer_pattern="RGGB")

    assert image.image_type == "color"
    assert image.is_debayered is True
    assert image.channels == 3
    assert image.bits_per_pixel == 8
    assert image.bayer_pattern is BayerPattern.RGGB
    assert image.min_pixel_value == 59
    assert image.max_pixel_value == 84
    assert image.mean_pixel_value == pytest.approx(69.9167, abs=1e-4)
    assert image.pixel_data.size == 12


def test_monochrome_frame_is_reordered_row_major():
    frame = np.arange(6, dtype=np.uint16).reshape(3, 2)

    image = process_image_bytes(encode_image_bytes(frame))

    assert image.image_type == "monochrome"
    assert image.is_debayered is False
    assert (image.width, image.height, image.channels) == (3, 2, 1)
    # Row y=0 holds x=0..2, i.e. wire indices 0, 2, 4.
    np.testing.assert_array_equal(image.pixel_data, [0, 2, 4, 1, 3, 5])
    np.testing.assert_array_equal(image.as_array(), [[0, 2, 4], [1, 3, 5]])
    assert (image.min_pixel_value, image.max_pixel_value) == (0, 5)
    assert image.mean_pixel_value == pytest.approx(2.5)


def test_colour_frame_passes_through_and_ignores_bayer_pattern():
    frame = np.arange(2 * 2 * 3, dtype=np.uint16).reshape(2, 2, 3)
    buffer = encode_image_bytes(frame)

    image = process_image_bytes(buffer, bayer_pattern="RGGB")

    assert image.image_type == "color"
    assert image.is_debayered is False
    assert image.channels == 1
    assert image.bayer_pattern is None
    np.testing.assert_array_equal(image.pixel_data, frame.ravel())
    assert image.as_array().shape == (2, 2, 3)


def test_header_dimensions_override_arguments():
    frame = np.zeros((4, 3), dtype=np.uint16)

    image = process_image_bytes(encode_image_bytes(frame), width=10, height=10)

    assert (image.width, image.height) == (4, 3)


def test_rank_one_buffer_uses_supplied_dimensions():
    samples = np.arange(6, dtype=np.uint16)

    image = process_image_bytes(encode_image_bytes(samples), width=3, height=2)

    assert (image.width, image.height) == (3, 2)
    np.testing.assert_array_equal(image.pixel_data, [0, 2, 4, 1, 3, 5])


def test_rank_one_dimensions_larger_than_payload_are_rejected():
    with pytest.raises(ValueError):
        process_image_bytes(encode_image_bytes(np.arange(4, dtype=np.uint16)), width=3, height=3)


def test_int16_monochrome_values_wrap_to_unsigned():
    frame = np.array([[-15000]], dtype=np.int16)

    image = process_image_bytes(encode_image_bytes(frame))

    assert image.bits_per_pixel == 16
    assert image.pixel_data.dtype == np.uint16
    assert int(image.pixel_data[0]) == 50536


def test_pixel_data_is_read_only():
    image = process_image_bytes(encode_image_bytes(SENSOR))

    with pytest.raises(ValueError):
        image.pixel_data[0] = 1


def test_device_error_propagates():
    with pytest.raises(ImageBytesDeviceError):
        process_image_bytes(encode_error_response(0x400, "Not implemented"))


def test_summary_is_json_friendly():
    summary = process_image_bytes(encode_image_bytes(SENSOR), bayer_pattern="RGGB").summary()

    assert summary["bayer_pattern"] == "RGGB"
    assert summary["metadata"]["image_element_type"] == "BYTE"
    assert isinstance(summary["min_pixel_value"], int)


@pytest.mark.asyncio
async def test_decode_exposure_async_runs_off_the_event_loop():
    results = await asyncio.gather(
        decode_exposure_async(encode_image_bytes(SENSOR), bayer_pattern="RGGB"),
        decode_exposure_async(encode_image_bytes(SENSOR)),
    )

    assert [image.image_type for image in results] == ["color", "monochrome"]
