import numpy as np
import pytest

from alpaca_dashboard.imaging.bayer import BayerPattern, debayer
from alpaca_dashboard.imaging.imagebytes import ImageElementType

# 2x2 sensor in wire order: (x0,y0), (x0,y1), (x1,y0), (x1,y1).
PLANE = np.array([100, 60, 50, 200], dtype=np.uint32)


def test_rggb_reconstruction_matches_reference_values():
    rgb, bpp = debayer(PLANE, 2, 2, BayerPattern.RGGB, 8)

    assert bpp == 8
    assert rgb.dtype == np.uint8
    np.testing.assert_array_equal(
        rgb,
        [100, 27, 50, 50, 50, 100, 50, 60, 100, 25, 27, 200],
    )


def test_16_bit_input_scales_with_the_samples():
    rgb, bpp = debayer(PLANE * 10, 2, 2, BayerPattern.RGGB, 16)

    assert bpp == 16
    assert rgb.dtype == np.uint16
    np.testing.assert_array_equal(
        rgb,
        [1000, 275, 500, 500, 500, 1000, 500, 600, 1000, 250, 275, 2000],
    )


def test_bggr_swaps_red_and_blue_sites():
    rgb, _ = debayer(PLANE, 2, 2, BayerPattern.BGGR, 8)

    # Site (0,0) is blue, site (1,1) is red.
    assert rgb[2] == 100
    assert rgb[0] == 50
    assert rgb[9] == 200


def test_green_sites_take_red_from_the_row_neighbours():
    rgb, _ = debayer(PLANE, 2, 2, BayerPattern.GRBG, 8)

    # GRBG: (0,0) green with red to its right, so red is horizontal (0 + 50) // 2.
    assert rgb[1] == 100
    assert rgb[0] == 25
    assert rgb[2] == 30


@pytest.mark.parametrize("pattern", list(BayerPattern))
@pytest.mark.parametrize("bits,dtype", [(8, np.uint8), (12, np.uint16), (16, np.uint16), (32, np.uint32)])
def test_output_length_and_dtype(pattern, bits, dtype):
    width, height = 6, 4
    plane = np.arange(width * height, dtype=np.uint32)

    rgb, bpp = debayer(plane, width, height, pattern, bits)

    assert rgb.size == width * height * 3
    assert rgb.dtype == dtype
    assert bpp == np.dtype(dtype).itemsize * 8


def test_uniform_interior_is_preserved():
    plane = np.full(8 * 8, 40, dtype=np.uint32)

    rgb, _ = debayer(plane, 8, 8, BayerPattern.RGGB, 8)

    interior = rgb.reshape(8, 8, 3)[1:-1, 1:-1]
    assert np.all(interior == 40)


def test_int16_source_is_masked_before_interpolation():
    plane = np.array([-1, -1, -1, -1], dtype=np.int64)

    rgb, _ = debayer(plane, 2, 2, BayerPattern.RGGB, 16, ImageElementType.INT16)

    assert rgb[0] == 65535


def test_empty_frame_returns_empty_plane():
    rgb, bpp = debayer(np.zeros(0, dtype=np.uint16), 0, 0, BayerPattern.RGGB, 16)

    assert rgb.size == 0
    assert bpp == 16


def test_short_plane_is_rejected():
    with pytest.raises(ValueError):
        debayer(np.zeros(3, dtype=np.uint16), 2, 2, BayerPattern.RGGB, 16)


@pytest.mark.parametrize("value", [None, "", "none", "MONO"])
def test_parse_treats_blank_and_mono_as_no_pattern(value):
    assert BayerPattern.parse(value) is None


def test_parse_is_case_insensitive_and_rejects_unknown_patterns():
    assert BayerPattern.parse("gbrg") is BayerPattern.GBRG
    with pytest.raises(ValueError):
        BayerPattern.parse("RGBW")
