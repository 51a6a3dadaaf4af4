import json

import numpy as np

from alpaca_dashboard.cli import decode_command, main
from alpaca_dashboard.imaging.imagebytes import encode_image_bytes


def _write_sensor(tmp_path):
    path = tmp_path / "frame.imagebytes"
    path.write_bytes(encode_image_bytes(np.array([[100, 60], [50, 200]], dtype=np.uint8)))
    return path


def test_decode_command_reports_statistics(tmp_path):
    result = decode_command(str(_write_sensor(tmp_path)), bayer_pattern="RGGB", histogram_bins=8)

    assert result["is_debayered"] is True
    assert result["min_pixel_value"] == 59
    assert len(result["histogram"]) == 8


def test_main_decode_prints_json(tmp_path, capsys):
    exit_code = main(["decode", str(_write_sensor(tmp_path))])

    assert exit_code == 0
    output = json.loads(capsys.readouterr().out)
    assert output["image_type"] == "monochrome"
    assert output["width"] == 2


def test_main_decode_fails_on_missing_file(tmp_path):
    assert main(["decode", str(tmp_path / "missing.imagebytes")]) == 1
