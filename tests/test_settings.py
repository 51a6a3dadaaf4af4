from pathlib import Path

import pytest

from alpaca_dashboard.config.settings import Settings, load_settings


def test_defaults():
    settings = Settings()

    assert settings.http_port == 8080
    assert settings.discovery_port == 32227
    assert settings.poll_interval_for("camera") == 2.0
    assert settings.poll_interval_for("Focuser") == 1.0
    assert settings.poll_interval_for("rotator") == settings.default_poll_interval_seconds
    assert settings.poll_interval_for("camera", 0.25) == 0.25


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("ALPACA_DASHBOARD_HTTP_PORT", "9090")
    monkeypatch.setenv("ALPACA_DASHBOARD_FORCE_SIMULATION", "true")

    settings = Settings()

    assert settings.http_port == 9090
    assert settings.force_simulation is True


def test_yaml_profile_merges_over_environment(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("ALPACA_DASHBOARD_HTTP_HOST", "127.0.0.1")
    profile = tmp_path / "profile.yaml"
    profile.write_text(
        "\n".join(
            [
                "http_port: 9191",
                "poll_intervals:",
                "  camera: 4.5",
                "devices:",
                "  - id: main-camera",
                "    type: camera",
                "    api_base_url: http://192.168.1.30:11111",
                "    bayer_pattern: RGGB",
                "    auto_connect: true",
            ]
        ),
        encoding="utf-8",
    )

    settings = load_settings(str(profile))

    assert settings.http_host == "127.0.0.1"
    assert settings.http_port == 9191
    assert settings.poll_intervals["camera"] == 4.5
    assert settings.poll_intervals["focuser"] == 1.0
    assert len(settings.devices) == 1
    device = settings.devices[0]
    assert device.id == "main-camera"
    assert device.auto_connect is True
    assert device.device_number == 0


def test_missing_profile_raises(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_settings(str(tmp_path / "missing.yaml"))


def test_profile_must_be_a_mapping(tmp_path: Path):
    profile = tmp_path / "list.yaml"
    profile.write_text("- 1\n- 2\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_settings(str(profile))
