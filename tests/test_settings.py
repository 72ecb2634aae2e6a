import pytest

from wifi_telescope.config.settings import Settings, load_settings


def test_settings_defaults():
    settings = Settings()
    assert settings.telescope_port == 8082
    assert settings.default_exposure_seconds == 30.0
    assert settings.default_gain == 20.0
    assert settings.command_timeout_seconds == 10.0
    assert settings.status_interval_seconds == 2.0


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("WIFI_TELESCOPE_TELESCOPE_HOST", "192.168.4.1")
    monkeypatch.setenv("WIFI_TELESCOPE_FORCE_SIMULATION", "true")
    settings = Settings()
    assert settings.telescope_host == "192.168.4.1"
    assert settings.force_simulation is True


def test_yaml_profile_overrides_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("WIFI_TELESCOPE_TELESCOPE_HOST", "192.168.4.1")
    config = tmp_path / "scope.yaml"
    config.write_text("telescope_host: 10.1.1.7\nsite_latitude: 48.1\n", encoding="utf-8")

    settings = load_settings(str(config))

    assert settings.telescope_host == "10.1.1.7"
    assert settings.site_latitude == 48.1
    assert "telescope_host" in settings.model_fields_set


def test_yaml_profile_must_be_mapping(tmp_path):
    config = tmp_path / "scope.yaml"
    config.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_settings(str(config))


def test_missing_yaml_profile_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_settings(str(tmp_path / "missing.yaml"))


def test_yaml_profile_accepts_dashed_keys(tmp_path):
    config = tmp_path / "scope.yaml"
    config.write_text("telescope-port: 9000\n", encoding="utf-8")
    assert load_settings(str(config)).telescope_port == 9000


def test_yaml_profile_rejects_unknown_keys(tmp_path):
    config = tmp_path / "scope.yaml"
    config.write_text("telescope_hots: 10.0.0.2\n", encoding="utf-8")
    with pytest.raises(ValueError, match="telescope_hots"):
        load_settings(str(config))


def test_yaml_profile_reports_invalid_values(tmp_path):
    config = tmp_path / "scope.yaml"
    config.write_text("telescope_port: not-a-port\n", encoding="utf-8")
    with pytest.raises(ValueError, match="telescope_port"):
        load_settings(str(config))


def test_empty_yaml_profile_keeps_settings(tmp_path):
    config = tmp_path / "scope.yaml"
    config.write_text("", encoding="utf-8")
    assert load_settings(str(config)).telescope_port == 8082
