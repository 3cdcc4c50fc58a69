import textwrap

import pytest

from tools.config_loader import load_config
from weather_socket.settings import ReporterConfig, WeatherConfig


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "weather.yaml"
    path.write_text(textwrap.dedent("""
        server:
          port: 8080
          location: Reykjavik
          keepalive_sec: null
          retry_ms: 2500
          templates:
            outtemp: "<b>{value}</b>"
        reporter:
          server_url: http://10.0.0.2:8080
          interval_sec: 5
    """), encoding="utf-8")
    return str(path)


def test_load_config_section(config_file):
    assert load_config("server", config_file)["location"] == "Reykjavik"
    assert set(load_config(None, config_file)) == {"server", "reporter"}
    with pytest.raises(KeyError):
        load_config("missing", config_file)


def test_load_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config("server", str(tmp_path / "nope.yaml"))


def test_project_config_loads():
    cfg = WeatherConfig.load()
    assert cfg.location == "Santa+Cruz"
    assert set(cfg.templates) == {"localtemp", "localhumi", "outtemp"}
    assert ReporterConfig.load().wttr_url == "https://wttr.in"


def test_weather_config_from_yaml(config_file, monkeypatch):
    for key in ("PORT", "LOCATION", "KEEPALIVE_SEC", "RETRY_MS"):
        monkeypatch.delenv(f"WEATHER_{key}", raising=False)
    cfg = WeatherConfig.load(file_path=config_file)
    assert cfg.port == 8080
    assert cfg.location == "Reykjavik"
    assert cfg.keepalive_sec is None
    assert cfg.retry_ms == 2500
    assert cfg.publish_timeout_sec is None
    assert cfg.templates == {"outtemp": "<b>{value}</b>"}


def test_env_overrides(config_file, monkeypatch):
    monkeypatch.setenv("WEATHER_PORT", "9000")
    monkeypatch.setenv("WEATHER_KEEPALIVE_SEC", "7.5")
    monkeypatch.setenv("WEATHER_RETRY_MS", "none")
    monkeypatch.setenv("WEATHER_LOG_TO_FILE", "yes")
    cfg = WeatherConfig.load(file_path=config_file)
    assert cfg.port == 9000
    assert cfg.keepalive_sec == 7.5
    assert cfg.retry_ms is None
    assert cfg.log_to_file is True


def test_bad_env_override_raises(config_file, monkeypatch):
    monkeypatch.setenv("REPORTER_INTERVAL_SEC", "soon")
    with pytest.raises(ValueError):
        ReporterConfig.load(file_path=config_file)


def test_reporter_config_defaults(config_file, monkeypatch):
    monkeypatch.delenv("REPORTER_INTERVAL_SEC", raising=False)
    cfg = ReporterConfig.load(file_path=config_file)
    assert cfg.server_url == "http://10.0.0.2:8080"
    assert cfg.interval_sec == 5.0
    assert cfg.wttr_url == "https://wttr.in"
    assert cfg.max_retries == 3
