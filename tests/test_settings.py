from __future__ import annotations

import pytest

from redgram import settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch):
    for var in ["PORT", "REDGRAM_SETTINGS", "REDGRAM_RELAY_URL", "REDGRAM_LOG_LEVEL"]:
        monkeypatch.delenv(var, raising=False)
    yield


def test_defaults_when_file_missing(tmp_path):
    conf = settings.get_settings(str(tmp_path / "missing.yaml"))

    assert settings.get_listen_host(conf) == "0.0.0.0"
    assert settings.get_listen_port(conf) == 8080
    assert settings.get_relay_url(conf) == "ws://localhost:8080"
    assert settings.get_reconnect_interval(conf) == 3.0
    assert settings.get_log_level(conf) == "INFO"


def test_yaml_overlay_merges_sections(tmp_path):
    path = tmp_path / "settings.local.yaml"
    path.write_text("relay:\n  port: 9001\nclient:\n  reconnect_interval: 0.5\n", encoding="utf-8")

    conf = settings.get_settings(str(path))

    assert settings.get_listen_port(conf) == 9001
    assert settings.get_listen_host(conf) == "0.0.0.0"
    assert settings.get_reconnect_interval(conf) == 0.5
    assert settings.get_outbox_size(conf) == 256


def test_env_overrides_file(tmp_path, monkeypatch):
    path = tmp_path / "settings.local.yaml"
    path.write_text("relay:\n  port: 9001\n", encoding="utf-8")
    monkeypatch.setenv("REDGRAM_SETTINGS", str(path))
    monkeypatch.setenv("PORT", "10000")
    monkeypatch.setenv("REDGRAM_RELAY_URL", "ws://relay.example:10000")
    monkeypatch.setenv("REDGRAM_LOG_LEVEL", "debug")

    conf = settings.get_settings()

    assert settings.get_listen_port(conf) == 10000
    assert settings.get_relay_url(conf) == "ws://relay.example:10000"
    assert settings.get_log_level(conf) == "DEBUG"


def test_broken_yaml_falls_back_to_defaults(tmp_path, caplog):
    path = tmp_path / "settings.local.yaml"
    path.write_text("relay: [unclosed\n", encoding="utf-8")

    conf = settings.get_settings(str(path))

    assert settings.get_listen_port(conf) == 8080
    assert "Ignoring unreadable settings file" in caplog.text


def test_defaults_are_not_mutated(tmp_path):
    path = tmp_path / "settings.local.yaml"
    path.write_text("relay:\n  port: 1\n", encoding="utf-8")
    settings.get_settings(str(path))

    assert settings.DEFAULTS["relay"]["port"] == 8080
