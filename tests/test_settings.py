import pytest

from beads_app.core import settings as settings_module
from beads_app.core.config import DEFAULT_DEBOUNCE_MS
from beads_app.core.settings import load_settings


@pytest.fixture(autouse=True)
def _clean_settings(monkeypatch):
    monkeypatch.setattr(settings_module, "_CACHE", None)
    for name in ("BD_BIN", "BEADS_APP_TIMEZONE", "BEADS_APP_STRICT"):
        monkeypatch.delenv(name, raising=False)


def test_defaults_without_file(tmp_path):
    settings = load_settings(tmp_path)
    assert settings.bd_bin == "bd"
    assert settings.timezone == "UTC"
    assert settings.debounce_ms == DEFAULT_DEBOUNCE_MS
    assert not settings.strict


def test_yaml_values_are_coerced(tmp_path, caplog):
    (tmp_path / "beads_app.yaml").write_text(
        "timezone: America/Santiago\n"
        "poll_interval_seconds: 2\n"
        "window_days: '14'\n"
        "debounce_ms: soon\n"
        "colour: blue\n"
    )
    settings = load_settings(tmp_path)
    assert settings.timezone == "America/Santiago"
    assert settings.poll_interval_seconds == 2.0
    assert settings.window_days == 14
    assert settings.debounce_ms == DEFAULT_DEBOUNCE_MS
    assert "Unknown setting 'colour'" in caplog.text


def test_environment_overrides_file(tmp_path, monkeypatch):
    (tmp_path / "beads_app.yaml").write_text("bd_bin: /usr/bin/bd\nstrict: false\n")
    monkeypatch.setenv("BD_BIN", "/opt/bd")
    monkeypatch.setenv("BEADS_APP_STRICT", "yes")
    settings = load_settings(tmp_path)
    assert settings.bd_bin == "/opt/bd"
    assert settings.strict is True


def test_unknown_timezone_falls_back(tmp_path, monkeypatch, caplog):
    monkeypatch.setenv("BEADS_APP_TIMEZONE", "Mars/Olympus")
    assert load_settings(tmp_path).timezone == "UTC"
    assert "Unknown timezone" in caplog.text


def test_settings_are_cached(tmp_path):
    first = load_settings(tmp_path)
    (tmp_path / "beads_app.yaml").write_text("window_days: 30\n")
    assert load_settings(tmp_path) is first
    assert load_settings(tmp_path, reload=True).window_days == 30


def test_broken_yaml_is_ignored(tmp_path, caplog):
    (tmp_path / "beads_app.yaml").write_text("timezone: [unclosed\n")
    assert load_settings(tmp_path).timezone == "UTC"
    assert "unreadable settings file" in caplog.text
