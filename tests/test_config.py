# tests/test_config.py
import pytest
from pydantic import ValidationError

from terminal_fleet.config import (
    AppSettings,
    get_settings,
    load_settings,
    reset_settings,
)


def write_toml(tmp_path, text: str):
    path = tmp_path / "fleet.toml"
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults_for_empty_file(tmp_path):
    settings = load_settings(write_toml(tmp_path, ""))

    assert settings.fetch.max_retries == 3
    assert settings.fetch.base_delay_seconds == 5.0
    assert settings.launch.settle_seconds == 30
    assert settings.launch.portable_flag == "/portable"
    assert [f.key for f in settings.families] == ["mt4", "mt5"]
    assert settings.family("mt5").executable == "terminal64.exe"


def test_toml_values(tmp_path):
    path = write_toml(
        tmp_path,
        """
[fetch]
max_retries = 5

[instances]
max_instances = 4
default_total = 2

[[families]]
key = "mt5"
base_path = 'D:\\Terminals\\MT5'
executable = "terminal64.exe"
plugin_subpath = 'MQL5\\Experts'
""",
    )
    settings = load_settings(path)

    assert settings.fetch.max_retries == 5
    assert settings.fetch.base_delay_seconds == 5.0
    assert settings.instances.default_total == 2
    assert [f.key for f in settings.families] == ["mt5"]
    assert settings.families[0].base_path == "D:\\Terminals\\MT5"


def test_keyword_overrides_win(tmp_path):
    path = write_toml(tmp_path, "[fetch]\nmax_retries = 5\n")
    settings = load_settings(path, fetch={"max_retries": 2})
    assert settings.fetch.max_retries == 2


def test_duplicate_family_keys_rejected(tmp_path):
    family = {"key": "mt4", "base_path": "x", "executable": "t.exe", "plugin_subpath": "p"}
    with pytest.raises(ValidationError, match="Duplicate family keys"):
        load_settings(write_toml(tmp_path, ""), families=[family, family])


def test_unknown_keys_rejected(tmp_path):
    path = write_toml(tmp_path, "[telemetry]\nenabled = true\n")
    with pytest.raises(ValidationError):
        load_settings(path)


def test_retries_must_be_positive(tmp_path):
    with pytest.raises(ValidationError):
        load_settings(write_toml(tmp_path, ""), fetch={"max_retries": 0})


def test_unknown_family_lookup():
    with pytest.raises(KeyError):
        AppSettings().family("mt6")


def test_get_settings_caches_until_reset(tmp_path):
    loaded = load_settings(write_toml(tmp_path, ""))
    assert get_settings() is loaded

    reset_settings()
    assert get_settings() is not loaded


def test_explicit_missing_file_rejected(tmp_path):
    with pytest.raises(FileNotFoundError, match="does_not_exist.toml"):
        load_settings(tmp_path / "does_not_exist.toml")
