import json
import stat

import pytest

from errors import ConfigError
from settings import (
    DEFAULT_SERVER,
    Settings,
    clear_token,
    config_path,
    get_settings,
    load_token,
    save_token,
    token_path,
)


def test_defaults_when_missing(config_file):
    settings = Settings.load(config_file)
    assert settings.server == DEFAULT_SERVER
    assert settings.output == "table"
    assert settings.timeout == 30
    assert settings.cluster == []


def test_config_path_from_environment(config_file):
    assert config_path() == config_file


def test_save_and_load(config_file):
    settings = Settings(server="https://weather.example", cluster=["https://b.example"], token="secret")
    settings.location = "Albany, NY"
    settings.save(config_file)

    data = json.loads(config_file.read_text())
    assert "token" not in data
    assert data["server"] == "https://weather.example"

    loaded = Settings.load(config_file)
    assert loaded.server == "https://weather.example"
    assert loaded.cluster == ["https://b.example"]
    assert loaded.location == "Albany, NY"
    assert loaded.token is None


def test_load_ignores_unknown_keys(config_file):
    config_file.parent.mkdir(parents=True)
    config_file.write_text(json.dumps({"output": "plain", "favorites": {}}))
    assert Settings.load(config_file).output == "plain"


def test_load_invalid_json(config_file):
    config_file.parent.mkdir(parents=True)
    config_file.write_text("{not json")
    with pytest.raises(ConfigError, match="failed to parse config") as exc_info:
        Settings.load(config_file)
    assert exc_info.value.exit_code == 2


def test_load_invalid_value(config_file):
    config_file.parent.mkdir(parents=True)
    config_file.write_text(json.dumps({"timeout": 0}))
    with pytest.raises(ConfigError, match="between 1 and 300"):
        Settings.load(config_file)


@pytest.mark.parametrize(
    "key, value, message",
    [
        ("output", "yaml", "output must be json, table, or plain"),
        ("color", "sometimes", "color must be"),
        ("units", "kelvin", "units must be"),
        ("timeout", "soon", "timeout must be a number"),
        ("timeout", "301", "between 1 and 300"),
        ("server", "weather.example", "http:// or https://"),
        ("cluster", "http://b.test, c.test", "cluster entry 'c.test'"),
        ("cluster", ["ftp://b.test"], "http:// or https://"),
        ("token", "abc", "unknown config key"),
        ("nope", "abc", "unknown config key"),
    ],
)
def test_set_value_validation(key, value, message):
    with pytest.raises(ConfigError, match=message):
        Settings().set_value(key, value)


def test_set_value_conversions():
    settings = Settings()
    settings.set_value("timeout", "45")
    settings.set_value("cluster", "http://b.test, http://c.test,")
    assert settings.timeout == 45
    assert settings.cluster == ["http://b.test", "http://c.test"]


def test_unset_value():
    settings = Settings(output="json", location="Albany")
    settings.unset_value("output")
    settings.unset_value("location")
    assert settings.output == "table"
    assert settings.location is None


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("WEATHER_SERVER", "https://env.example")
    monkeypatch.setenv("WEATHER_OUTPUT", "json")
    monkeypatch.setenv("WEATHER_TOKEN", "env-token")
    monkeypatch.setenv("NO_COLOR", "1")
    settings = Settings()
    settings.apply_env()
    assert settings.server == "https://env.example"
    assert settings.output == "json"
    assert settings.token == "env-token"
    assert settings.color == "never"


def test_token_store(config_file):
    assert load_token(config_file) is None
    path = save_token("  secret\n", config_file)
    assert path == token_path(config_file)
    assert path.parent == config_file.parent
    assert load_token(config_file) == "secret"
    assert stat.S_IMODE(path.stat().st_mode) == 0o600

    assert clear_token(config_file) is True
    assert load_token(config_file) is None
    assert clear_token(config_file) is False


def test_get_settings_token_precedence(config_file, monkeypatch):
    save_token("stored", config_file)
    assert get_settings(config_file).token == "stored"
    monkeypatch.setenv("WEATHER_TOKEN", "from-env")
    assert get_settings(config_file).token == "from-env"


def test_display_rows_hide_token():
    rows = dict(Settings(token="secret").display_rows())
    assert rows["token"] == "(set)"
    assert rows["location"] == "(not set)"
    assert rows["cluster"] == "(none)"
    assert "secret" not in rows.values()


def test_load_rejects_bad_cluster_entry(config_file):
    config_file.parent.mkdir(parents=True)
    config_file.write_text(json.dumps({"cluster": ["http://b.test", "b.test"]}))
    with pytest.raises(ConfigError, match="cluster entry"):
        Settings.load(config_file)


def test_write_failures_are_config_errors(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    path = blocker / "cli.json"
    with pytest.raises(ConfigError, match="failed to write config") as exc_info:
        Settings().save(path)
    assert exc_info.value.exit_code == 2
    with pytest.raises(ConfigError, match="failed to store token"):
        save_token("secret", path)
