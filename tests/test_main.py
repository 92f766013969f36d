import json
import sys
from types import SimpleNamespace

import httpx
import pytest
from click.testing import CliRunner

import main
from conftest import CURRENT_PAYLOAD, FORECAST_PAYLOAD
from dispatcher import Dispatcher
from settings import Settings, load_token


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def server(monkeypatch):
    """Serve canned responses to every dispatcher the CLI builds."""
    routes = {}
    seen = []

    def handler(request):
        seen.append(request)
        if request.url.path not in routes:
            return httpx.Response(404)
        return routes[request.url.path]

    def dispatcher(app):
        return Dispatcher(
            ["http://weather.test"],
            token=app.settings.token,
            user_agent=main.USER_AGENT,
            transport=httpx.MockTransport(handler),
        )

    monkeypatch.setattr(main.App, "dispatcher", dispatcher)
    return SimpleNamespace(routes=routes, seen=seen)


def test_help_without_command(runner):
    result = runner.invoke(main.cli, [])
    assert result.exit_code == 0
    assert "Usage:" in result.output
    assert "current" in result.output


def test_version(runner):
    result = runner.invoke(main.cli, ["--version"])
    assert result.exit_code == 0
    assert main.VERSION in result.output
    result = runner.invoke(main.cli, ["version"])
    assert result.output == f"weather-cli version {main.VERSION}\n"


def test_current_plain(runner, server):
    server.routes["/api/v1/weather"] = httpx.Response(200, json=CURRENT_PAYLOAD)
    result = runner.invoke(main.cli, ["--output", "plain", "current", "--zip", "12345"])
    assert result.exit_code == 0, result.output
    assert "Temperature: 72.5°F" in result.output
    request = server.seen[0]
    assert request.url.params["zip"] == "12345"
    assert request.headers["User-Agent"] == main.USER_AGENT


def test_current_json_round_trips(runner, server):
    server.routes["/api/v1/weather"] = httpx.Response(200, json=CURRENT_PAYLOAD)
    result = runner.invoke(main.cli, ["-o", "json", "current", "Albany, NY"])
    assert result.exit_code == 0, result.output
    assert json.loads(result.output) == CURRENT_PAYLOAD
    assert server.seen[0].url.params["location"] == "Albany, NY"


def test_token_flag_is_sent(runner, server):
    server.routes["/api/v1/weather/moon"] = httpx.Response(200, json={"phase": "Full Moon"})
    result = runner.invoke(main.cli, ["--token", "abc", "-o", "plain", "moon"])
    assert result.exit_code == 0, result.output
    assert result.output == "Moon Phase: Full Moon\n"
    assert server.seen[0].headers["Authorization"] == "Bearer abc"


def test_not_found_exits_5(runner, server):
    result = runner.invoke(main.cli, ["alerts", "--zip", "12345"])
    assert result.exit_code == 5
    assert "Error: resource not found" in result.output


def test_auth_failure_exits_4(runner, server):
    server.routes["/api/v1/weather"] = httpx.Response(401)
    result = runner.invoke(main.cli, ["current", "--zip", "12345"])
    assert result.exit_code == 4


def test_report_respects_width(runner, server):
    server.routes["/api/v1/weather"] = httpx.Response(200, json=CURRENT_PAYLOAD)
    server.routes["/api/v1/forecasts"] = httpx.Response(200, json=FORECAST_PAYLOAD)
    result = runner.invoke(main.cli, ["--width", "100", "--no-footer", "report", "--zip", "12345"])
    assert result.exit_code == 0, result.output
    assert result.output.count("┌─ ") == 2
    assert "Weather report: Albany, US" in result.output
    assert [r.url.path for r in server.seen] == ["/api/v1/weather", "/api/v1/forecasts"]
    assert server.seen[1].url.params["days"] == "3"


def test_forecast_days(runner, server):
    server.routes["/api/v1/forecasts"] = httpx.Response(200, json=FORECAST_PAYLOAD)
    result = runner.invoke(main.cli, ["-o", "plain", "forecast", "--zip", "12345", "--days", "2"])
    assert result.exit_code == 0, result.output
    assert "Day 1 - 2024-01-15" in result.output
    assert server.seen[0].url.params["days"] == "2"


def test_forecast_defaults_to_seven_days(runner, server):
    server.routes["/api/v1/forecasts"] = httpx.Response(200, json=FORECAST_PAYLOAD)
    result = runner.invoke(main.cli, ["-o", "plain", "forecast", "--zip", "12345"])
    assert result.exit_code == 0, result.output
    assert server.seen[0].url.params["days"] == "7"


def test_server_version_table(runner, server):
    server.routes["/api/v1/version"] = httpx.Response(200, json={"version": "2.1.0"})
    result = runner.invoke(main.cli, ["server-version"])
    assert result.exit_code == 0
    assert "2.1.0" in result.output


def test_server_version_unavailable(runner, server):
    result = runner.invoke(main.cli, ["server-version"])
    assert result.exit_code == 0
    assert "Server version unavailable" in result.output


def test_config_set_get_unset(runner, config_file):
    result = runner.invoke(main.cli, ["config", "set", "output", "plain"])
    assert result.exit_code == 0, result.output
    assert Settings.load(config_file).output == "plain"

    result = runner.invoke(main.cli, ["config", "get", "output"])
    assert result.output == "plain\n"

    runner.invoke(main.cli, ["config", "unset", "output"])
    assert Settings.load(config_file).output == "table"


def test_config_set_invalid_value_exits_2(runner):
    result = runner.invoke(main.cli, ["config", "set", "timeout", "900"])
    assert result.exit_code == 2
    assert "between 1 and 300" in result.output


def test_config_init_and_show(runner, config_file, tmp_path):
    result = runner.invoke(main.cli, ["config", "init"])
    assert result.exit_code == 0
    assert config_file.exists()

    result = runner.invoke(main.cli, ["config", "init"])
    assert result.exit_code == 2
    assert "already exists" in result.output

    result = runner.invoke(main.cli, ["config", "show"])
    assert "http://localhost:64948" in result.output


def test_config_flag_selects_file(runner, tmp_path):
    other = tmp_path / "other" / "cli.json"
    result = runner.invoke(main.cli, ["--config", str(other), "config", "set", "location", "Paris"])
    assert result.exit_code == 0, result.output
    assert Settings.load(other).location == "Paris"


def test_login_and_logout(runner, config_file):
    result = runner.invoke(main.cli, ["login", "--token", "secret"])
    assert result.exit_code == 0, result.output
    assert load_token(config_file) == "secret"

    result = runner.invoke(main.cli, ["logout"])
    assert result.exit_code == 0
    assert load_token(config_file) is None


def run_cli(monkeypatch, *args):
    monkeypatch.setattr(sys, "argv", ["weather-cli", *args])
    with pytest.raises(SystemExit) as exc_info:
        main.run()
    return exc_info.value.code


def test_run_missing_location_exits_64_with_help(monkeypatch, capsys):
    assert run_cli(monkeypatch, "current") == 64
    err = capsys.readouterr().err
    assert "Error: must specify --lat/--lon, --zip, or --location" in err
    assert "Usage:" in err


def test_run_bad_flag_exits_64(monkeypatch, capsys):
    assert run_cli(monkeypatch, "current", "--bogus") == 64
    assert "Usage:" in capsys.readouterr().err


def test_run_history_without_date_exits_64(monkeypatch, capsys):
    assert run_cli(monkeypatch, "history", "--zip", "12345") == 64
    assert "--date is required for history command" in capsys.readouterr().err


def test_run_client_error_exit_code(monkeypatch, server, capsys):
    assert run_cli(monkeypatch, "current", "--zip", "12345") == 5
    assert "Error: resource not found" in capsys.readouterr().err


def test_run_success(monkeypatch, server, capsys):
    server.routes["/api/v1/version"] = httpx.Response(200, json={"version": "2.1.0"})
    assert run_cli(monkeypatch, "-o", "json", "server-version") == 0
    assert json.loads(capsys.readouterr().out) == {"version": "2.1.0"}


def test_run_unwritable_token_store_exits_2(monkeypatch, tmp_path, capsys):
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    monkeypatch.setenv("WEATHER_CONFIG", str(blocker / "cli.json"))
    assert run_cli(monkeypatch, "login", "--token", "secret") == 2
    assert "Error: failed to store token" in capsys.readouterr().err


def test_run_bad_cluster_entry_exits_2(monkeypatch, capsys):
    assert run_cli(monkeypatch, "config", "set", "cluster", "http://b.test,b.test") == 2
    assert "cluster entry 'b.test'" in capsys.readouterr().err
