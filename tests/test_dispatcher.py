import json

import httpx
import pytest

from dispatcher import Dispatcher, build_server_list
from errors import (
    AuthError,
    ConfigError,
    ConnectionFailedError,
    GeneralError,
    NotFoundError,
)


def refuse(*hosts):
    """Route that refuses connections to ``hosts`` and answers ok elsewhere."""

    def route(request):
        if request.url.host in hosts:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={"served_by": request.url.host})

    return route


def test_build_server_list_orders_and_dedupes():
    servers = build_server_list("http://a.test/", [" http://b.test", "http://a.test", "", "http://c.test/"])
    assert servers == ["http://a.test", "http://b.test", "http://c.test"]


def test_build_server_list_without_primary():
    assert build_server_list(None, ["http://b.test"]) == ["http://b.test"]
    assert build_server_list(None) == []


def test_fails_over_to_next_server(make_dispatcher):
    dispatcher, recorder = make_dispatcher(
        refuse("a.test", "b.test"),
        servers=["http://a.test", "http://b.test", "http://c.test"],
    )
    assert dispatcher.get_json("/api/v1/weather") == {"served_by": "c.test"}
    assert recorder.hosts == ["a.test", "b.test", "c.test"]
    assert dispatcher.failed == {"http://a.test", "http://b.test"}
    assert dispatcher.current == "http://c.test"


def test_failed_servers_are_not_retried(make_dispatcher):
    dispatcher, recorder = make_dispatcher(
        refuse("a.test"), servers=["http://a.test", "http://b.test"]
    )
    dispatcher.get_json("/one")
    dispatcher.get_json("/two")
    assert recorder.hosts == ["a.test", "b.test", "b.test"]


def test_all_servers_down(make_dispatcher):
    dispatcher, recorder = make_dispatcher(
        refuse("a.test", "b.test"), servers=["http://a.test", "http://b.test"]
    )
    with pytest.raises(ConnectionFailedError) as exc_info:
        dispatcher.get_json("/api/v1/weather")
    assert exc_info.value.exit_code == 3
    assert exc_info.value.message.startswith("failed to connect to server")
    assert len(recorder.requests) == 2

    # nothing is left to try
    with pytest.raises(ConnectionFailedError, match="all servers unavailable"):
        dispatcher.get_json("/api/v1/weather")
    assert len(recorder.requests) == 2


def test_no_servers_is_config_error(make_dispatcher):
    dispatcher, recorder = make_dispatcher(refuse(), servers=[])
    with pytest.raises(ConfigError) as exc_info:
        dispatcher.get_json("/api/v1/weather")
    assert exc_info.value.exit_code == 2
    assert recorder.requests == []


@pytest.mark.parametrize(
    "status, error, exit_code",
    [
        (401, AuthError, 4),
        (403, AuthError, 4),
        (404, NotFoundError, 5),
        (500, GeneralError, 1),
        (503, GeneralError, 1),
    ],
)
def test_http_errors_are_classified(make_dispatcher, status, error, exit_code):
    dispatcher, recorder = make_dispatcher(
        lambda request: httpx.Response(status, text="nope"),
        servers=["http://a.test", "http://b.test"],
    )
    with pytest.raises(error) as exc_info:
        dispatcher.get_json("/api/v1/weather")
    assert exc_info.value.exit_code == exit_code
    # an HTTP error is an answer, not a reason to fail over
    assert recorder.hosts == ["a.test"]
    assert dispatcher.failed == set()


def test_server_error_message_from_body(make_dispatcher):
    dispatcher, _ = make_dispatcher(lambda request: httpx.Response(500, json={"error": "database down"}))
    with pytest.raises(GeneralError, match="database down"):
        dispatcher.get_json("/x")


def test_server_error_message_from_text(make_dispatcher):
    dispatcher, _ = make_dispatcher(lambda request: httpx.Response(502, text="bad gateway"))
    with pytest.raises(GeneralError) as exc_info:
        dispatcher.get_json("/x")
    assert exc_info.value.message == "server error (502): bad gateway"


def test_auth_error_message(make_dispatcher):
    dispatcher, _ = make_dispatcher(lambda request: httpx.Response(401))
    with pytest.raises(AuthError, match="check your token"):
        dispatcher.get_json("/x")


def test_undecodable_body_is_general_error(make_dispatcher):
    dispatcher, _ = make_dispatcher(lambda request: httpx.Response(200, text="<html>"))
    with pytest.raises(GeneralError, match="failed to decode response"):
        dispatcher.get_json("/x")


def test_request_headers(make_dispatcher):
    dispatcher, recorder = make_dispatcher(
        lambda request: httpx.Response(200, json={}),
        token="secret",
        user_agent="weather-cli/1.2.3",
        user_context="alice",
    )
    dispatcher.get_json("/api/v1/weather?zip=12345")

    request = recorder.requests[0]
    assert request.headers["Authorization"] == "Bearer secret"
    assert request.headers["User-Agent"] == "weather-cli/1.2.3"
    assert request.headers["X-User-Context"] == "alice"
    assert request.headers["Accept"] == "application/json"
    assert str(request.url) == "http://a.test/api/v1/weather?zip=12345"


def test_no_auth_header_without_token(make_dispatcher):
    dispatcher, recorder = make_dispatcher(lambda request: httpx.Response(200, json={}))
    dispatcher.get_json("/x")
    assert "Authorization" not in recorder.requests[0].headers


def test_post_sends_json_body(make_dispatcher):
    dispatcher, recorder = make_dispatcher(lambda request: httpx.Response(200, json={"ok": True}))
    assert dispatcher.request_json("POST", "/x", {"a": 1}) == {"ok": True}
    assert recorder.requests[0].method == "POST"
    assert json.loads(recorder.requests[0].content) == {"a": 1}


def test_server_version(make_dispatcher):
    dispatcher, recorder = make_dispatcher(lambda request: httpx.Response(200, json={"version": "2.0.1"}))
    assert dispatcher.server_version("/api/v1") == {"version": "2.0.1"}
    assert recorder.requests[0].url.path == "/api/v1/version"


def test_server_version_unavailable(make_dispatcher):
    dispatcher, _ = make_dispatcher(lambda request: httpx.Response(404))
    assert dispatcher.server_version("/api/v1") is None


def test_context_manager_closes_client():
    with Dispatcher(["http://a.test"], transport=httpx.MockTransport(lambda r: httpx.Response(200))) as d:
        assert not d._client.is_closed
    assert d._client.is_closed


def test_malformed_server_url_is_config_error(make_dispatcher):
    dispatcher, recorder = make_dispatcher(refuse(), servers=["http://bad\x00host.test"])
    with pytest.raises(ConfigError, match="invalid server URL"):
        dispatcher.get_json("/api/v1/weather")
    assert recorder.requests == []
