import httpx
import pytest

from dispatcher import Dispatcher

ENV_VARS = (
    "WEATHER_CONFIG",
    "WEATHER_SERVER",
    "WEATHER_TOKEN",
    "WEATHER_OUTPUT",
    "NO_COLOR",
    "MYLOCATION_NAME",
    "MYLOCATION_ZIP",
    "MYLOCATION_CITY_ID",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Keep tests away from the user's config and environment."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("WEATHER_CONFIG", str(tmp_path / "weather" / "cli.json"))


@pytest.fixture
def config_file(tmp_path):
    return tmp_path / "weather" / "cli.json"


class Recorder:
    """MockTransport handler that records requests and replays a routing function."""

    def __init__(self, route):
        self.route = route
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.route(request)

    @property
    def hosts(self) -> list[str]:
        return [r.url.host for r in self.requests]


@pytest.fixture
def make_dispatcher():
    def factory(route, servers=("http://a.test",), **kwargs):
        recorder = Recorder(route)
        dispatcher = Dispatcher(list(servers), transport=httpx.MockTransport(recorder), **kwargs)
        return dispatcher, recorder

    return factory


CURRENT_PAYLOAD = {
    "location": "Albany, NY",
    "current": {
        "temperature": 72.456,
        "feels_like": 70,
        "condition": "Sunny",
        "humidity": 55,
        "wind_speed": 5,
        "wind_direction": 180,
        "pressure": 1013,
        "precipitation": 0,
        "weather_code": 0,
        "is_day": True,
    },
}

FORECAST_PAYLOAD = {
    "location": {"name": "Albany", "country": "US", "latitude": 42.65, "longitude": -73.75},
    "forecast": [
        {
            "date": "2024-01-15",
            "temp_max": 70,
            "temp_min": 50,
            "condition": "Partly cloudy",
            "weather_code": 2,
            "wind_speed": 10,
            "wind_direction": 90,
            "visibility": 10,
            "precipitation": 0.2,
            "precipitation_probability": 40,
        },
        {"date": "2024-01-16", "temp_max": 65, "temp_min": 45, "condition": "Rain"},
        {"date": "2024-01-17", "high": 60, "low": 40, "condition": "Snow"},
    ],
}
