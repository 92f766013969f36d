"""Weather API commands: request paths, location qualifiers and input parsing.

Apart from the fetch helper at the bottom everything here is pure, so the
CLI and the TUI build identical requests.
"""

import os
import re
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any
from urllib.parse import urlencode

from ascii_report import merge_report, render_full
from errors import UsageError
from formatter import Kind, RenderParams, format_json, format_payload


ZIP_RE = re.compile(r"^\d{5}(-\d{4})?$")
COORD_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*,\s*(-?\d+(?:\.\d+)?)\s*$")
DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
REPORT_DAYS = 3
FORECAST_DAYS = 7

LOCATION_REQUIRED = (
    "must specify --lat/--lon, --zip, or --location "
    "(or set MYLOCATION_NAME, MYLOCATION_ZIP, or MYLOCATION_CITY_ID)"
)


class InputKind(Enum):
    """What a command needs from the user before it can be fetched."""

    NONE = "none"
    LOCATION = "location"
    LOCATION_DATE = "location,date"
    DATE = "date"


@dataclass(frozen=True)
class Command:
    name: str
    label: str
    endpoint: str
    kind: Kind | None  # None: raw JSON document
    input: InputKind
    full_report: bool = False


COMMANDS: dict[str, Command] = {
    c.name: c
    for c in (
        Command("current", "Current Weather", "/weather", Kind.CURRENT, InputKind.LOCATION),
        Command("forecast", "Forecast", "/forecasts", Kind.FORECAST, InputKind.LOCATION),
        Command(
            "report", "Full Report", "/forecasts", Kind.FORECAST, InputKind.LOCATION,
            full_report=True,
        ),
        Command("alerts", "Weather Alerts", "/weather/alerts", Kind.ALERTS, InputKind.LOCATION),
        Command("moon", "Moon Phase", "/weather/moon", Kind.MOON, InputKind.DATE),
        Command(
            "history", "Historical Weather", "/weather/history", Kind.CURRENT,
            InputKind.LOCATION_DATE,
        ),
        Command("server-version", "Server Version", "/version", None, InputKind.NONE),
    )
}


def api_path(api_version: str | None) -> str:
    """Return the API path prefix, e.g. ``/api/v1``."""
    version = (api_version or "v1").strip("/")
    return f"/api/{version}"


# =============================================================================
# Location qualifiers
# =============================================================================


def location_query(
    lat: float | None = None,
    lon: float | None = None,
    zip_code: str | None = None,
    location: str | None = None,
    default_location: str | None = None,
) -> dict[str, str]:
    """Resolve exactly one location qualifier.

    Priority: lat/lon > zip > location > configured default >
    MYLOCATION_NAME > MYLOCATION_ZIP > MYLOCATION_CITY_ID.
    Returns an empty dict if nothing resolves.
    """
    if lat is not None and lon is not None:
        return {"lat": f"{lat:f}", "lon": f"{lon:f}"}
    if zip_code:
        return {"zip": zip_code.strip()}
    if location:
        return {"location": location.strip()}
    if default_location:
        return {"location": default_location.strip()}

    name = os.environ.get("MYLOCATION_NAME", "").strip()
    if name:
        return {"location": name}
    env_zip = os.environ.get("MYLOCATION_ZIP", "").strip()
    if env_zip:
        return {"zip": env_zip}
    city_id = os.environ.get("MYLOCATION_CITY_ID", "").strip()
    if city_id.isdigit():
        return {"city_id": city_id}
    return {}


def parse_location_text(text: str) -> dict[str, str]:
    """Classify free text as a ZIP code, a "lat,lon" pair or a place name."""
    text = text.strip()
    if not text:
        raise UsageError("enter a location")
    if ZIP_RE.match(text):
        return {"zip": text}
    m = COORD_RE.match(text)
    if m:
        lat, lon = float(m.group(1)), float(m.group(2))
        if -90 <= lat <= 90 and -180 <= lon <= 180:
            return {"lat": f"{lat:f}", "lon": f"{lon:f}"}
    return {"location": text}


def validate_date(value: str) -> str:
    value = value.strip()
    if not DATE_RE.match(value):
        raise UsageError(f"invalid date {value!r}: expected YYYY-MM-DD")
    try:
        date.fromisoformat(value)
    except ValueError:
        raise UsageError(f"invalid date {value!r}: expected YYYY-MM-DD")
    return value


# =============================================================================
# Request paths
# =============================================================================


def build_path(
    command: Command,
    prefix: str,
    query: dict[str, str] | None = None,
    days: int | None = None,
    date_str: str | None = None,
) -> str:
    """Build the request path for a command from already-resolved parameters."""
    params: dict[str, str] = {}
    if command.input in (InputKind.LOCATION, InputKind.LOCATION_DATE):
        if not query:
            raise UsageError(LOCATION_REQUIRED)
        params.update(query)
    if command.kind is Kind.FORECAST and days is not None:
        params["days"] = str(days)
    if command.input is InputKind.LOCATION_DATE:
        if not date_str:
            raise UsageError(f"--date is required for {command.name} command")
        params["date"] = date_str
    elif command.input is InputKind.DATE and date_str:
        params["date"] = date_str

    path = prefix + command.endpoint
    if params:
        path += "?" + urlencode(params)
    return path


@dataclass(frozen=True)
class FetchRequest:
    """A fully prepared request: the path(s) to fetch and a display title."""

    command: Command
    paths: tuple[str, ...]
    title: str


def make_request(
    command: Command,
    prefix: str,
    query: dict[str, str] | None = None,
    days: int | None = None,
    date_str: str | None = None,
    title: str | None = None,
) -> FetchRequest:
    """Build the request for a command; the full report fetches two documents."""
    if command.full_report:
        paths = (
            build_path(COMMANDS["current"], prefix, query),
            build_path(command, prefix, query, days=days),
        )
    else:
        paths = (build_path(command, prefix, query, days=days, date_str=date_str),)
    return FetchRequest(command, paths, title or command.label)


def parse_input(
    command: Command,
    text: str,
    prefix: str,
    days: int = FORECAST_DAYS,
) -> FetchRequest:
    """Turn the TUI input buffer into a request for ``command``.

    Raises:
        UsageError: The buffer does not fit the command's input shape.
    """
    text = text.strip()
    if command.input is InputKind.NONE:
        return make_request(command, prefix)

    if command.input is InputKind.DATE:
        date_str = validate_date(text) if text else None
        title = f"{command.label} - {date_str or 'today'}"
        return make_request(command, prefix, date_str=date_str, title=title)

    if command.input is InputKind.LOCATION_DATE:
        parts = [p.strip() for p in text.split(",")]
        if len(parts) != 2 or not all(parts):
            raise UsageError("enter location,date")
        location, date_str = parts
        date_str = validate_date(date_str)
        title = f"{command.label} - {location} on {date_str}"
        return make_request(
            command, prefix, parse_location_text(location), date_str=date_str, title=title
        )

    if command.full_report:
        days = REPORT_DAYS
    title = f"{command.label} - {text}" if text else command.label
    return make_request(command, prefix, parse_location_text(text), days=days, title=title)


# =============================================================================
# Fetching and rendering
# =============================================================================


def fetch_payload(dispatcher, request: FetchRequest) -> Any:
    """Fetch the JSON document(s) behind a request.

    The full report needs both current conditions and the forecast.
    """
    if request.command.full_report:
        current_path, forecast_path = request.paths
        current = dispatcher.get_json(current_path)
        forecast = dispatcher.get_json(forecast_path)
        return merge_report(current, forecast)
    return dispatcher.get_json(request.paths[0])


def render_response(command: Command, payload: Any, params: RenderParams) -> str:
    if command.full_report:
        return render_full(payload, params)
    if command.kind is None:
        return format_json(payload)
    return format_payload(command.kind, payload, params)
