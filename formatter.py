"""Render decoded weather API responses as json, table or plain text."""

import io
import json
import math
import textwrap
from dataclasses import dataclass
from enum import Enum
from typing import Any

from rich import box
from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text


class Kind(Enum):
    CURRENT = "current"
    FORECAST = "forecast"
    ALERTS = "alerts"
    MOON = "moon"


OUTPUT_FORMATS = ("table", "json", "plain")
UNIT_SYSTEMS = ("imperial", "metric", "auto")

TEMP_SYMBOLS = {"imperial": "°F", "metric": "°C"}
WIND_SYMBOLS = {"imperial": "mph", "metric": "km/h"}

# Dracula palette, shared with the ASCII report
PALETTE = {
    "background": "#282a36",
    "foreground": "#f8f8f2",
    "comment": "#6272a4",
    "cyan": "#8be9fd",
    "green": "#50fa7b",
    "orange": "#ffb86c",
    "pink": "#ff79c6",
    "purple": "#bd93f9",
    "red": "#ff5555",
    "yellow": "#f1fa8c",
}

PANEL_WIDTH = 58
ALERT_PANEL_WIDTH = 62
# border + one column of padding on each side
ALERT_TEXT_WIDTH = ALERT_PANEL_WIDTH - 4
LABEL_WIDTH = 14

NO_ALERTS = "No active weather alerts."


@dataclass(frozen=True)
class RenderParams:
    """How a response should be rendered. Built once per request."""

    output_format: str = "table"
    units: str = "imperial"
    color: bool = False
    quiet: bool = False
    no_footer: bool = False
    days: int | None = None  # None: as many as fit, 0: no forecast
    width: int = 0  # 0: not known, assume wide


# =============================================================================
# Field helpers
# =============================================================================


def number(data: Any, key: str) -> float | None:
    """Return a numeric field, or None if it is missing or not a finite number."""
    if not isinstance(data, dict):
        return None
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        value = float(value)
    except OverflowError:
        return None
    return value if math.isfinite(value) else None


def text(data: Any, key: str) -> str | None:
    """Return a non-empty string field, or None."""
    if not isinstance(data, dict):
        return None
    value = data.get(key)
    if isinstance(value, str) and value.strip():
        return value
    return None


def location_name(data: Any) -> str | None:
    """Display name for the payload's location (a string or an object)."""
    if not isinstance(data, dict):
        return None
    loc = data.get("location")
    if isinstance(loc, str):
        return loc.strip() or None
    if isinstance(loc, dict):
        for key in ("full_name", "short_name"):
            name = text(loc, key)
            if name:
                return name
        parts = [p for p in (text(loc, "name"), text(loc, "country")) if p]
        return ", ".join(parts) or None
    return None


def resolve_units(params: RenderParams, payload: Any = None) -> str:
    """Resolve ``auto`` units from the payload, falling back to imperial."""
    if params.units in TEMP_SYMBOLS:
        return params.units
    if isinstance(payload, dict) and payload.get("units") in TEMP_SYMBOLS:
        return payload["units"]
    return "imperial"


def format_temp(value: float, units: str) -> str:
    return f"{value:.1f}{TEMP_SYMBOLS[units]}"


def format_humidity(value: float) -> str:
    return f"{value:.0f}%"


def format_wind(value: float, units: str) -> str:
    return f"{value:.1f} {WIND_SYMBOLS[units]}"


def format_illumination(value: float) -> str:
    return f"{value * 100:.1f}%"


def format_age(value: float) -> str:
    return f"{value:.1f} days"


def wrap_text(value: str, width: int) -> list[str]:
    """Greedy word wrap; words longer than ``width`` stay on their own line."""
    return textwrap.wrap(value, width, break_long_words=False, break_on_hyphens=False)


def _current_source(data: dict) -> dict:
    current = data.get("current")
    return current if isinstance(current, dict) else data


def current_rows(data: Any, units: str) -> list[tuple[str, str]]:
    """Label/value pairs for a current (or historical) weather payload."""
    if not isinstance(data, dict):
        return []
    src = _current_source(data)
    rows = []
    day = text(data, "date")
    if day:
        rows.append(("Date", day))
    temp = number(src, "temperature")
    if temp is not None:
        rows.append(("Temperature", format_temp(temp, units)))
    feels = number(src, "feels_like")
    if feels is not None:
        rows.append(("Feels Like", format_temp(feels, units)))
    condition = text(src, "condition")
    if condition:
        rows.append(("Condition", condition))
    humidity = number(src, "humidity")
    if humidity is not None:
        rows.append(("Humidity", format_humidity(humidity)))
    wind = number(src, "wind_speed")
    if wind is not None:
        rows.append(("Wind Speed", format_wind(wind, units)))
    return rows


def forecast_days(data: Any) -> list[dict]:
    if not isinstance(data, dict):
        return []
    days = data.get("forecast")
    if not isinstance(days, list):
        return []
    return [d for d in days if isinstance(d, dict)]


def _day_high(day: dict) -> float | None:
    high = number(day, "high")
    return high if high is not None else number(day, "temp_max")


def _day_low(day: dict) -> float | None:
    low = number(day, "low")
    return low if low is not None else number(day, "temp_min")


def alert_list(data: Any) -> list[dict] | None:
    """The alerts in a payload, or None if the payload carries no alert list."""
    if isinstance(data, list):
        alerts = data
    elif isinstance(data, dict) and isinstance(data.get("alerts"), list):
        alerts = data["alerts"]
    else:
        return None
    return [a for a in alerts if isinstance(a, dict)]


def moon_rows(data: Any, phase_label: str = "Phase") -> list[tuple[str, str]]:
    rows = []
    phase = text(data, "phase")
    if phase:
        rows.append((phase_label, phase))
    illumination = number(data, "illumination")
    if illumination is not None:
        rows.append(("Illumination", format_illumination(illumination)))
    age = number(data, "age")
    if age is not None:
        rows.append(("Age", format_age(age)))
    return rows


# =============================================================================
# json
# =============================================================================


def format_json(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False)


# =============================================================================
# plain
# =============================================================================


def _plain_lines(rows: list[tuple[str, str]]) -> list[str]:
    return [f"{label}: {value}" for label, value in rows]


def plain_current(data: Any, units: str) -> str:
    lines = []
    name = location_name(data)
    if name:
        lines.append(f"Location: {name}")
    lines.extend(_plain_lines(current_rows(data, units)))
    return "\n".join(lines)


def plain_forecast(data: Any, units: str) -> str:
    lines = []
    name = location_name(data)
    if name:
        lines += [f"Location: {name}", ""]
    for i, day in enumerate(forecast_days(data), start=1):
        day_date = text(day, "date")
        lines.append(f"Day {i} - {day_date}" if day_date else f"Day {i}")
        high = _day_high(day)
        if high is not None:
            lines.append(f"  High: {format_temp(high, units)}")
        low = _day_low(day)
        if low is not None:
            lines.append(f"  Low: {format_temp(low, units)}")
        condition = text(day, "condition")
        if condition:
            lines.append(f"  Condition: {condition}")
        lines.append("")
    return "\n".join(lines).rstrip("\n")


def plain_alerts(data: Any) -> str:
    alerts = alert_list(data)
    if not alerts:
        return NO_ALERTS
    lines = []
    for i, alert in enumerate(alerts, start=1):
        lines.append(f"Alert {i}:")
        for key, label in (("event", "Event"), ("severity", "Severity"), ("description", "Description")):
            value = text(alert, key)
            if value:
                lines.append(f"  {label}: {value}")
        lines.append("")
    return "\n".join(lines).rstrip("\n")


def plain_moon(data: Any) -> str:
    return "\n".join(_plain_lines(moon_rows(data, phase_label="Moon Phase")))


# =============================================================================
# table
# =============================================================================


def string_console(params: RenderParams, width: int) -> Console:
    """A console that renders into a string instead of the terminal."""
    return Console(
        file=io.StringIO(),
        width=width,
        color_system="truecolor" if params.color else None,
        force_terminal=params.color,
        no_color=not params.color,
        highlight=False,
        emoji=False,
        legacy_windows=False,
    )


def _render(params: RenderParams, width: int, *renderables) -> str:
    console = string_console(params, width)
    for renderable in renderables:
        console.print(renderable)
    return console.file.getvalue().rstrip("\n")


def _rows_grid(rows: list[tuple[str, str]]) -> Table:
    grid = Table.grid(padding=(0, 1))
    grid.add_column(style=PALETTE["cyan"], min_width=LABEL_WIDTH, no_wrap=True)
    grid.add_column(style=PALETTE["foreground"])
    for label, value in rows:
        grid.add_row(f"{label}:", Text(value))
    return grid


def _panel(body, title: str | None, width: int, border: str = PALETTE["purple"]) -> Panel:
    return Panel(
        body,
        title=Text(title, style=f"bold {PALETTE['yellow']}") if title else None,
        title_align="left",
        box=box.SQUARE,
        width=width,
        padding=(0, 1),
        border_style=border,
    )


def table_current(data: Any, params: RenderParams, units: str) -> str:
    panel = _panel(_rows_grid(current_rows(data, units)), location_name(data), PANEL_WIDTH)
    return _render(params, PANEL_WIDTH, panel)


def table_forecast(data: Any, params: RenderParams, units: str) -> str:
    table = Table(
        box=box.SQUARE,
        header_style=f"bold {PALETTE['orange']}",
        border_style=PALETTE["purple"],
    )
    table.add_column("Date", style=PALETTE["pink"], justify="center", min_width=10)
    table.add_column("High", justify="right", min_width=8)
    table.add_column("Low", justify="right", min_width=8)
    table.add_column("Condition", style=PALETTE["cyan"], min_width=18)

    for day in forecast_days(data):
        high = _day_high(day)
        low = _day_low(day)
        table.add_row(
            Text(text(day, "date") or ""),
            format_temp(high, units) if high is not None else "",
            format_temp(low, units) if low is not None else "",
            Text(text(day, "condition") or ""),
        )

    renderables = []
    name = location_name(data)
    if name:
        renderables += [Text(f"Forecast for: {name}", style=f"bold {PALETTE['yellow']}"), Text("")]
    renderables.append(table)
    return _render(params, 80, *renderables)


SEVERITY_COLORS = {
    "extreme": PALETTE["red"],
    "severe": PALETTE["red"],
    "moderate": PALETTE["orange"],
    "minor": PALETTE["yellow"],
}


def table_alerts(data: Any, params: RenderParams) -> str:
    alerts = alert_list(data)
    if not alerts:
        return NO_ALERTS

    renderables: list = [Text("Active Weather Alerts:", style=f"bold {PALETTE['red']}"), Text("")]
    for i, alert in enumerate(alerts, start=1):
        lines = []
        event = text(alert, "event")
        if event:
            lines.append(Text(f"Event: {event}", style="bold"))
        severity = text(alert, "severity")
        if severity:
            lines.append(Text(f"Severity: {severity}"))
        description = text(alert, "description")
        if description:
            lines.extend(Text(line) for line in wrap_text(description, ALERT_TEXT_WIDTH))
        border = SEVERITY_COLORS.get((severity or "").lower(), PALETTE["purple"])
        renderables += [_panel(Group(*lines), f"Alert {i}", ALERT_PANEL_WIDTH, border), Text("")]
    return _render(params, ALERT_PANEL_WIDTH, *renderables)


def table_moon(data: Any, params: RenderParams) -> str:
    panel = _panel(_rows_grid(moon_rows(data)), "Moon Phase", PANEL_WIDTH)
    return _render(params, PANEL_WIDTH, panel)


# =============================================================================
# Dispatch
# =============================================================================


def format_payload(kind: Kind, payload: Any, params: RenderParams) -> str:
    """Render ``payload`` of the given kind according to ``params.output_format``."""
    if params.output_format == "json":
        return format_json(payload)

    units = resolve_units(params, payload)
    if params.output_format == "plain":
        if kind is Kind.CURRENT:
            return plain_current(payload, units)
        if kind is Kind.FORECAST:
            return plain_forecast(payload, units)
        if kind is Kind.ALERTS:
            return plain_alerts(payload)
        return plain_moon(payload)

    if kind is Kind.CURRENT:
        return table_current(payload, params, units)
    if kind is Kind.FORECAST:
        return table_forecast(payload, params, units)
    if kind is Kind.ALERTS:
        return table_alerts(payload, params)
    return table_moon(payload, params)
