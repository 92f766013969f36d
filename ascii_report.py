"""Full terminal weather report: condition art plus a four-period forecast table.

All padding is done on rich ``Text`` objects, which measure visible cells,
so colored and plain cells line up identically. Colors are only turned
into escape sequences when the finished lines are printed.
"""

from datetime import date
from typing import Any

from rich.text import Text

from formatter import (
    PALETTE,
    RenderParams,
    forecast_days,
    number,
    resolve_units,
    string_console,
    text,
)


COL_WIDTH = 30
PERIODS = ("Morning", "Noon", "Evening", "Night")
PERIOD_LINES = 7
TABLE_WIDTH = len(PERIODS) * COL_WIDTH + len(PERIODS) + 1
ART_GAP = "     "

# period -> (share of the min..max range, feels-like offset, wind multiplier)
PERIOD_SHAPE = {
    "Morning": (0.3, 2, 0.8),
    "Noon": (1.0, 3, 1.0),
    "Evening": (0.7, 2, 1.2),
    "Night": (0.0, 1, 0.6),
}

BORDER = PALETTE["purple"]
FOOTER_TEXT = "Weather • Free weather data from Open-Meteo.com"

TEMP_UNITS = {"imperial": "°F", "metric": "°C"}
SPEED_UNITS = {"imperial": "mph", "metric": "km/h"}
PRECIP_UNITS = {"imperial": "in", "metric": "mm"}
VISIBILITY_UNITS = {"imperial": "mi", "metric": "km"}
WIND_ARROWS = ("↓", "↙", "←", "↖", "↑", "↗", "→", "↘")


# =============================================================================
# Condition art
# =============================================================================

ART_SUNNY = (
    "    \\   /    ",
    "     .-.     ",
    "  ― (   ) ―  ",
    "     `-'     ",
    "    /   \\    ",
)
ART_CLEAR_NIGHT = (
    "             ",
    "      _.._   ",
    "    .' .-'`  ",
    "   /  /      ",
    "   |  |      ",
)
ART_MOSTLY_CLEAR = (
    "   \\  /      ",
    ' _ /"".-.    ',
    "   \\_(   ).  ",
    "   /(_(__)   ",
    "             ",
)
ART_CLOUDY = (
    "             ",
    "     .--.    ",
    "  .-(    ).  ",
    " (___.__)_)  ",
    "             ",
)
ART_FOG = (
    "             ",
    " _ - _ - _ - ",
    "  _ - _ - _  ",
    " _ - _ - _ - ",
    "             ",
)
ART_RAIN = (
    "     .-.     ",
    "    (   ).   ",
    "   (___(__)  ",
    "    ‚'‚'‚'‚' ",
    "    ‚'‚'‚'‚' ",
)
ART_SNOW = (
    "     .-.     ",
    "    (   ).   ",
    "   (___(__)  ",
    "    *  *  *  ",
    "   *  *  *   ",
)
ART_STORM = (
    "     .-.     ",
    "    (   ).   ",
    "   (___(__)  ",
    "    ‚'/‚'/‚' ",
    "    ‚'‚'‚'‚' ",
)


def weather_art(code: int, is_day: bool = True) -> tuple[str, ...]:
    """Five-line glyph block for a WMO weather code."""
    if code == 0:
        return ART_SUNNY if is_day else ART_CLEAR_NIGHT
    if code == 1:
        return ART_MOSTLY_CLEAR
    if code <= 3:
        return ART_CLOUDY
    if 45 <= code <= 48:
        return ART_FOG
    if 51 <= code <= 67 or 80 <= code <= 82:
        return ART_RAIN
    if 71 <= code <= 77 or 85 <= code <= 86:
        return ART_SNOW
    if code >= 95:
        return ART_STORM
    return ART_CLOUDY


def weather_color(code: int, is_day: bool = True) -> str:
    if code == 0:
        return PALETTE["yellow"] if is_day else PALETTE["purple"]
    if code <= 3:
        return PALETTE["comment"]
    if 45 <= code <= 48:
        return PALETTE["foreground"]
    if 51 <= code <= 67:
        return PALETTE["cyan"]
    if 71 <= code <= 86:
        return "#ffffff"
    if code >= 95:
        return PALETTE["red"]
    return PALETTE["foreground"]


def wind_arrow(degrees: float) -> str:
    return WIND_ARROWS[int(round(degrees / 45.0)) % 8]


# =============================================================================
# Header and footer
# =============================================================================


def capitalize_location(name: str) -> str:
    """Title-case each comma separated part; two-letter parts are region codes."""
    parts = []
    for part in name.split(","):
        part = part.strip()
        if len(part) == 2 and part.isalpha():
            parts.append(part.upper())
            continue
        words = []
        for word in part.split():
            if len(word) <= 3 and word.upper() == word:
                words.append(word)
            else:
                words.append(word[0].upper() + word[1:].lower())
        parts.append(" ".join(words))
    return ", ".join(parts)


def report_location(payload: Any) -> str | None:
    """Location line for the header, with coordinates when the server sent them."""
    if not isinstance(payload, dict):
        return None
    loc = payload.get("location")
    if isinstance(loc, str):
        return capitalize_location(loc) if loc.strip() else None
    if not isinstance(loc, dict):
        return None

    name = text(loc, "full_name") or text(loc, "short_name")
    if not name:
        name = ", ".join(p for p in (text(loc, "name"), text(loc, "country")) if p)
    lat, lon = number(loc, "latitude"), number(loc, "longitude")
    if not name and lat is None:
        return None
    result = capitalize_location(name) if name else ""
    if lat is not None and lon is not None:
        result = f"{result} [{lat:.7f},{lon:.7f}]".strip()
    return result


def render_header(payload: Any) -> Text:
    name = report_location(payload)
    header = f"Weather report: {name}" if name else "Weather report"
    return Text(header, style=f"bold {PALETTE['yellow']}")


def render_footer() -> Text:
    return Text(FOOTER_TEXT, style=PALETTE["comment"])


# =============================================================================
# Current conditions
# =============================================================================


def current_info(current: dict, units: str) -> list[Text]:
    """The five text lines shown beside the art; missing fields stay blank."""
    lines = [Text("") for _ in range(5)]

    condition = text(current, "condition")
    if condition:
        lines[0] = Text(condition, style=PALETTE["cyan"])

    temp = number(current, "temperature")
    if temp is not None:
        temp_str = f"{round(temp):+d}"
        feels = number(current, "feels_like")
        if feels is not None:
            temp_str += f"({round(feels)})"
        lines[1] = Text(f"{temp_str} {TEMP_UNITS[units]}", style=PALETTE["yellow"])

    wind = number(current, "wind_speed")
    if wind is not None:
        direction = number(current, "wind_direction")
        arrow = wind_arrow(direction) + " " if direction is not None else ""
        lines[2] = Text(f"{arrow}{round(wind)} {SPEED_UNITS[units]}", style=PALETTE["green"])

    pressure = number(current, "pressure")
    if pressure is not None:
        if units == "imperial":
            pressure_str = f"{pressure * 0.02953:.2f} inHg"
        else:
            pressure_str = f"{round(pressure)} hPa"
        lines[3] = Text(pressure_str, style=PALETTE["purple"])

    precipitation = number(current, "precipitation")
    if precipitation is not None:
        lines[4] = Text(f"{precipitation:.1f} {PRECIP_UNITS[units]}", style=PALETTE["pink"])

    return lines


def _is_day(current: dict) -> bool:
    value = current.get("is_day", True)
    return value is None or bool(value)


def render_current(current: dict, units: str) -> list[Text]:
    code = int(number(current, "weather_code") or 0)
    is_day = _is_day(current)
    color = weather_color(code, is_day)
    info = current_info(current, units)

    lines = []
    for art_line, info_line in zip(weather_art(code, is_day), info):
        line = Text(art_line, style=color)
        if info_line.plain:
            line.append(ART_GAP)
            line.append_text(info_line)
        lines.append(line)
    return lines


# =============================================================================
# Forecast table
# =============================================================================


def days_to_show(width: int, available: int, requested: int | None = None) -> int:
    """How many forecast days fit: 3 from 125 columns, 2 from 80, else 1."""
    if width == 0 or width >= TABLE_WIDTH:
        count = min(3, available)
    elif width < 80:
        count = min(1, available)
    else:
        count = min(2, available)
    if requested is not None and 0 < requested < count:
        count = requested
    return count


def day_header(day: dict, index: int) -> str:
    raw = text(day, "date")
    if raw:
        try:
            d = date.fromisoformat(raw[:10])
        except ValueError:
            return raw
        return f"{d:%a} {d.day} {d:%b}"
    return f"Day {index + 1}"


def _cell(content: str, style: str) -> Text:
    cell = Text(content, style=style)
    cell.align("center", COL_WIDTH)
    return cell


def period_cells(day: dict, units: str) -> dict[str, list[Text]]:
    """Exactly PERIOD_LINES centered, COL_WIDTH-wide lines for each period.

    Lines: blank, condition, temperature, wind, visibility, precipitation,
    blank. A missing field leaves its line blank so the columns stay aligned.
    """
    low, high = number(day, "temp_min"), number(day, "temp_max")
    if low is None:
        low = number(day, "low")
    if high is None:
        high = number(day, "high")
    wind = number(day, "wind_speed")
    direction = number(day, "wind_direction")
    visibility = number(day, "visibility")
    precipitation = number(day, "precipitation")
    probability = number(day, "precipitation_probability")
    condition = text(day, "condition") or ""

    if visibility is not None:
        visibility_line = f"{round(visibility)} {VISIBILITY_UNITS[units]}"
    else:
        visibility_line = ""

    if precipitation is not None:
        precip_line = f"{precipitation:.1f} {PRECIP_UNITS[units]}"
        if probability is not None:
            precip_line += f" | {round(probability)}%"
    elif probability is not None:
        precip_line = f"{round(probability)}%"
    else:
        precip_line = ""

    cells = {}
    for period in PERIODS:
        _, feels_offset, wind_factor = PERIOD_SHAPE[period]

        temp_line = ""
        if low is not None and high is not None:
            temp = period_temperature(low, high, period)
            temp_line = f"{temp:+d}({temp + feels_offset}) {TEMP_UNITS[units]}"

        wind_line = ""
        if wind is not None:
            speed = int(max(1, round(wind) * wind_factor))
            arrow = wind_arrow(direction) + " " if direction is not None else ""
            wind_line = f"{arrow}{speed} {SPEED_UNITS[units]}"

        cells[period] = [
            _cell("", ""),
            _cell(condition, PALETTE["cyan"]),
            _cell(temp_line, PALETTE["yellow"]),
            _cell(wind_line, PALETTE["green"]),
            _cell(visibility_line, PALETTE["purple"]),
            _cell(precip_line, PALETTE["pink"]),
            _cell("", ""),
        ]
    return cells


def _border(left: str, mid: str, right: str) -> Text:
    joined = mid.join("─" * COL_WIDTH for _ in PERIODS)
    return Text(left + joined + right, style=BORDER)


def _row(cells: list[Text]) -> Text:
    line = Text("│", style=BORDER)
    for cell in cells:
        line.append_text(cell)
        line.append("│", style=BORDER)
    return line


def render_day(day: dict, index: int, units: str) -> list[Text]:
    header = day_header(day, index)
    tab = Text("┌─ ", style=BORDER)
    tab.append(header, style=PALETTE["pink"])
    tab.append(" ─┐", style=BORDER)
    tab.align("center", TABLE_WIDTH)
    tab.rstrip()

    lines = [tab, _border("┌", "┬", "┐")]
    lines.append(_row([_cell(name, PALETTE["orange"]) for name in PERIODS]))
    lines.append(_border("├", "┼", "┤"))

    cells = period_cells(day, units)
    for i in range(PERIOD_LINES):
        lines.append(_row([cells[period][i] for period in PERIODS]))

    lines.append(_border("└", "┴", "┘"))
    return lines


def render_forecast(days: list[dict], params: RenderParams, units: str) -> list[Text]:
    if not days:
        return [Text("No forecast data available")]

    count = days_to_show(params.width, len(days), params.days)
    lines: list[Text] = []
    for i, day in enumerate(days[:count]):
        if i:
            lines.append(Text(""))
        lines.extend(render_day(day, i, units))
    return lines


# =============================================================================
# Full report
# =============================================================================


def report_lines(payload: Any, params: RenderParams) -> list[Text]:
    units = resolve_units(params, payload)
    lines: list[Text] = []

    if not params.quiet:
        lines += [render_header(payload), Text("")]

    current = payload.get("current") if isinstance(payload, dict) else None
    if isinstance(current, dict):
        lines += render_current(current, units)

    if params.days != 0:
        if lines:
            lines += [Text(""), Text("")]
        lines += render_forecast(forecast_days(payload), params, units)

    if not params.no_footer:
        lines += [Text(""), render_footer()]
    return lines


def render_full(payload: Any, params: RenderParams) -> str:
    """Render the full report as a string, with ANSI colors if enabled."""
    console = string_console(params, max(params.width, TABLE_WIDTH))
    for line in report_lines(payload, params):
        console.print(line, soft_wrap=True)
    return console.file.getvalue()


def visible_width(rendered: str) -> int:
    """Width in terminal cells of a line that may contain ANSI escapes."""
    return Text.from_ansi(rendered).cell_len


def merge_report(current: Any, forecast: Any) -> dict:
    """Combine a current-weather and a forecast response into one report payload."""
    report = dict(forecast) if isinstance(forecast, dict) else {}
    if isinstance(current, dict):
        report["current"] = current["current"] if isinstance(current.get("current"), dict) else current
        if "location" not in report and "location" in current:
            report["location"] = current["location"]
    return report


def period_temperature(low: float, high: float, period: str) -> int:
    """Temperature for a period, interpolated from the day's range."""
    t_low, t_high = round(low), round(high)
    return round(t_low + (t_high - t_low) * PERIOD_SHAPE[period][0])
