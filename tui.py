"""Interactive terminal session for the weather client.

The session is a small state machine. ``SessionController.update`` applies
one event at a time to a ``SessionModel`` and may return an effect for the
driver to carry out (start a fetch, quit). ``render`` turns the model into
screen lines. Neither touches the terminal, so both are tested directly;
``run_tui`` is the curses driver that feeds them.
"""

import curses
import itertools
import logging
import queue
import threading
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Callable

from commands import COMMANDS, FORECAST_DAYS, Command, FetchRequest, InputKind, parse_input
from errors import ClientError, GeneralError, UsageError

logger = logging.getLogger(__name__)

POLL_MS = 100


class View(Enum):
    MENU = "menu"
    INPUT = "input"
    RESULT = "result"
    HELP = "help"


class SizeMode(IntEnum):
    """Terminal size tier, smallest first."""

    MICRO = 0
    MINIMAL = 1
    COMPACT = 2
    STANDARD = 3
    WIDE = 4
    ULTRAWIDE = 5
    MASSIVE = 6


# (max width, max height, mode), checked in order; first match wins
SIZE_THRESHOLDS = (
    (40, 10, SizeMode.MICRO),
    (60, 16, SizeMode.MINIMAL),
    (80, 24, SizeMode.COMPACT),
    (120, 40, SizeMode.STANDARD),
    (200, 60, SizeMode.WIDE),
    (400, 80, SizeMode.ULTRAWIDE),
)


def size_mode(width: int, height: int) -> SizeMode:
    for max_width, max_height, mode in SIZE_THRESHOLDS:
        if width < max_width or height < max_height:
            return mode
    return SizeMode.MASSIVE


@dataclass(frozen=True)
class MenuItem:
    command: Command
    icon: str
    abbrev: str


MENU_ITEMS = (
    MenuItem(COMMANDS["current"], "☀", "CUR"),
    MenuItem(COMMANDS["forecast"], "☂", "FCT"),
    MenuItem(COMMANDS["report"], "▦", "RPT"),
    MenuItem(COMMANDS["alerts"], "⚠", "ALR"),
    MenuItem(COMMANDS["moon"], "☾", "MON"),
    MenuItem(COMMANDS["history"], "◷", "HIS"),
    MenuItem(COMMANDS["server-version"], "ⓘ", "VER"),
)


# =============================================================================
# Events and effects
# =============================================================================


@dataclass(frozen=True)
class KeyPress:
    key: str


@dataclass(frozen=True)
class Resize:
    width: int
    height: int


@dataclass(frozen=True)
class FetchCompleted:
    request_id: int
    title: str
    body: str = ""
    error: ClientError | None = None


@dataclass(frozen=True)
class StartFetch:
    request_id: int
    request: FetchRequest
    width: int


@dataclass(frozen=True)
class Quit:
    pass


UP_KEYS = {"up", "k"}
DOWN_KEYS = {"down", "j"}
HOME_KEYS = {"home", "g"}
END_KEYS = {"end", "G"}
SELECT_KEYS = {"enter", "l"}
BACK_KEYS = {"escape", "b", "h"}
HELP_KEY = "?"
QUIT_KEY = "q"
INTERRUPT_KEY = "ctrl+c"


# =============================================================================
# Model and update
# =============================================================================


@dataclass
class SessionModel:
    view: View = View.MENU
    previous_view: View = View.MENU
    cursor: int = 0
    buffer: str = ""
    command: Command | None = None
    title: str = ""
    body: str = ""
    error: ClientError | None = None
    loading: bool = False
    pending_id: int | None = None
    width: int = 80
    height: int = 24
    size_mode: SizeMode = SizeMode.STANDARD
    scroll_offset: int = 0

    @property
    def body_lines(self) -> list[str]:
        return self.body.splitlines()


class SessionController:
    """Owns the session model and applies events to it."""

    def __init__(
        self,
        api_prefix: str = "/api/v1",
        default_location: str | None = None,
        forecast_days: int = FORECAST_DAYS,
        width: int = 80,
        height: int = 24,
        subtitle: str = "",
    ):
        self.api_prefix = api_prefix
        self.default_location = default_location
        self.forecast_days = forecast_days
        self.subtitle = subtitle
        self.model = SessionModel(width=width, height=height, size_mode=size_mode(width, height))
        self._request_ids = itertools.count(1)

    def update(self, event) -> StartFetch | Quit | None:
        if isinstance(event, KeyPress):
            return self._on_key(event.key)
        if isinstance(event, Resize):
            self._on_resize(event)
        elif isinstance(event, FetchCompleted):
            self._on_fetch_completed(event)
        return None

    def render(self) -> list["Line"]:
        return render(self.model, self.subtitle)

    # -- keys ---------------------------------------------------------------

    def _on_key(self, key: str) -> StartFetch | Quit | None:
        m = self.model
        if key == INTERRUPT_KEY or (key == QUIT_KEY and m.view is not View.INPUT):
            return Quit()
        if m.view is View.MENU:
            return self._menu_key(key)
        if m.view is View.INPUT:
            return self._input_key(key)
        if m.view is View.RESULT:
            self._result_key(key)
        elif key in ("escape", "enter", HELP_KEY):
            m.view = m.previous_view
        return None

    def _open_help(self) -> None:
        self.model.previous_view = self.model.view
        self.model.view = View.HELP

    def _menu_key(self, key: str) -> StartFetch | None:
        m = self.model
        last = len(MENU_ITEMS) - 1
        if key in UP_KEYS:
            m.cursor = max(0, m.cursor - 1)
        elif key in DOWN_KEYS:
            m.cursor = min(last, m.cursor + 1)
        elif key in HOME_KEYS:
            m.cursor = 0
        elif key in END_KEYS:
            m.cursor = last
        elif key in SELECT_KEYS:
            return self._select(MENU_ITEMS[m.cursor].command)
        elif key == HELP_KEY:
            self._open_help()
        return None

    def _select(self, command: Command) -> StartFetch | None:
        m = self.model
        m.command = command
        if command.input is InputKind.NONE:
            return self._submit("")
        m.view = View.INPUT
        if command.input is InputKind.LOCATION and self.default_location:
            m.buffer = self.default_location
        else:
            m.buffer = ""
        return None

    def _input_key(self, key: str) -> StartFetch | None:
        m = self.model
        if key == "escape":
            m.view = View.MENU
            m.buffer = ""
            m.command = None
        elif key == "enter":
            return self._submit(m.buffer)
        elif key == "backspace":
            m.buffer = m.buffer[:-1]
        elif len(key) == 1 and key.isprintable():
            m.buffer += key
        return None

    def _submit(self, text: str) -> StartFetch | None:
        m = self.model
        command = m.command
        m.view = View.RESULT
        m.scroll_offset = 0
        m.body = ""
        m.error = None
        m.buffer = ""
        try:
            request = parse_input(command, text, self.api_prefix, self.forecast_days)
        except UsageError as e:
            m.title = command.label
            m.error = e
            m.loading = False
            m.pending_id = None
            return None

        m.title = request.title
        m.loading = True
        m.pending_id = next(self._request_ids)
        logger.debug("fetch %d: %s", m.pending_id, request.paths)
        return StartFetch(m.pending_id, request, m.width)

    def _result_key(self, key: str) -> None:
        m = self.model
        if key in UP_KEYS:
            m.scroll_offset = max(0, m.scroll_offset - 1)
        elif key in DOWN_KEYS:
            m.scroll_offset = min(max_scroll(m), m.scroll_offset + 1)
        elif key == "pgup":
            m.scroll_offset = max(0, m.scroll_offset - result_view_height(m))
        elif key == "pgdn":
            m.scroll_offset = min(max_scroll(m), m.scroll_offset + result_view_height(m))
        elif key in BACK_KEYS:
            # a fetch still in flight is abandoned; its completion is dropped
            m.view = View.MENU
            m.title = ""
            m.body = ""
            m.error = None
            m.loading = False
            m.pending_id = None
            m.command = None
            m.scroll_offset = 0
        elif key == HELP_KEY:
            self._open_help()

    # -- other events -------------------------------------------------------

    def _on_resize(self, event: Resize) -> None:
        m = self.model
        m.width, m.height = event.width, event.height
        m.size_mode = size_mode(event.width, event.height)
        m.scroll_offset = min(m.scroll_offset, max_scroll(m))

    def _on_fetch_completed(self, event: FetchCompleted) -> None:
        m = self.model
        if event.request_id != m.pending_id:
            logger.debug("dropping stale result for fetch %d", event.request_id)
            return
        m.loading = False
        m.pending_id = None
        m.title = event.title
        m.scroll_offset = 0
        if event.error is not None:
            m.error = event.error
            m.body = ""
        else:
            m.error = None
            m.body = event.body


# =============================================================================
# Rendering
# =============================================================================


@dataclass(frozen=True)
class Line:
    text: str
    style: str = "normal"


TITLE = "Weather"
DEFAULT_SUBTITLE = "Current conditions, forecasts, alerts and more"

FOOTERS = {
    View.MENU: (
        "q quit",
        "↑↓ ⏎ ? q",
        "↑/↓ move · enter select · ? help · q quit",
        "↑/↓ or j/k move · g/G first/last · enter select · ? help · q quit",
    ),
    View.INPUT: (
        "⏎ esc",
        "⏎ go · esc back",
        "enter submit · esc cancel · ctrl+c quit",
        "type a location · enter submit · backspace delete · esc cancel · ctrl+c quit",
    ),
    View.RESULT: (
        "esc back",
        "↑↓ esc ? q",
        "↑/↓ scroll · esc back · ? help · q quit",
        "↑/↓ or j/k scroll · pgup/pgdn page · esc/b back · ? help · q quit",
    ),
    View.HELP: (
        "esc back",
        "esc back",
        "esc/enter/? back · q quit",
        "esc, enter or ? returns to the previous view · q quit",
    ),
}

HELP_LINES = (
    ("Menu", ""),
    ("  ↑/↓, j/k", "move the cursor"),
    ("  home/end, g/G", "first/last item"),
    ("  enter, l", "open the selected item"),
    ("Input", ""),
    ("  enter", "fetch"),
    ("  backspace", "delete a character"),
    ("  esc", "back to the menu"),
    ("Result", ""),
    ("  ↑/↓, j/k", "scroll"),
    ("  pgup/pgdn", "scroll a page"),
    ("  esc, b, h", "back to the menu"),
    ("Anywhere", ""),
    ("  ?", "toggle this help"),
    ("  q, ctrl+c", "quit (ctrl+c only while typing)"),
)

INPUT_PROMPTS = {
    InputKind.LOCATION: "City name, ZIP code or lat,lon:",
    InputKind.LOCATION_DATE: "location,date (YYYY-MM-DD):",
    InputKind.DATE: "Date (YYYY-MM-DD), empty for today:",
}


def footer_text(view: View, mode: SizeMode) -> str:
    variants = FOOTERS[view]
    if mode is SizeMode.MICRO:
        return variants[0]
    if mode is SizeMode.MINIMAL:
        return variants[1]
    if mode is SizeMode.COMPACT:
        return variants[2]
    return variants[3]


def header_lines(mode: SizeMode, subtitle: str = "") -> list[Line]:
    if mode is SizeMode.MICRO:
        return []
    if mode is SizeMode.MINIMAL:
        return [Line(TITLE, "title")]
    return [Line(TITLE, "title"), Line(subtitle or DEFAULT_SUBTITLE, "subtitle"), Line("")]


def content_height(model: SessionModel) -> int:
    """Rows between the header and the footer."""
    return max(1, model.height - len(header_lines(model.size_mode)) - 1)


def result_view_height(model: SessionModel) -> int:
    """Rows available to the result body (one row goes to its title)."""
    return max(1, content_height(model) - 1)


def max_scroll(model: SessionModel) -> int:
    return max(0, len(model.body_lines) - result_view_height(model))


def menu_label(item: MenuItem, mode: SizeMode) -> str:
    if mode is SizeMode.MICRO:
        return item.abbrev
    if mode in (SizeMode.MINIMAL, SizeMode.COMPACT):
        return item.command.label
    return f"{item.icon}  {item.command.label}"


def render_menu(model: SessionModel, rows: int) -> list[Line]:
    marker = ">" if model.size_mode is SizeMode.MICRO else "▸ "
    blank = " " * len(marker)
    start = max(0, model.cursor - rows + 1)
    lines = []
    for i, item in enumerate(MENU_ITEMS[start:start + rows], start=start):
        selected = i == model.cursor
        label = menu_label(item, model.size_mode)
        lines.append(Line((marker if selected else blank) + label, "selected" if selected else "normal"))
    return lines


def render_input(model: SessionModel) -> list[Line]:
    command = model.command
    lines = []
    if model.size_mode is not SizeMode.MICRO:
        lines.append(Line(command.label, "heading"))
        lines.append(Line(INPUT_PROMPTS[command.input], "dim"))
    lines.append(Line(f"> {model.buffer}_", "input"))
    return lines


def render_result(model: SessionModel) -> list[Line]:
    lines = [Line(model.title, "heading")]
    if model.loading:
        lines.append(Line("Loading…", "dim"))
    elif model.error is not None:
        lines.append(Line(f"Error: {model.error.message}", "error"))
        lines.append(Line("Press esc to go back.", "dim"))
    else:
        visible = model.body_lines[model.scroll_offset:model.scroll_offset + result_view_height(model)]
        lines.extend(Line(text) for text in visible)
    return lines


def render_help(model: SessionModel) -> list[Line]:
    lines = [Line("Keys", "heading")]
    for keys, action in HELP_LINES:
        if not action:
            lines.append(Line(keys, "dim"))
        elif model.size_mode <= SizeMode.MINIMAL:
            lines.append(Line(keys.strip()))
        else:
            lines.append(Line(f"{keys:<18}{action}"))
    return lines


def render(model: SessionModel, subtitle: str = "") -> list[Line]:
    """Lay out one full screen: header, view content, padding, footer."""
    header = header_lines(model.size_mode, subtitle)
    rows = content_height(model)

    if model.view is View.MENU:
        content = render_menu(model, rows)
    elif model.view is View.INPUT:
        content = render_input(model)
    elif model.view is View.RESULT:
        content = render_result(model)
    else:
        content = render_help(model)

    content = content[:rows]
    content += [Line("")] * (rows - len(content))
    footer = Line(footer_text(model.view, model.size_mode), "footer")
    return (header + content + [footer])[:max(1, model.height)]


# =============================================================================
# Fetch worker
# =============================================================================


class FetchWorker:
    """Run fetches on background threads and post the outcome as an event.

    Exactly one FetchCompleted is queued per started fetch, whatever happens.
    """

    def __init__(self, fetch: Callable[[FetchRequest, int], str], events: queue.Queue):
        self.fetch = fetch
        self.events = events

    def start(self, effect: StartFetch) -> threading.Thread:
        thread = threading.Thread(
            target=self._run, args=(effect,), name=f"fetch-{effect.request_id}", daemon=True
        )
        thread.start()
        return thread

    def _run(self, effect: StartFetch) -> None:
        title = effect.request.title
        try:
            body = self.fetch(effect.request, effect.width)
            event = FetchCompleted(effect.request_id, title, body)
        except ClientError as e:
            logger.info("fetch %d failed: %s", effect.request_id, e.message)
            event = FetchCompleted(effect.request_id, title, error=e)
        except Exception as e:
            logger.exception("fetch %d crashed", effect.request_id)
            event = FetchCompleted(effect.request_id, title, error=GeneralError(str(e)))
        self.events.put(event)


# =============================================================================
# curses driver
# =============================================================================


KEY_NAMES = {
    curses.KEY_UP: "up",
    curses.KEY_DOWN: "down",
    curses.KEY_LEFT: "left",
    curses.KEY_RIGHT: "right",
    curses.KEY_HOME: "home",
    curses.KEY_END: "end",
    curses.KEY_PPAGE: "pgup",
    curses.KEY_NPAGE: "pgdn",
    curses.KEY_ENTER: "enter",
    curses.KEY_BACKSPACE: "backspace",
    "\n": "enter",
    "\r": "enter",
    "\x1b": "escape",
    "\x7f": "backspace",
    "\x08": "backspace",
    "\x03": INTERRUPT_KEY,
}


def key_name(key: int | str) -> str | None:
    """Normalize a curses key to the names the controller understands."""
    if key in KEY_NAMES:
        return KEY_NAMES[key]
    if isinstance(key, str) and key.isprintable():
        return key
    return None


STYLE_COLORS = {
    "title": (curses.COLOR_MAGENTA, curses.A_BOLD),
    "subtitle": (curses.COLOR_CYAN, 0),
    "heading": (curses.COLOR_YELLOW, curses.A_BOLD),
    "selected": (curses.COLOR_GREEN, curses.A_BOLD | curses.A_REVERSE),
    "input": (curses.COLOR_WHITE, curses.A_BOLD),
    "error": (curses.COLOR_RED, curses.A_BOLD),
    "dim": (curses.COLOR_BLUE, curses.A_DIM),
    "footer": (curses.COLOR_BLUE, curses.A_DIM),
}


def init_styles(color: bool) -> dict[str, int]:
    """curses attributes per line style."""
    styles = {"normal": curses.A_NORMAL}
    use_color = color and curses.has_colors()
    if use_color:
        curses.start_color()
        curses.use_default_colors()
    for pair, (name, (fg, attr)) in enumerate(STYLE_COLORS.items(), start=1):
        if use_color:
            curses.init_pair(pair, fg, -1)
            attr |= curses.color_pair(pair)
        styles[name] = attr
    return styles


def draw(stdscr, lines: list[Line], styles: dict[str, int]) -> None:
    stdscr.erase()
    height, width = stdscr.getmaxyx()
    for y, line in enumerate(lines[:height]):
        try:
            stdscr.addnstr(y, 0, line.text, max(0, width - 1), styles.get(line.style, 0))
        except curses.error:
            # curses refuses writes that end in the bottom-right cell
            continue
    stdscr.refresh()


def _session(stdscr, controller: SessionController, worker: FetchWorker, color: bool) -> None:
    try:
        curses.curs_set(0)
    except curses.error:
        logger.debug("terminal cannot hide the cursor")
    stdscr.keypad(True)
    stdscr.timeout(POLL_MS)
    styles = init_styles(color)

    height, width = stdscr.getmaxyx()
    controller.update(Resize(width, height))

    while True:
        draw(stdscr, controller.render(), styles)

        try:
            key = stdscr.get_wch()
        except curses.error:
            key = None
        except KeyboardInterrupt:
            key = "\x03"

        # completions queued while waiting for the key happened before it
        pending = []
        while True:
            try:
                pending.append(worker.events.get_nowait())
            except queue.Empty:
                break

        if key == curses.KEY_RESIZE:
            height, width = stdscr.getmaxyx()
            pending.append(Resize(width, height))
        elif key is not None:
            name = key_name(key)
            if name:
                pending.append(KeyPress(name))

        for event in pending:
            effect = controller.update(event)
            if isinstance(effect, Quit):
                return
            if isinstance(effect, StartFetch):
                worker.start(effect)


def run_tui(
    controller: SessionController,
    fetch: Callable[[FetchRequest, int], str],
    color: bool = True,
) -> None:
    """Run the interactive session until the user quits.

    ``curses.wrapper`` restores the terminal on every exit path.
    """
    worker = FetchWorker(fetch, queue.Queue())
    try:
        curses.wrapper(_session, controller, worker, color)
    except KeyboardInterrupt:
        logger.debug("interrupted")
