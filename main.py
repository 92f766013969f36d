import logging
import sys
from contextlib import contextmanager
from dataclasses import dataclass, replace
from pathlib import Path

import click

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich import box

from commands import (
    COMMANDS,
    FORECAST_DAYS,
    FetchRequest,
    api_path,
    fetch_payload,
    location_query,
    make_request,
    render_response,
    validate_date,
)
from dispatcher import Dispatcher, build_server_list
from errors import ConfigError, EXIT_GENERAL, EXIT_USAGE, UsageError
from formatter import OUTPUT_FORMATS, UNIT_SYSTEMS, RenderParams, format_json
from settings import (
    FIELD_NAMES,
    Settings,
    clear_token,
    config_path,
    get_settings,
    save_token,
)
from tui import SessionController, run_tui

VERSION = "0.1.0"
USER_AGENT = f"weather-cli/{VERSION}"
TUI_LOG_FILE = "tui.log"

console = Console()
logger = logging.getLogger(__name__)


# =============================================================================
# Logging
# =============================================================================


def setup_logging(debug: bool) -> None:
    """Log to stderr through rich; DEBUG with --debug, WARNING otherwise."""
    handler = RichHandler(console=Console(stderr=True), show_path=False, markup=False)
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[handler],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if debug else logging.WARNING)


@contextmanager
def log_to_file(path: Path):
    """Send log records to a file while curses owns the terminal."""
    root = logging.getLogger()
    saved = root.handlers[:]
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.handlers = [handler]
    try:
        yield
    finally:
        root.handlers = saved
        handler.close()


# =============================================================================
# Application context
# =============================================================================


@dataclass
class App:
    """Settings and render parameters resolved from config, env and flags."""

    settings: Settings
    config: Path
    params: RenderParams
    width: int | None = None
    no_color: bool = False

    @property
    def prefix(self) -> str:
        return api_path(self.settings.api_version)

    def dispatcher(self) -> Dispatcher:
        servers = build_server_list(self.settings.server, self.settings.cluster)
        return Dispatcher(
            servers,
            token=self.settings.token,
            user_agent=USER_AGENT,
            user_context=self.settings.user,
            timeout=self.settings.timeout,
        )

    def report_width(self) -> int:
        """Width for the full report: --width, else the terminal, else unknown."""
        if self.width is not None:
            return self.width
        return console.width if console.is_terminal else 0


def resolve_color(mode: str, no_color: bool) -> bool:
    if no_color or mode == "never":
        return False
    if mode == "always":
        return True
    return console.is_terminal


class WeatherCommand(click.Command):
    """Attach the command context to our usage errors so ``run`` can print help."""

    def invoke(self, ctx: click.Context):
        try:
            return super().invoke(ctx)
        except UsageError as e:
            e.ctx = ctx
            raise


class WeatherGroup(click.Group):
    command_class = WeatherCommand
    group_class = type


@click.group(cls=WeatherGroup, invoke_without_command=True)
@click.version_option(version=VERSION, prog_name="weather-cli")
@click.option("--server", help="Server URL (overrides config)")
@click.option("--token", help="API token (overrides config and stored login)")
@click.option("--output", "-o", type=click.Choice(OUTPUT_FORMATS), help="Output format")
@click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Config file path (default: ~/.config/weather/cli.json)",
)
@click.option("--no-color", is_flag=True, help="Disable colored output")
@click.option("--timeout", type=click.IntRange(1, 300), help="Request timeout in seconds")
@click.option("--units", type=click.Choice(UNIT_SYSTEMS), help="Unit system")
@click.option("--width", type=click.IntRange(0), help="Render the report for this many columns")
@click.option("--quiet", "-q", is_flag=True, help="Omit the report header")
@click.option("--no-footer", is_flag=True, help="Omit the report footer")
@click.option("--debug", is_flag=True, help="Verbose logging to stderr")
@click.option("--tui", "launch", is_flag=True, help="Launch the interactive interface")
@click.pass_context
def cli(
    ctx: click.Context,
    server: str | None,
    token: str | None,
    output: str | None,
    config_file: Path | None,
    no_color: bool,
    timeout: int | None,
    units: str | None,
    width: int | None,
    quiet: bool,
    no_footer: bool,
    debug: bool,
    launch: bool,
):
    """Weather service client: current conditions, forecasts, alerts and more."""
    setup_logging(debug)

    path = config_file or config_path()
    settings = get_settings(path)
    if server:
        settings.set_value("server", server)
    if token:
        settings.token = token
    if output:
        settings.output = output
    if timeout:
        settings.timeout = timeout
    if units:
        settings.units = units

    params = RenderParams(
        output_format=settings.output,
        units=settings.units,
        color=resolve_color(settings.color, no_color),
        quiet=quiet,
        no_footer=no_footer,
        width=width or 0,
    )
    ctx.obj = App(settings=settings, config=path, params=params, width=width, no_color=no_color)
    logger.debug("settings: %r", settings)

    if ctx.invoked_subcommand is None:
        if launch:
            launch_tui(ctx.obj)
        else:
            click.echo(ctx.get_help())


# =============================================================================
# Weather commands
# =============================================================================


def location_options(f):
    """Location qualifiers shared by the location-based commands."""
    f = click.argument("place", required=False)(f)
    f = click.option("--location", "-l", help='City name, e.g. "New York, NY"')(f)
    f = click.option("--zip", "zip_code", help="US ZIP code")(f)
    f = click.option("--lon", type=click.FloatRange(-180, 180), help="Longitude")(f)
    f = click.option("--lat", type=click.FloatRange(-90, 90), help="Latitude")(f)
    return f


def resolve_query(app: App, lat, lon, zip_code, location, place) -> dict[str, str]:
    if (lat is None) != (lon is None):
        raise UsageError("--lat and --lon must be given together")
    return location_query(lat, lon, zip_code, location or place, app.settings.location)


def fetch_and_print(app: App, request: FetchRequest, params: RenderParams | None = None) -> None:
    with app.dispatcher() as dispatcher:
        payload = fetch_payload(dispatcher, request)
    click.echo(render_response(request.command, payload, params or app.params))


@cli.command()
@location_options
@click.pass_obj
def current(app: App, lat, lon, zip_code, location, place):
    """Get current weather.

    PLACE is shorthand for --location.
    """
    query = resolve_query(app, lat, lon, zip_code, location, place)
    fetch_and_print(app, make_request(COMMANDS["current"], app.prefix, query))


@cli.command()
@location_options
@click.option(
    "--days",
    "-n",
    type=click.IntRange(1, 16),
    default=FORECAST_DAYS,
    show_default=True,
    help="Number of days",
)
@click.option("--full", is_flag=True, help="Full ASCII report with current conditions")
@click.pass_obj
def forecast(app: App, lat, lon, zip_code, location, place, days: int, full: bool):
    """Get the weather forecast."""
    query = resolve_query(app, lat, lon, zip_code, location, place)
    if full:
        request = make_request(COMMANDS["report"], app.prefix, query, days=days)
        params = replace(app.params, days=days, width=app.report_width())
        fetch_and_print(app, request, params)
        return
    fetch_and_print(app, make_request(COMMANDS["forecast"], app.prefix, query, days=days))


@cli.command()
@location_options
@click.option(
    "--days",
    "-n",
    type=click.IntRange(0, 16),
    default=3,
    show_default=True,
    help="Forecast days (0: current conditions only)",
)
@click.pass_obj
def report(app: App, lat, lon, zip_code, location, place, days: int):
    """Full ASCII weather report sized to the terminal."""
    query = resolve_query(app, lat, lon, zip_code, location, place)
    request = make_request(COMMANDS["report"], app.prefix, query, days=max(days, 1))
    params = replace(app.params, days=days, width=app.report_width())
    fetch_and_print(app, request, params)


@cli.command()
@location_options
@click.pass_obj
def alerts(app: App, lat, lon, zip_code, location, place):
    """Get active weather alerts."""
    query = resolve_query(app, lat, lon, zip_code, location, place)
    fetch_and_print(app, make_request(COMMANDS["alerts"], app.prefix, query))


@cli.command()
@click.option("--date", "date_str", help="Date (YYYY-MM-DD), default today")
@click.pass_obj
def moon(app: App, date_str: str | None):
    """Get moon phase information."""
    if date_str:
        date_str = validate_date(date_str)
    fetch_and_print(app, make_request(COMMANDS["moon"], app.prefix, date_str=date_str))


@cli.command()
@location_options
@click.option("--date", "date_str", help="Date (YYYY-MM-DD)")
@click.pass_obj
def history(app: App, lat, lon, zip_code, location, place, date_str: str | None):
    """Get historical weather for a date."""
    query = resolve_query(app, lat, lon, zip_code, location, place)
    if date_str:
        date_str = validate_date(date_str)
    request = make_request(COMMANDS["history"], app.prefix, query, date_str=date_str)
    fetch_and_print(app, request)


@cli.command("server-version")
@click.pass_obj
def server_version(app: App):
    """Show the version reported by the server."""
    with app.dispatcher() as dispatcher:
        info = dispatcher.server_version(app.prefix)

    if info is None:
        console.print("[dim]Server version unavailable[/dim]")
        return
    if app.params.output_format == "json":
        click.echo(format_json(info))
        return
    if app.params.output_format == "plain":
        for key, value in info.items():
            click.echo(f"{key}: {value}")
        return

    table = Table(show_header=False, box=box.ROUNDED, padding=(0, 2))
    table.add_column("field", style="dim")
    table.add_column("value", style="bold")
    for key, value in info.items():
        table.add_row(str(key), str(value))
    console.print(table)


@cli.command()
def version():
    """Show client version information."""
    click.echo(f"weather-cli version {VERSION}")


# =============================================================================
# Interactive mode
# =============================================================================


def launch_tui(app: App) -> None:
    controller = SessionController(
        api_prefix=app.prefix,
        default_location=app.settings.location,
        forecast_days=FORECAST_DAYS,
        subtitle=app.settings.server,
    )
    # curses cannot show ANSI escapes; the TUI styles whole lines itself
    params = replace(app.params, color=False)
    color = not app.no_color and app.settings.color != "never"

    with app.dispatcher() as dispatcher, log_to_file(app.config.parent / TUI_LOG_FILE):

        def fetch(request: FetchRequest, width: int) -> str:
            payload = fetch_payload(dispatcher, request)
            return render_response(request.command, payload, replace(params, width=width))

        run_tui(controller, fetch, color=color)


@cli.command()
@click.pass_obj
def tui(app: App):
    """Launch the interactive interface."""
    launch_tui(app)


# =============================================================================
# Config commands
# =============================================================================


@cli.group()
def config():
    """View and manage settings."""
    pass


@config.command("show")
@click.pass_obj
def config_show(app: App):
    """Show current settings."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("setting", style="dim")
    table.add_column("value", style="bold")

    for key, value in app.settings.display_rows():
        table.add_row(key, value)

    console.print(table)
    console.print(f"[dim]Config file: {app.config}[/dim]")


@config.command("get")
@click.argument("key")
@click.pass_obj
def config_get(app: App, key: str):
    """Print one configuration value."""
    rows = dict(app.settings.display_rows())
    if key not in rows:
        raise ConfigError(f"unknown config key: {key}")
    click.echo(rows[key])


@config.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_obj
def config_set(app: App, key: str, value: str):
    """Set a configuration value.

    \b
    Available settings:
      server       Primary server URL
      cluster      Fallback servers, comma separated
      output       table, json or plain
      color        auto, always or never
      units        imperial, metric or auto
      location     Default location
      api_version  API version (default v1)
      timeout      Request timeout in seconds (1-300)
      user         User context sent to the server
    """
    if key == "token":
        raise ConfigError("use 'weather-cli login' to store a token")
    settings = Settings.load(app.config)
    settings.set_value(key, value)
    settings.save(app.config)
    console.print(f"[green]Set {key} = {value}[/green]")


@config.command("unset")
@click.argument("key")
@click.pass_obj
def config_unset(app: App, key: str):
    """Unset a configuration value (reset to default)."""
    settings = Settings.load(app.config)
    settings.unset_value(key)
    settings.save(app.config)
    console.print(f"[green]Unset {key}[/green]")


@config.command("init")
@click.pass_obj
def config_init(app: App):
    """Create a config file with default settings."""
    if app.config.exists():
        raise ConfigError("config file already exists")
    Settings().save(app.config)
    console.print(f"Configuration file created at: {app.config}")


@config.command("keys")
def config_keys():
    """List configuration keys."""
    for key in FIELD_NAMES:
        if key != "token":
            click.echo(key)


# =============================================================================
# Credentials
# =============================================================================


@cli.command()
@click.option("--token", "new_token", prompt="API token", hide_input=True, help="API token to store")
@click.pass_obj
def login(app: App, new_token: str):
    """Store an API token for later requests."""
    if not new_token.strip():
        raise UsageError("token must not be empty")
    path = save_token(new_token, app.config)
    console.print(f"[green]Token saved to {path}[/green]")


@cli.command()
@click.pass_obj
def logout(app: App):
    """Remove the stored API token."""
    if clear_token(app.config):
        console.print("[green]Logged out[/green]")
    else:
        console.print("[dim]No stored token[/dim]")


# =============================================================================
# Entry point
# =============================================================================


def show_usage_error(message: str, ctx: click.Context | None) -> None:
    err = Console(stderr=True, highlight=False)
    err.print(f"Error: {message}", markup=False, soft_wrap=True)
    if ctx is not None:
        err.print()
        err.print(ctx.get_help(), markup=False, soft_wrap=True)


def run() -> None:
    """Console entry point: map every failure to its exit code."""
    try:
        code = cli.main(prog_name="weather-cli", standalone_mode=False)
    except click.UsageError as e:
        show_usage_error(e.format_message(), e.ctx)
        sys.exit(EXIT_USAGE)
    except UsageError as e:
        show_usage_error(e.format_message(), getattr(e, "ctx", None))
        sys.exit(EXIT_USAGE)
    except click.ClickException as e:
        e.show()
        sys.exit(e.exit_code)
    except click.Abort:
        click.echo("Aborted!", err=True)
        sys.exit(1)
    except OSError as e:
        logger.debug("unhandled OS error", exc_info=True)
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_GENERAL)
    sys.exit(code or 0)


if __name__ == "__main__":
    run()
