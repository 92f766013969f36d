"""Persistent settings and credential storage for the weather client."""

import json
import os
from dataclasses import dataclass, field, asdict, fields
from pathlib import Path

from errors import ConfigError
from formatter import OUTPUT_FORMATS, UNIT_SYSTEMS


CONFIG_DIR = Path.home() / ".config" / "weather"
CONFIG_FILE = CONFIG_DIR / "cli.json"
TOKEN_FILE_NAME = "token"

DEFAULT_SERVER = "http://localhost:64948"
COLOR_MODES = ("auto", "always", "never")
URL_SCHEMES = ("http://", "https://")


@dataclass
class Settings:
    """User settings for the weather client."""

    # Servers: primary first, then cluster nodes tried on failure
    server: str = DEFAULT_SERVER
    cluster: list[str] = field(default_factory=list)

    # Output
    output: str = "table"
    color: str = "auto"
    units: str = "imperial"

    # Default location
    location: str | None = None

    api_version: str = "v1"
    timeout: int = 30
    user: str | None = None

    # Not persisted; filled from the credential store or the environment
    token: str | None = field(default=None, repr=False)

    def save(self, path: Path | None = None) -> None:
        """Save settings to the config file. The token is stored separately."""
        path = path or config_path()
        data = asdict(self)
        data.pop("token")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(data, indent=2))
        except OSError as e:
            raise ConfigError(f"failed to write config {path}: {e}")

    @classmethod
    def load(cls, path: Path | None = None) -> "Settings":
        """Load settings from the config file, or return defaults."""
        path = path or config_path()
        if not path.exists():
            return cls()
        try:
            data = json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"failed to parse config {path}: {e}")
        if not isinstance(data, dict):
            raise ConfigError(f"failed to parse config {path}: expected a JSON object")

        settings = cls()
        for key, value in data.items():
            if key == "token" or key not in FIELD_NAMES:
                continue
            settings.set_value(key, value)
        return settings

    def set_value(self, key: str, value) -> None:
        """Validate and set one setting.

        Raises:
            ConfigError: Unknown key or invalid value.
        """
        if key not in FIELD_NAMES or key == "token":
            raise ConfigError(f"unknown config key: {key}")

        if key == "output":
            if value not in OUTPUT_FORMATS:
                raise ConfigError("output must be json, table, or plain")
        elif key == "color":
            if value not in COLOR_MODES:
                raise ConfigError("color must be auto, always, or never")
        elif key == "units":
            if value not in UNIT_SYSTEMS:
                raise ConfigError("units must be imperial, metric, or auto")
        elif key == "timeout":
            try:
                value = int(value)
            except (TypeError, ValueError):
                raise ConfigError("timeout must be a number")
            if value < 1 or value > 300:
                raise ConfigError("timeout must be between 1 and 300 seconds")
        elif key == "cluster":
            if isinstance(value, str):
                value = [v.strip() for v in value.split(",") if v.strip()]
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise ConfigError("cluster must be a list of server URLs")
            for url in value:
                if not url.startswith(URL_SCHEMES):
                    raise ConfigError(f"cluster entry {url!r} must be an http:// or https:// URL")
        elif key == "server":
            if not isinstance(value, str) or not value.startswith(URL_SCHEMES):
                raise ConfigError("server must be an http:// or https:// URL")
        elif value is not None and not isinstance(value, str):
            raise ConfigError(f"{key} must be a string")

        setattr(self, key, value)

    def unset_value(self, key: str) -> None:
        """Reset one setting to its default."""
        if key not in FIELD_NAMES or key == "token":
            raise ConfigError(f"unknown config key: {key}")
        setattr(self, key, getattr(Settings(), key))

    def apply_env(self) -> None:
        """Apply environment overrides."""
        server = os.environ.get("WEATHER_SERVER", "").strip()
        if server:
            self.set_value("server", server)
        output = os.environ.get("WEATHER_OUTPUT", "").strip()
        if output:
            self.set_value("output", output)
        if os.environ.get("NO_COLOR"):
            self.color = "never"
        token = os.environ.get("WEATHER_TOKEN", "").strip()
        if token:
            self.token = token

    def display_rows(self) -> list[tuple[str, str]]:
        """Settings as label/value pairs for ``config show``."""
        rows = []
        for key in FIELD_NAMES:
            if key == "token":
                value = "(set)" if self.token else "(not set)"
            else:
                value = getattr(self, key)
                if isinstance(value, list):
                    value = ", ".join(value) or "(none)"
                elif value is None:
                    value = "(not set)"
            rows.append((key, str(value)))
        return rows


FIELD_NAMES = tuple(f.name for f in fields(Settings))


def config_path() -> Path:
    """Config file path, overridable with WEATHER_CONFIG."""
    override = os.environ.get("WEATHER_CONFIG", "").strip()
    return Path(override).expanduser() if override else CONFIG_FILE


# =============================================================================
# Credential store
# =============================================================================


def token_path(config: Path | None = None) -> Path:
    return (config or config_path()).parent / TOKEN_FILE_NAME


def load_token(config: Path | None = None) -> str | None:
    path = token_path(config)
    if not path.exists():
        return None
    try:
        token = path.read_text().strip()
    except OSError as e:
        raise ConfigError(f"failed to read token {path}: {e}")
    return token or None


def save_token(token: str, config: Path | None = None) -> Path:
    """Persist the API token, readable by the current user only."""
    path = token_path(config)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(token.strip() + "\n")
        os.chmod(path, 0o600)
    except OSError as e:
        raise ConfigError(f"failed to store token {path}: {e}")
    return path


def clear_token(config: Path | None = None) -> bool:
    path = token_path(config)
    if not path.exists():
        return False
    try:
        path.unlink()
    except OSError as e:
        raise ConfigError(f"failed to remove token {path}: {e}")
    return True


def get_settings(path: Path | None = None) -> Settings:
    """Get current settings: config file, stored token, then environment."""
    settings = Settings.load(path)
    settings.token = load_token(path)
    settings.apply_env()
    return settings
