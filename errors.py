"""Error taxonomy shared by the dispatcher, the CLI and the TUI.

Every error carries a fixed process exit code so that a one-shot CLI
invocation can hand it straight to the shell.
"""

import click


EXIT_SUCCESS = 0
EXIT_GENERAL = 1
EXIT_CONFIG = 2
EXIT_CONNECTION = 3
EXIT_AUTH = 4
EXIT_NOT_FOUND = 5
EXIT_USAGE = 64


class ClientError(click.ClickException):
    """Base error for the weather client."""

    exit_code = EXIT_GENERAL
    kind = "general"

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class GeneralError(ClientError):
    """Server-side failure or undecodable response."""


class UsageError(ClientError):
    """Bad flags, missing arguments or malformed interactive input."""

    exit_code = EXIT_USAGE
    kind = "usage"


class ConfigError(ClientError):
    """Missing or invalid configuration."""

    exit_code = EXIT_CONFIG
    kind = "config"


class ConnectionFailedError(ClientError):
    """No configured server could be reached."""

    exit_code = EXIT_CONNECTION
    kind = "connection"


class AuthError(ClientError):
    """The server rejected our credentials (401/403)."""

    exit_code = EXIT_AUTH
    kind = "auth"


class NotFoundError(ClientError):
    """The requested resource does not exist (404)."""

    exit_code = EXIT_NOT_FOUND
    kind = "not_found"
