"""Failover-aware HTTP dispatcher for the weather API."""

import logging
import threading
from typing import Any

import httpx

from errors import (
    AuthError,
    ConfigError,
    ConnectionFailedError,
    GeneralError,
    NotFoundError,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
USER_CONTEXT_HEADER = "X-User-Context"


def build_server_list(primary: str | None, cluster: list[str] | None = None) -> list[str]:
    """Build the ordered server list: primary first, then cluster nodes.

    Trailing slashes are dropped and duplicates of an earlier entry removed.
    """
    servers: list[str] = []
    for url in [primary, *(cluster or [])]:
        if not url:
            continue
        url = url.strip().rstrip("/")
        if url and url not in servers:
            servers.append(url)
    return servers


def _error_message(response: httpx.Response) -> str:
    """Pull a human message out of an error response body."""
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        for key in ("error", "message"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
    return f"server error ({response.status_code}): {response.text.strip()}"


def classify_response(response: httpx.Response) -> httpx.Response:
    """Raise the matching ClientError for an HTTP error status."""
    status = response.status_code
    if status in (401, 403):
        raise AuthError("authentication failed - check your token")
    if status == 404:
        raise NotFoundError("resource not found")
    if status >= 400:
        raise GeneralError(_error_message(response))
    return response


class Dispatcher:
    """Issue requests against an ordered list of equivalent servers.

    A server that fails at the transport level (DNS, connect, timeout) is
    put in the failed set and never tried again for the lifetime of this
    dispatcher. A server that answers with an HTTP error is not a failover
    condition: its response is classified and returned to the caller.
    """

    def __init__(
        self,
        servers: list[str],
        token: str | None = None,
        user_agent: str = "weather-cli/dev",
        user_context: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        self.servers = list(servers)
        self.failed: set[str] = set()
        self.current: str | None = None
        self._lock = threading.Lock()

        headers = {"User-Agent": user_agent, "Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if user_context:
            headers[USER_CONTEXT_HEADER] = user_context
        self._client = httpx.Client(headers=headers, timeout=timeout, transport=transport)

    def __enter__(self) -> "Dispatcher":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def candidates(self) -> list[str]:
        """Servers still worth trying, last good server first."""
        with self._lock:
            alive = [url for url in self.servers if url not in self.failed]
            if self.current in alive:
                alive.remove(self.current)
                alive.insert(0, self.current)
            return alive

    def _mark_failed(self, url: str) -> None:
        with self._lock:
            self.failed.add(url)
            if self.current == url:
                self.current = None

    def _mark_current(self, url: str) -> None:
        with self._lock:
            self.current = url

    def request(self, method: str, path: str, body: Any = None) -> httpx.Response:
        """Perform a request, failing over silently between servers.

        Raises:
            ConfigError: No servers are configured, or a server URL is malformed.
            ConnectionFailedError: Every remaining server failed to connect.
            AuthError, NotFoundError, GeneralError: The server answered with
                an error status.
        """
        if not self.servers:
            raise ConfigError("no servers configured")

        last_error: Exception | None = None
        for url in self.candidates():
            logger.debug("%s %s%s", method, url, path)
            try:
                response = self._client.request(method, url + path, json=body)
            except httpx.InvalidURL as e:
                raise ConfigError(f"invalid server URL {url}: {e}")
            except httpx.TransportError as e:
                logger.debug("server %s failed, trying next: %s", url, e)
                self._mark_failed(url)
                last_error = e
                continue

            self._mark_current(url)
            return classify_response(response)

        logger.warning("all %d configured servers are unreachable", len(self.servers))
        if last_error is None:
            raise ConnectionFailedError("failed to connect to server: all servers unavailable")
        raise ConnectionFailedError(f"failed to connect to server: {last_error}")

    def request_json(self, method: str, path: str, body: Any = None) -> Any:
        """Perform a request and decode its JSON body."""
        response = self.request(method, path, body)
        try:
            return response.json()
        except ValueError as e:
            raise GeneralError(f"failed to decode response: {e}") from e

    def get_json(self, path: str) -> Any:
        return self.request_json("GET", path)

    def server_version(self, api_path: str) -> dict[str, Any] | None:
        """Fetch the server version, or None if the server has no such endpoint."""
        try:
            data = self.get_json(f"{api_path}/version")
        except NotFoundError:
            return None
        if not isinstance(data, dict):
            raise GeneralError("failed to decode response: expected a JSON object")
        return data
