"""Async client for the game server's console-command API (Pterodactyl).

Sends one console command per call to
``{panel_origin}/api/client/servers/{server_id}/command`` with the
client API key as bearer token.  Every request is bounded by
``config.command_timeout``; failures are converted to the
``CommandError`` family so callers can tell authentication problems from
everything else.

Usage::

    async with PterodactylClient(config) as client:
        await client.send_command('matchzy_loadmatch_url "https://..."')
"""

import logging
from dataclasses import dataclass
from typing import Protocol
from urllib.parse import quote

import httpx
from typing_extensions import Self

from matchmaker.config import MatchmakerConfig
from matchmaker.exceptions import (
    CommandConfigError,
    CommandError,
    CommandTimeout,
    CommandUnauthenticated,
)

logger = logging.getLogger(__name__)


class CommandSender(Protocol):
    async def send_command(self, command: str) -> None: ...


class PterodactylClient:
    """``CommandSender`` backed by the Pterodactyl client API."""

    def __init__(
        self,
        config: MatchmakerConfig,
        *,
        session: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._session = session
        self._session_created = False
        self.sent_count = 0

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._session_created and self._session is not None:
            await self._session.aclose()
            self._session = None
            self._session_created = False

    def command_url(self) -> str:
        """Return the command endpoint, or raise if credentials are missing."""
        cfg = self._config
        if not (cfg.panel_origin and cfg.server_id and cfg.client_key):
            raise CommandConfigError(
                "Missing Pterodactyl settings (PTERO_PANEL_ORIGIN / PTERO_SERVER_ID / "
                "PTERO_CLIENT_KEY)"
            )
        origin = cfg.panel_origin.rstrip("/")
        return f"{origin}/api/client/servers/{quote(cfg.server_id, safe='')}/command"

    def _client(self) -> httpx.AsyncClient:
        if self._session is None:
            self._session = httpx.AsyncClient(timeout=self._config.command_timeout)
            self._session_created = True
        return self._session

    async def send_command(self, command: str) -> None:
        """POST ``command`` to the server console.

        Raises:
            CommandConfigError: Credentials are not configured.
            CommandTimeout: No answer within ``command_timeout``.
            CommandUnauthenticated: HTTP 401.
            CommandError: Any other transport error or non-2xx status.
        """
        url = self.command_url()
        headers = {
            "Authorization": f"Bearer {self._config.client_key}",
            "Accept": "application/json",
        }
        try:
            response = await self._client().post(
                url,
                headers=headers,
                json={"command": command},
                timeout=self._config.command_timeout,
            )
        except httpx.TimeoutException as exc:
            raise CommandTimeout(
                f"Pterodactyl command timed out after {self._config.command_timeout:.0f}s"
            ) from exc
        except httpx.HTTPError as exc:
            raise CommandError(f"Pterodactyl command failed: {exc}") from exc

        if response.is_success:
            self.sent_count += 1
            logger.info("Sent console command: %s", command)
            return

        body = response.text
        message = f"Pterodactyl command failed: HTTP {response.status_code} {body}".strip()
        if response.status_code == 401:
            raise CommandUnauthenticated(message, status_code=401, body=body)
        raise CommandError(message, status_code=response.status_code, body=body)


# ---------------------------------------------------------------------------
# Connection info handed to players
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ServerConnection:
    host: str
    port: int
    spectate_port: int
    connect_url: str
    spectate_url: str


def server_connection_info(config: MatchmakerConfig) -> ServerConnection:
    """Build ``steam://connect`` URLs for players and spectators.

    Raises:
        ValueError: Host or port missing, or a port is not a positive integer.
    """
    host = config.game_server_host
    port_raw = config.game_server_port
    spectate_raw = config.game_server_spectate_port or port_raw
    if not host or not port_raw:
        raise ValueError("Missing GAME_SERVER_HOST or GAME_SERVER_PORT")
    try:
        port, spectate_port = int(port_raw), int(spectate_raw)
    except ValueError:
        raise ValueError("Invalid GAME_SERVER_PORT or GAME_SERVER_SPECTATE_PORT") from None
    if port <= 0 or spectate_port <= 0:
        raise ValueError("Invalid GAME_SERVER_PORT or GAME_SERVER_SPECTATE_PORT")
    return ServerConnection(
        host=host,
        port=port,
        spectate_port=spectate_port,
        connect_url=f"steam://connect/{host}:{port}",
        spectate_url=f"steam://connect/{host}:{spectate_port}",
    )
