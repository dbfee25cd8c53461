"""Matchmaker configuration with sensible defaults for a single CS2 pug lobby."""

import os
from dataclasses import dataclass, field

DEFAULT_MAP_POOL = (
    "de_inferno",
    "de_mirage",
    "de_nuke",
    "de_overpass",
    "de_ancient",
    "de_vertigo",
    "de_anubis",
)


@dataclass
class MatchmakerConfig:
    """Configuration for the match lobby.

    All timing values are in seconds. Secrets default to empty strings
    and are normally filled in by :meth:`from_env`.
    """

    # Roster shape: two teams of ``team_size``; the queue holds both teams.
    team_size: int = 5

    # Grace period between the queue filling up and leaders being drawn
    leader_selection_delay: float = 10.0

    # Candidate maps copied into the draft when the veto starts
    map_pool: tuple[str, ...] = DEFAULT_MAP_POOL

    team1_name: str = "Team A"
    team2_name: str = "Team B"

    # Document paths (singleton draft + public projection + profiles)
    draft_path: str = "matches/draft"
    current_path: str = "matches/current"
    profiles_collection: str = "steamProfiles"

    # Persistent data storage
    data_dir: str = "data"
    db_path: str = "data/matchmaker.db"

    # Optimistic transaction retries before TransactionConflict surfaces
    transaction_max_attempts: int = 25

    # Deferred task attempts (first try included)
    task_max_attempts: int = 3

    # A publish/start lock older than this may be reclaimed by a new attempt
    lock_stale_after: float = 120.0

    # Upper bound on a single call to the command API
    command_timeout: float = 10.0

    # How often ``matchmaker run`` picks up writes made by other processes
    change_poll_interval: float = 1.0

    # Pterodactyl client API
    panel_origin: str = ""
    server_id: str = ""
    client_key: str = field(default="", repr=False)

    # Externally reachable origin serving /api/match/config
    public_base_url: str = ""

    # Game server address handed to players
    game_server_host: str = ""
    game_server_port: str = ""
    game_server_spectate_port: str = ""

    # Console command sent when an admin cancels the match
    restart_command: str = "_restart"

    @property
    def queue_capacity(self) -> int:
        """Number of distinct players needed to fill both teams."""
        return self.team_size * 2

    @classmethod
    def from_env(cls, **overrides) -> "MatchmakerConfig":
        """Build a config from ``PTERO_*`` / ``GAME_SERVER_*`` environment variables.

        Keyword arguments win over the environment.
        """
        data_dir = os.environ.get("MATCHMAKER_DATA_DIR", "data")
        values = {
            "data_dir": data_dir,
            "db_path": f"{data_dir}/matchmaker.db",
            "panel_origin": os.environ.get("PTERO_PANEL_ORIGIN", ""),
            "server_id": os.environ.get("PTERO_SERVER_ID", ""),
            "client_key": os.environ.get("PTERO_CLIENT_KEY", ""),
            "public_base_url": os.environ.get("PUBLIC_BASE_URL", ""),
            "game_server_host": os.environ.get("GAME_SERVER_HOST", ""),
            "game_server_port": os.environ.get("GAME_SERVER_PORT", ""),
            "game_server_spectate_port": os.environ.get("GAME_SERVER_SPECTATE_PORT", ""),
        }
        values.update(overrides)
        return cls(**values)
