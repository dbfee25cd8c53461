"""MatchZy match configuration built from the published match.

The game server fetches ``{public_base_url}/api/match/config`` after
receiving ``matchzy_loadmatch_url``; the body served there is
``MatchConfig``::

    {"num_maps": 1, "maplist": ["de_nuke"],
     "team1": {"name": "Team A", "players": {"7656...": "alice", ...}},
     "team2": {...}}

Builders return result values with a ``NOT_FOUND`` / ``NOT_READY`` reason
instead of raising, so the HTTP layer and the start coordinator can map
them directly.
"""

from dataclasses import dataclass
from enum import StrEnum

from pydantic import BaseModel

from matchmaker.exceptions import PlayerNotFound
from matchmaker.models import PublishedMatch, Team
from matchmaker.roster import PlayerRoster
from matchmaker.store import DocumentStore

CONFIG_ENDPOINT = "/api/match/config"


class ConfigFailure(StrEnum):
    NOT_FOUND = "NOT_FOUND"
    NOT_READY = "NOT_READY"


class MatchJsonTeam(BaseModel):
    name: str
    players: list[str]


class MatchJson(BaseModel):
    num_maps: int = 1
    maplist: list[str]
    team1: MatchJsonTeam
    team2: MatchJsonTeam


class ConfigTeam(BaseModel):
    name: str
    players: dict[str, str]


class MatchConfig(BaseModel):
    num_maps: int = 1
    maplist: list[str]
    team1: ConfigTeam
    team2: ConfigTeam


@dataclass(frozen=True)
class MatchJsonResult:
    match: MatchJson | None = None
    reason: ConfigFailure | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.match is not None


@dataclass(frozen=True)
class MatchConfigResult:
    config: MatchConfig | None = None
    reason: ConfigFailure | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.config is not None


def match_config_url(public_base_url: str) -> str:
    """Absolute URL of the configuration endpoint.

    ``public_base_url`` may be given with or without a scheme; https is
    assumed when it is missing.

    Raises:
        ValueError: ``public_base_url`` is empty.
    """
    base = public_base_url.strip().rstrip("/")
    if not base:
        raise ValueError("PUBLIC_BASE_URL is not configured")
    if "://" not in base:
        base = f"https://{base}"
    return f"{base}{CONFIG_ENDPOINT}"


def build_match_json(
    map_name: str | None, team1: Team, team2: Team, team_size: int = 5
) -> MatchJsonResult:
    """Validate a map plus two full rosters into the MatchZy match body."""
    if not map_name:
        return MatchJsonResult(reason=ConfigFailure.NOT_READY, error="Missing map")
    if len(team1.players) != team_size or len(team2.players) != team_size:
        return MatchJsonResult(
            reason=ConfigFailure.NOT_READY,
            error=f"Teams must have {team_size} players each",
        )
    return MatchJsonResult(
        match=MatchJson(
            maplist=[map_name],
            team1=MatchJsonTeam(name=team1.display_name, players=list(team1.players)),
            team2=MatchJsonTeam(name=team2.display_name, players=list(team2.players)),
        )
    )


def build_match_config(
    match: PublishedMatch, roster: PlayerRoster, team_size: int = 5
) -> MatchConfigResult:
    """Resolve a published match into the served configuration."""
    result = build_match_json(match.map, match.team1, match.team2, team_size)
    if not result.ok:
        return MatchConfigResult(reason=result.reason, error=result.error)

    body = result.match
    try:
        team1 = roster.resolve(body.team1.players)
        team2 = roster.resolve(body.team2.players)
    except PlayerNotFound as exc:
        return MatchConfigResult(reason=ConfigFailure.NOT_READY, error=str(exc))

    return MatchConfigResult(
        config=MatchConfig(
            maplist=body.maplist,
            team1=ConfigTeam(name=body.team1.name, players=team1),
            team2=ConfigTeam(name=body.team2.name, players=team2),
        )
    )


def current_match_config(
    store: DocumentStore,
    roster: PlayerRoster,
    current_path: str = "matches/current",
    team_size: int = 5,
) -> MatchConfigResult:
    """What the configuration endpoint serves right now."""
    data = store.get(current_path)
    if data is None:
        return MatchConfigResult(reason=ConfigFailure.NOT_FOUND, error="Match not found")
    return build_match_config(PublishedMatch.from_document(data), roster, team_size)
