"""Pydantic v2 models for the singleton match draft document.

Documents are stored with camelCase keys (``mapPool``, ``finalizeBy``);
Python code uses the snake_case attribute names.
"""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class DocumentModel(BaseModel):
    """Base for persisted documents: camelCase on disk, snake_case in code."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict:
        """Serialize to the JSON-compatible dict stored in the document store."""
        return self.model_dump(by_alias=True, mode="json")

    @classmethod
    def from_document(cls, data: dict):
        """Validate a stored document (unknown keys are ignored)."""
        return cls.model_validate(data)


class MatchState(StrEnum):
    """Lifecycle states of the match draft."""

    AWAITING_PLAYERS = "awaiting_players"
    SELECTING_LEADERS = "selecting_leaders"
    DRAFTING_TEAMS = "drafting_teams"
    BANNING_MAP = "banning_map"
    LIVE = "live"


class TeamSide(StrEnum):
    TEAM1 = "team1"
    TEAM2 = "team2"

    @property
    def other(self) -> "TeamSide":
        return TeamSide.TEAM2 if self is TeamSide.TEAM1 else TeamSide.TEAM1


class Team(DocumentModel):
    """A roster; the first player is the team's leader."""

    display_name: str
    players: list[str] = Field(default_factory=list)

    @property
    def leader(self) -> str | None:
        return self.players[0] if self.players else None


class MatchDraft(DocumentModel):
    """The mutable match-assembly document (queue -> teams -> map veto)."""

    state: MatchState = MatchState.AWAITING_PLAYERS
    queue: list[str] = Field(default_factory=list)
    team1: Team
    team2: Team
    unassigned: list[str] = Field(default_factory=list)
    turn: TeamSide = TeamSide.TEAM1

    map_pool: list[str] = Field(default_factory=list)
    banned_maps: list[str] = Field(default_factory=list)
    map_turn: TeamSide = TeamSide.TEAM1
    map_ban_count: int = Field(default=0, ge=0)
    map: str | None = None

    finalize_by: list[str] = Field(default_factory=list)
    leader_selection_at: datetime | None = None

    # Publication lock
    publish_in_progress: bool = False
    publish_locked_at: datetime | None = None
    published_at: datetime | None = None
    publish_error: str | None = None

    # Mirrors of the published match's start lock
    start_in_progress: bool = False
    start_error: str | None = None

    updated_at: datetime | None = None

    @field_validator("queue")
    @classmethod
    def validate_queue_unique(cls, v: list[str]) -> list[str]:
        """Queue entries must be distinct player ids."""
        if len(set(v)) != len(v):
            raise ValueError(f"queue contains duplicate player ids: {v}")
        return v

    @classmethod
    def initial(cls, team1_name: str = "Team A", team2_name: str = "Team B") -> "MatchDraft":
        """A fresh draft waiting for players."""
        return cls(team1=Team(display_name=team1_name), team2=Team(display_name=team2_name))

    # ------------------------------------------------------------------
    # Roster helpers
    # ------------------------------------------------------------------

    def team(self, side: TeamSide) -> Team:
        return self.team1 if side is TeamSide.TEAM1 else self.team2

    def leader_of(self, side: TeamSide) -> str | None:
        return self.team(side).leader

    @property
    def leaders(self) -> list[str]:
        return [p for p in (self.team1.leader, self.team2.leader) if p is not None]

    def side_of_leader(self, player_id: str) -> TeamSide | None:
        """Return the side ``player_id`` leads, or None."""
        for side in TeamSide:
            if self.leader_of(side) == player_id:
                return side
        return None

    def remaining_maps(self) -> list[str]:
        """Pool maps not banned yet, in pool order."""
        banned = set(self.banned_maps)
        return [m for m in self.map_pool if m not in banned]

    def teams_full(self, team_size: int) -> bool:
        return len(self.team1.players) == team_size and len(self.team2.players) == team_size

    def check_invariants(self, team_size: int = 5) -> list[str]:
        """Return a list of violated invariants (empty when consistent)."""
        problems = []
        capacity = team_size * 2
        if len(self.queue) > capacity:
            problems.append(f"queue has {len(self.queue)} > {capacity} players")
        for side in TeamSide:
            if len(self.team(side).players) > team_size:
                problems.append(f"{side} has more than {team_size} players")
        t1, t2, free = set(self.team1.players), set(self.team2.players), set(self.unassigned)
        if t1 & t2 or t1 & free or t2 & free:
            problems.append("team1, team2 and unassigned overlap")
        if self.state is MatchState.DRAFTING_TEAMS and len(t1 | t2 | free) != capacity:
            problems.append("drafting rosters do not cover the original queue")
        if len(set(self.banned_maps)) != len(self.banned_maps):
            problems.append("bannedMaps contains duplicates")
        if self.map_pool and (self.map is not None) != (len(self.remaining_maps()) == 1):
            problems.append("map must be set exactly when one unbanned map remains")
        if not set(self.finalize_by) <= set(self.leaders):
            problems.append("finalizeBy contains a non-leader")
        return problems
