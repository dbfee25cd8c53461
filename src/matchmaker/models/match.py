"""Pydantic v2 model for the published (current) match document.

The published match is a read-mostly projection of a completed draft plus
the game-server lifecycle metadata written by the start coordinator.
"""

from datetime import datetime

from pydantic import Field

from .draft import DocumentModel, MatchState, Team


class PublishedMatch(DocumentModel):
    """Publicly readable snapshot of the drafted match."""

    state: MatchState = MatchState.AWAITING_PLAYERS
    team1: Team
    team2: Team
    map: str | None = None
    queue: list[str] = Field(default_factory=list)
    published_at: datetime | None = None

    # Server start lock and outcome
    start_in_progress: bool = False
    start_locked_at: datetime | None = None
    start_requested_at: datetime | None = None
    start_error: str | None = None
    start_failed_at: datetime | None = None
    started_at: datetime | None = None
    match_config_url: str | None = None

    updated_at: datetime | None = None

    @classmethod
    def initial(cls, team1_name: str = "Team A", team2_name: str = "Team B") -> "PublishedMatch":
        return cls(team1=Team(display_name=team1_name), team2=Team(display_name=team2_name))

    def is_ready_to_start(self, team_size: int = 5) -> bool:
        """Map decided, both rosters full, server not started yet."""
        return (
            self.state is MatchState.BANNING_MAP
            and len(self.team1.players) == team_size
            and len(self.team2.players) == team_size
            and bool(self.map)
        )
