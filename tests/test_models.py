"""Unit tests for the Pydantic document models.

Covers camelCase serialization, field validation and the roster
helpers on MatchDraft / PublishedMatch.
"""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from matchmaker.models import (
    MatchDraft,
    MatchState,
    PlayerProfile,
    PublishedMatch,
    Team,
    TeamSide,
)


@pytest.fixture
def drafting() -> MatchDraft:
    return MatchDraft(
        state=MatchState.DRAFTING_TEAMS,
        queue=[f"p{i}" for i in range(10)],
        team1=Team(display_name="Team A", players=["p0"]),
        team2=Team(display_name="Team B", players=["p1"]),
        unassigned=[f"p{i}" for i in range(2, 10)],
    )


class TestDocumentShape:
    """Stored documents use camelCase keys."""

    def test_initial_draft_document(self):
        """A fresh draft serializes with camelCase keys and default values."""
        doc = MatchDraft.initial().to_document()
        assert doc["state"] == "awaiting_players"
        assert doc["team1"] == {"displayName": "Team A", "players": []}
        assert doc["mapPool"] == []
        assert doc["bannedMaps"] == []
        assert doc["mapBanCount"] == 0
        assert doc["finalizeBy"] == []
        assert doc["publishInProgress"] is False
        assert doc["leaderSelectionAt"] is None

    def test_round_trip_preserves_datetimes(self):
        """Datetimes survive a to_document / from_document cycle."""
        at = datetime(2026, 1, 1, 20, 0, 10, tzinfo=timezone.utc)
        draft = MatchDraft.initial()
        draft.leader_selection_at = at
        restored = MatchDraft.from_document(draft.to_document())
        assert restored.leader_selection_at == at

    def test_snake_case_input_accepted(self):
        """Models accept python field names as well as aliases."""
        team = Team(display_name="X", players=["a"])
        assert Team.from_document({"displayName": "X", "players": ["a"]}) == team

    def test_unknown_keys_ignored(self):
        """Documents written by older versions with extra keys still load."""
        doc = MatchDraft.initial().to_document()
        doc["legacyField"] = 1
        assert MatchDraft.from_document(doc).state is MatchState.AWAITING_PLAYERS

    def test_published_match_document(self):
        """PublishedMatch uses the same camelCase convention."""
        doc = PublishedMatch.initial().to_document()
        assert doc["startInProgress"] is False
        assert doc["matchConfigUrl"] is None
        assert doc["queue"] == []


class TestValidation:
    """Field constraints and validators."""

    def test_duplicate_queue_rejected(self):
        """A queue with the same id twice is invalid."""
        with pytest.raises(ValidationError, match="duplicate"):
            MatchDraft(
                queue=["a", "a"],
                team1=Team(display_name="A"),
                team2=Team(display_name="B"),
            )

    def test_unknown_state_rejected(self):
        """state must be one of the lifecycle values."""
        doc = MatchDraft.initial().to_document()
        doc["state"] = "paused"
        with pytest.raises(ValidationError):
            MatchDraft.from_document(doc)

    def test_negative_ban_count_rejected(self):
        doc = MatchDraft.initial().to_document()
        doc["mapBanCount"] = -1
        with pytest.raises(ValidationError):
            MatchDraft.from_document(doc)

    def test_profile_requires_name(self):
        """PlayerProfile needs a non-empty persona name."""
        with pytest.raises(ValidationError):
            PlayerProfile(steam_id="1", persona_name="")


class TestDraftHelpers:
    """Roster helpers on MatchDraft."""

    def test_leaders(self, drafting):
        """First player of each team is its leader."""
        assert drafting.leaders == ["p0", "p1"]
        assert drafting.leader_of(TeamSide.TEAM2) == "p1"

    def test_side_of_leader(self, drafting):
        assert drafting.side_of_leader("p0") is TeamSide.TEAM1
        assert drafting.side_of_leader("p1") is TeamSide.TEAM2
        assert drafting.side_of_leader("p5") is None

    def test_team_side_other(self):
        assert TeamSide.TEAM1.other is TeamSide.TEAM2
        assert TeamSide.TEAM2.other is TeamSide.TEAM1

    def test_remaining_maps_keeps_pool_order(self):
        draft = MatchDraft.initial()
        draft.map_pool = ["a", "b", "c"]
        draft.banned_maps = ["b"]
        assert draft.remaining_maps() == ["a", "c"]

    def test_consistent_draft_has_no_violations(self, drafting):
        assert drafting.check_invariants() == []

    def test_overlapping_rosters_detected(self, drafting):
        """A player both on a team and unassigned is a violation."""
        drafting.unassigned.append("p0")
        assert any("overlap" in p for p in drafting.check_invariants())

    def test_finalize_by_non_leader_detected(self, drafting):
        drafting.finalize_by = ["p7"]
        assert any("finalizeBy" in p for p in drafting.check_invariants())


class TestPublishedMatch:
    """Readiness predicate of the published match."""

    def _ready(self) -> PublishedMatch:
        return PublishedMatch(
            state=MatchState.BANNING_MAP,
            team1=Team(display_name="Team A", players=[f"a{i}" for i in range(5)]),
            team2=Team(display_name="Team B", players=[f"b{i}" for i in range(5)]),
            map="de_nuke",
        )

    def test_ready(self):
        assert self._ready().is_ready_to_start() is True

    def test_not_ready_without_map(self):
        match = self._ready()
        match.map = None
        assert match.is_ready_to_start() is False

    def test_not_ready_when_live(self):
        match = self._ready()
        match.state = MatchState.LIVE
        assert match.is_ready_to_start() is False

    def test_not_ready_with_short_roster(self):
        match = self._ready()
        match.team2.players.pop()
        assert match.is_ready_to_start() is False
