"""Pure transition logic for the match draft.

Every function takes the current ``MatchDraft`` (never mutated) and
returns an ``Outcome``; ``Applied`` carries a modified copy.  Nothing here
touches the store -- ``MatchService`` runs these inside a single store
transaction so validation and write commit together.

Topology (no other edges exist)::

    AWAITING_PLAYERS  --queue reaches capacity-->     SELECTING_LEADERS
    SELECTING_LEADERS --deadline elapsed (system)-->  DRAFTING_TEAMS
    DRAFTING_TEAMS    --both teams full-->             BANNING_MAP
    BANNING_MAP       --one map left + publication-->  LIVE
    LIVE              --both leaders finalize-->       AWAITING_PLAYERS
"""

import random
from datetime import datetime, timedelta

from matchmaker.config import MatchmakerConfig
from matchmaker.models import MatchDraft, MatchState, Team, TeamSide
from matchmaker.results import Applied, Outcome, Rejected, Rejection, Unchanged

# team1 bans first and last; with the default 7-map pool these are all
# six bans of one veto.
BAN_ORDER: tuple[TeamSide, ...] = (
    TeamSide.TEAM1,
    TeamSide.TEAM1,
    TeamSide.TEAM2,
    TeamSide.TEAM2,
    TeamSide.TEAM1,
    TeamSide.TEAM2,
)


def ban_turn(index: int) -> TeamSide:
    """Side whose leader makes ban number ``index`` (0-based).

    Pools larger than the seeded order keep alternating, starting with team1.
    """
    if index < len(BAN_ORDER):
        return BAN_ORDER[index]
    return TeamSide.TEAM1 if (index - len(BAN_ORDER)) % 2 == 0 else TeamSide.TEAM2


def initial_draft(config: MatchmakerConfig, now: datetime | None = None) -> MatchDraft:
    draft = MatchDraft.initial(config.team1_name, config.team2_name)
    draft.updated_at = now
    return draft


def _next(draft: MatchDraft, now: datetime) -> MatchDraft:
    copy = draft.model_copy(deep=True)
    copy.updated_at = now
    return copy


def _wrong_state(draft: MatchDraft, action: str) -> Rejected:
    return Rejected(Rejection.WRONG_STATE, f"Cannot {action}: state is {draft.state}")


# ---------------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------------

def join_queue(
    draft: MatchDraft, player_id: str, *, now: datetime, config: MatchmakerConfig
) -> Outcome:
    """Add ``player_id`` to the queue; the last seat opens leader selection."""
    if not player_id:
        return Rejected(Rejection.INVALID_PLAYER, "Player id is required")
    if draft.state is not MatchState.AWAITING_PLAYERS:
        return _wrong_state(draft, "join the queue")
    if player_id in draft.queue:
        return Unchanged(draft, "already queued")
    # Only a draft written by hand can get here: the join that takes the
    # last seat also leaves AWAITING_PLAYERS, so later joiners see WRONG_STATE.
    if len(draft.queue) >= config.queue_capacity:
        return Rejected(
            Rejection.CAPACITY_EXCEEDED,
            f"Queue is full ({config.queue_capacity} players)",
        )

    new = _next(draft, now)
    new.queue.append(player_id)
    if len(new.queue) < config.queue_capacity:
        return Applied(new, "joined")

    new.state = MatchState.SELECTING_LEADERS
    new.leader_selection_at = now + timedelta(seconds=config.leader_selection_delay)
    new.team1 = Team(display_name=config.team1_name)
    new.team2 = Team(display_name=config.team2_name)
    new.unassigned = []
    new.turn = TeamSide.TEAM1
    return Applied(new, "queue_full")


def leave_queue(draft: MatchDraft, player_id: str, *, now: datetime) -> Outcome:
    """Remove ``player_id``; leaving after the queue filled is not supported."""
    if draft.state is not MatchState.AWAITING_PLAYERS:
        return Unchanged(draft, f"leaving is ignored in state {draft.state}")
    if player_id not in draft.queue:
        return Unchanged(draft, "not queued")

    new = _next(draft, now)
    new.queue.remove(player_id)
    return Applied(new, "left")


# ---------------------------------------------------------------------------
# Leaders and team draft
# ---------------------------------------------------------------------------

def select_leaders(
    draft: MatchDraft,
    *,
    now: datetime,
    rng: random.Random,
    config: MatchmakerConfig,
) -> Outcome:
    """Draw two leaders at random once the selection deadline has passed.

    Re-entrant calls (a second trigger path, a retried task) find leaders
    already assigned or the state moved on and return ``Unchanged``.
    """
    if draft.state is not MatchState.SELECTING_LEADERS:
        return Unchanged(draft, f"state is {draft.state}")
    if len(draft.queue) != config.queue_capacity:
        return Unchanged(draft, f"queue has {len(draft.queue)} players")
    if draft.team1.players or draft.team2.players:
        return Unchanged(draft, "leaders already selected")
    if draft.leader_selection_at is not None and now < draft.leader_selection_at:
        return Unchanged(draft, "selection deadline not reached")

    leader_a, leader_b = rng.sample(draft.queue, 2)

    new = _next(draft, now)
    new.state = MatchState.DRAFTING_TEAMS
    new.team1 = Team(display_name=draft.team1.display_name, players=[leader_a])
    new.team2 = Team(display_name=draft.team2.display_name, players=[leader_b])
    new.unassigned = [p for p in draft.queue if p not in (leader_a, leader_b)]
    new.turn = TeamSide.TEAM1
    return Applied(new, "leaders_selected")


def pick_player(
    draft: MatchDraft,
    requester_id: str,
    picked_id: str,
    *,
    now: datetime,
    config: MatchmakerConfig,
) -> Outcome:
    """Move ``picked_id`` onto the requesting leader's team and pass the turn."""
    if draft.state is not MatchState.DRAFTING_TEAMS:
        return _wrong_state(draft, "pick")

    leaders = draft.leaders
    if len(leaders) != 2:
        return Rejected(Rejection.NO_LEADERS, "Leaders have not been selected yet")

    side = draft.turn
    if requester_id != draft.leader_of(side):
        return Rejected(Rejection.NOT_YOUR_TURN, f"It is {side}'s leader's turn to pick")

    if (
        picked_id in leaders
        or picked_id in draft.team1.players
        or picked_id in draft.team2.players
    ):
        return Rejected(Rejection.ALREADY_ASSIGNED, f"{picked_id} is already on a team")
    if picked_id not in draft.unassigned:
        return Rejected(Rejection.NOT_AVAILABLE, f"{picked_id} is not available to pick")
    if len(draft.team(side).players) >= config.team_size:
        return Rejected(Rejection.TEAM_FULL, f"{side} already has {config.team_size} players")

    new = _next(draft, now)
    new.team(side).players.append(picked_id)
    new.unassigned.remove(picked_id)
    new.turn = side.other

    if not new.teams_full(config.team_size):
        return Applied(new, "picked")

    pool = list(config.map_pool)
    new.state = MatchState.BANNING_MAP
    new.queue = []
    new.unassigned = []
    new.map_pool = pool
    new.banned_maps = []
    new.map_ban_count = 0
    new.map_turn = ban_turn(0)
    new.map = pool[0] if len(pool) == 1 else None
    return Applied(new, "teams_complete")


# ---------------------------------------------------------------------------
# Map veto
# ---------------------------------------------------------------------------

def ban_map(draft: MatchDraft, requester_id: str, map_name: str, *, now: datetime) -> Outcome:
    """Ban ``map_name`` for the leader whose turn it is in ``BAN_ORDER``."""
    if draft.state is not MatchState.BANNING_MAP:
        return _wrong_state(draft, "ban a map")
    if draft.map is not None:
        return Rejected(Rejection.VETO_COMPLETE, f"Map already decided: {draft.map}")

    side = ban_turn(draft.map_ban_count)
    if requester_id != draft.leader_of(side):
        return Rejected(Rejection.WRONG_TURN, f"It is {side}'s leader's turn to ban")
    if map_name not in draft.map_pool:
        return Rejected(Rejection.INVALID_MAP, f"{map_name} is not in the map pool")
    if map_name in draft.banned_maps:
        return Rejected(Rejection.INVALID_MAP, f"{map_name} is already banned")

    new = _next(draft, now)
    new.banned_maps.append(map_name)
    new.map_ban_count += 1
    new.map_turn = ban_turn(new.map_ban_count)

    remaining = new.remaining_maps()
    if len(remaining) == 1:
        new.map = remaining[0]
        return Applied(new, "map_decided")
    return Applied(new, "map_banned")


# ---------------------------------------------------------------------------
# Finalization
# ---------------------------------------------------------------------------

def request_finalize(
    draft: MatchDraft, requester_id: str, *, now: datetime, config: MatchmakerConfig
) -> Outcome:
    """Record a leader's confirmation; the second one resets the cycle.

    ``Applied.event == "reset"`` tells the caller to reset the published
    match in the same commit.  Outside LIVE this is a no-op, so a late
    duplicate after a reset does not touch the new cycle.
    """
    if draft.state is not MatchState.LIVE:
        return Unchanged(draft, f"state is {draft.state}")
    if requester_id not in draft.leaders:
        return Rejected(Rejection.UNAUTHORIZED, "Only team leaders can finalize the match")
    if requester_id in draft.finalize_by:
        return Unchanged(draft, "already confirmed")

    confirmed = set(draft.finalize_by) | {requester_id}
    if confirmed >= set(draft.leaders):
        return Applied(initial_draft(config, now), "reset")

    new = _next(draft, now)
    new.finalize_by.append(requester_id)
    return Applied(new, "finalize_confirmed")
