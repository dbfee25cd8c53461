"""Shared fixtures: in-memory store, controllable clock, stub command API."""

import asyncio
import random
from datetime import datetime, timedelta, timezone

import pytest

from matchmaker.config import MatchmakerConfig
from matchmaker.models import MatchState, PlayerProfile
from matchmaker.roster import StoreRoster
from matchmaker.service import MatchService
from matchmaker.store import MemoryDocumentStore

PLAYERS = [f"7656119800000000{i}" for i in range(10)]

T0 = datetime(2026, 1, 1, 20, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current += timedelta(seconds=seconds)
        return self.current


class StubSender:
    """CommandSender double that records commands."""

    def __init__(self, error: Exception | None = None, delay: float = 0.0) -> None:
        self.error = error
        self.delay = delay
        self.calls: list[str] = []

    async def send_command(self, command: str) -> None:
        self.calls.append(command)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error


class MatchDriver:
    """Walks a service through the lifecycle with legal moves."""

    def __init__(self, service: MatchService, clock: FakeClock) -> None:
        self.service = service
        self.clock = clock

    async def fill_queue(self, players=PLAYERS) -> None:
        for player_id in players:
            await self.service.join_queue(player_id)

    async def select_leaders(self) -> None:
        self.clock.advance(self.service.config.leader_selection_delay)
        await self.service.select_leaders()

    async def draft_teams(self) -> None:
        """Alternate picks, each leader taking the first unassigned player."""
        while True:
            draft = await self.service.draft()
            if draft.state is not MatchState.DRAFTING_TEAMS:
                return
            await self.service.pick_player(draft.leader_of(draft.turn), draft.unassigned[0])

    async def ban_maps(self) -> None:
        """Ban pool maps in order until one remains."""
        while True:
            draft = await self.service.draft()
            if draft.map is not None:
                return
            leader = draft.leader_of(draft.map_turn)
            await self.service.ban_map(leader, draft.remaining_maps()[0])

    async def to_banning(self) -> None:
        await self.fill_queue()
        await self.select_leaders()
        await self.draft_teams()

    async def to_map_decided(self) -> None:
        await self.to_banning()
        await self.ban_maps()


@pytest.fixture
def config():
    return MatchmakerConfig(
        public_base_url="https://pug.example.com",
        panel_origin="https://panel.example.com",
        server_id="abc123",
        client_key="ptlc_test",
        game_server_host="203.0.113.7",
        game_server_port="27015",
        game_server_spectate_port="27020",
        lock_stale_after=60.0,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryDocumentStore()


@pytest.fixture
def sender():
    return StubSender()


@pytest.fixture
def service(store, config, clock, sender):
    return MatchService(store, config, clock=clock, rng=random.Random(7), commands=sender)


@pytest.fixture
def driver(service, clock):
    return MatchDriver(service, clock)


@pytest.fixture
def roster(store, config):
    """Roster with a profile for every test player."""
    r = StoreRoster(store, config.profiles_collection)
    for i, player_id in enumerate(PLAYERS):
        r.upsert(PlayerProfile(steam_id=player_id, persona_name=f"player{i}"))
    return r
