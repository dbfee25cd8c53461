"""End-to-end tests for the trigger runner and the shutdown handler.

These drive a full lobby on the wall clock (with a short leader
selection delay) and let the background handlers do the rest:
deferred leader selection, publication and server start.
"""

import asyncio
import random
import signal

import pytest
import pytest_asyncio

from conftest import PLAYERS, MatchDriver, StubSender
from matchmaker.models import MatchState, PlayerProfile, PublishedMatch, Team
from matchmaker.roster import StoreRoster
from matchmaker.server_start import LOAD_MATCH_COMMAND
from matchmaker.service import MatchService
from matchmaker.store import DocumentChange, SqliteDocumentStore
from matchmaker.triggers import ShutdownHandler, TriggerRunner

EXPECTED_COMMAND = LOAD_MATCH_COMMAND.format(url="https://pug.example.com/api/match/config")


@pytest.fixture
def live_service(store, config, sender):
    config.leader_selection_delay = 0.05
    return MatchService(store, config, rng=random.Random(7), commands=sender)


@pytest_asyncio.fixture
async def runner(live_service):
    r = TriggerRunner(live_service)
    await r.start()
    yield r
    await r.stop()


class TestTriggerRunner:
    """Notifications routed to background handlers."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_full_lifecycle(self, runner, live_service, roster, sender):
        """Queue -> leaders -> draft -> veto -> published -> started -> finalized."""
        driver = MatchDriver(live_service, None)

        await driver.fill_queue()
        await runner.drain()
        draft = await live_service.draft()
        assert draft.state is MatchState.DRAFTING_TEAMS

        await driver.draft_teams()
        await driver.ban_maps()
        await runner.drain()

        draft = await live_service.draft()
        assert draft.state is MatchState.LIVE
        assert draft.start_in_progress is False
        assert draft.start_error is None
        current = await live_service.current_match()
        assert current.state is MatchState.LIVE
        assert current.map == draft.map
        assert current.match_config_url == "https://pug.example.com/api/match/config"
        assert sender.calls == [EXPECTED_COMMAND]

        await live_service.request_finalize(draft.leaders[0])
        await live_service.request_finalize(draft.leaders[1])
        await runner.drain()

        draft = await live_service.draft()
        assert draft.state is MatchState.AWAITING_PLAYERS
        assert draft.queue == []
        current = await live_service.current_match()
        assert current.state is MatchState.AWAITING_PLAYERS
        assert current.map is None
        assert sender.calls == [EXPECTED_COMMAND]

    @pytest.mark.asyncio
    async def test_runner_started_after_deadline_selects_leaders(self, live_service):
        """A queue that filled while no runner was up still gets its leaders."""
        await MatchDriver(live_service, None).fill_queue()
        await asyncio.sleep(0.06)

        runner = TriggerRunner(live_service)
        await runner.start()
        try:
            draft = await live_service.draft()
            assert draft.state is MatchState.DRAFTING_TEAMS
            assert len(draft.leaders) == 2
        finally:
            await runner.stop()

    @pytest.mark.asyncio
    async def test_runner_started_before_deadline_waits_for_it(self, live_service):
        """Started inside the selection window, the runner draws at the deadline."""
        live_service.config.leader_selection_delay = 0.3
        await MatchDriver(live_service, None).fill_queue()

        runner = TriggerRunner(live_service)
        await runner.start()
        try:
            assert (await live_service.draft()).state is MatchState.SELECTING_LEADERS
            for _ in range(200):
                await asyncio.sleep(0.01)
                draft = await live_service.draft()
                if draft.state is MatchState.DRAFTING_TEAMS:
                    break
            assert draft.state is MatchState.DRAFTING_TEAMS
        finally:
            await runner.stop()

    @pytest.mark.asyncio
    async def test_stop_releases_leader_timer(self, live_service):
        live_service.config.leader_selection_delay = 5.0
        await MatchDriver(live_service, None).fill_queue()
        runner = TriggerRunner(live_service)
        await runner.start()
        assert runner.leader_poller._timer is not None
        await runner.stop()
        assert runner.leader_poller._timer is None
        assert runner.leader_poller._unsubscribe is None

    @pytest.mark.asyncio
    async def test_failed_start_is_not_retried(self, store, config, roster):
        """A failed start records the error once; no trigger loop follows."""
        config.leader_selection_delay = 0.05
        failing = StubSender(error=RuntimeError("panel down"))
        service = MatchService(store, config, rng=random.Random(7), commands=failing)
        runner = TriggerRunner(service)
        await runner.start()
        try:
            driver = MatchDriver(service, None)
            await driver.fill_queue()
            await runner.drain()
            await driver.draft_teams()
            await driver.ban_maps()
            await runner.drain()
        finally:
            await runner.stop()

        assert len(failing.calls) == 1
        current = await service.current_match()
        assert current.start_error == "panel down"
        assert current.start_in_progress is False
        assert (await service.draft()).start_error == "panel down"

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_worker(self, runner, live_service, caplog):
        async def boom(change):
            raise RuntimeError("handler exploded")

        runner._routes[live_service.config.draft_path].insert(0, boom)
        await live_service.join_queue(PLAYERS[0])
        await runner.drain()
        assert runner.running
        assert "handler exploded" in caplog.text

    @pytest.mark.asyncio
    async def test_unrouted_path_ignored(self, runner):
        await runner.dispatch(DocumentChange(path="elsewhere", before=None, after={}, version=1))
        assert runner.running

    @pytest.mark.asyncio
    async def test_stop_unsubscribes(self, live_service, sender):
        runner = TriggerRunner(live_service)
        await runner.start()
        await runner.stop()
        assert not runner.running
        await live_service.join_queue(PLAYERS[0])
        assert runner._queue is None

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_poll_picks_up_other_writers(self, tmp_path, config, sender):
        """A match written through a second store instance is started after poll()."""
        db = tmp_path / "mm.db"
        local = SqliteDocumentStore(db)
        other = SqliteDocumentStore(db)
        service = MatchService(local, config, rng=random.Random(7), commands=sender)
        runner = TriggerRunner(service)
        await runner.start()
        try:
            roster = StoreRoster(other, config.profiles_collection)
            for i, player_id in enumerate(PLAYERS):
                roster.upsert(PlayerProfile(steam_id=player_id, persona_name=f"player{i}"))
            match = PublishedMatch(
                state=MatchState.BANNING_MAP,
                team1=Team(display_name="Team A", players=PLAYERS[:5]),
                team2=Team(display_name="Team B", players=PLAYERS[5:]),
                map="de_inferno",
            )
            other.set(config.current_path, match.to_document())

            assert sender.calls == []
            assert await runner.poll() == 1
            await runner.drain()
            assert sender.calls == [EXPECTED_COMMAND]
            assert await runner.poll() == 0
        finally:
            await runner.stop()
            local.close()
            other.close()


class TestShutdownHandler:
    """Tests for ShutdownHandler."""

    def test_shutdown_initial_state(self):
        """New handler starts with is_set=False."""
        handler = ShutdownHandler()
        assert handler.is_set is False

    def test_first_signal_sets_flag(self):
        handler = ShutdownHandler()
        handler._handle(signal.SIGINT, None)
        assert handler.is_set is True

    def test_second_signal_force_exits(self):
        handler = ShutdownHandler()
        handler._handle(signal.SIGINT, None)
        with pytest.raises(SystemExit):
            handler._handle(signal.SIGINT, None)

    @pytest.mark.asyncio
    async def test_wait_times_out(self):
        assert await ShutdownHandler().wait(0.01) is False

    @pytest.mark.asyncio
    async def test_wait_returns_when_set(self):
        handler = ShutdownHandler()
        handler._event.set()
        assert await handler.wait(1.0) is True

    def test_install_and_restore(self):
        original = signal.getsignal(signal.SIGINT)
        handler = ShutdownHandler()
        handler.install()
        try:
            assert signal.getsignal(signal.SIGINT) == handler._handle
        finally:
            handler.restore()
        assert signal.getsignal(signal.SIGINT) == original
