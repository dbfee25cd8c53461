"""Starts the game server for a published match.

``start_match_if_ready`` is a two-phase operation on the current match:

1. **Claim** (one transaction): fail ``NOT_FOUND`` / ``LOCKED`` /
   ``NOT_READY`` or set ``startInProgress`` with a lock timestamp.
2. **Execute** (outside the transaction): re-check readiness, resolve the
   roster, send ``matchzy_loadmatch_url "<config url>"`` with a bounded
   timeout, then mark the match LIVE.  Every failure releases the lock
   and records ``startError``; HTTP 401 is reported as
   ``UNAUTHENTICATED``, everything else as ``FAILED``.

Lock state is mirrored onto the draft while it is LIVE so clients
watching only the draft can show start progress.
"""

import asyncio
import logging
from datetime import datetime

from matchmaker.command_client import CommandSender
from matchmaker.exceptions import CommandConfigError, CommandUnauthenticated
from matchmaker.match_config import build_match_config, build_match_json, match_config_url
from matchmaker.models import MatchState, PublishedMatch, Team
from matchmaker.publication import lock_is_stale
from matchmaker.results import StartFailed, StartFailure, Started, StartResult
from matchmaker.roster import PlayerRoster, StoreRoster
from matchmaker.service import MatchService
from matchmaker.store import DocumentChange, Transaction

logger = logging.getLogger(__name__)

LOAD_MATCH_COMMAND = 'matchzy_loadmatch_url "{url}"'

UNAUTHENTICATED_MESSAGE = (
    "Pterodactyl unauthenticated: verify PTERO_CLIENT_KEY, PTERO_SERVER_ID, "
    "and PTERO_PANEL_ORIGIN"
)

START_CANCELLED_MESSAGE = "Start cancelled"


class ServerStartCoordinator:
    """Issues exactly one load-match command per ready match."""

    def __init__(
        self,
        service: MatchService,
        commands: CommandSender | None = None,
        roster: PlayerRoster | None = None,
    ) -> None:
        self.service = service
        self.repo = service.repo
        self.config = service.config
        self.commands = commands if commands is not None else service.commands
        self.roster = roster or StoreRoster(service.store, self.config.profiles_collection)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def _mirror(self, tx: Transaction, match: PublishedMatch) -> None:
        draft = self.repo.read_draft(tx)
        if draft is None or draft.state is not MatchState.LIVE:
            return
        draft.start_in_progress = match.start_in_progress
        draft.start_error = match.start_error
        draft.updated_at = match.updated_at
        self.repo.write_draft(tx, draft)

    def _claim(self, now: datetime) -> PublishedMatch | StartFailed:
        cfg = self.config

        def txn(tx: Transaction) -> PublishedMatch | StartFailed:
            match = self.repo.read_match(tx)
            if match is None:
                return StartFailed(StartFailure.NOT_FOUND, "Match not found")
            if match.state is MatchState.LIVE:
                return StartFailed(StartFailure.LOCKED, "Match already live")
            if match.start_in_progress:
                if not lock_is_stale(match.start_locked_at, now, cfg.lock_stale_after):
                    return StartFailed(StartFailure.LOCKED, "Start already in progress")
                logger.warning("Reclaiming stale start lock taken at %s", match.start_locked_at)
            if not match.is_ready_to_start(cfg.team_size):
                return StartFailed(StartFailure.NOT_READY)

            match.start_in_progress = True
            match.start_locked_at = now
            match.start_requested_at = now
            match.start_error = None
            match.updated_at = now
            self.repo.write_match(tx, match)
            self._mirror(tx, match)
            return match

        return self.repo.store.transaction(txn)

    def _release(
        self,
        locked_at: datetime,
        *,
        error: str | None = None,
        config_url: str | None = None,
    ) -> bool:
        """Clear our lock; ``config_url`` marks success, ``error`` a failure."""
        now = self.service.now()

        def txn(tx: Transaction) -> bool:
            match = self.repo.read_match(tx)
            if match is None or not match.start_in_progress or match.start_locked_at != locked_at:
                return False
            match.start_in_progress = False
            match.start_locked_at = None
            match.updated_at = now
            if config_url is not None:
                match.state = MatchState.LIVE
                match.match_config_url = config_url
                match.started_at = now
            if error is not None:
                match.start_error = error
                match.start_failed_at = now
            self.repo.write_match(tx, match)
            self._mirror(tx, match)
            return True

        return self.repo.store.transaction(txn)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def _fail(self, locked_at: datetime, result: StartFailed) -> StartFailed:
        await asyncio.to_thread(self._release, locked_at, error=result.error)
        return result

    async def start_match_if_ready(self) -> StartResult:
        """Claim the current match and send the load-match command.

        Safe to call concurrently: only one caller wins the claim, the
        others get ``LOCKED``.
        """
        cfg = self.config
        locked_at = self.service.now()
        claimed = await asyncio.to_thread(self._claim, locked_at)
        if isinstance(claimed, StartFailed):
            logger.debug("Server start skipped: %s", claimed.reason)
            return claimed

        try:
            match = await self.service.current_match()
            if match is None or not match.is_ready_to_start(cfg.team_size):
                await asyncio.to_thread(self._release, locked_at)
                return StartFailed(StartFailure.NOT_READY)

            built = await asyncio.to_thread(build_match_config, match, self.roster, cfg.team_size)
            if not built.ok:
                logger.warning("Match config not ready: %s", built.error)
                return await self._fail(locked_at, StartFailed(StartFailure.NOT_READY, built.error))

            url = match_config_url(cfg.public_base_url)
            command = LOAD_MATCH_COMMAND.format(url=url)
            if self.commands is None:
                raise CommandConfigError("No command client configured")
            await asyncio.wait_for(
                self.commands.send_command(command), timeout=cfg.command_timeout
            )
        except asyncio.CancelledError:
            # Runner shutdown: record the reason so a restart is not LOCKED out
            logger.warning("Server start cancelled; releasing start lock")
            await asyncio.shield(
                asyncio.to_thread(self._release, locked_at, error=START_CANCELLED_MESSAGE)
            )
            raise
        except CommandUnauthenticated:
            logger.error("Server start failed: %s", UNAUTHENTICATED_MESSAGE)
            return await self._fail(
                locked_at, StartFailed(StartFailure.UNAUTHENTICATED, UNAUTHENTICATED_MESSAGE)
            )
        except asyncio.TimeoutError:
            message = f"Command timed out after {cfg.command_timeout:.0f}s"
            logger.error("Server start failed: %s", message)
            return await self._fail(locked_at, StartFailed(StartFailure.FAILED, message))
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            logger.error("Server start failed: %s", message, exc_info=True)
            return await self._fail(locked_at, StartFailed(StartFailure.FAILED, message))

        await asyncio.to_thread(self._release, locked_at, config_url=url)
        logger.info("Match started on %s: %s", match.map, command)
        return Started(command=command, match_config_url=url)

    async def on_match_written(self, change: DocumentChange) -> StartResult | None:
        """Start the server when a write makes the match ready."""
        team_size = self.config.team_size
        before = PublishedMatch.from_document(change.before) if change.before else None
        after = PublishedMatch.from_document(change.after) if change.after else None
        if after is None or not after.is_ready_to_start(team_size):
            return None
        if before is not None and before.is_ready_to_start(team_size):
            return None
        return await self.start_match_if_ready()

    async def load_match(self, map_name: str, team1: Team, team2: Team) -> StartResult:
        """Write ``team1`` vs ``team2`` on ``map_name`` as the current match and start it.

        Manual/debug entry point: it bypasses the draft entirely.
        """
        cfg = self.config
        result = build_match_json(map_name, team1, team2, cfg.team_size)
        if not result.ok:
            return StartFailed(StartFailure.NOT_READY, result.error)

        now = self.service.now()
        match = PublishedMatch(
            state=MatchState.BANNING_MAP,
            team1=team1.model_copy(deep=True),
            team2=team2.model_copy(deep=True),
            map=map_name,
            queue=[],
            updated_at=now,
        )
        await asyncio.to_thread(
            self.repo.store.transaction, lambda tx: self.repo.write_match(tx, match)
        )
        logger.info("Loaded match %s vs %s on %s", team1.display_name, team2.display_name, map_name)
        return await self.start_match_if_ready()
