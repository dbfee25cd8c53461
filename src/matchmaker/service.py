"""Transactional match commands.

``MatchService`` is the only writer of the draft document outside of the
publication pipeline.  Each command runs one pure transition from
``matchmaker.machine`` inside a single store transaction (offloaded to a
worker thread so the event loop never blocks on SQLite), logs the
outcome, and returns it unchanged to the caller.

Usage::

    service = MatchService(open_store(), MatchmakerConfig())
    outcome = await service.join_queue("76561198000000001")
    if isinstance(outcome, Rejected):
        print(outcome.reason, outcome.message)
"""

import asyncio
import logging
import random
from datetime import datetime, timezone
from typing import Callable, Optional

from matchmaker import machine
from matchmaker.command_client import CommandSender
from matchmaker.config import MatchmakerConfig
from matchmaker.exceptions import CommandError
from matchmaker.models import MatchDraft, PublishedMatch
from matchmaker.repository import MatchRepository
from matchmaker.results import Applied, CancelResult, Outcome, Rejected
from matchmaker.store import DocumentStore, Transaction

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MatchService:
    """Async facade over the draft state machine."""

    def __init__(
        self,
        store: DocumentStore,
        config: Optional[MatchmakerConfig] = None,
        *,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
        commands: Optional[CommandSender] = None,
    ) -> None:
        self.store = store
        self.config = config or MatchmakerConfig()
        self.repo = MatchRepository(store, self.config)
        self.clock = clock or utc_now
        self.rng = rng or random.SystemRandom()
        self.commands = commands

    def now(self) -> datetime:
        return self.clock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def ensure_draft(self) -> MatchDraft:
        """Return the draft, creating it on first access."""
        return await asyncio.to_thread(self.repo.ensure_draft, self.now())

    async def draft(self) -> MatchDraft | None:
        return await asyncio.to_thread(self.repo.get_draft)

    async def current_match(self) -> PublishedMatch | None:
        return await asyncio.to_thread(self.repo.get_match)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def _run(
        self,
        name: str,
        transition: Callable[[MatchDraft, datetime], Outcome],
        on_applied: Callable[[Transaction, Applied], None] | None = None,
    ) -> Outcome:
        # Clock is read per attempt
        def step(draft: MatchDraft) -> Outcome:
            return transition(draft, self.now())

        outcome = await asyncio.to_thread(
            self.repo.mutate_draft, step, self.now, on_applied
        )
        if isinstance(outcome, Applied):
            logger.info(
                "%s: %s (state=%s)", name, outcome.event, outcome.draft.state
            )
        elif isinstance(outcome, Rejected):
            logger.debug("%s rejected: %s %s", name, outcome.reason, outcome.message)
        else:
            logger.debug("%s unchanged: %s", name, outcome.note)
        return outcome

    async def join_queue(self, player_id: str) -> Outcome:
        cfg = self.config
        return await self._run(
            "join_queue",
            lambda d, now: machine.join_queue(d, player_id, now=now, config=cfg),
        )

    async def leave_queue(self, player_id: str) -> Outcome:
        return await self._run(
            "leave_queue",
            lambda d, now: machine.leave_queue(d, player_id, now=now),
        )

    async def select_leaders(self) -> Outcome:
        """Draw the two leaders if the selection deadline has passed.

        Safe to call from several trigger paths at once: only one commit
        can move the draft out of SELECTING_LEADERS.
        """
        cfg = self.config
        return await self._run(
            "select_leaders",
            lambda d, now: machine.select_leaders(d, now=now, rng=self.rng, config=cfg),
        )

    async def pick_player(self, requester_id: str, picked_id: str) -> Outcome:
        cfg = self.config
        return await self._run(
            "pick_player",
            lambda d, now: machine.pick_player(
                d, requester_id, picked_id, now=now, config=cfg
            ),
        )

    async def ban_map(self, requester_id: str, map_name: str) -> Outcome:
        return await self._run(
            "ban_map",
            lambda d, now: machine.ban_map(d, requester_id, map_name, now=now),
        )

    async def request_finalize(self, requester_id: str) -> Outcome:
        """Record a leader's confirmation; the second resets draft and match."""
        cfg = self.config

        def reset_match(tx: Transaction, outcome: Applied) -> None:
            if outcome.event == "reset":
                self.repo.write_match(tx, self.repo.initial_match(outcome.draft.updated_at))

        return await self._run(
            "request_finalize",
            lambda d, now: machine.request_finalize(d, requester_id, now=now, config=cfg),
            on_applied=reset_match,
        )

    async def cancel(self) -> CancelResult:
        """Reset draft and published match, then restart the game server.

        The reset is committed before the restart command is sent; a
        command failure is reported in the result and never undoes it.
        """
        draft = await asyncio.to_thread(self.repo.reset, self.now())
        logger.info("Match cancelled, draft and current match reset")

        if self.commands is None:
            logger.warning("No command client configured, server not restarted")
            return CancelResult(draft, command_sent=False, command_error="Command API not configured")

        try:
            await asyncio.wait_for(
                self.commands.send_command(self.config.restart_command),
                timeout=self.config.command_timeout,
            )
        except (CommandError, asyncio.TimeoutError) as exc:
            message = str(exc) or type(exc).__name__
            logger.error("Restart command failed after cancel: %s", message)
            return CancelResult(draft, command_sent=False, command_error=message)
        return CancelResult(draft, command_sent=True)
