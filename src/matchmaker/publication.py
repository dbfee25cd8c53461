"""Publication of a completed draft as the public match.

Once the veto has decided the map, the draft is copied into the current
match document exactly once and the draft moves to LIVE.  The copy is
guarded by a lock on the draft (``publishInProgress`` plus a timestamp):

1. claim   -- one transaction re-checks the draft and takes the lock;
2. publish -- the current match is replaced wholesale by a fresh
   projection of the draft;
3. release -- one transaction clears the lock, stamps ``publishedAt`` and
   sets ``state=LIVE``.

A failure after the claim releases the lock and records
``publishError`` so the draft never stays locked without a reason.  A
lock older than ``lock_stale_after`` (a crashed publisher) may be taken
over by the next attempt.
"""

import asyncio
import logging
from datetime import datetime, timedelta

from matchmaker.models import MatchDraft, MatchState, PublishedMatch
from matchmaker.results import PublishFailed, PublishFailure, Published, PublishResult
from matchmaker.service import MatchService
from matchmaker.store import DocumentChange, Transaction

logger = logging.getLogger(__name__)


def lock_is_stale(locked_at: datetime | None, now: datetime, stale_after: float) -> bool:
    """A held lock without a timestamp, or older than ``stale_after``, is stale."""
    if locked_at is None:
        return True
    return now - locked_at >= timedelta(seconds=stale_after)


def _is_complete(draft: MatchDraft, team_size: int) -> bool:
    return (
        draft.state is MatchState.BANNING_MAP
        and draft.teams_full(team_size)
        and draft.map is not None
        and draft.published_at is None
    )


def is_publishable(
    draft: MatchDraft,
    now: datetime,
    *,
    team_size: int = 5,
    stale_after: float = 120.0,
) -> bool:
    """Veto finished, not published yet, and the lock is free or stale."""
    if not _is_complete(draft, team_size):
        return False
    return not draft.publish_in_progress or lock_is_stale(
        draft.publish_locked_at, now, stale_after
    )


def wants_publication(draft: MatchDraft | None, team_size: int = 5) -> bool:
    """Readiness predicate used for edge detection on draft writes.

    A previous failure (``publish_error``) keeps it false so a broken
    publication is not retried on every write; a manual publish clears it.
    """
    return (
        draft is not None
        and _is_complete(draft, team_size)
        and not draft.publish_in_progress
        and draft.publish_error is None
    )


def build_published_match(draft: MatchDraft, now: datetime) -> PublishedMatch:
    """Fixed projection of the draft: rosters, map and an empty queue."""
    return PublishedMatch(
        state=MatchState.BANNING_MAP,
        team1=draft.team1.model_copy(deep=True),
        team2=draft.team2.model_copy(deep=True),
        map=draft.map,
        queue=[],
        published_at=now,
        updated_at=now,
    )


class PublicationPipeline:
    """Copies a finished draft into the current match exactly once."""

    def __init__(self, service: MatchService) -> None:
        self.service = service
        self.repo = service.repo
        self.config = service.config

    def _claim(self, now: datetime) -> MatchDraft | PublishFailed:
        cfg = self.config

        def txn(tx: Transaction) -> MatchDraft | PublishFailed:
            draft = self.repo.read_draft(tx)
            if draft is None or not _is_complete(draft, cfg.team_size):
                return PublishFailed(PublishFailure.NOT_READY)
            if not is_publishable(
                draft, now, team_size=cfg.team_size, stale_after=cfg.lock_stale_after
            ):
                return PublishFailed(PublishFailure.LOCKED)
            if draft.publish_in_progress:
                logger.warning(
                    "Reclaiming stale publish lock taken at %s", draft.publish_locked_at
                )
            draft.publish_in_progress = True
            draft.publish_locked_at = now
            draft.publish_error = None
            draft.updated_at = now
            self.repo.write_draft(tx, draft)
            return draft

        return self.repo.store.transaction(txn)

    def _holds_lock(self, draft: MatchDraft | None, locked_at: datetime) -> bool:
        return (
            draft is not None
            and draft.state is MatchState.BANNING_MAP
            and draft.publish_in_progress
            and draft.publish_locked_at == locked_at
        )

    def _publish(self, draft: MatchDraft, locked_at: datetime) -> PublishedMatch:
        match = build_published_match(draft, self.service.now())

        def txn(tx: Transaction) -> None:
            if not self._holds_lock(self.repo.read_draft(tx), locked_at):
                raise RuntimeError("Publish lock lost before the match was written")
            self.repo.write_match(tx, match)

        self.repo.store.transaction(txn)
        return match

    def _release(self, locked_at: datetime, error: str | None = None) -> bool:
        now = self.service.now()

        def txn(tx: Transaction) -> bool:
            draft = self.repo.read_draft(tx)
            if not self._holds_lock(draft, locked_at):
                return False
            draft.publish_in_progress = False
            draft.publish_locked_at = None
            draft.updated_at = now
            if error is None:
                draft.state = MatchState.LIVE
                draft.published_at = now
            else:
                draft.publish_error = error
            self.repo.write_draft(tx, draft)
            return True

        return self.repo.store.transaction(txn)

    def _run(self) -> PublishResult:
        locked_at = self.service.now()
        claimed = self._claim(locked_at)
        if isinstance(claimed, PublishFailed):
            return claimed

        try:
            match = self._publish(claimed, locked_at)
            if not self._release(locked_at):
                raise RuntimeError("Publish lock lost before release")
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            logger.exception("Publication failed")
            self._release(locked_at, error=message)
            return PublishFailed(PublishFailure.FAILED, message)

        logger.info(
            "Published match: %s vs %s on %s",
            match.team1.display_name, match.team2.display_name, match.map,
        )
        return Published(match)

    async def publish_if_ready(self) -> PublishResult:
        """Publish the draft if its veto is complete.

        Returns:
            ``Published`` on success, otherwise ``PublishFailed`` with
            NOT_READY, LOCKED or FAILED.
        """
        return await asyncio.to_thread(self._run)

    async def on_draft_written(self, change: DocumentChange) -> PublishResult | None:
        """Publish when a draft write makes the draft publishable."""
        team_size = self.config.team_size
        before = MatchDraft.from_document(change.before) if change.before else None
        after = MatchDraft.from_document(change.after) if change.after else None
        if not wants_publication(after, team_size) or wants_publication(before, team_size):
            return None
        return await self.publish_if_ready()
