"""Typed access to the draft and published-match documents.

MatchRepository owns the two singleton documents and converts between
stored dicts and pydantic models at the boundary, so domain code never
sees raw JSON.  Transactional helpers (``read_draft(tx)``,
``write_draft(tx, ...)``) compose into multi-document commits; the
``mutate_draft`` method wraps the common read-validate-write cycle.

Exceptions (TransactionConflict after the retry budget, pydantic
ValidationError for corrupt documents) are NOT caught -- they propagate
to callers.
"""

from datetime import datetime
from typing import Callable

from matchmaker.config import MatchmakerConfig
from matchmaker.machine import initial_draft
from matchmaker.models import MatchDraft, PublishedMatch
from matchmaker.results import Applied, Outcome
from matchmaker.store import DocumentStore, Transaction


class MatchRepository:
    """Data access layer for the match draft and the published match."""

    def __init__(self, store: DocumentStore, config: MatchmakerConfig) -> None:
        self.store = store
        self.config = config

    @property
    def draft_path(self) -> str:
        return self.config.draft_path

    @property
    def current_path(self) -> str:
        return self.config.current_path

    # ------------------------------------------------------------------
    # Transactional helpers
    # ------------------------------------------------------------------

    def read_draft(self, tx: Transaction) -> MatchDraft | None:
        data = tx.get(self.draft_path)
        return MatchDraft.from_document(data) if data is not None else None

    def write_draft(self, tx: Transaction, draft: MatchDraft) -> None:
        tx.set(self.draft_path, draft.to_document())

    def read_match(self, tx: Transaction) -> PublishedMatch | None:
        data = tx.get(self.current_path)
        return PublishedMatch.from_document(data) if data is not None else None

    def write_match(self, tx: Transaction, match: PublishedMatch) -> None:
        """Full replacement -- no field of a previous match leaks through."""
        tx.set(self.current_path, match.to_document())

    def initial_match(self, now: datetime | None = None) -> PublishedMatch:
        match = PublishedMatch.initial(self.config.team1_name, self.config.team2_name)
        match.updated_at = now
        return match

    # ------------------------------------------------------------------
    # Single-document operations
    # ------------------------------------------------------------------

    def get_draft(self) -> MatchDraft | None:
        data = self.store.get(self.draft_path)
        return MatchDraft.from_document(data) if data is not None else None

    def get_match(self) -> PublishedMatch | None:
        data = self.store.get(self.current_path)
        return PublishedMatch.from_document(data) if data is not None else None

    def ensure_draft(self, now: datetime) -> MatchDraft:
        """Return the draft, creating the singleton on first access."""

        def txn(tx: Transaction) -> MatchDraft:
            draft = self.read_draft(tx)
            if draft is None:
                draft = initial_draft(self.config, now)
                self.write_draft(tx, draft)
            return draft

        return self.store.transaction(txn)

    def mutate_draft(
        self,
        transition: Callable[[MatchDraft], Outcome],
        now: Callable[[], datetime],
        on_applied: Callable[[Transaction, Applied], None] | None = None,
    ) -> Outcome:
        """Run ``transition`` against the draft and commit it if applied.

        The draft is created on first access.  Validation and write happen
        in the same store transaction, so a concurrent writer forces a
        re-run against the fresh document instead of a lost update.
        ``on_applied`` may add writes to other documents to the same commit.
        """

        def txn(tx: Transaction) -> Outcome:
            draft = self.read_draft(tx)
            created = draft is None
            if created:
                draft = initial_draft(self.config, now())
            outcome = transition(draft)
            if isinstance(outcome, Applied):
                self.write_draft(tx, outcome.draft)
                if on_applied is not None:
                    on_applied(tx, outcome)
            elif created:
                self.write_draft(tx, draft)
            return outcome

        return self.store.transaction(txn)

    def reset(self, now: datetime) -> MatchDraft:
        """Reset draft and published match to their initial shape in one commit."""

        def txn(tx: Transaction) -> MatchDraft:
            draft = initial_draft(self.config, now)
            self.write_draft(tx, draft)
            self.write_match(tx, self.initial_match(now))
            return draft

        return self.store.transaction(txn)
