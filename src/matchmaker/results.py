"""Tagged result values returned by matchmaker commands.

State-machine commands return one of:

* ``Applied``   -- the transition committed; carries the new draft.
* ``Unchanged`` -- nothing to do (duplicate join, guard already passed).
* ``Rejected``  -- client-caused validation failure; nothing was written.

Publication and server start have their own unions with machine-readable
failure reasons, mirroring what callers of those multi-phase operations
need to branch on.
"""

from dataclasses import dataclass
from enum import StrEnum
from typing import ClassVar, Union

from matchmaker.models import MatchDraft, PublishedMatch


class Rejection(StrEnum):
    WRONG_STATE = "WRONG_STATE"
    INVALID_PLAYER = "INVALID_PLAYER"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    NO_LEADERS = "NO_LEADERS"
    NOT_YOUR_TURN = "NOT_YOUR_TURN"
    NOT_AVAILABLE = "NOT_AVAILABLE"
    ALREADY_ASSIGNED = "ALREADY_ASSIGNED"
    TEAM_FULL = "TEAM_FULL"
    WRONG_TURN = "WRONG_TURN"
    INVALID_MAP = "INVALID_MAP"
    VETO_COMPLETE = "VETO_COMPLETE"
    UNAUTHORIZED = "UNAUTHORIZED"


@dataclass(frozen=True)
class Applied:
    draft: MatchDraft
    event: str
    ok: ClassVar[bool] = True


@dataclass(frozen=True)
class Unchanged:
    draft: MatchDraft
    note: str = ""
    ok: ClassVar[bool] = True


@dataclass(frozen=True)
class Rejected:
    reason: Rejection
    message: str
    ok: ClassVar[bool] = False


Outcome = Union[Applied, Unchanged, Rejected]


# ---------------------------------------------------------------------------
# Publication
# ---------------------------------------------------------------------------

class PublishFailure(StrEnum):
    NOT_READY = "NOT_READY"
    LOCKED = "LOCKED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class Published:
    match: PublishedMatch
    ok: ClassVar[bool] = True


@dataclass(frozen=True)
class PublishFailed:
    reason: PublishFailure
    error: str | None = None
    ok: ClassVar[bool] = False


PublishResult = Union[Published, PublishFailed]


# ---------------------------------------------------------------------------
# Server start
# ---------------------------------------------------------------------------

class StartFailure(StrEnum):
    NOT_FOUND = "NOT_FOUND"
    NOT_READY = "NOT_READY"
    LOCKED = "LOCKED"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class Started:
    command: str
    match_config_url: str
    ok: ClassVar[bool] = True


@dataclass(frozen=True)
class StartFailed:
    reason: StartFailure
    error: str | None = None
    ok: ClassVar[bool] = False


StartResult = Union[Started, StartFailed]


@dataclass(frozen=True)
class CancelResult:
    """Outcome of an administrative cancel: the reset always commits."""

    draft: MatchDraft
    command_sent: bool
    command_error: str | None = None
