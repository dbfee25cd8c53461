"""Custom exception hierarchy for the matchmaker.

Exception tree:
    MatchmakerError
    +-- StoreError
    |   +-- TransactionConflict   (optimistic commit lost a race; retriable)
    |   +-- DocumentNotFound      (update of a missing document)
    +-- CommandError              (command API answered non-2xx or failed)
    |   +-- CommandUnauthenticated (HTTP 401)
    |   +-- CommandTimeout         (no answer within the timeout)
    |   +-- CommandConfigError     (credentials missing)
    +-- PlayerNotFound            (no profile for a roster id)

State-machine validation failures are not exceptions; commands return
``Rejected`` values instead (see ``matchmaker.results``).
"""

from typing import Optional


class MatchmakerError(Exception):
    """Base exception for all matchmaker errors."""


class StoreError(MatchmakerError):
    """Base exception for document store failures."""

    def __init__(self, message: str, *, path: Optional[str] = None):
        self.path = path
        super().__init__(message)


class TransactionConflict(StoreError):
    """A document read by the transaction changed before commit.

    This is a retriable error -- the store re-runs the transaction
    function against fresh snapshots.
    """

    pass


class DocumentNotFound(StoreError):
    """``update`` targeted a document that does not exist."""

    pass


class CommandError(MatchmakerError):
    """The game-server command API rejected or failed a command."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: str = "",
    ):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class CommandUnauthenticated(CommandError):
    """HTTP 401 -- the client key, server id or panel origin is wrong.

    Distinct from CommandError so callers can surface a separate reason.
    """

    pass


class CommandTimeout(CommandError):
    """The command API did not answer within ``command_timeout``."""

    pass


class CommandConfigError(CommandError):
    """Panel origin, server id or client key is not configured."""

    pass


class PlayerNotFound(MatchmakerError):
    """No profile is stored for a roster player id."""

    def __init__(self, player_id: str):
        self.player_id = player_id
        super().__init__(f"No profile for player {player_id}")
