"""Transactional JSON document store with change notifications.

Documents are plain JSON-compatible dicts addressed by a slash-separated
path (``matches/draft``).  Every document carries a monotonically
increasing version; a deleted document keeps a tombstone so its version
never goes backwards.

``transaction(fn)`` implements optimistic concurrency:

1. ``fn(tx)`` runs against fresh reads; each read records the version
   it saw and every write is buffered on the transaction.
2. The commit takes the store's write lock, re-checks all recorded
   versions and applies every buffered write atomically.
3. If any document moved in between, the commit raises
   ``TransactionConflict`` and ``fn`` is re-run (tenacity, bounded).

Because ``fn`` may run several times it must not have side effects
beyond ``tx`` calls.  Subscribers registered with ``subscribe()`` are
notified after the commit, outside of any store lock, once per written
path.

Two implementations share the protocol:

* ``MemoryDocumentStore`` -- in-process, guarded by a ``threading.Lock``.
* ``SqliteDocumentStore`` -- a WAL SQLite file, one connection per
  thread, commits under ``BEGIN IMMEDIATE``.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, TypeVar

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random,
)

from matchmaker.db import Database
from matchmaker.exceptions import DocumentNotFound, TransactionConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")

ChangeCallback = Callable[["DocumentChange"], None]
ErrorCallback = Callable[[Exception], None]


def _copy(value: Optional[dict]) -> Optional[dict]:
    """Deep copy through JSON so callers never share mutable state with the store."""
    if value is None:
        return None
    return json.loads(json.dumps(value))


@dataclass(frozen=True)
class DocumentChange:
    """One committed write to a document path."""

    path: str
    before: Optional[dict]
    after: Optional[dict]
    version: int


@dataclass(eq=False)
class _Subscription:
    path: str
    on_change: ChangeCallback
    on_error: Optional[ErrorCallback]


class Transaction:
    """Read-then-write unit of work handed to ``DocumentStore.transaction``."""

    def __init__(self, store: "DocumentStore") -> None:
        self._store = store
        self.reads: dict[str, int] = {}
        self.writes: dict[str, Optional[dict]] = {}

    def get(self, path: str) -> Optional[dict]:
        """Read a document, recording its version for the commit check."""
        if path in self.writes:
            return _copy(self.writes[path])
        data, version = self._store._read(path)
        seen = self.reads.setdefault(path, version)
        if seen != version:
            raise TransactionConflict(
                f"Document {path} changed during transaction", path=path
            )
        return data

    def set(self, path: str, value: dict, *, merge: bool = False) -> None:
        """Buffer a full replacement (or a shallow merge) of ``path``."""
        if merge:
            base = self.get(path) or {}
            base.update(_copy(value))
            value = base
        self.writes[path] = _copy(value)

    def update(self, path: str, fields: dict) -> None:
        """Buffer a shallow merge into an existing document."""
        base = self.get(path)
        if base is None:
            raise DocumentNotFound(f"No document at {path}", path=path)
        base.update(_copy(fields))
        self.writes[path] = base

    def delete(self, path: str) -> None:
        self.writes[path] = None


class DocumentStore(ABC):
    """Base class: transaction retry loop and change notification fan-out.

    Subclasses provide ``_read`` (document + version) and ``_commit``
    (version check + atomic apply).
    """

    def __init__(self, max_attempts: int = 25) -> None:
        self._max_attempts = max_attempts
        self._subscribers: dict[str, list[_Subscription]] = {}
        self._sub_lock = threading.Lock()
        # Last (version, document) delivered per subscribed path
        self._seen: dict[str, tuple[int, Optional[dict]]] = {}

    # ------------------------------------------------------------------
    # Backend hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _read(self, path: str) -> tuple[Optional[dict], int]:
        """Return ``(document or None, version)``; missing documents are version 0."""

    @abstractmethod
    def _commit(
        self, reads: dict[str, int], writes: dict[str, Optional[dict]]
    ) -> list[DocumentChange]:
        """Verify ``reads`` and apply ``writes`` atomically.

        Raises:
            TransactionConflict: If any read version is stale.
        """

    def close(self) -> None:
        """Release backend resources."""

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, path: str) -> Optional[dict]:
        """Return a copy of the document at ``path`` or None."""
        return self._read(path)[0]

    def set(self, path: str, value: dict, *, merge: bool = False) -> None:
        """Write a document outside of an explicit transaction."""
        self.transaction(lambda tx: tx.set(path, value, merge=merge))

    def delete(self, path: str) -> None:
        self.transaction(lambda tx: tx.delete(path))

    def transaction(self, fn: Callable[[Transaction], T]) -> T:
        """Run ``fn`` atomically, re-running it on optimistic conflicts.

        Returns:
            Whatever ``fn`` returned on the attempt that committed.

        Raises:
            TransactionConflict: If every attempt lost its race.
        """
        retrying = Retrying(
            retry=retry_if_exception_type(TransactionConflict),
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_random(0, 0.005),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        result, changes = retrying(self._attempt, fn)
        self._notify(changes)
        return result

    def subscribe(
        self,
        path: str,
        on_change: ChangeCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Callable[[], None]:
        """Call ``on_change`` after every committed write to ``path``.

        Exceptions raised by ``on_change`` are passed to ``on_error`` when
        given, otherwise logged.

        Returns:
            A function that removes the subscription.
        """
        sub = _Subscription(path, on_change, on_error)
        data, version = self._read(path)
        with self._sub_lock:
            self._subscribers.setdefault(path, []).append(sub)
            if path not in self._seen:
                self._seen[path] = (version, data)

        def unsubscribe() -> None:
            with self._sub_lock:
                subs = self._subscribers.get(path, [])
                if sub in subs:
                    subs.remove(sub)

        return unsubscribe

    def poll_changes(self) -> list[DocumentChange]:
        """Notify subscribers of writes committed through other store instances.

        Compares each subscribed path with the last version delivered and
        emits one ``DocumentChange`` per path that moved.  Intermediate
        versions are collapsed.  Needed for SQLite files shared between
        processes; in-process writes are already delivered by ``transaction``.
        Subscribers may see a change twice when a commit races a poll.

        Returns:
            The changes that were delivered.
        """
        with self._sub_lock:
            paths = [path for path, subs in self._subscribers.items() if subs]

        changes = []
        for path in paths:
            data, version = self._read(path)
            with self._sub_lock:
                seen_version, seen_data = self._seen.get(path, (0, None))
                if version <= seen_version:
                    continue
                self._seen[path] = (version, data)
            changes.append(
                DocumentChange(path=path, before=seen_data, after=data, version=version)
            )
        self._dispatch(changes)
        return changes

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _attempt(self, fn: Callable[[Transaction], T]) -> tuple[T, list[DocumentChange]]:
        tx = Transaction(self)
        result = fn(tx)
        changes = self._commit(tx.reads, tx.writes)
        return result, changes

    def _notify(self, changes: list[DocumentChange]) -> None:
        with self._sub_lock:
            for change in changes:
                seen = self._seen.get(change.path)
                if seen is not None and change.version > seen[0]:
                    self._seen[change.path] = (change.version, _copy(change.after))
        self._dispatch(changes)

    def _dispatch(self, changes: list[DocumentChange]) -> None:
        for change in changes:
            with self._sub_lock:
                subs = list(self._subscribers.get(change.path, ()))
            for sub in subs:
                try:
                    sub.on_change(change)
                except Exception as exc:
                    if sub.on_error is None:
                        logger.exception("Subscriber for %s failed", change.path)
                    else:
                        sub.on_error(exc)


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------

class MemoryDocumentStore(DocumentStore):
    """Thread-safe in-process store (tests, single-process deployments)."""

    def __init__(self, max_attempts: int = 25) -> None:
        super().__init__(max_attempts)
        self._docs: dict[str, tuple[Optional[str], int]] = {}
        self._lock = threading.Lock()

    def _read(self, path: str) -> tuple[Optional[dict], int]:
        with self._lock:
            raw, version = self._docs.get(path, (None, 0))
        return (json.loads(raw) if raw is not None else None), version

    def _commit(
        self, reads: dict[str, int], writes: dict[str, Optional[dict]]
    ) -> list[DocumentChange]:
        with self._lock:
            for path, seen in reads.items():
                if self._docs.get(path, (None, 0))[1] != seen:
                    raise TransactionConflict(
                        f"Document {path} changed before commit", path=path
                    )

            changes = []
            for path, value in writes.items():
                before_raw, version = self._docs.get(path, (None, 0))
                raw = json.dumps(value) if value is not None else None
                self._docs[path] = (raw, version + 1)
                changes.append(
                    DocumentChange(
                        path=path,
                        before=json.loads(before_raw) if before_raw is not None else None,
                        after=_copy(value),
                        version=version + 1,
                    )
                )
            return changes


# ---------------------------------------------------------------------------
# SQLite backend
# ---------------------------------------------------------------------------

SELECT_DOC = "SELECT data, version FROM documents WHERE path = ?"

UPSERT_DOC = """
    INSERT INTO documents (path, data, version, updated_at)
    VALUES (:path, :data, :version, :updated_at)
    ON CONFLICT(path) DO UPDATE SET
        data       = excluded.data,
        version    = excluded.version,
        updated_at = excluded.updated_at
"""


class SqliteDocumentStore(DocumentStore):
    """Document store persisted in a SQLite file.

    Each thread gets its own connection (SQLite connections must not be
    shared across concurrent users).  Several store instances -- or
    processes -- may open the same file; commits serialize on SQLite's
    write lock and version checks make stale transactions retry.
    Change notifications only reach subscribers of the same instance.
    """

    def __init__(self, db_path: str | Path, max_attempts: int = 25) -> None:
        super().__init__(max_attempts)
        self.db_path = Path(db_path)
        self._local = threading.local()
        self._databases: list[Database] = []
        self._db_lock = threading.Lock()
        self._database().apply_migrations()

    def _database(self) -> Database:
        db = getattr(self._local, "db", None)
        if db is None:
            db = Database(self.db_path)
            db.connect()
            self._local.db = db
            with self._db_lock:
                self._databases.append(db)
        return db

    def close(self) -> None:
        with self._db_lock:
            for db in self._databases:
                db.close()
            self._databases.clear()
        self._local = threading.local()

    def _read(self, path: str) -> tuple[Optional[dict], int]:
        row = self._database().conn.execute(SELECT_DOC, (path,)).fetchone()
        if row is None:
            return None, 0
        return json.loads(row["data"]), row["version"]

    def _commit(
        self, reads: dict[str, int], writes: dict[str, Optional[dict]]
    ) -> list[DocumentChange]:
        conn = self._database().conn
        now = datetime.now(timezone.utc).isoformat()
        conn.execute("BEGIN IMMEDIATE")
        try:
            for path, seen in reads.items():
                row = conn.execute(SELECT_DOC, (path,)).fetchone()
                current = row["version"] if row is not None else 0
                if current != seen:
                    raise TransactionConflict(
                        f"Document {path} changed before commit", path=path
                    )

            changes = []
            for path, value in writes.items():
                row = conn.execute(SELECT_DOC, (path,)).fetchone()
                before = json.loads(row["data"]) if row is not None else None
                version = (row["version"] if row is not None else 0) + 1
                # Deletes keep a JSON null tombstone so versions stay monotonic
                conn.execute(
                    UPSERT_DOC,
                    {
                        "path": path,
                        "data": json.dumps(value),
                        "version": version,
                        "updated_at": now,
                    },
                )
                changes.append(
                    DocumentChange(path=path, before=before, after=_copy(value), version=version)
                )
            conn.execute("COMMIT")
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        return changes


def open_store(db_path: str | Path | None = None, max_attempts: int = 25) -> DocumentStore:
    """Return a SQLite store for ``db_path`` or an in-memory store when None."""
    if db_path is None:
        return MemoryDocumentStore(max_attempts)
    return SqliteDocumentStore(db_path, max_attempts)

