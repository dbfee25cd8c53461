"""One SQLite connection for the document store, plus schema migrations.

Schema files ship inside the package (``matchmaker/migrations/NNN_*.sql``)
and are tracked with ``PRAGMA user_version``.
"""

import sqlite3
from pathlib import Path

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"

CONNECTION_PRAGMAS = (
    "PRAGMA journal_mode = WAL",
    "PRAGMA synchronous = NORMAL",
    # Concurrent BEGIN IMMEDIATE callers wait for the write lock
    "PRAGMA busy_timeout = 30000",
)


class Database:
    """A single autocommit connection to the matchmaker database file.

    ``SqliteDocumentStore`` opens one per thread and issues
    ``BEGIN IMMEDIATE`` / ``COMMIT`` itself::

        with Database("data/matchmaker.db") as db:
            db.apply_migrations()
            db.conn.execute("SELECT data FROM documents WHERE path = ?", (path,))
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        # isolation_level=None: no implicit transactions from the sqlite3 module
        self._conn = sqlite3.connect(
            str(self.db_path),
            isolation_level=None,
            check_same_thread=False,
        )
        self._conn.row_factory = sqlite3.Row
        for pragma in CONNECTION_PRAGMAS:
            self._conn.execute(pragma)
        return self._conn

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "Database":
        self.connect()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def get_schema_version(self) -> int:
        return self.conn.execute("PRAGMA user_version").fetchone()[0]

    def apply_migrations(self, migrations_dir: Path | None = None) -> int:
        """Run every ``NNN_*.sql`` newer than ``user_version``; return how many ran.

        ``migrations_dir`` defaults to the files packaged with matchmaker.

        Raises:
            FileNotFoundError: The directory does not exist.
        """
        directory = MIGRATIONS_DIR if migrations_dir is None else Path(migrations_dir)
        if not directory.is_dir():
            raise FileNotFoundError(f"Migrations directory not found: {directory}")

        current = self.get_schema_version()
        applied = 0
        for migration_file in sorted(directory.glob("*.sql")):
            version = int(migration_file.name.split("_")[0])
            if version <= current:
                continue
            self.conn.executescript(migration_file.read_text(encoding="utf-8"))
            self.conn.execute(f"PRAGMA user_version = {version}")
            applied += 1
        return applied

    def initialize(self) -> sqlite3.Connection:
        """``connect()`` followed by ``apply_migrations()``."""
        self.connect()
        self.apply_migrations()
        return self.conn
