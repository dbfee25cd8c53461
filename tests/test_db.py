"""Tests for the SQLite connection wrapper and packaged schema migrations."""

import sqlite3
import threading
import tomllib
from pathlib import Path

import pytest

import matchmaker.db
from matchmaker.db import MIGRATIONS_DIR, Database


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "lobby" / "matchmaker.db")
    database.connect()
    yield database
    database.close()


def _tables(database: Database) -> set[str]:
    rows = database.conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
    return {row["name"] for row in rows}


class TestPackagedMigrations:
    """The schema ships inside the package, not next to the source tree."""

    def test_migrations_live_in_package(self):
        package_dir = Path(matchmaker.db.__file__).resolve().parent
        assert MIGRATIONS_DIR.parent == package_dir
        assert (MIGRATIONS_DIR / "001_documents.sql").is_file()

    def test_schema_declared_as_package_data(self):
        """Non-editable installs copy the .sql files with the code."""
        pyproject = Path(__file__).resolve().parent.parent / "pyproject.toml"
        with pyproject.open("rb") as f:
            package_data = tomllib.load(f)["tool"]["setuptools"]["package-data"]
        assert "migrations/*.sql" in package_data["matchmaker"]

    def test_default_run_creates_documents(self, db):
        assert db.apply_migrations() == 1
        assert "documents" in _tables(db)
        columns = {row["name"] for row in db.conn.execute("PRAGMA table_info(documents)")}
        assert columns == {"path", "data", "version", "updated_at"}

    def test_missing_directory_raises(self, db, tmp_path):
        """A broken install fails loudly instead of leaving an empty schema."""
        with pytest.raises(FileNotFoundError):
            db.apply_migrations(tmp_path / "nowhere")


class TestConnection:

    def test_parent_directory_created(self, db, tmp_path):
        assert (tmp_path / "lobby").is_dir()

    def test_pragmas(self, db):
        assert db.conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"
        assert db.conn.execute("PRAGMA busy_timeout").fetchone()[0] == 30000

    def test_caller_owns_transactions(self, db):
        """Autocommit: nothing is open until the store says BEGIN IMMEDIATE."""
        db.apply_migrations()
        assert db.conn.isolation_level is None
        db.conn.execute("BEGIN IMMEDIATE")
        assert db.conn.in_transaction
        db.conn.execute("ROLLBACK")
        assert not db.conn.in_transaction

    def test_connection_usable_from_another_thread(self, db):
        result = []
        thread = threading.Thread(target=lambda: result.append(db.get_schema_version()))
        thread.start()
        thread.join()
        assert result == [0]

    def test_conn_before_connect(self, tmp_path):
        with pytest.raises(RuntimeError, match="not connected"):
            Database(tmp_path / "x.db").conn

    def test_context_manager_closes(self, tmp_path):
        with Database(tmp_path / "x.db") as database:
            database.initialize()
        assert database._conn is None


class TestVersioning:

    def test_fresh_file_is_version_zero(self, db):
        assert db.get_schema_version() == 0
        assert _tables(db) == set()

    def test_rerun_applies_nothing(self, db):
        db.apply_migrations()
        assert db.apply_migrations() == 0
        assert db.get_schema_version() == 1

    def test_only_newer_files_run(self, db, tmp_path):
        directory = tmp_path / "schema"
        directory.mkdir()
        (directory / "001_a.sql").write_text("CREATE TABLE a (x INTEGER);")
        assert db.apply_migrations(directory) == 1
        (directory / "002_b.sql").write_text("CREATE TABLE b (y INTEGER);")
        assert db.apply_migrations(directory) == 1
        assert db.get_schema_version() == 2
        assert _tables(db) == {"a", "b"}

    def test_bad_migration_surfaces(self, db, tmp_path):
        directory = tmp_path / "schema"
        directory.mkdir()
        (directory / "001_bad.sql").write_text("CREATE TABLE (;")
        with pytest.raises(sqlite3.OperationalError):
            db.apply_migrations(directory)
        assert db.get_schema_version() == 0
