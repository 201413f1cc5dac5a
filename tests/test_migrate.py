"""Unit tests for migrate.py - Database migration runner."""

from unittest.mock import AsyncMock, MagicMock, call

import pytest

from reconcilekit import migrate
from reconcilekit.migrate import (
    MIGRATION_LOCK_ID,
    Migration,
    apply_migration,
    discover_migrations,
    ensure_migration_table,
    get_applied_versions,
    run_migrations,
)


def _with_transaction(conn):
    transaction = AsyncMock()
    transaction.__aenter__ = AsyncMock(return_value=transaction)
    transaction.__aexit__ = AsyncMock(return_value=False)
    conn.transaction = MagicMock(return_value=transaction)
    return conn


class TestDiscoverMigrations:
    """Tests for discover_migrations function."""

    def test_returns_sorted_list(self, tmp_path, monkeypatch):
        """Test migrations are discovered and sorted by version."""
        (tmp_path / "002_add_column.sql").write_text("ALTER TABLE objects ADD c TEXT;")
        (tmp_path / "001_initial.sql").write_text("CREATE TABLE test (id INT);")
        (tmp_path / "003_add_index.sql").write_text("CREATE INDEX idx ON test(id);")
        monkeypatch.setattr(migrate, "MIGRATIONS_DIR", tmp_path)

        result = discover_migrations()

        assert [m.version for m in result] == ["001", "002", "003"]
        assert result[0].filename == "001_initial.sql"
        assert result[0].path == tmp_path / "001_initial.sql"

    def test_skips_non_matching_files(self, tmp_path, monkeypatch):
        """Test that files without an NNN_ prefix or .sql suffix are ignored."""
        (tmp_path / "001_valid.sql").write_text("SELECT 1;")
        (tmp_path / "002_readme.txt").write_text("not a migration")
        (tmp_path / "schema.sql").write_text("SELECT 1;")
        (tmp_path / "1_too_short.sql").write_text("SELECT 1;")
        (tmp_path / "003_subdir.sql").mkdir()
        monkeypatch.setattr(migrate, "MIGRATIONS_DIR", tmp_path)

        result = discover_migrations()

        assert [m.filename for m in result] == ["001_valid.sql"]

    def test_empty_directory(self, tmp_path, monkeypatch):
        monkeypatch.setattr(migrate, "MIGRATIONS_DIR", tmp_path)
        assert discover_migrations() == []

    def test_missing_directory(self, tmp_path, monkeypatch):
        """Test missing directory raises FileNotFoundError."""
        monkeypatch.setattr(migrate, "MIGRATIONS_DIR", tmp_path / "nonexistent")

        with pytest.raises(FileNotFoundError):
            discover_migrations()

    def test_duplicate_version(self, tmp_path, monkeypatch):
        (tmp_path / "001_a.sql").write_text("SELECT 1;")
        (tmp_path / "001_b.sql").write_text("SELECT 2;")
        monkeypatch.setattr(migrate, "MIGRATIONS_DIR", tmp_path)

        with pytest.raises(ValueError, match="Duplicate migration version 001"):
            discover_migrations()

    def test_ships_objects_table(self):
        """Test the packaged migrations create the objects table."""
        result = discover_migrations()

        assert result[0].filename == "001_objects.sql"
        assert "CREATE TABLE" in result[0].read()
        assert "objects" in result[0].read()


@pytest.mark.asyncio
class TestMigrationQueries:
    """Tests for ensure_migration_table and get_applied_versions."""

    async def test_executes_create_table(self):
        conn = AsyncMock()

        await ensure_migration_table(conn)

        conn.execute.assert_called_once()
        sql = conn.execute.call_args[0][0]
        assert "CREATE TABLE IF NOT EXISTS schema_migrations" in sql

    async def test_returns_version_set(self):
        conn = AsyncMock()
        conn.fetch = AsyncMock(return_value=[{"version": "001"}, {"version": "002"}])

        assert await get_applied_versions(conn) == {"001", "002"}


@pytest.mark.asyncio
class TestApplyMigration:
    """Tests for apply_migration function."""

    async def test_executes_sql_and_records(self, tmp_path):
        sql_file = tmp_path / "001_initial.sql"
        sql_file.write_text("CREATE TABLE test (id INT);")
        conn = _with_transaction(AsyncMock())

        await apply_migration(conn, Migration("001", "001_initial.sql", sql_file))

        conn.transaction.assert_called_once()
        conn.execute.assert_any_call("CREATE TABLE test (id INT);")
        conn.execute.assert_any_call(
            "INSERT INTO schema_migrations (version, filename) VALUES ($1, $2)",
            "001",
            "001_initial.sql",
        )

    async def test_propagates_exception(self, tmp_path):
        sql_file = tmp_path / "001_bad.sql"
        sql_file.write_text("INVALID SQL;")
        conn = _with_transaction(AsyncMock())
        conn.execute = AsyncMock(side_effect=Exception("syntax error"))

        with pytest.raises(Exception, match="syntax error"):
            await apply_migration(conn, Migration("001", "001_bad.sql", sql_file))


@pytest.mark.asyncio
class TestRunMigrations:
    """Tests for run_migrations function."""

    @pytest.fixture
    def migrations_dir(self, tmp_path, monkeypatch):
        (tmp_path / "001_initial.sql").write_text("CREATE TABLE t1 (id INT);")
        (tmp_path / "002_update.sql").write_text("ALTER TABLE t1 ADD col TEXT;")
        (tmp_path / "003_index.sql").write_text("CREATE INDEX idx ON t1(id);")
        monkeypatch.setattr(migrate, "MIGRATIONS_DIR", tmp_path)
        return tmp_path

    async def test_applies_pending_migrations(self, migrations_dir, mock_pool):
        conn = _with_transaction(mock_pool.conn)
        conn.fetch = AsyncMock(return_value=[{"version": "001"}])

        result = await run_migrations(mock_pool)

        assert [m.version for m in result] == ["002", "003"]
        conn.execute.assert_any_call("ALTER TABLE t1 ADD col TEXT;")
        assert call("CREATE TABLE t1 (id INT);") not in conn.execute.call_args_list

    async def test_takes_and_releases_advisory_lock(self, migrations_dir, mock_pool):
        conn = _with_transaction(mock_pool.conn)
        conn.fetch = AsyncMock(return_value=[])

        await run_migrations(mock_pool)

        calls = conn.execute.call_args_list
        assert calls[0] == call("SELECT pg_advisory_lock($1)", MIGRATION_LOCK_ID)
        assert calls[-1] == call("SELECT pg_advisory_unlock($1)", MIGRATION_LOCK_ID)

    async def test_releases_lock_on_failure(self, migrations_dir, mock_pool):
        conn = _with_transaction(mock_pool.conn)
        conn.fetch = AsyncMock(side_effect=RuntimeError("connection lost"))

        with pytest.raises(RuntimeError):
            await run_migrations(mock_pool)

        conn.execute.assert_any_call(
            "SELECT pg_advisory_unlock($1)", MIGRATION_LOCK_ID
        )

    async def test_no_pending_migrations(self, migrations_dir, mock_pool):
        conn = mock_pool.conn
        conn.fetch = AsyncMock(
            return_value=[{"version": v} for v in ("001", "002", "003")]
        )

        assert await run_migrations(mock_pool) == []

    async def test_dry_run_applies_nothing(self, migrations_dir, mock_pool):
        conn = _with_transaction(mock_pool.conn)
        conn.fetch = AsyncMock(return_value=[])

        result = await run_migrations(mock_pool, dry_run=True)

        assert len(result) == 3
        conn.transaction.assert_not_called()
