"""
Schema migrations for the PostgreSQL object store.

Migrations are forward-only SQL files named NNN_description.sql, shipped in
reconcilekit/migrations/. Each one is applied in its own transaction and
recorded in schema_migrations. A session-level advisory lock keeps two
processes from migrating the same database at once.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Set

import asyncpg

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

MIGRATION_PATTERN = re.compile(r"^(\d{3})_.+\.sql$")

# arbitrary, but fixed: pg_advisory_lock key shared by all migrators
MIGRATION_LOCK_ID = 0x7265636F


@dataclass(frozen=True)
class Migration:
    """One migration file."""

    version: str
    filename: str
    path: Path

    def read(self) -> str:
        return self.path.read_text(encoding="utf-8")


async def ensure_migration_table(conn: asyncpg.Connection) -> None:
    """Create the schema_migrations tracking table if it doesn't exist."""
    await conn.execute("""
        CREATE TABLE IF NOT EXISTS schema_migrations (
            id SERIAL PRIMARY KEY,
            version VARCHAR(255) NOT NULL UNIQUE,
            filename VARCHAR(255) NOT NULL,
            applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
        """)


def discover_migrations() -> List[Migration]:
    """
    List migration files in version order.

    Raises:
        FileNotFoundError: If the migrations directory doesn't exist.
        ValueError: If two files share a version number.
    """
    if not MIGRATIONS_DIR.is_dir():
        raise FileNotFoundError(f"Migrations directory not found: {MIGRATIONS_DIR}")

    found = {}
    for entry in sorted(MIGRATIONS_DIR.iterdir()):
        match = MIGRATION_PATTERN.match(entry.name)
        if not match or not entry.is_file():
            continue
        version = match.group(1)
        if version in found:
            raise ValueError(
                f"Duplicate migration version {version}: "
                f"{found[version].filename} and {entry.name}"
            )
        found[version] = Migration(version, entry.name, entry)

    return [found[v] for v in sorted(found)]


async def get_applied_versions(conn: asyncpg.Connection) -> Set[str]:
    rows = await conn.fetch("SELECT version FROM schema_migrations")
    return {row["version"] for row in rows}


async def pending_migrations(conn: asyncpg.Connection) -> List[Migration]:
    """Return migrations not yet recorded in schema_migrations."""
    await ensure_migration_table(conn)
    applied = await get_applied_versions(conn)
    return [m for m in discover_migrations() if m.version not in applied]


async def apply_migration(conn: asyncpg.Connection, migration: Migration) -> None:
    """Apply and record a single migration in one transaction."""
    sql = migration.read()
    async with conn.transaction():
        await conn.execute(sql)
        await conn.execute(
            "INSERT INTO schema_migrations (version, filename) VALUES ($1, $2)",
            migration.version,
            migration.filename,
        )
    logger.info(f"Applied migration {migration.filename}")


async def run_migrations(pool: asyncpg.Pool, dry_run: bool = False) -> List[Migration]:
    """
    Apply all pending migrations in order.

    Args:
        pool: A connected asyncpg pool.
        dry_run: Only report what would be applied.

    Returns:
        The migrations applied (or pending, for a dry run).

    Raises:
        asyncpg.PostgresError: If a migration fails. It is rolled back;
            earlier migrations stay applied.
    """
    async with pool.acquire() as conn:
        await conn.execute("SELECT pg_advisory_lock($1)", MIGRATION_LOCK_ID)
        try:
            pending = await pending_migrations(conn)
            if not pending:
                logger.info("Database schema is up to date")
                return []

            if dry_run:
                for migration in pending:
                    logger.info(f"Pending migration {migration.filename}")
                return pending

            logger.info(f"Applying {len(pending)} pending migration(s)")
            for migration in pending:
                await apply_migration(conn, migration)
            return pending
        finally:
            await conn.execute("SELECT pg_advisory_unlock($1)", MIGRATION_LOCK_ID)
