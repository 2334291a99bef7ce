"""SQL migrations shipped inside the package."""

import logging
from pathlib import Path

import duckdb

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "sql"


def run_migrations(conn: duckdb.DuckDBPyConnection) -> list[str]:
    """Apply every migration that has not been applied yet.

    Args:
        conn: DuckDB connection.

    Returns:
        Versions applied by this call, in order.
    """
    migration_files = sorted(MIGRATIONS_DIR.glob("*.sql"))
    if not migration_files:
        return []

    conn.execute("""
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version TEXT PRIMARY KEY,
            applied_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)

    applied = {row[0] for row in conn.execute("SELECT version FROM schema_migrations").fetchall()}

    newly_applied = []
    for migration_file in migration_files:
        version = migration_file.stem
        if version in applied:
            continue

        conn.execute(migration_file.read_text(encoding="utf-8"))
        conn.execute("INSERT INTO schema_migrations (version) VALUES (?)", [version])
        logger.info("Applied migration: %s", version)
        newly_applied.append(version)

    return newly_applied
