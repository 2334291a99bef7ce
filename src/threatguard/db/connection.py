"""DuckDB connection for the execution audit log."""

import os
from pathlib import Path

import duckdb

DEFAULT_DB_PATH = "data/threatguard.db"
MEMORY = ":memory:"


def get_db_path() -> str:
    """Audit database location: THREATGUARD_DB_PATH or data/threatguard.db."""
    return os.getenv("THREATGUARD_DB_PATH", DEFAULT_DB_PATH)


def get_connection(db_path: str | None = None) -> duckdb.DuckDBPyConnection:
    """Open the audit database, creating parent directories for file paths.

    Args:
        db_path: Database file, or ":memory:". Defaults to get_db_path().
    """
    path = db_path or get_db_path()
    if path != MEMORY:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    return duckdb.connect(path)


def init_db(db_path: str | None = None) -> duckdb.DuckDBPyConnection:
    """Open the audit database with the execution_logs schema in place."""
    from .migrations import run_migrations

    conn = get_connection(db_path)
    run_migrations(conn)
    return conn
