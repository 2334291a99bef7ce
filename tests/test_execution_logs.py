"""Tests for execution log persistence and migrations."""

import os
import tempfile
from pathlib import Path

import pytest

from threatguard.db import (
    ExecutionAuditLog,
    get_db_path,
    get_execution_logs,
    init_db,
    run_migrations,
    write_execution_log,
)
from threatguard.models import ExecutionMetadata, ExecutionResult


@pytest.fixture
def db_conn():
    """Create an in-memory database with migrations applied."""
    conn = init_db(":memory:")
    yield conn
    conn.close()


def test_default_db_path_from_env():
    """Test that get_db_path respects THREATGUARD_DB_PATH."""
    # In tests, conftest.py sets THREATGUARD_DB_PATH=:memory:
    assert get_db_path() == ":memory:"


def test_default_db_path_without_env(monkeypatch):
    """Test the default path when THREATGUARD_DB_PATH is not set."""
    monkeypatch.delenv("THREATGUARD_DB_PATH")
    assert get_db_path() == "data/threatguard.db"


def test_migrations_are_idempotent(db_conn):
    """Test that re-running migrations applies nothing new."""
    assert run_migrations(db_conn) == []
    versions = db_conn.execute("SELECT version FROM schema_migrations").fetchall()
    assert ("001_execution_logs",) in versions


def test_persistent_db_creates_file():
    """Test that a file-backed database survives reopening."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "nested" / "audit.db"

        conn = init_db(str(db_path))
        write_execution_log(
            conn,
            session_id="s1",
            command_type="status",
            sub_action="system",
            command_echo="status system",
            success=True,
            execution_time_ms=1.5,
        )
        conn.close()

        assert os.path.exists(db_path)
        conn = init_db(str(db_path))
        assert len(get_execution_logs(conn, session_id="s1")) == 1
        conn.close()


def test_write_and_query(db_conn):
    """Test writing and filtering execution logs."""
    write_execution_log(
        db_conn,
        session_id="s1",
        command_type="threat",
        sub_action="scan",
        command_echo="threat scan --targets 10.0.0.0/8 --scan-type deep",
        success=True,
        execution_time_ms=12.0,
        user_id="alice",
        parameters={"targets": ["10.0.0.0/8"], "scan-type": "deep"},
        exit_code=0,
        correlation_id="turn-1",
    )
    write_execution_log(
        db_conn,
        session_id="s1",
        command_type="delete",
        sub_action="all",
        command_echo="delete all",
        success=False,
        execution_time_ms=0.1,
        exit_code=1,
        error="Command 'delete' is not allowed",
    )
    write_execution_log(
        db_conn,
        session_id="s2",
        command_type="status",
        sub_action="system",
        command_echo="status system",
        success=True,
        execution_time_ms=2.0,
    )

    logs = get_execution_logs(db_conn, session_id="s1")
    assert [log.command_type for log in logs] == ["delete", "threat"]

    scan = logs[1]
    assert scan.parameters == {"targets": ["10.0.0.0/8"], "scan-type": "deep"}
    assert scan.user_id == "alice"
    assert scan.exit_code == 0
    assert scan.correlation_id == "turn-1"

    refused = get_execution_logs(db_conn, command_type="delete")
    assert refused[0].success is False
    assert refused[0].error == "Command 'delete' is not allowed"
    assert refused[0].parameters is None

    assert len(get_execution_logs(db_conn, limit=1)) == 1


@pytest.mark.asyncio
async def test_audit_log_records_router_results(db_conn, make_command, make_context):
    """Test the async audit sink used by the execution router."""
    audit_log = ExecutionAuditLog(db_conn)
    command = make_command(parameters={"output": "json"})
    result = ExecutionResult(
        success=True,
        output="ok",
        execution_time_ms=3.0,
        command_echo=command.preview_text,
        metadata=ExecutionMetadata(exit_code=0),
    )

    entry = await audit_log.record(
        command, result, make_context(session_id="s9", authenticated=True), correlation_id="c1"
    )

    assert entry.session_id == "s9"
    assert entry.user_id == "analyst"
    recent = audit_log.recent(session_id="s9")
    assert len(recent) == 1
    assert recent[0].command_echo == "status system"
    assert recent[0].parameters == {"output": "json"}
    assert recent[0].correlation_id == "c1"
