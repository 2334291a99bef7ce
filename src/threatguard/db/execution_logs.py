"""Execution log persistence.

Every command the router attempts, allowed or refused, is written here so the
audit trail survives restarts.
"""

import asyncio
import json
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

import duckdb

from ..models import CandidateCommand, ConversationContext, ExecutionResult, ParameterValue

logger = logging.getLogger(__name__)


@dataclass
class ExecutionLog:
    """Represents one audited execution attempt."""

    id: str
    session_id: str
    user_id: str | None
    command_type: str
    sub_action: str
    command_echo: str
    parameters: dict[str, ParameterValue] | None
    success: bool
    exit_code: int | None
    error: str | None
    execution_time_ms: float
    correlation_id: str | None
    created_at: datetime


def write_execution_log(
    conn: duckdb.DuckDBPyConnection,
    session_id: str,
    command_type: str,
    sub_action: str,
    command_echo: str,
    success: bool,
    execution_time_ms: float,
    user_id: str | None = None,
    parameters: dict[str, ParameterValue] | None = None,
    exit_code: int | None = None,
    error: str | None = None,
    correlation_id: str | None = None,
) -> ExecutionLog:
    """Write an execution log entry.

    Args:
        conn: Database connection.
        session_id: Conversation session that issued the command.
        command_type: Command family (e.g., "threat", "network").
        sub_action: Action within the family (e.g., "scan").
        command_echo: Preview text of the command as it was routed.
        success: Whether the command succeeded.
        execution_time_ms: Wall-clock time spent in the handler.
        user_id: Authenticated user, if any.
        parameters: Parameters passed to the handler (JSON-serializable).
        exit_code: Exit code reported in the execution result.
        error: Error message for failed executions.
        correlation_id: Correlation id of the conversation turn.

    Returns:
        Created ExecutionLog object.
    """
    log_id = str(uuid.uuid4())
    now = datetime.now(UTC)

    conn.execute(
        """
        INSERT INTO execution_logs
        (id, session_id, user_id, command_type, sub_action, command_echo, parameters,
         success, exit_code, error, execution_time_ms, correlation_id, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            log_id,
            session_id,
            user_id,
            command_type,
            sub_action,
            command_echo,
            json.dumps(parameters) if parameters is not None else None,
            success,
            exit_code,
            error,
            execution_time_ms,
            correlation_id,
            now,
        ],
    )

    return ExecutionLog(
        id=log_id,
        session_id=session_id,
        user_id=user_id,
        command_type=command_type,
        sub_action=sub_action,
        command_echo=command_echo,
        parameters=parameters,
        success=success,
        exit_code=exit_code,
        error=error,
        execution_time_ms=execution_time_ms,
        correlation_id=correlation_id,
        created_at=now,
    )


def get_execution_logs(
    conn: duckdb.DuckDBPyConnection,
    session_id: str | None = None,
    command_type: str | None = None,
    limit: int = 100,
) -> list[ExecutionLog]:
    """Query execution logs with optional filters, newest first."""
    query = (
        "SELECT id, session_id, user_id, command_type, sub_action, command_echo, parameters, "
        "success, exit_code, error, execution_time_ms, correlation_id, created_at "
        "FROM execution_logs WHERE 1=1"
    )
    params: list = []

    if session_id:
        query += " AND session_id = ?"
        params.append(session_id)

    if command_type:
        query += " AND command_type = ?"
        params.append(command_type)

    query += " ORDER BY created_at DESC LIMIT ?"
    params.append(limit)

    rows = conn.execute(query, params).fetchall()

    return [
        ExecutionLog(
            id=str(row[0]),
            session_id=row[1],
            user_id=row[2],
            command_type=row[3],
            sub_action=row[4],
            command_echo=row[5],
            parameters=json.loads(row[6]) if row[6] else None,
            success=row[7],
            exit_code=row[8],
            error=row[9],
            execution_time_ms=row[10],
            correlation_id=row[11],
            created_at=row[12],
        )
        for row in rows
    ]


class ExecutionAuditLog:
    """Async audit sink for the execution router.

    DuckDB calls are blocking, so writes run in a worker thread. A single
    connection is shared, guarded by a lock.
    """

    def __init__(self, conn: duckdb.DuckDBPyConnection) -> None:
        self._conn = conn
        self._lock = threading.Lock()

    def _write(self, **fields) -> ExecutionLog:
        with self._lock:
            return write_execution_log(self._conn, **fields)

    async def record(
        self,
        command: CandidateCommand,
        result: ExecutionResult,
        context: ConversationContext,
        correlation_id: str | None = None,
    ) -> ExecutionLog:
        return await asyncio.to_thread(
            self._write,
            session_id=context.session.session_id,
            user_id=context.session.user_id,
            command_type=command.command_type,
            sub_action=command.sub_action,
            command_echo=result.command_echo,
            parameters=dict(command.parameters),
            success=result.success,
            exit_code=result.metadata.exit_code,
            error=result.error,
            execution_time_ms=result.execution_time_ms,
            correlation_id=correlation_id,
        )

    def recent(self, session_id: str | None = None, limit: int = 100) -> list[ExecutionLog]:
        with self._lock:
            return get_execution_logs(self._conn, session_id=session_id, limit=limit)
