"""DuckDB persistence for the execution audit log."""

from .connection import get_connection, get_db_path, init_db
from .execution_logs import ExecutionAuditLog, ExecutionLog, get_execution_logs, write_execution_log
from .migrations import run_migrations

__all__ = [
    "ExecutionAuditLog",
    "ExecutionLog",
    "get_connection",
    "get_db_path",
    "get_execution_logs",
    "init_db",
    "run_migrations",
    "write_execution_log",
]
