"""FastAPI backend exposing the conversation Turn API."""

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, Response

from threatguard.commands.conversation import ConversationOrchestrator
from threatguard.commands.router import ExecutionRouter
from threatguard.commands.session_context import InMemoryContextStore, RedisContextStore
from threatguard.db import init_db
from threatguard.db.execution_logs import ExecutionAuditLog
from threatguard.logging_utils import clear_correlation_id, set_correlation_id
from threatguard.metrics import get_metrics_collector, is_metrics_enabled
from threatguard.models import ConfirmRequest, ConversationResult, Message, TurnRequest
from threatguard.redis_client import get_redis_client
from threatguard.safety_config import get_safety_config

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if _orchestrator is not None:
        _orchestrator.close()


app = FastAPI(
    lifespan=lifespan,
    title="ThreatGuard Conversation API",
    version="1.0.0",
    description="Natural-language command pipeline for the ThreatGuard security CLI",
)

# Database connection (initialized lazily)
_db_conn = None
_audit_log: ExecutionAuditLog | None = None
_orchestrator: ConversationOrchestrator | None = None


def get_db():
    """Get or initialize database connection.

    Uses THREATGUARD_DB_PATH environment variable or defaults to data/threatguard.db.
    Tests set THREATGUARD_DB_PATH=:memory: in conftest.py for isolation.
    """
    global _db_conn
    if _db_conn is None:
        _db_conn = init_db()
    return _db_conn


def get_audit_log() -> ExecutionAuditLog:
    global _audit_log
    if _audit_log is None:
        _audit_log = ExecutionAuditLog(get_db())
    return _audit_log


def get_orchestrator() -> ConversationOrchestrator:
    """Get or initialize the conversation orchestrator.

    Uses Redis for session context when reachable, otherwise in-memory storage.
    """
    global _orchestrator
    if _orchestrator is None:
        config = get_safety_config()
        redis_client = get_redis_client()
        context_store = (
            RedisContextStore(redis_client) if redis_client is not None else InMemoryContextStore()
        )
        router = ExecutionRouter(config=config, audit_sink=get_audit_log())
        _orchestrator = ConversationOrchestrator(
            context_store=context_store, router=router, config=config
        )
    return _orchestrator


@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    """Tag each request with a correlation id, honoring X-Correlation-ID."""
    correlation_id = set_correlation_id(request.headers.get("X-Correlation-ID"))
    try:
        response = await call_next(request)
    finally:
        clear_correlation_id()
    response.headers["X-Correlation-ID"] = correlation_id
    return response


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.post("/v1/sessions/{session_id}/input", response_model=ConversationResult)
async def submit_input(session_id: str, request: TurnRequest) -> ConversationResult:
    """Process one line of free text for a session.

    Creates the session on first use. Risky commands come back with
    requires_confirmation set and a confirmation prompt instead of running.
    """
    return await get_orchestrator().process_input(session_id, request.text, request.user_id)


@app.post("/v1/sessions/{session_id}/confirm", response_model=ConversationResult)
async def confirm(session_id: str, request: ConfirmRequest) -> ConversationResult:
    """Answer the session's pending confirmation with yes or no."""
    return await get_orchestrator().confirm_command(session_id, request.confirmed)


@app.get("/v1/sessions/{session_id}/history", response_model=list[Message])
async def get_history(
    session_id: str,
    limit: int | None = Query(default=None, ge=1, le=500),
) -> list[Message]:
    """Return the session's messages, newest first."""
    return await get_orchestrator().get_history(session_id, limit)


@app.delete("/v1/sessions/{session_id}/history", status_code=204)
async def clear_history(session_id: str) -> Response:
    """Clear the session's history. The session itself is kept."""
    await get_orchestrator().clear_history(session_id)
    return Response(status_code=204)


@app.get("/v1/sessions/{session_id}/executions")
def get_executions(
    session_id: str,
    limit: int = Query(default=50, ge=1, le=500),
) -> list[dict[str, Any]]:
    """Return audited execution attempts for a session, newest first."""
    return [asdict(log) for log in get_audit_log().recent(session_id=session_id, limit=limit)]


@app.get("/v1/metrics")
def get_metrics() -> dict[str, Any]:
    """Return a metrics snapshot. Disabled unless THREATGUARD_ENABLE_METRICS is set."""
    if not is_metrics_enabled():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "not_found", "message": "Metrics are disabled"},
        )
    return get_metrics_collector().get_snapshot()


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTPExceptions and return Error schema."""
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.detail,
        )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "http_error",
            "message": str(exc.detail),
        },
    )
