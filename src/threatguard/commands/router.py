"""Execution router: dispatch a validated command to its domain handler."""

import asyncio
import logging
import time
from typing import Any, Protocol

from ..handlers import DomainHandler, default_handlers
from ..logging_utils import get_correlation_id, log_info, log_warning
from ..metrics import get_metrics_collector, is_metrics_enabled
from ..models import (
    CandidateCommand,
    ConversationContext,
    ExecutionMetadata,
    ExecutionResult,
    SafetyVerdict,
)
from ..safety_config import SafetyConfig, get_safety_config
from .rules import DEFAULT_RULE_SET, RuleSet

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1


class ExecutionAuditSink(Protocol):
    """Receives every execution attempt, allowed or not."""

    async def record(
        self,
        command: CandidateCommand,
        result: ExecutionResult,
        context: ConversationContext,
        correlation_id: str | None = None,
    ) -> Any: ...


class ExecutionRouter:
    """Route commands to handlers by command type.

    The router never raises: refused commands, handler errors, handler
    exceptions and handler timeouts all come back as failed results.
    """

    def __init__(
        self,
        handlers: dict[str, DomainHandler] | None = None,
        config: SafetyConfig | None = None,
        rule_set: RuleSet = DEFAULT_RULE_SET,
        audit_sink: ExecutionAuditSink | None = None,
    ) -> None:
        """Initialize the router.

        Args:
            handlers: Handler registry keyed by command type. Defaults to the
                built-in handlers.
            config: Safety configuration providing the allow-list, deny-list
                and handler deadline.
            rule_set: Rule set providing the blocked-pattern guard.
            audit_sink: Optional sink recording every execution attempt.
        """
        self.handlers = handlers if handlers is not None else default_handlers()
        self.config = config or get_safety_config()
        self.rule_set = rule_set
        self.audit_sink = audit_sink

    def is_allowed(self, command: CandidateCommand) -> bool:
        """Check the allow-list, the deny-list and the blocked-pattern guard."""
        if command.command_type in self.config.restricted_commands:
            return False
        if self.config.allowed_commands and command.command_type not in self.config.allowed_commands:
            return False
        # Checked independently of the safety verdict
        return not any(p.search(command.preview_text) for p in self.rule_set.blocked_patterns)

    async def execute(
        self,
        command: CandidateCommand,
        verdict: SafetyVerdict,
        context: ConversationContext,
    ) -> ExecutionResult:
        """Execute a command and wrap the outcome in an ExecutionResult."""
        start = time.perf_counter()

        if not self.is_allowed(command):
            log_warning(
                logger,
                "Refused disallowed command",
                command_type=command.command_type,
                preview=command.preview_text,
                safety_level=verdict.safety_level.value,
            )
            result = self._failure(
                command, f"Command '{command.command_type}' is not allowed", start
            )
            return await self._finish(command, result, context)

        handler = self.handlers.get(command.command_type)
        if handler is None:
            result = self._failure(
                command, f"No handler registered for '{command.command_type}'", start
            )
            return await self._finish(command, result, context)

        try:
            output = await asyncio.wait_for(
                handler.execute(command.sub_action, dict(command.parameters), context),
                timeout=self.config.collaborator_timeout_seconds,
            )
        except TimeoutError:
            log_warning(
                logger,
                "Handler timed out",
                command_type=command.command_type,
                timeout_seconds=self.config.collaborator_timeout_seconds,
            )
            result = self._failure(
                command,
                f"Command timed out after {self.config.collaborator_timeout_seconds:g}s",
                start,
            )
            return await self._finish(command, result, context)
        except Exception as e:
            logger.error(
                "Handler for %s raised: %s", command.command_type, str(e), exc_info=True
            )
            result = self._failure(command, str(e) or "Command execution failed", start)
            return await self._finish(command, result, context)

        success = output.error is None
        result = ExecutionResult(
            success=success,
            output=output.output,
            error=output.error,
            execution_time_ms=_elapsed_ms(start),
            command_echo=command.preview_text,
            metadata=ExecutionMetadata(
                exit_code=EXIT_SUCCESS if success else EXIT_FAILURE,
                warnings=list(output.warnings),
                suggestions=list(output.suggestions),
            ),
        )
        return await self._finish(command, result, context)

    def _failure(self, command: CandidateCommand, error: str, start: float) -> ExecutionResult:
        return ExecutionResult(
            success=False,
            output="",
            error=error,
            execution_time_ms=_elapsed_ms(start),
            command_echo=command.preview_text,
            metadata=ExecutionMetadata(exit_code=EXIT_FAILURE),
        )

    async def _finish(
        self,
        command: CandidateCommand,
        result: ExecutionResult,
        context: ConversationContext,
    ) -> ExecutionResult:
        log_info(
            logger,
            "Command executed",
            session_id=context.session.session_id,
            command=command.preview_text,
            success=result.success,
            execution_time_ms=round(result.execution_time_ms, 2),
        )

        if is_metrics_enabled():
            get_metrics_collector().record_execution(command.command_type, result.success)

        if self.audit_sink is not None:
            try:
                await self.audit_sink.record(
                    command, result, context, correlation_id=get_correlation_id()
                )
            except Exception as e:
                log_warning(
                    logger,
                    "Failed to write execution audit log",
                    command=command.preview_text,
                    error=str(e),
                )
        return result


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000
