"""Conversation orchestrator: drive one turn from free text to a response.

Per-turn states::

    IDLE -> RECEIVED -> PARSED -> SYNTHESIZED -> VALIDATED
         -> (AWAITING_CONFIRMATION | EXECUTED) -> RESPONDED -> IDLE

Turns for one session are serialized by a per-session asyncio.Lock; sessions
never share state. Every collaborator call is awaited with a deadline, and any
collaborator failure still ends the turn with a response.
"""

import asyncio
import logging
import re
import time
import uuid
import weakref
from collections.abc import Awaitable
from typing import Any, TypeVar

from ..logging_utils import get_correlation_id, log_error, log_info, log_warning, set_correlation_id
from ..metrics import get_metrics_collector, is_metrics_enabled
from ..models import (
    CandidateCommand,
    ConfidenceLevel,
    ConversationContext,
    ConversationResult,
    ExecutionResult,
    Intent,
    IntentType,
    Message,
    MessageType,
    ParseResult,
    PendingConfirmation,
    SafetyVerdict,
)
from ..safety_config import SafetyConfig, get_safety_config
from . import responses
from .intent_parser import IntentAdapter, RuleBasedIntentParser
from .pending_actions import ConfirmationController, ConfirmationOutcome
from .router import ExecutionRouter
from .rules import DEFAULT_RULE_SET, RuleSet, normalize_text
from .safety import SafetyValidator
from .session_context import ContextStore, InMemoryContextStore
from .synthesizer import CommandSynthesizer

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RECENT_INTENTS = 5
MAX_RECENT_ENTITIES = 10
MAX_RECENT_COMMANDS = 5
DEFAULT_HISTORY_LIMIT = 100

_NON_ACTIONABLE_INTENTS = frozenset(
    {
        IntentType.HELP_GENERAL,
        IntentType.CONVERSATION_CONTINUE,
        IntentType.CONVERSATION_CLARIFY,
        IntentType.CONVERSATION_UNKNOWN,
    }
)

_AFFIRMATIVE = re.compile(r"^(?:yes|y|yeah|yep|sure|ok|okay|confirm|proceed|go ahead|do it)$")
_NEGATIVE = re.compile(r"^(?:no|n|nope|cancel|abort|stop)$")


def _new_message(message_type: MessageType, content: str, **metadata: Any) -> Message:
    return Message(id=str(uuid.uuid4()), type=message_type, content=content, metadata=metadata)


class ConversationOrchestrator:
    """Run conversation turns and confirmations for many sessions."""

    def __init__(
        self,
        intent_adapter: IntentAdapter | None = None,
        context_store: ContextStore | None = None,
        router: ExecutionRouter | None = None,
        config: SafetyConfig | None = None,
        rule_set: RuleSet = DEFAULT_RULE_SET,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            intent_adapter: Classifier for free text. Defaults to the rule-based parser.
            context_store: Session storage. Defaults to an in-memory store.
            router: Execution router. Defaults to one with the built-in handlers.
            config: Safety configuration shared by every stage.
            rule_set: Immutable rule tables shared by the synthesizer and validator.
        """
        self.config = config or get_safety_config()
        self.rule_set = rule_set
        self.intent_adapter = intent_adapter or RuleBasedIntentParser()
        self.context_store = context_store or InMemoryContextStore()
        self.synthesizer = CommandSynthesizer(rule_set=rule_set, config=self.config)
        self.validator = SafetyValidator(rule_set=rule_set, config=self.config)
        self.router = router or ExecutionRouter(config=self.config, rule_set=rule_set)
        self.confirmations = ConfirmationController(
            timeout_seconds=self.config.confirmation_timeout_seconds,
            on_expire=self._on_confirmation_expired,
        )
        # Entries vanish once no turn holds or waits on the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    async def _call(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(
            awaitable, timeout=self.config.collaborator_timeout_seconds
        )

    async def process_input(
        self, session_id: str, text: str, user_id: str | None = None
    ) -> ConversationResult:
        """Process one line of user input and return the turn result."""
        correlation_id = get_correlation_id() or set_correlation_id()
        start = time.perf_counter()
        intent_label = "unknown"
        status = "error"

        async with self._lock_for(session_id):
            try:
                result, intent_label, status = await self._process(
                    session_id, text, user_id, correlation_id
                )
            except Exception as e:
                result = await self._failure(session_id, e, correlation_id)

        if is_metrics_enabled():
            latency_ms = (time.perf_counter() - start) * 1000
            get_metrics_collector().record_turn(intent_label, status, latency_ms)
        return result

    async def confirm_command(self, session_id: str, confirmed: bool) -> ConversationResult:
        """Answer the session's pending confirmation."""
        correlation_id = get_correlation_id() or set_correlation_id()
        async with self._lock_for(session_id):
            try:
                return await self._confirm(session_id, confirmed, correlation_id)
            except Exception as e:
                return await self._failure(session_id, e, correlation_id)

    async def get_history(self, session_id: str, limit: int | None = None) -> list[Message]:
        """Return the session's messages, newest first."""
        return await self._call(
            self.context_store.get_messages(session_id, limit or DEFAULT_HISTORY_LIMIT)
        )

    async def clear_history(self, session_id: str) -> None:
        """Clear messages and recent-activity buffers, keeping the session."""
        async with self._lock_for(session_id):
            log_info(logger, "Clearing conversation history", session_id=session_id)
            await self._call(self.context_store.clear_history(session_id))

    def close(self) -> None:
        """Cancel every pending confirmation timer."""
        self.confirmations.close()

    async def _ensure_session(self, session_id: str, user_id: str | None) -> ConversationContext:
        context = await self._call(self.context_store.get_context(session_id))
        if context is None:
            await self._call(self.context_store.create_session(session_id, user_id))
            await self._call(
                self.context_store.add_message(
                    session_id, _new_message(MessageType.SYSTEM_MESSAGE, responses.WELCOME_MESSAGE)
                )
            )
            log_info(logger, "Created conversation session", session_id=session_id, user_id=user_id)
            context = await self._call(self.context_store.get_context(session_id))
        elif user_id and context.session.user_id is None:
            session = context.session.model_copy(update={"user_id": user_id})
            context = await self._call(
                self.context_store.update_context(session_id, session=session)
            )

        if context is None:
            raise RuntimeError(f"Context store lost session {session_id}")
        return context

    def is_actionable(self, parse_result: ParseResult) -> bool:
        """Whether a parsed intent should be turned into a command."""
        intent = parse_result.intent
        if intent.type in _NON_ACTIONABLE_INTENTS or intent.confidence.is_low:
            return False
        return self.rule_set.rule_for(intent.type) is not None

    async def _process(
        self,
        session_id: str,
        text: str,
        user_id: str | None,
        correlation_id: str,
    ) -> tuple[ConversationResult, str, str]:
        context = await self._ensure_session(session_id, user_id)
        await self._call(
            self.context_store.add_message(
                session_id,
                _new_message(MessageType.USER_INPUT, text, correlation_id=correlation_id),
            )
        )

        # A bare yes/no while a command is pending answers the confirmation
        if self.confirmations.has_pending(session_id):
            answer = normalize_text(text)
            if _AFFIRMATIVE.match(answer) or _NEGATIVE.match(answer):
                confirmed = bool(_AFFIRMATIVE.match(answer))
                result = await self._confirm(session_id, confirmed, correlation_id)
                # An answer is not a new intent; recent-activity buffers are left alone
                session = context.session.model_copy(
                    update={"pending_confirmation": self.confirmations.get(session_id)}
                )
                await self._call(
                    self.context_store.update_context(
                        session_id,
                        session=session,
                        total_interactions=context.total_interactions + 1,
                    )
                )
                await self._add_assistant_message(
                    session_id,
                    result.response,
                    intent=IntentType.CONVERSATION_CONTINUE.value,
                    command=result.command.preview_text if result.command else None,
                    confirmed=confirmed,
                    correlation_id=correlation_id,
                )
                return result, IntentType.CONVERSATION_CONTINUE.value, "confirmation"

        parse_result = await self._call(self.intent_adapter.parse(text, context))
        log_info(
            logger,
            "Parsed input",
            session_id=session_id,
            intent=parse_result.intent.type.value,
            confidence=parse_result.intent.confidence.value,
            entities=len(parse_result.entities),
        )

        command: CandidateCommand | None = None
        verdict: SafetyVerdict | None = None
        if self.is_actionable(parse_result):
            command = self.synthesizer.synthesize(
                parse_result.intent, parse_result.entities, text, context
            )
            if command is not None:
                verdict = self.validator.validate(command, context)

        response = responses.generate_response(parse_result, command, context)
        suggestions = responses.generate_suggestions(parse_result, context)

        status = "responded"
        confirmation_prompt = None
        execution: ExecutionResult | None = None

        armed: PendingConfirmation | None = None
        try:
            if command is not None and verdict is not None and verdict.requires_confirmation:
                status = "awaiting_confirmation"
                confirmation_prompt = responses.render_confirmation_prompt(command, verdict)
                armed, replaced = self.confirmations.arm(session_id, command, verdict)
                if replaced is not None:
                    self._record_confirmation(ConfirmationOutcome.REPLACED)
                    await self._call(
                        self.context_store.add_message(
                            session_id,
                            _new_message(
                                MessageType.SYSTEM_MESSAGE,
                                responses.replaced_notice(replaced.command),
                                reason=ConfirmationOutcome.REPLACED.value,
                            ),
                        )
                    )
            elif command is not None and verdict is not None and self.config.auto_execute:
                status = "executed"
                execution = await self.router.execute(command, verdict, context)
                response = f"{response}\n\n{responses.execution_response(execution)}"
                await self._record_execution(session_id, command, execution)
            elif command is not None:
                status = "synthesized"

            await self._update_context(session_id, context, parse_result, command)

            await self._add_assistant_message(
                session_id,
                response,
                intent=parse_result.intent.type.value,
                command=command.preview_text if command else None,
                safety_level=verdict.safety_level.value if verdict else None,
                suggestions=len(suggestions),
                correlation_id=correlation_id,
            )
            if confirmation_prompt is not None:
                await self._call(
                    self.context_store.add_message(
                        session_id,
                        _new_message(
                            MessageType.CONFIRMATION_REQUEST,
                            confirmation_prompt,
                            command=command.preview_text if command else None,
                        ),
                    )
                )
        except Exception:
            # A prompt the user never received must not stay answerable
            if armed is not None:
                await self._disarm(session_id, armed)
            raise

        log_info(
            logger,
            "Conversation turn completed",
            session_id=session_id,
            status=status,
            has_command=command is not None,
            requires_confirmation=confirmation_prompt is not None,
        )

        result = ConversationResult(
            response=response,
            command=command,
            verdict=verdict,
            suggestions=suggestions,
            requires_confirmation=confirmation_prompt is not None,
            confirmation_prompt=confirmation_prompt,
            execution=execution,
            correlation_id=correlation_id,
        )
        return result, parse_result.intent.type.value, status

    async def _update_context(
        self,
        session_id: str,
        context: ConversationContext,
        parse_result: ParseResult,
        command: CandidateCommand | None,
    ) -> None:
        session = context.session.model_copy(
            update={
                "current_topic": parse_result.intent.type.value,
                "active_command_type": command.command_type if command else None,
                "pending_confirmation": self.confirmations.get(session_id),
            }
        )
        changes: dict[str, Any] = {
            "session": session,
            "recent_intents": [parse_result.intent.type, *context.recent_intents][
                :MAX_RECENT_INTENTS
            ],
            "total_interactions": context.total_interactions + 1,
        }
        if parse_result.entities:
            changes["recent_entities"] = [*parse_result.entities, *context.recent_entities][
                :MAX_RECENT_ENTITIES
            ]
        if command is not None:
            changes["recent_commands"] = [command.preview_text, *context.recent_commands][
                :MAX_RECENT_COMMANDS
            ]
        await self._call(self.context_store.update_context(session_id, **changes))

    async def _confirm(
        self, session_id: str, confirmed: bool, correlation_id: str
    ) -> ConversationResult:
        context = await self._call(self.context_store.get_context(session_id))
        if confirmed:
            pending = self.confirmations.take(session_id)
        else:
            pending = self.confirmations.cancel(session_id)

        if pending is None or context is None:
            return ConversationResult(
                response=responses.NO_PENDING_RESPONSE, correlation_id=correlation_id
            )

        try:
            if not confirmed:
                self._record_confirmation(ConfirmationOutcome.CANCELLED)
                await self._call(
                    self.context_store.add_message(
                        session_id,
                        _new_message(
                            MessageType.SYSTEM_MESSAGE,
                            responses.CANCELLED_NOTICE,
                            reason=ConfirmationOutcome.CANCELLED.value,
                            command=pending.command.preview_text,
                        ),
                    )
                )
                return ConversationResult(
                    response=responses.CANCELLED_RESPONSE,
                    suggestions=responses.generate_suggestions(
                        _synthetic_parse(IntentType.HELP_GENERAL), context
                    ),
                    correlation_id=correlation_id,
                )

            self._record_confirmation(ConfirmationOutcome.CONFIRMED)
            log_info(
                logger,
                "Executing confirmed command",
                session_id=session_id,
                command=pending.command.preview_text,
            )
            # The context may have changed since the prompt was shown
            verdict = self.validator.validate(
                pending.command, _without_command(context, pending.command)
            )
            execution = await self.router.execute(pending.command, verdict, context)
            await self._record_execution(session_id, pending.command, execution)
            return ConversationResult(
                response=responses.execution_response(execution),
                command=pending.command,
                verdict=verdict,
                suggestions=responses.generate_suggestions(
                    _synthetic_parse(IntentType.CONVERSATION_CONTINUE), context
                ),
                execution=execution,
                correlation_id=correlation_id,
            )
        finally:
            await self._clear_pending(session_id, pending)

    async def _clear_pending(self, session_id: str, pending: PendingConfirmation) -> None:
        context = await self._call(self.context_store.get_context(session_id))
        if context is None or context.session.pending_confirmation is None:
            return
        stored = context.session.pending_confirmation
        if stored.created_at != pending.created_at:
            return
        session = context.session.model_copy(update={"pending_confirmation": None})
        await self._call(self.context_store.update_context(session_id, session=session))

    async def _disarm(self, session_id: str, pending: PendingConfirmation) -> None:
        if not self.confirmations.discard(session_id, pending):
            return
        try:
            await self._clear_pending(session_id, pending)
        except Exception as e:
            log_warning(
                logger,
                "Could not clear persisted pending confirmation",
                session_id=session_id,
                error=str(e) or type(e).__name__,
            )

    async def _add_assistant_message(
        self, session_id: str, response: str, **metadata: Any
    ) -> None:
        await self._call(
            self.context_store.add_message(
                session_id, _new_message(MessageType.ASSISTANT_RESPONSE, response, **metadata)
            )
        )

    async def _on_confirmation_expired(self, session_id: str, pending: PendingConfirmation) -> None:
        async with self._lock_for(session_id):
            try:
                self._record_confirmation(ConfirmationOutcome.EXPIRED)
                await self._clear_pending(session_id, pending)
                await self._call(
                    self.context_store.add_message(
                        session_id,
                        _new_message(
                            MessageType.SYSTEM_MESSAGE,
                            responses.EXPIRED_NOTICE,
                            reason=ConfirmationOutcome.EXPIRED.value,
                            command=pending.command.preview_text,
                        ),
                    )
                )
            except Exception as e:
                log_error(
                    logger,
                    "Failed to record expired confirmation",
                    session_id=session_id,
                    error=str(e) or type(e).__name__,
                )

    async def _record_execution(
        self, session_id: str, command: CandidateCommand, execution: ExecutionResult
    ) -> None:
        await self._call(
            self.context_store.add_message(
                session_id,
                _new_message(
                    MessageType.COMMAND_EXECUTION,
                    f"Executed: {command.preview_text}",
                    success=execution.success,
                    exit_code=execution.metadata.exit_code,
                    execution_time_ms=execution.execution_time_ms,
                ),
            )
        )

    def _record_confirmation(self, outcome: ConfirmationOutcome) -> None:
        if is_metrics_enabled():
            get_metrics_collector().record_confirmation(outcome.value)

    async def _failure(
        self, session_id: str, error: Exception, correlation_id: str
    ) -> ConversationResult:
        detail = str(error) or type(error).__name__
        log_error(
            logger,
            "Conversation processing failed",
            session_id=session_id,
            error=detail,
        )
        try:
            await self._call(
                self.context_store.add_message(
                    session_id,
                    _new_message(
                        MessageType.ERROR_MESSAGE,
                        f"I encountered an error processing your request: {detail}",
                        correlation_id=correlation_id,
                        error=detail,
                    ),
                )
            )
        except Exception as e:
            log_warning(
                logger,
                "Could not record error message",
                session_id=session_id,
                error=str(e) or type(e).__name__,
            )
        return ConversationResult(
            response=responses.APOLOGY_RESPONSE,
            suggestions=[responses.help_suggestion()],
            correlation_id=correlation_id,
        )


def _synthetic_parse(intent_type: IntentType) -> ParseResult:
    return ParseResult(
        intent=Intent(type=intent_type, confidence=ConfidenceLevel.HIGH), original_text=""
    )


def _without_command(
    context: ConversationContext, command: CandidateCommand
) -> ConversationContext:
    """Drop the newest entry a command left in the recent-activity buffers.

    Re-validating a pending command must not count the command against itself.
    """
    recent_commands = list(context.recent_commands)
    if command.preview_text in recent_commands:
        recent_commands.remove(command.preview_text)
    recent_intents = list(context.recent_intents)
    if command.intent in recent_intents:
        recent_intents.remove(command.intent)
    return context.model_copy(
        update={"recent_commands": recent_commands, "recent_intents": recent_intents}
    )
