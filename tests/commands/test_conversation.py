"""Tests for the conversation orchestrator."""

import asyncio
import gc

import pytest

from threatguard.commands import responses
from threatguard.commands.conversation import ConversationOrchestrator
from threatguard.commands.session_context import InMemoryContextStore
from threatguard.logging_utils import clear_correlation_id, set_correlation_id
from threatguard.metrics import get_metrics_collector
from threatguard.models import IntentType, MessageType, SafetyLevel, SuggestionType
from threatguard.safety_config import SafetyConfig


@pytest.fixture
def make_orchestrator():
    """Factory for orchestrators; pending timers are cancelled on teardown."""
    created = []

    def _make(config: SafetyConfig | None = None, **kwargs) -> ConversationOrchestrator:
        orchestrator = ConversationOrchestrator(
            context_store=kwargs.pop("context_store", InMemoryContextStore()),
            config=config or SafetyConfig(),
            **kwargs,
        )
        created.append(orchestrator)
        return orchestrator

    yield _make
    for orchestrator in created:
        orchestrator.close()


@pytest.fixture
def orchestrator(make_orchestrator) -> ConversationOrchestrator:
    return make_orchestrator()


class _FailingAdapter:
    async def parse(self, text, context=None):
        raise RuntimeError("classifier offline")


class _SlowAdapter:
    async def parse(self, text, context=None):
        await asyncio.sleep(1)


class _FlakyStore(InMemoryContextStore):
    """Fails the first assistant response it is asked to store."""

    def __init__(self) -> None:
        super().__init__()
        self.failed = False

    async def add_message(self, session_id, message):
        if message.type == MessageType.ASSISTANT_RESPONSE and not self.failed:
            self.failed = True
            raise RuntimeError("store write failed")
        return await super().add_message(session_id, message)


class TestScanConfirmation:
    """Test the confirm and cancel paths for a risky scan."""

    @pytest.mark.asyncio
    async def test_deep_scan_requires_confirmation(self, orchestrator: ConversationOrchestrator) -> None:
        """Test that a deep scan of a /8 waits for confirmation."""
        result = await orchestrator.process_input("s1", "scan 10.0.0.0/8 deep")

        assert result.command.preview_text == "threat scan --targets 10.0.0.0/8 --scan-type deep"
        assert result.command.base_safety_level == SafetyLevel.MEDIUM
        assert result.verdict.safety_level == SafetyLevel.HIGH
        assert result.requires_confirmation is True
        assert result.confirmation_prompt.startswith("Confirmation Required")
        assert result.execution is None
        assert len(result.suggestions) <= responses.MAX_SUGGESTIONS

        context = await orchestrator.context_store.get_context("s1")
        assert context.session.pending_confirmation is not None
        assert context.session.pending_confirmation.command == result.command

        history = await orchestrator.get_history("s1")
        assert history[0].type == MessageType.CONFIRMATION_REQUEST
        assert history[1].type == MessageType.ASSISTANT_RESPONSE

    @pytest.mark.asyncio
    async def test_cancel(self, orchestrator: ConversationOrchestrator) -> None:
        """Test that declining cancels and clears the pending state."""
        await orchestrator.process_input("s1", "scan 10.0.0.0/8 deep")

        result = await orchestrator.confirm_command("s1", False)

        assert result.response.startswith("Command execution cancelled")
        assert result.execution is None
        assert not orchestrator.confirmations.has_pending("s1")
        context = await orchestrator.context_store.get_context("s1")
        assert context.session.pending_confirmation is None

        history = await orchestrator.get_history("s1")
        assert history[0].type == MessageType.SYSTEM_MESSAGE
        assert history[0].metadata["reason"] == "cancelled"

    @pytest.mark.asyncio
    async def test_confirm_executes(self, orchestrator: ConversationOrchestrator) -> None:
        """Test that accepting re-validates and executes the stored command."""
        await orchestrator.process_input("s1", "scan 10.0.0.0/8 deep")

        result = await orchestrator.confirm_command("s1", True)

        assert result.response.startswith("Command executed successfully!")
        assert result.execution.success is True
        assert result.execution.command_echo == result.command.preview_text
        assert "Threat scan (deep) initiated on 10.0.0.0/8" in result.execution.output
        assert result.verdict is not None

        context = await orchestrator.context_store.get_context("s1")
        assert context.session.pending_confirmation is None
        history = await orchestrator.get_history("s1")
        assert history[0].type == MessageType.COMMAND_EXECUTION

    @pytest.mark.asyncio
    async def test_free_text_answers(self, orchestrator: ConversationOrchestrator) -> None:
        """Test that a bare yes or no answers the pending confirmation."""
        await orchestrator.process_input("s1", "scan 10.0.0.0/8 deep")
        result = await orchestrator.process_input("s1", "Yes")
        assert result.execution is not None
        assert result.execution.success is True

        await orchestrator.process_input("s1", "scan 10.0.0.0/8 deep")
        result = await orchestrator.process_input("s1", "no")
        assert result.response == responses.CANCELLED_RESPONSE

    @pytest.mark.asyncio
    async def test_free_text_answer_is_a_full_turn(
        self, orchestrator: ConversationOrchestrator
    ) -> None:
        """Test that a yes/no turn is counted and answered like any other turn."""
        await orchestrator.process_input("s1", "scan 10.0.0.0/8 deep")
        before = await orchestrator.context_store.get_context("s1")

        await orchestrator.process_input("s1", "no")

        after = await orchestrator.context_store.get_context("s1")
        assert after.total_interactions == before.total_interactions + 1
        assert after.recent_intents == before.recent_intents
        assert after.session.pending_confirmation is None

        history = await orchestrator.get_history("s1")
        assert [m.type for m in history[:3]] == [
            MessageType.ASSISTANT_RESPONSE,
            MessageType.SYSTEM_MESSAGE,
            MessageType.USER_INPUT,
        ]
        assert history[0].content == responses.CANCELLED_RESPONSE
        assert history[0].metadata["confirmed"] is False

    @pytest.mark.asyncio
    async def test_revalidation_matches_prompt(self, orchestrator: ConversationOrchestrator) -> None:
        """Test that re-validation does not count the pending command against itself."""
        await orchestrator.process_input("s1", "check system status")
        await orchestrator.process_input("s1", "scan 10.0.0.0/8 deep")
        await orchestrator.process_input("s1", "no")

        shown = await orchestrator.process_input("s1", "network scan 10.0.0.0/24")
        assert shown.requires_confirmation is True
        assert "Command pattern suggests potential reconnaissance activity" in shown.verdict.risks

        result = await orchestrator.confirm_command("s1", True)

        assert result.execution is not None
        assert result.verdict.risks == shown.verdict.risks
        assert result.verdict.safety_level == shown.verdict.safety_level

    @pytest.mark.asyncio
    async def test_confirm_without_pending(self, orchestrator: ConversationOrchestrator) -> None:
        """Test answering when nothing is pending."""
        await orchestrator.process_input("s1", "help")
        result = await orchestrator.confirm_command("s1", True)
        assert result.response == responses.NO_PENDING_RESPONSE
        assert result.execution is None

    @pytest.mark.asyncio
    async def test_replacement(self, orchestrator: ConversationOrchestrator) -> None:
        """Test that a second risky command replaces the first."""
        await orchestrator.process_input("s1", "scan 10.0.0.0/8 deep")
        second = await orchestrator.process_input("s1", "scan 192.168.0.0/16 deep")

        history = await orchestrator.get_history("s1")
        replaced = [m for m in history if m.metadata.get("reason") == "replaced"]
        assert len(replaced) == 1
        assert "10.0.0.0/8" in replaced[0].content

        result = await orchestrator.confirm_command("s1", True)
        assert result.command == second.command
        assert (await orchestrator.confirm_command("s1", True)).response == (
            responses.NO_PENDING_RESPONSE
        )


class TestConfirmationTimeout:
    """Test expiry of unanswered confirmations."""

    @pytest.mark.asyncio
    async def test_expired_confirmation_cannot_execute(self, make_orchestrator) -> None:
        """Test that after expiry a late yes finds nothing to run."""
        orchestrator = make_orchestrator(SafetyConfig(confirmation_timeout_seconds=0.05))
        await orchestrator.process_input("s1", "scan 10.0.0.0/8 deep")

        await asyncio.sleep(0.2)

        result = await orchestrator.confirm_command("s1", True)
        assert result.response == responses.NO_PENDING_RESPONSE
        assert result.execution is None

        context = await orchestrator.context_store.get_context("s1")
        assert context.session.pending_confirmation is None
        history = await orchestrator.get_history("s1")
        expired = [m for m in history if m.metadata.get("reason") == "expired"]
        assert len(expired) == 1
        assert expired[0].content == responses.EXPIRED_NOTICE


class TestTurns:
    """Test ordinary conversation turns."""

    @pytest.mark.asyncio
    async def test_help(self, orchestrator: ConversationOrchestrator) -> None:
        """Test that help never synthesizes a command."""
        result = await orchestrator.process_input("s1", "help")

        assert result.command is None
        assert result.requires_confirmation is False
        assert result.confirmation_prompt is None
        assert any(s.type == SuggestionType.HELP for s in result.suggestions)
        assert "Threat Detection:" in result.response

    @pytest.mark.asyncio
    async def test_new_session_gets_welcome(self, orchestrator: ConversationOrchestrator) -> None:
        """Test session creation on first input."""
        await orchestrator.process_input("s1", "help", user_id="alice")

        context = await orchestrator.context_store.get_context("s1")
        assert context.session.user_id == "alice"
        assert context.total_interactions == 1

        history = await orchestrator.get_history("s1")
        assert [m.type for m in history] == [
            MessageType.ASSISTANT_RESPONSE,
            MessageType.USER_INPUT,
            MessageType.SYSTEM_MESSAGE,
        ]
        assert history[-1].content == responses.WELCOME_MESSAGE

    @pytest.mark.asyncio
    async def test_safe_command_auto_executes(self, orchestrator: ConversationOrchestrator) -> None:
        """Test that safe commands run immediately."""
        result = await orchestrator.process_input("s1", "check system status")

        assert result.command.preview_text == "status system --health-check --skip-auth"
        assert result.requires_confirmation is False
        assert result.execution.success is True
        assert "Command executed successfully!" in result.response

        history = await orchestrator.get_history("s1")
        assert [m.type for m in history[:3]] == [
            MessageType.ASSISTANT_RESPONSE,
            MessageType.COMMAND_EXECUTION,
            MessageType.USER_INPUT,
        ]

    @pytest.mark.asyncio
    async def test_auto_execute_disabled(self, make_orchestrator) -> None:
        """Test that commands are only synthesized when auto-execution is off."""
        orchestrator = make_orchestrator(SafetyConfig(auto_execute=False))
        result = await orchestrator.process_input("s1", "check system status")

        assert result.command is not None
        assert result.execution is None

    @pytest.mark.asyncio
    async def test_low_confidence_asks_for_clarification(
        self, orchestrator: ConversationOrchestrator
    ) -> None:
        """Test that low-confidence intents short-circuit to a clarification."""
        result = await orchestrator.process_input("s1", "threats")

        assert result.command is None
        assert result.response.startswith("I think you want to threat list")
        assert result.suggestions[0].type == SuggestionType.HELP

    @pytest.mark.asyncio
    async def test_repeat_suggestion(self, orchestrator: ConversationOrchestrator) -> None:
        """Test the suggestion derived from the most recent command."""
        await orchestrator.process_input("s1", "check system status")
        result = await orchestrator.process_input("s1", "show system health")

        assert len(result.suggestions) == 3
        assert result.suggestions[-1].content == (
            "run `status system --health-check --skip-auth` again"
        )

    @pytest.mark.asyncio
    async def test_recent_buffers_are_bounded(self, orchestrator: ConversationOrchestrator) -> None:
        """Test the ring buffer limits on recent intents, entities and commands."""
        for i in range(11):
            await orchestrator.process_input("s1", f"lookup the reputation of host{i}.example.com")

        context = await orchestrator.context_store.get_context("s1")
        assert len(context.recent_intents) == 5
        assert len(context.recent_entities) == 10
        assert len(context.recent_commands) == 5
        assert context.total_interactions == 11
        assert context.recent_entities[0].value == "host10.example.com"
        assert context.recent_intents == [IntentType.INTEL_QUERY] * 5

    @pytest.mark.asyncio
    async def test_session_locks_are_released(self, orchestrator: ConversationOrchestrator) -> None:
        """Test that idle sessions do not keep their turn locks alive."""
        for i in range(50):
            await orchestrator.process_input(f"session-{i}", "help")

        gc.collect()
        assert len(orchestrator._locks) == 0

    @pytest.mark.asyncio
    async def test_sessions_are_isolated(self, orchestrator: ConversationOrchestrator) -> None:
        """Test concurrent turns on separate sessions."""
        await asyncio.gather(
            orchestrator.process_input("s1", "scan 10.0.0.0/8 deep"),
            orchestrator.process_input("s2", "help"),
        )

        assert orchestrator.confirmations.has_pending("s1")
        assert not orchestrator.confirmations.has_pending("s2")
        other = await orchestrator.context_store.get_context("s2")
        assert other.recent_commands == []

    @pytest.mark.asyncio
    async def test_correlation_id(self, orchestrator: ConversationOrchestrator) -> None:
        """Test that the caller's correlation id is carried through."""
        set_correlation_id("req-123")
        try:
            result = await orchestrator.process_input("s1", "help")
        finally:
            clear_correlation_id()

        assert result.correlation_id == "req-123"
        history = await orchestrator.get_history("s1")
        assert history[0].metadata["correlation_id"] == "req-123"


class TestHistory:
    """Test history retrieval and clearing."""

    @pytest.mark.asyncio
    async def test_limit(self, orchestrator: ConversationOrchestrator) -> None:
        """Test that history honors the limit, newest first."""
        await orchestrator.process_input("s1", "help")
        history = await orchestrator.get_history("s1", limit=1)
        assert len(history) == 1
        assert history[0].type == MessageType.ASSISTANT_RESPONSE

    @pytest.mark.asyncio
    async def test_clear_keeps_session(self, orchestrator: ConversationOrchestrator) -> None:
        """Test that clearing drops messages and recent activity only."""
        await orchestrator.process_input("s1", "check system status")
        await orchestrator.clear_history("s1")

        assert await orchestrator.get_history("s1") == []
        context = await orchestrator.context_store.get_context("s1")
        assert context is not None
        assert context.recent_intents == []
        assert context.recent_commands == []
        assert context.total_interactions == 1


class TestFailures:
    """Test that collaborator failures still produce a response."""

    @pytest.mark.asyncio
    async def test_adapter_error(self, make_orchestrator) -> None:
        """Test an intent adapter that raises."""
        orchestrator = make_orchestrator(intent_adapter=_FailingAdapter())
        result = await orchestrator.process_input("s1", "scan everything")

        assert result.response == responses.APOLOGY_RESPONSE
        assert [s.type for s in result.suggestions] == [SuggestionType.HELP]

        history = await orchestrator.get_history("s1")
        assert history[0].type == MessageType.ERROR_MESSAGE
        assert "classifier offline" in history[0].content

    @pytest.mark.asyncio
    async def test_adapter_timeout(self, make_orchestrator) -> None:
        """Test an intent adapter that misses the deadline."""
        orchestrator = make_orchestrator(
            SafetyConfig(collaborator_timeout_seconds=0.05), intent_adapter=_SlowAdapter()
        )
        result = await orchestrator.process_input("s1", "scan everything")
        assert result.response == responses.APOLOGY_RESPONSE

    @pytest.mark.asyncio
    async def test_failed_turn_leaves_nothing_to_confirm(self, make_orchestrator) -> None:
        """Test that a prompt lost to a store failure can never be confirmed."""
        orchestrator = make_orchestrator(context_store=_FlakyStore())

        result = await orchestrator.process_input("s1", "scan 10.0.0.0/8 deep")

        assert result.response == responses.APOLOGY_RESPONSE
        assert result.requires_confirmation is False
        assert not orchestrator.confirmations.has_pending("s1")
        context = await orchestrator.context_store.get_context("s1")
        assert context.session.pending_confirmation is None

        late = await orchestrator.confirm_command("s1", True)
        assert late.response == responses.NO_PENDING_RESPONSE
        assert late.execution is None

        yes = await orchestrator.process_input("s1", "yes")
        assert yes.execution is None


class TestMetrics:
    """Test metrics recording from the orchestrator."""

    @pytest.mark.asyncio
    async def test_turn_and_confirmation_metrics(
        self, orchestrator: ConversationOrchestrator, monkeypatch
    ) -> None:
        """Test that turns and confirmation outcomes are counted when enabled."""
        monkeypatch.setenv("THREATGUARD_ENABLE_METRICS", "true")
        collector = get_metrics_collector()
        collector.reset()

        await orchestrator.process_input("s1", "scan 10.0.0.0/8 deep")
        await orchestrator.confirm_command("s1", False)

        snapshot = collector.get_snapshot()
        assert snapshot["intent_counts"]["threat_scan"] == 1
        assert snapshot["status_counts"]["awaiting_confirmation"] == 1
        assert snapshot["confirm_outcomes"]["cancelled"] == 1
        collector.reset()
