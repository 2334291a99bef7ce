"""Pydantic models for the conversational command pipeline."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class IntentType(str, Enum):
    """Classified purpose of a user utterance."""

    AUTH_LOGIN = "auth_login"
    AUTH_LOGOUT = "auth_logout"
    AUTH_STATUS = "auth_status"
    THREAT_SCAN = "threat_scan"
    THREAT_LIST = "threat_list"
    THREAT_WATCH = "threat_watch"
    THREAT_DETAILS = "threat_details"
    BEHAVIOR_ANALYZE = "behavior_analyze"
    BEHAVIOR_PATTERNS = "behavior_patterns"
    BEHAVIOR_BASELINE = "behavior_baseline"
    NETWORK_SCAN = "network_scan"
    NETWORK_MONITOR = "network_monitor"
    NETWORK_STATUS = "network_status"
    INTEL_QUERY = "intel_query"
    INTEL_FEEDS = "intel_feeds"
    INTEL_IOC_LOOKUP = "intel_ioc_lookup"
    CONFIG_SET = "config_set"
    CONFIG_GET = "config_get"
    CONFIG_LIST = "config_list"
    SYSTEM_STATUS = "system_status"
    SYSTEM_HEALTH = "system_health"
    SYSTEM_METRICS = "system_metrics"
    HELP_GENERAL = "help_general"
    HELP_COMMAND = "help_command"
    CONVERSATION_CONTINUE = "conversation_continue"
    CONVERSATION_CLARIFY = "conversation_clarify"
    CONVERSATION_UNKNOWN = "conversation_unknown"

    @property
    def label(self) -> str:
        """Human-readable form, e.g. "threat scan"."""
        return self.value.replace("_", " ")


class ConfidenceLevel(str, Enum):
    """Ordered confidence buckets for intent classification."""

    VERY_LOW = "very_low"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"

    @property
    def is_low(self) -> bool:
        return self in (ConfidenceLevel.VERY_LOW, ConfidenceLevel.LOW)


class SafetyLevel(str, Enum):
    """Ordered risk classification from safe to critical."""

    SAFE = "safe"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def score(self) -> int:
        return _SAFETY_ORDER.index(self)

    def elevate(self) -> "SafetyLevel":
        """Return the next level up, saturating at critical."""
        return _SAFETY_ORDER[min(self.score + 1, len(_SAFETY_ORDER) - 1)]

    def __ge__(self, other: object) -> bool:  # type: ignore[override]
        if not isinstance(other, SafetyLevel):
            return NotImplemented
        return self.score >= other.score

    def __gt__(self, other: object) -> bool:  # type: ignore[override]
        if not isinstance(other, SafetyLevel):
            return NotImplemented
        return self.score > other.score

    def __le__(self, other: object) -> bool:  # type: ignore[override]
        if not isinstance(other, SafetyLevel):
            return NotImplemented
        return self.score <= other.score

    def __lt__(self, other: object) -> bool:  # type: ignore[override]
        if not isinstance(other, SafetyLevel):
            return NotImplemented
        return self.score < other.score


_SAFETY_ORDER = [
    SafetyLevel.SAFE,
    SafetyLevel.LOW,
    SafetyLevel.MEDIUM,
    SafetyLevel.HIGH,
    SafetyLevel.CRITICAL,
]


class EstimatedImpact(str, Enum):
    """Estimated blast radius of executing a command."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AuthenticationStatus(str, Enum):
    """Authentication state of a conversation session."""

    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"


class MessageType(str, Enum):
    """Kinds of messages kept in a session history."""

    USER_INPUT = "user_input"
    ASSISTANT_RESPONSE = "assistant_response"
    SYSTEM_MESSAGE = "system_message"
    COMMAND_EXECUTION = "command_execution"
    ERROR_MESSAGE = "error_message"
    CONFIRMATION_REQUEST = "confirmation_request"


ParameterValue = str | list[str]


class Intent(BaseModel):
    """Intent produced by the intent adapter for one turn."""

    model_config = ConfigDict(frozen=True)

    type: IntentType
    confidence: ConfidenceLevel


class Entity(BaseModel):
    """Typed value extracted from user text (ip_address, severity, ...)."""

    model_config = ConfigDict(frozen=True)

    type: str
    value: str


class ParseResult(BaseModel):
    """Output of the intent adapter."""

    model_config = ConfigDict(frozen=True)

    intent: Intent
    entities: list[Entity] = Field(default_factory=list)
    original_text: str
    clarification_prompt: str | None = None


class CandidateCommand(BaseModel):
    """Structured command synthesized from an intent.

    Never mutated after creation; re-synthesize to change it.
    """

    model_config = ConfigDict(frozen=True)

    intent: IntentType
    command_type: str
    sub_action: str
    parameters: dict[str, ParameterValue] = Field(default_factory=dict)
    flags: frozenset[str] = Field(default_factory=frozenset)
    preview_text: str
    description: str
    estimated_duration_ms: int
    base_safety_level: SafetyLevel
    requires_confirmation: bool = False
    warnings: list[str] = Field(default_factory=list)
    contextually_inferred: bool = False
    auto_completed: bool = False
    original_text: str = ""

    def targets(self) -> list[str]:
        """Return the targets parameter as a list (empty when unset)."""
        value = self.parameters.get("targets")
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return list(value)


class SafetyVerdict(BaseModel):
    """Result of running the safety validator over a candidate command."""

    model_config = ConfigDict(frozen=True)

    safety_level: SafetyLevel
    requires_confirmation: bool
    risks: list[str] = Field(default_factory=list)
    mitigations: list[str] = Field(default_factory=list)
    estimated_impact: EstimatedImpact
    preview_text: str


class PendingConfirmation(BaseModel):
    """A command awaiting an explicit yes/no from the user."""

    model_config = ConfigDict(frozen=True)

    command: CandidateCommand
    verdict: SafetyVerdict
    created_at: datetime
    timeout_ms: int


class Preferences(BaseModel):
    """Per-session user preferences."""

    output_format: Literal["table", "json", "yaml", "text", "csv"] | None = None
    verbose_mode: bool = False
    confirm_destructive: bool = True
    suggest_commands: bool = True


class SessionState(BaseModel):
    """State of one conversation session."""

    session_id: str
    user_id: str | None = None
    authentication_status: AuthenticationStatus = AuthenticationStatus.UNAUTHENTICATED
    pending_confirmation: PendingConfirmation | None = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    last_activity_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    current_topic: str | None = None
    active_command_type: str | None = None
    preferences: Preferences = Field(default_factory=Preferences)


class ConversationContext(BaseModel):
    """Session state plus bounded recent history (newest first)."""

    session: SessionState
    recent_intents: list[IntentType] = Field(default_factory=list)
    recent_entities: list[Entity] = Field(default_factory=list)
    recent_commands: list[str] = Field(default_factory=list)
    total_interactions: int = 0


class Message(BaseModel):
    """A single entry in a session's message history."""

    id: str
    type: MessageType
    content: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, Any] = Field(default_factory=dict)


class ExecutionMetadata(BaseModel):
    """Extra detail attached to an execution result."""

    exit_code: int | None = None
    warnings: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)


class ExecutionResult(BaseModel):
    """Outcome of one execution attempt."""

    model_config = ConfigDict(frozen=True)

    success: bool
    output: str
    error: str | None = None
    execution_time_ms: float
    command_echo: str
    metadata: ExecutionMetadata = Field(default_factory=ExecutionMetadata)


class SuggestionType(str, Enum):
    """Kinds of contextual suggestions."""

    COMMAND = "command"
    WORKFLOW = "workflow"
    HELP = "help"
    CLARIFICATION = "clarification"


class Suggestion(BaseModel):
    """A follow-up the user might want to try next."""

    type: SuggestionType
    content: str
    reasoning: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    actionable: bool = True


class ConversationResult(BaseModel):
    """Result of one turn of the conversation."""

    response: str
    command: CandidateCommand | None = None
    verdict: SafetyVerdict | None = None
    suggestions: list[Suggestion] = Field(default_factory=list)
    requires_confirmation: bool = False
    confirmation_prompt: str | None = None
    execution: ExecutionResult | None = None
    correlation_id: str | None = None


class TurnRequest(BaseModel):
    """Request body for submitting free text."""

    text: str = Field(..., min_length=1, max_length=2000)
    user_id: str | None = None


class ConfirmRequest(BaseModel):
    """Request body for answering a pending confirmation."""

    confirmed: bool
