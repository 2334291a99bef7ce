"""Conversational command pipeline for the ThreatGuard CLI.

This module implements:
- Intent parsing from free text
- Command synthesis from intents and entities
- Safety validation and risk scoring
- The confirmation flow with per-session timeouts
- Execution routing to domain handlers
- Conversation orchestration and per-session context
"""

from .conversation import ConversationOrchestrator
from .intent_parser import IntentAdapter, RuleBasedIntentParser
from .pending_actions import ConfirmationController, ConfirmationOutcome
from .router import ExecutionAuditSink, ExecutionRouter
from .rules import DEFAULT_RULE_SET, CommandRule, ParameterSpec, RuleSet
from .safety import SafetyValidator
from .session_context import (
    ContextStore,
    ContextStoreError,
    InMemoryContextStore,
    RedisContextStore,
)
from .synthesizer import CommandSynthesizer, build_preview

__all__ = [
    "CommandRule",
    "CommandSynthesizer",
    "ConfirmationController",
    "ConfirmationOutcome",
    "ContextStore",
    "ContextStoreError",
    "ConversationOrchestrator",
    "DEFAULT_RULE_SET",
    "ExecutionAuditSink",
    "ExecutionRouter",
    "InMemoryContextStore",
    "IntentAdapter",
    "ParameterSpec",
    "RedisContextStore",
    "RuleBasedIntentParser",
    "RuleSet",
    "SafetyValidator",
    "build_preview",
]
