"""Command synthesizer: turn an intent plus entities into a candidate command.

Stages run in a fixed order over a mutable draft; the result is frozen into a
CandidateCommand once every stage has run:

1. rule lookup
2. entity binding
3. regex parameter extraction, flag extraction and the phrase table
4. contextual enhancement
5. safety-aware smart defaults
6. required-parameter auto-completion
7. preview, duration and warnings
"""

import logging
import re
from dataclasses import dataclass, field

from ..models import (
    AuthenticationStatus,
    CandidateCommand,
    ConversationContext,
    Entity,
    Intent,
    IntentType,
    ParameterValue,
    SafetyLevel,
)
from ..safety_config import SafetyConfig, get_safety_config
from .rules import (
    AUTO_DETECT_NETWORK,
    DEFAULT_RULE_SET,
    INTENSIVE_SCAN_TYPES,
    TARGET_ENTITY_TYPES,
    CommandRule,
    ParameterSpec,
    RuleSet,
    is_internal_target,
    normalize_scan_type,
    normalize_text,
)

logger = logging.getLogger(__name__)

UNBOUNDED_DURATION_MS = -1

_SCAN_BASE_MS = {"quick": 30_000, "deep": 300_000, "full": 600_000}
_MAX_TARGET_MULTIPLIER = 5

_FIXED_DURATIONS_MS = {
    IntentType.THREAT_LIST: 5_000,
    IntentType.THREAT_WATCH: UNBOUNDED_DURATION_MS,
    IntentType.NETWORK_MONITOR: UNBOUNDED_DURATION_MS,
    IntentType.BEHAVIOR_ANALYZE: 120_000,
}
_DEFAULT_DURATION_MS = 5_000

_SCAN_TYPE_FROM_PREVIEW = re.compile(r"--scan-type\s+(\w+)")


@dataclass
class _Draft:
    """Mutable working state for one synthesis; never escapes this module."""

    rule: CommandRule
    parameters: dict[str, list[str]] = field(default_factory=dict)
    flags: set[str] = field(default_factory=set)
    contextually_inferred: bool = False
    auto_completed: bool = False
    auto_detected_network: bool = False
    missing_required: list[str] = field(default_factory=list)

    def is_set(self, name: str) -> bool:
        return bool(self.parameters.get(name))

    def add(self, spec: ParameterSpec, value: str) -> bool:
        """Add a value for a parameter, honoring the schema. Returns True if kept."""
        value = value.strip()
        if spec.name == "scan-type":
            value = normalize_scan_type(value) or value
        if spec.choices is not None:
            value = value.lower()
        if not value or not spec.accepts(value):
            return False

        values = self.parameters.setdefault(spec.name, [])
        if spec.multi:
            if value not in values:
                values.append(value)
            return True
        if values:
            return False
        values.append(value)
        return True

    def fill(self, name: str, *values: str) -> bool:
        """Set a parameter from a default when the schema declares it and it is unset."""
        spec = self.rule.parameter(name)
        if spec is None or self.is_set(name):
            return False
        kept = False
        for value in values:
            kept = self.add(spec, value) or kept
        return kept

    def flag(self, name: str) -> None:
        if name in self.rule.flags:
            self.flags.add(name)


class CommandSynthesizer:
    """Map an intent, its entities and the raw text onto a candidate command.

    Synthesis is deterministic: identical inputs always yield an identical
    command, including its estimated duration.
    """

    def __init__(
        self,
        rule_set: RuleSet = DEFAULT_RULE_SET,
        config: SafetyConfig | None = None,
    ) -> None:
        self.rule_set = rule_set
        self.config = config or get_safety_config()

    def synthesize(
        self,
        intent: Intent,
        entities: list[Entity],
        raw_text: str,
        context: ConversationContext | None = None,
    ) -> CandidateCommand | None:
        """Synthesize a command, or return None when the intent has no rule."""
        rule = self.rule_set.rule_for(intent.type)
        if rule is None:
            logger.debug("No command rule for intent %s", intent.type.value)
            return None

        draft = _Draft(rule=rule)
        normalized = normalize_text(raw_text)

        self._bind_entities(draft, entities)
        self._extract_parameters(draft, normalized)
        self._extract_flags(draft, normalized)
        self._apply_phrase_table(draft, normalized)

        if self.config.enable_contextual_mapping and context is not None:
            self._apply_context(draft, context)
        if self.config.enable_smart_defaults:
            self._apply_smart_defaults(draft, context)
        self._complete_required(draft, context)

        parameters = self._freeze_parameters(draft)
        flags = frozenset(draft.flags & rule.flags)
        preview = build_preview(rule.command_type, rule.sub_action, flags, parameters)

        command = CandidateCommand(
            intent=rule.intent,
            command_type=rule.command_type,
            sub_action=rule.sub_action,
            parameters=parameters,
            flags=flags,
            preview_text=preview,
            description=self._describe(rule, parameters, flags),
            estimated_duration_ms=self._estimate_duration(rule, parameters, flags),
            base_safety_level=rule.safety_level,
            requires_confirmation=rule.requires_confirmation,
            warnings=self._warnings(draft, parameters),
            contextually_inferred=draft.contextually_inferred,
            auto_completed=draft.auto_completed,
            original_text=raw_text,
        )

        logger.debug(
            "Synthesized %s from intent %s (level=%s)",
            preview,
            intent.type.value,
            rule.safety_level.value,
        )
        return command

    def _bind_entities(self, draft: _Draft, entities: list[Entity]) -> None:
        for entity in entities:
            spec = draft.rule.parameter_for_entity(entity.type)
            if spec is not None:
                draft.add(spec, entity.value)

    def _extract_parameters(self, draft: _Draft, text: str) -> None:
        """Recover parameters the entities missed. Only fills unset parameters."""
        for spec in draft.rule.parameters:
            if draft.is_set(spec.name):
                continue
            patterns = self.rule_set.parameter_patterns.get(spec.name, ())
            for pattern in patterns:
                if spec.multi:
                    for match in pattern.finditer(text):
                        draft.add(spec, match.group(1))
                    continue
                match = pattern.search(text)
                if match and draft.add(spec, match.group(1)):
                    break

    def _extract_flags(self, draft: _Draft, text: str) -> None:
        for name in sorted(draft.rule.flags):
            patterns = self.rule_set.flag_patterns.get(name, ())
            if any(pattern.search(text) for pattern in patterns):
                draft.flag(name)

    def _apply_phrase_table(self, draft: _Draft, text: str) -> None:
        for phrase, name, value in self.rule_set.phrase_flags:
            if not re.search(rf"\b{re.escape(phrase)}\b", text):
                continue
            if value is None:
                draft.flag(name)
            else:
                draft.fill(name, value)

    def _apply_context(self, draft: _Draft, context: ConversationContext) -> None:
        rule = draft.rule

        if rule.parameter("targets") is not None and not draft.is_set("targets"):
            for entity in context.recent_entities:
                if entity.type in TARGET_ENTITY_TYPES:
                    if draft.fill("targets", entity.value):
                        draft.contextually_inferred = True
                    break

        preferences = context.session.preferences
        if preferences.output_format:
            draft.fill("output", preferences.output_format)
        if preferences.verbose_mode:
            draft.flag("verbose")

        if rule.parameter("scan-type") is not None and not draft.is_set("scan-type"):
            family_prefix = f"{rule.command_type} "
            for previous in context.recent_commands:
                if not previous.startswith(family_prefix):
                    continue
                match = _SCAN_TYPE_FROM_PREVIEW.search(previous)
                if match:
                    if draft.fill("scan-type", match.group(1)):
                        draft.contextually_inferred = True
                    break

    def _apply_smart_defaults(self, draft: _Draft, context: ConversationContext | None) -> None:
        intent = draft.rule.intent

        if intent in (IntentType.THREAT_SCAN, IntentType.NETWORK_SCAN):
            if draft.fill("targets", AUTO_DETECT_NETWORK):
                draft.auto_completed = True
                draft.auto_detected_network = True
            # Least invasive intensity unless the user asked for more.
            draft.fill("scan-type", "quick")
        elif intent == IntentType.THREAT_LIST:
            draft.fill("severity", "high", "critical")
            draft.fill("since", "today")
        elif intent == IntentType.THREAT_WATCH:
            draft.fill("severity", "critical")
            draft.flag("follow")
        elif intent == IntentType.SYSTEM_STATUS:
            draft.flag("health-check")

        if (
            context is not None
            and context.session.authentication_status == AuthenticationStatus.UNAUTHENTICATED
            and intent in (IntentType.SYSTEM_STATUS, IntentType.HELP_COMMAND)
        ):
            draft.flag("skip-auth")

    def _complete_required(self, draft: _Draft, context: ConversationContext | None) -> None:
        """Fill required parameters that are still unset with safe placeholders."""
        for spec in draft.rule.parameters:
            if not spec.required or draft.is_set(spec.name):
                continue

            if spec.name == "targets":
                draft.fill("targets", AUTO_DETECT_NETWORK)
                draft.auto_detected_network = True
            elif spec.name == "scan-type":
                draft.fill("scan-type", "quick")
            elif spec.name == "severity":
                draft.fill("severity", "high", "critical")
            elif spec.name == "output":
                preferred = context.session.preferences.output_format if context else None
                draft.fill("output", preferred or "table")
            else:
                draft.parameters[spec.name] = [f"<{spec.name}>"]
                draft.missing_required.append(spec.name)
            draft.auto_completed = True

    def _freeze_parameters(self, draft: _Draft) -> dict[str, ParameterValue]:
        """Emit parameters in schema order; multi-valued ones stay lists."""
        frozen: dict[str, ParameterValue] = {}
        for spec in draft.rule.parameters:
            values = draft.parameters.get(spec.name)
            if not values:
                continue
            frozen[spec.name] = list(values) if spec.multi else values[0]
        return frozen

    def _describe(
        self,
        rule: CommandRule,
        parameters: dict[str, ParameterValue],
        flags: frozenset[str],
    ) -> str:
        def joined(name: str, sep: str = ", ") -> str:
            value = parameters.get(name)
            if isinstance(value, list):
                return sep.join(value)
            return value or ""

        intent = rule.intent
        if intent == IntentType.THREAT_SCAN:
            description = "Perform a security scan"
            if "targets" in parameters:
                description += f" on {joined('targets')}"
            if "scan-type" in parameters:
                description += f" using {joined('scan-type')} scanning mode"
            return description
        if intent == IntentType.NETWORK_SCAN:
            description = "Scan the network"
            if "targets" in parameters:
                description += f" {joined('targets')}"
            if "ports" in parameters:
                description += f" on ports {joined('ports')}"
            return description + " for exposed services"
        if intent == IntentType.THREAT_LIST:
            description = "List security threats"
            if "severity" in parameters:
                description += f" with {joined('severity', '/')} severity"
            if "since" in parameters:
                description += f" from {joined('since')}"
            return description
        if intent == IntentType.THREAT_WATCH:
            description = "Start real-time threat monitoring"
            if "severity" in parameters:
                description += f" for {joined('severity', '/')} level threats"
            return description
        if intent == IntentType.SYSTEM_STATUS:
            description = "Check system status and health"
            if "health-check" in flags:
                description += " with comprehensive health validation"
            return description
        if intent == IntentType.AUTH_STATUS:
            return "Check authentication status and session information"
        if intent == IntentType.BEHAVIOR_ANALYZE:
            description = "Analyze user behavior"
            if "user" in parameters:
                description += f" for user {joined('user')}"
            if "time-range" in parameters:
                description += f" over {joined('time-range')}"
            return description
        if intent in (IntentType.INTEL_QUERY, IntentType.INTEL_IOC_LOOKUP):
            return f"Query threat intelligence for {joined('indicator')}"
        if intent == IntentType.CONFIG_SET:
            return f"Set configuration {joined('key')} to {joined('value')}"
        return f"Execute {intent.label} operation"

    def _estimate_duration(
        self,
        rule: CommandRule,
        parameters: dict[str, ParameterValue],
        flags: frozenset[str],
    ) -> int:
        intent = rule.intent
        targets = parameters.get("targets") or []
        multiplier = min(max(len(targets), 1), _MAX_TARGET_MULTIPLIER)

        if intent == IntentType.THREAT_SCAN:
            scan_type = parameters.get("scan-type", "quick")
            return _SCAN_BASE_MS.get(str(scan_type), _SCAN_BASE_MS["full"]) * multiplier
        if intent == IntentType.NETWORK_SCAN:
            return 60_000 * multiplier
        if intent == IntentType.SYSTEM_STATUS:
            return 10_000 if "health-check" in flags else 3_000
        return _FIXED_DURATIONS_MS.get(intent, _DEFAULT_DURATION_MS)

    def _warnings(self, draft: _Draft, parameters: dict[str, ParameterValue]) -> list[str]:
        rule = draft.rule
        warnings: list[str] = []

        if rule.safety_level >= SafetyLevel.HIGH:
            warnings.append(
                f"This is a {rule.safety_level.value} risk operation "
                "that may impact system performance"
            )

        if rule.intent in self.rule_set.scan_intents:
            targets = parameters.get("targets") or []
            if any(not is_internal_target(target) for target in targets):
                warnings.append(
                    "This scan will probe external targets and may be detected by security systems"
                )
            if parameters.get("scan-type") in INTENSIVE_SCAN_TYPES:
                warnings.append(
                    "Deep scans may take significant time and generate high network traffic"
                )

        if rule.intent == IntentType.NETWORK_SCAN:
            warnings.append("Network scanning may trigger security alerts and should be authorized")

        if rule.intent in self.rule_set.monitoring_intents:
            warnings.append("Monitoring will run continuously until stopped")

        if draft.auto_detected_network:
            warnings.append("Network range will be automatically detected")

        if draft.contextually_inferred:
            warnings.append("Some parameters were inferred from conversation context")

        for name in draft.missing_required:
            warnings.append(f"Missing required parameter: {name}")

        return warnings


def build_preview(
    command_type: str,
    sub_action: str,
    flags: frozenset[str] | set[str],
    parameters: dict[str, ParameterValue],
) -> str:
    """Render `<command> <sub> [--flag ...] [--key value | --key v1,v2]...`.

    Flags are sorted; parameters keep their insertion (schema) order.
    Underscore-prefixed parameters are internal and never rendered.
    """
    parts = [command_type, sub_action]
    parts.extend(f"--{flag}" for flag in sorted(flags))
    for name, value in parameters.items():
        if name.startswith("_"):
            continue
        rendered = ",".join(value) if isinstance(value, list) else value
        if rendered:
            parts.append(f"--{name} {rendered}")
    return " ".join(parts)
