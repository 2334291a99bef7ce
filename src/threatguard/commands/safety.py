"""Safety validator: score a candidate command and decide on confirmation.

Five independent analyzers each contribute risk strings:

- destructive-pattern scan of the rendered preview
- sensitive-data scan of the preview and parameters
- command-family analysis (may elevate the safety level by one step)
- target/network analysis
- contextual analysis (only when a conversation context is available)

Risks are merged, de-duplicated and priority-sorted. Mitigations, impact and
the confirmation decision are pure functions of the command, the risks and
the context, so the same input always produces the same verdict.
"""

import logging

from ..logging_utils import log_error
from ..models import (
    AuthenticationStatus,
    CandidateCommand,
    ConversationContext,
    EstimatedImpact,
    IntentType,
    SafetyLevel,
    SafetyVerdict,
)
from ..safety_config import SafetyConfig, get_safety_config
from .rules import (
    AUTO_DETECT_NETWORK,
    DEFAULT_RULE_SET,
    INTENSIVE_SCAN_TYPES,
    RuleSet,
    cidr_prefix,
    is_broadcast_or_wildcard,
    is_cloud_address,
    is_internal_target,
)

logger = logging.getLogger(__name__)

VALIDATION_FAILED_RISK = "Safety validation failed - manual review required"

_REPEAT_WINDOW = 5
_REPEAT_THRESHOLD = 3
_RISK_COUNT_FOR_CONFIRMATION = 3


class SafetyValidator:
    """Run the risk analyzers over a candidate command and produce a verdict."""

    def __init__(
        self,
        rule_set: RuleSet = DEFAULT_RULE_SET,
        config: SafetyConfig | None = None,
    ) -> None:
        self.rule_set = rule_set
        self.config = config or get_safety_config()

    def validate(
        self,
        command: CandidateCommand,
        context: ConversationContext | None = None,
    ) -> SafetyVerdict:
        """Validate a command. Never raises; internal failures yield the conservative verdict."""
        try:
            verdict = self._analyze(command, context)
        except Exception as e:
            log_error(
                logger,
                "Safety validation failed",
                preview=command.preview_text,
                error=str(e),
            )
            return conservative_verdict(command.preview_text)

        logger.debug(
            "Validated %s: level=%s confirm=%s risks=%d impact=%s",
            command.preview_text,
            verdict.safety_level.value,
            verdict.requires_confirmation,
            len(verdict.risks),
            verdict.estimated_impact.value,
        )
        return verdict

    def _analyze(
        self,
        command: CandidateCommand,
        context: ConversationContext | None,
    ) -> SafetyVerdict:
        risks: list[str] = []
        risks.extend(self._destructive_risks(command))
        risks.extend(self._sensitive_data_risks(command))

        family_risks, elevate = self._family_risks(command)
        risks.extend(family_risks)
        level = command.base_safety_level.elevate() if elevate else command.base_safety_level

        risks.extend(self._target_risks(command))
        if context is not None:
            risks.extend(self._contextual_risks(command, context))

        risks = self._prioritize(risks)

        return SafetyVerdict(
            safety_level=level,
            requires_confirmation=self._requires_confirmation(level, risks, command, context),
            risks=risks,
            mitigations=self._mitigations(command, risks),
            estimated_impact=self._estimate_impact(level, risks),
            preview_text=command.preview_text,
        )

    def _destructive_risks(self, command: CandidateCommand) -> list[str]:
        preview = command.preview_text
        risks = [
            f"Command contains potentially destructive pattern: {destructive.label}"
            for destructive in self.rule_set.destructive_patterns
            if destructive.pattern.search(preview)
        ]

        tokens = preview.split()
        if "sudo" in tokens or "su" in tokens:
            risks.append("Command requires elevated privileges")

        if "--all" in tokens or "*" in preview:
            risks.append("Command may affect multiple targets or systems")

        return risks

    def _sensitive_data_risks(self, command: CandidateCommand) -> list[str]:
        risks: list[str] = []
        haystacks = [command.preview_text]
        for value in command.parameters.values():
            haystacks.extend(value if isinstance(value, list) else [value])

        if any(
            pattern.search(text)
            for pattern in self.rule_set.sensitive_patterns
            for text in haystacks
        ):
            risks.append("Command may expose sensitive credentials or keys")

        if any(name in command.parameters for name in ("password", "pass")):
            risks.append("Password specified in command line (may be logged)")

        return risks

    def _family_risks(self, command: CandidateCommand) -> tuple[list[str], bool]:
        """Family-specific rules. Returns (risks, whether to elevate one step)."""
        risks: list[str] = []
        elevate = False
        intent = command.intent
        scan_type = command.parameters.get("scan-type")

        if intent in self.rule_set.scan_intents:
            if scan_type in INTENSIVE_SCAN_TYPES:
                risks.append(f"{scan_type} scanning may generate significant network traffic")
                risks.append("Intensive scans may be detected by intrusion detection systems")
                elevate = True

            targets = command.targets()
            if any(not is_internal_target(target) for target in targets):
                risks.append("Scanning external targets may violate acceptable use policies")
                risks.append("External scans may trigger security alerts at target organizations")

            if "aggressive" in command.flags:
                risks.append("Aggressive scanning options may impact target systems")

        if intent == IntentType.NETWORK_SCAN:
            elevate = True
            if any(p.search(command.preview_text) for p in self.rule_set.intense_scan_patterns):
                risks.append("High-intensity network scanning may impact network performance")

        elif intent == IntentType.BEHAVIOR_ANALYZE:
            if command.parameters.get("user") in ("all", "*"):
                risks.append("Behavioral analysis of all users may impact privacy")

        elif intent == IntentType.CONFIG_SET:
            risks.append("Configuration changes may affect system behavior")
            key = str(command.parameters.get("key", "")).lower()
            if any(marker in key for marker in self.rule_set.connectivity_keys):
                risks.append("API configuration changes may break connectivity")

        elif intent in (IntentType.INTEL_QUERY, IntentType.INTEL_IOC_LOOKUP):
            if "upload" in command.flags:
                risks.append("Uploading data to external threat intelligence services")

        return risks, elevate

    def _target_risks(self, command: CandidateCommand) -> list[str]:
        risks: list[str] = []
        targets = [t for t in command.targets() if t != AUTO_DETECT_NETWORK]

        for target in targets:
            prefix = cidr_prefix(target)
            if prefix is not None and prefix < self.config.broad_cidr_prefix:
                risks.append(f"Large network range (/{prefix}) may affect many systems")

            if is_broadcast_or_wildcard(target):
                risks.append("Wildcard or broadcast addresses may impact many systems")

            if is_cloud_address(target, self.rule_set.cloud_prefixes):
                risks.append("Targeting cloud or public IP addresses may violate terms of service")

        if len(targets) > self.config.large_target_count:
            risks.append("Scanning large number of targets may impact network performance")

        return risks

    def _contextual_risks(
        self,
        command: CandidateCommand,
        context: ConversationContext,
    ) -> list[str]:
        risks: list[str] = []

        family_prefix = f"{command.command_type} "
        same_family = sum(
            1
            for previous in context.recent_commands[:_REPEAT_WINDOW]
            if previous.startswith(family_prefix)
        )
        if same_family >= _REPEAT_THRESHOLD:
            risks.append("Repeated execution of similar commands in short time")

        if (
            context.session.authentication_status != AuthenticationStatus.AUTHENTICATED
            and command.intent.value in self.config.sensitive_intents
        ):
            risks.append("Executing security operations without authentication")

        if self._matches_recon_sequence(command, context):
            risks.append("Command pattern suggests potential reconnaissance activity")

        return risks

    def _matches_recon_sequence(
        self,
        command: CandidateCommand,
        context: ConversationContext,
    ) -> bool:
        """Check the escalation sequence in chronological order, ending with this command."""
        sequence = self.rule_set.recon_sequence
        previous = list(reversed(context.recent_intents[: len(sequence) - 1]))
        window = previous + [command.intent]
        return tuple(window) == sequence

    def _prioritize(self, risks: list[str]) -> list[str]:
        """De-duplicate (first occurrence wins) and move priority risks to the front."""
        unique = list(dict.fromkeys(risks))
        keywords = self.rule_set.priority_keywords

        def is_priority(risk: str) -> bool:
            lowered = risk.lower()
            return any(keyword in lowered for keyword in keywords)

        # sorted() is stable, so relative order within each group is kept.
        return sorted(unique, key=lambda risk: 0 if is_priority(risk) else 1)

    def _mitigations(self, command: CandidateCommand, risks: list[str]) -> list[str]:
        mitigations: list[str] = []

        if risks:
            mitigations.append("Review command carefully before execution")
            mitigations.append("Ensure you have authorization to perform this operation")

        if command.intent in self.rule_set.scan_intents:
            mitigations.append("Verify target systems are owned or authorized for testing")
            mitigations.append("Consider running during maintenance windows")
            if command.parameters.get("scan-type") in INTENSIVE_SCAN_TYPES:
                mitigations.append("Consider using quick scan first to assess impact")
        elif command.intent == IntentType.CONFIG_SET:
            mitigations.append("Back up current configuration before making changes")
            mitigations.append("Test configuration changes in non-production environment first")
        elif command.intent == IntentType.BEHAVIOR_ANALYZE:
            mitigations.append("Ensure compliance with privacy policies and regulations")
            mitigations.append("Limit analysis scope to necessary users/timeframes")

        lowered = [risk.lower() for risk in risks]
        if any("external" in risk for risk in lowered):
            mitigations.append("Obtain explicit permission before scanning external systems")
        if any("network traffic" in risk for risk in lowered):
            mitigations.append("Monitor network utilization during operation")
            mitigations.append("Consider rate limiting or time delays")
        if any("privilege" in risk for risk in lowered):
            mitigations.append("Verify necessity of elevated privileges")
            mitigations.append("Use principle of least privilege")
        if any("credentials" in risk or "password" in risk for risk in lowered):
            mitigations.append("Remove credentials from the command and use stored authentication")

        return list(dict.fromkeys(mitigations))

    def _estimate_impact(self, level: SafetyLevel, risks: list[str]) -> EstimatedImpact:
        keywords = self.rule_set.high_impact_keywords
        has_high_impact_risk = any(
            keyword in risk.lower() for risk in risks for keyword in keywords
        )

        if has_high_impact_risk or level >= SafetyLevel.HIGH:
            return EstimatedImpact.HIGH
        if level >= SafetyLevel.MEDIUM or len(risks) >= 3:
            return EstimatedImpact.MEDIUM
        if level >= SafetyLevel.LOW or risks:
            return EstimatedImpact.LOW
        return EstimatedImpact.NONE

    def _requires_confirmation(
        self,
        level: SafetyLevel,
        risks: list[str],
        command: CandidateCommand,
        context: ConversationContext | None,
    ) -> bool:
        if level == SafetyLevel.CRITICAL:
            return True
        if level >= self.config.confirmation_threshold:
            return True
        if len(risks) >= _RISK_COUNT_FOR_CONFIRMATION:
            return True

        if context is not None:
            session = context.session
            if session.preferences.confirm_destructive and level != SafetyLevel.SAFE:
                return True
            if (
                session.authentication_status != AuthenticationStatus.AUTHENTICATED
                and command.intent.value in self.config.sensitive_intents
            ):
                return True

        return command.requires_confirmation


def conservative_verdict(preview_text: str) -> SafetyVerdict:
    """The most cautious verdict, used whenever analysis cannot complete."""
    return SafetyVerdict(
        safety_level=SafetyLevel.CRITICAL,
        requires_confirmation=True,
        risks=[VALIDATION_FAILED_RISK],
        mitigations=["Carefully review the command before executing"],
        estimated_impact=EstimatedImpact.HIGH,
        preview_text=preview_text,
    )
