"""Tests for the safety validator."""

import pytest

from threatguard.commands.intent_parser import RuleBasedIntentParser
from threatguard.commands.safety import VALIDATION_FAILED_RISK, SafetyValidator
from threatguard.commands.synthesizer import CommandSynthesizer
from threatguard.models import (
    EstimatedImpact,
    IntentType,
    Preferences,
    SafetyLevel,
)
from threatguard.safety_config import SafetyConfig


@pytest.fixture
def validator(safety_config: SafetyConfig) -> SafetyValidator:
    """Create a validator with default configuration."""
    return SafetyValidator(config=safety_config)


@pytest.fixture
def synth(safety_config: SafetyConfig):
    """Synthesize a command from text without conversation context."""
    parser = RuleBasedIntentParser()
    synthesizer = CommandSynthesizer(config=safety_config)

    def _synth(text: str):
        result = parser.classify(text)
        return synthesizer.synthesize(result.intent, result.entities, text)

    return _synth


def _scan(make_command, targets: list[str], scan_type: str = "quick", **fields):
    return make_command(
        command_type="threat",
        sub_action="scan",
        intent=IntentType.THREAT_SCAN,
        base_safety_level=SafetyLevel.MEDIUM,
        preview_text=f"threat scan --targets {','.join(targets)} --scan-type {scan_type}",
        parameters={"targets": targets, "scan-type": scan_type},
        **fields,
    )


class TestScanScenario:
    """Test the deep scan of a broad range end to end."""

    def test_deep_broad_scan_is_elevated(self, synth, validator: SafetyValidator, make_context) -> None:
        """Test that a deep scan of a /8 is elevated to high and needs confirmation."""
        command = synth("scan 10.0.0.0/8 deep")
        verdict = validator.validate(command, make_context())

        assert verdict.safety_level == SafetyLevel.HIGH
        assert verdict.requires_confirmation is True
        assert verdict.estimated_impact == EstimatedImpact.HIGH
        assert verdict.preview_text == "threat scan --targets 10.0.0.0/8 --scan-type deep"
        assert verdict.risks == [
            "deep scanning may generate significant network traffic",
            "Intensive scans may be detected by intrusion detection systems",
            "Large network range (/8) may affect many systems",
            "Executing security operations without authentication",
        ]
        assert "Consider using quick scan first to assess impact" in verdict.mitigations
        assert "Monitor network utilization during operation" in verdict.mitigations

    def test_elevation_is_one_step(self, make_command, validator: SafetyValidator) -> None:
        """Test that family analysis elevates by exactly one level."""
        command = _scan(make_command, ["10.0.0.0/24"], scan_type="full")
        assert validator.validate(command).safety_level == SafetyLevel.HIGH

    def test_elevation_saturates_at_critical(self, make_command, validator: SafetyValidator) -> None:
        """Test that elevation never goes past critical."""
        command = _scan(make_command, ["10.0.0.0/24"], scan_type="deep").model_copy(
            update={"base_safety_level": SafetyLevel.CRITICAL}
        )
        assert validator.validate(command).safety_level == SafetyLevel.CRITICAL


class TestDeterminismAndMonotonicity:
    """Test that verdicts are stable and respect scope."""

    def test_same_command_same_verdict(self, synth, validator: SafetyValidator, make_context) -> None:
        """Test that validation is deterministic."""
        command = synth("scan 8.8.8.0/16 deep")
        context = make_context()
        assert validator.validate(command, context) == validator.validate(command, context)

    def test_broader_range_never_safer(self, synth, validator: SafetyValidator) -> None:
        """Test that widening the range never lowers the level or the risk count."""
        narrow = validator.validate(synth("scan 192.168.1.0/28 for threats"))
        broad = validator.validate(synth("scan 192.168.0.0/16 for threats"))

        assert broad.safety_level >= narrow.safety_level
        assert len(broad.risks) > len(narrow.risks)
        assert "Large network range (/16) may affect many systems" in broad.risks


class TestRiskAnalyzers:
    """Test the individual risk analyzers."""

    def test_destructive_pattern(self, make_command, validator: SafetyValidator) -> None:
        """Test that catastrophic patterns are reported first with high impact."""
        command = make_command(preview_text="status system --note rm -rf /tmp")
        verdict = validator.validate(command)
        assert verdict.risks[0] == (
            "Command contains potentially destructive pattern: recursive delete of root"
        )
        assert verdict.estimated_impact == EstimatedImpact.HIGH

    def test_privilege_and_scope_tokens(self, make_command, validator: SafetyValidator) -> None:
        """Test privilege elevation and wildcard scope."""
        verdict = validator.validate(make_command(preview_text="status system sudo --all"))
        assert verdict.risks == [
            "Command requires elevated privileges",
            "Command may affect multiple targets or systems",
        ]

    def test_sensitive_data(self, make_command, validator: SafetyValidator) -> None:
        """Test inline credentials in the preview and parameters."""
        command = make_command(
            command_type="auth",
            sub_action="login",
            intent=IntentType.AUTH_LOGIN,
            preview_text="auth login --password hunter2",
            parameters={"password": "hunter2"},
        )
        verdict = validator.validate(command)
        assert "Command may expose sensitive credentials or keys" in verdict.risks
        assert "Password specified in command line (may be logged)" in verdict.risks
        assert (
            "Remove credentials from the command and use stored authentication"
            in verdict.mitigations
        )

    def test_external_target_prioritized(self, make_command, validator: SafetyValidator) -> None:
        """Test that external-scan risks sort ahead of the rest."""
        verdict = validator.validate(_scan(make_command, ["8.8.8.0/16"]))
        assert verdict.risks[:2] == [
            "Scanning external targets may violate acceptable use policies",
            "External scans may trigger security alerts at target organizations",
        ]
        assert verdict.estimated_impact == EstimatedImpact.HIGH

    def test_cloud_and_broadcast_targets(self, make_command, validator: SafetyValidator) -> None:
        """Test cloud allocations and broadcast addresses."""
        verdict = validator.validate(_scan(make_command, ["52.1.2.3", "10.0.0.255"]))
        assert "Targeting cloud or public IP addresses may violate terms of service" in verdict.risks
        assert "Wildcard or broadcast addresses may impact many systems" in verdict.risks

    def test_large_target_count(self, make_command, validator: SafetyValidator) -> None:
        """Test the performance risk for many targets."""
        targets = [f"10.0.0.{i}" for i in range(1, 13)]
        verdict = validator.validate(_scan(make_command, targets))
        assert "Scanning large number of targets may impact network performance" in verdict.risks

    def test_config_connectivity_key(self, make_command, validator: SafetyValidator) -> None:
        """Test configuration changes to connectivity-critical keys."""
        command = make_command(
            command_type="config",
            sub_action="set",
            intent=IntentType.CONFIG_SET,
            base_safety_level=SafetyLevel.MEDIUM,
            preview_text="config set --key api.url --value https://x.example.com",
            parameters={"key": "api.url", "value": "https://x.example.com"},
        )
        verdict = validator.validate(command)
        assert verdict.risks == [
            "Configuration changes may affect system behavior",
            "API configuration changes may break connectivity",
        ]
        assert "Back up current configuration before making changes" in verdict.mitigations

    def test_no_risks_no_impact(self, make_command, validator: SafetyValidator) -> None:
        """Test a harmless command."""
        verdict = validator.validate(make_command())
        assert verdict.risks == []
        assert verdict.mitigations == []
        assert verdict.estimated_impact == EstimatedImpact.NONE
        assert verdict.requires_confirmation is False


class TestContextualAnalysis:
    """Test risks that depend on the conversation."""

    def test_repeated_family(self, make_command, validator: SafetyValidator, make_context) -> None:
        """Test three or more recent commands of the same family."""
        context = make_context(
            authenticated=True,
            recent_commands=["status system", "status health", "status system", "auth status"],
        )
        verdict = validator.validate(make_command(), context)
        assert verdict.risks == ["Repeated execution of similar commands in short time"]

    def test_reconnaissance_sequence(self, make_command, validator: SafetyValidator, make_context) -> None:
        """Test the status, scan, network-scan escalation."""
        context = make_context(
            authenticated=True,
            recent_intents=[IntentType.THREAT_SCAN, IntentType.SYSTEM_STATUS],
        )
        command = make_command(
            command_type="network",
            sub_action="scan",
            intent=IntentType.NETWORK_SCAN,
            base_safety_level=SafetyLevel.MEDIUM,
            preview_text="network scan --targets 192.168.1.0/24",
            parameters={"targets": ["192.168.1.0/24"]},
        )
        verdict = validator.validate(command, context)
        assert "Command pattern suggests potential reconnaissance activity" in verdict.risks
        assert verdict.safety_level == SafetyLevel.HIGH

    def test_sequence_order_matters(self, make_command, validator: SafetyValidator, make_context) -> None:
        """Test that the escalation must happen in order."""
        context = make_context(
            authenticated=True,
            recent_intents=[IntentType.SYSTEM_STATUS, IntentType.THREAT_SCAN],
        )
        command = make_command(
            command_type="network",
            sub_action="scan",
            intent=IntentType.NETWORK_SCAN,
            preview_text="network scan --targets 192.168.1.0/24",
            parameters={"targets": ["192.168.1.0/24"]},
        )
        verdict = validator.validate(command, context)
        assert "Command pattern suggests potential reconnaissance activity" not in verdict.risks


class TestConfirmationDecision:
    """Test when confirmation is required."""

    def test_critical_always_confirms(self, make_command) -> None:
        """Test that critical commands confirm even above the threshold."""
        validator = SafetyValidator(
            config=SafetyConfig(confirmation_threshold=SafetyLevel.CRITICAL)
        )
        critical = make_command(base_safety_level=SafetyLevel.CRITICAL)
        high = make_command(base_safety_level=SafetyLevel.HIGH)

        assert validator.validate(critical).requires_confirmation is True
        assert validator.validate(high).requires_confirmation is False

    def test_threshold(self, make_command, validator: SafetyValidator) -> None:
        """Test the default medium threshold."""
        assert validator.validate(
            make_command(base_safety_level=SafetyLevel.MEDIUM)
        ).requires_confirmation
        assert not validator.validate(
            make_command(base_safety_level=SafetyLevel.LOW)
        ).requires_confirmation

    def test_preference_confirms_non_safe(self, make_command, validator: SafetyValidator, make_context) -> None:
        """Test that confirm_destructive covers every non-safe command."""
        context = make_context(authenticated=True)
        low = make_command(base_safety_level=SafetyLevel.LOW)
        assert validator.validate(low, context).requires_confirmation is True

        context.session.preferences = Preferences(confirm_destructive=False)
        assert validator.validate(low, context).requires_confirmation is False

    def test_unauthenticated_sensitive_family(self, make_command, validator: SafetyValidator, make_context) -> None:
        """Test sensitive families from an unauthenticated session."""
        context = make_context()
        context.session.preferences = Preferences(confirm_destructive=False)
        command = make_command(
            command_type="behavior",
            sub_action="analyze",
            intent=IntentType.BEHAVIOR_ANALYZE,
            base_safety_level=SafetyLevel.LOW,
        )
        assert validator.validate(command, context).requires_confirmation is True

    def test_rule_declared_confirmation(self, make_command, validator: SafetyValidator) -> None:
        """Test that a rule-level confirmation flag is honored."""
        command = make_command(requires_confirmation=True)
        assert validator.validate(command).requires_confirmation is True


class TestFailureHandling:
    """Test the conservative verdict on internal failure."""

    def test_internal_error_yields_conservative_verdict(
        self, make_command, validator: SafetyValidator, monkeypatch
    ) -> None:
        """Test that an analyzer crash never propagates."""

        def boom(command):
            raise RuntimeError("analyzer crashed")

        monkeypatch.setattr(validator, "_target_risks", boom)
        verdict = validator.validate(make_command())

        assert verdict.safety_level == SafetyLevel.CRITICAL
        assert verdict.requires_confirmation is True
        assert verdict.risks == [VALIDATION_FAILED_RISK]
        assert verdict.estimated_impact == EstimatedImpact.HIGH
