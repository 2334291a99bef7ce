"""Response text, suggestions and confirmation prompts for conversation turns.

Everything here is a pure function of its arguments.
"""

from ..models import (
    AuthenticationStatus,
    CandidateCommand,
    ConversationContext,
    ExecutionResult,
    IntentType,
    ParseResult,
    SafetyVerdict,
    Suggestion,
    SuggestionType,
)
from .rules import AUTO_DETECT_NETWORK

MAX_SUGGESTIONS = 3

WELCOME_MESSAGE = (
    "Hello! I'm your ThreatGuard assistant. I can help you with threat detection, "
    "security analysis, and system monitoring. Try asking me something like "
    "'scan my network for threats' or 'show system status'."
)
APOLOGY_RESPONSE = (
    "I'm sorry, I encountered an error processing your request. "
    "Please try rephrasing or use 'help' for available commands."
)
CANCELLED_RESPONSE = "Command execution cancelled. Is there anything else I can help you with?"
NO_PENDING_RESPONSE = "No command is pending confirmation."
CANCELLED_NOTICE = "Command execution cancelled."
EXPIRED_NOTICE = "Command execution cancelled: confirmation timed out."

_CLARIFICATION_FALLBACK = (
    "I'm not quite sure what you're asking for. Could you be more specific? "
    "For example, you could say:\n"
    "- 'scan my network for threats'\n"
    "- 'show system status'\n"
    "- 'list critical alerts'\n"
    "- 'help with threat detection'"
)
_UNKNOWN_RESPONSE = (
    "I'm not sure I understand. Could you try rephrasing that? You can ask me to scan "
    "for threats, check system status, or type 'help' for available commands."
)

# Lead-in per intent, followed by the command preview
_LEAD_INS = {
    IntentType.AUTH_STATUS: "Let me check your authentication status...",
    IntentType.SYSTEM_STATUS: "I'll check the system status for you...",
    IntentType.SYSTEM_HEALTH: "I'll check the health of the platform services...",
    IntentType.THREAT_LIST: "I'll retrieve the threat information you requested...",
    IntentType.THREAT_WATCH: "Starting real-time threat monitoring...",
    IntentType.NETWORK_MONITOR: "Starting network traffic monitoring...",
    IntentType.INTEL_QUERY: "I'll look that up in the threat intelligence feeds...",
}


def replaced_notice(previous: CandidateCommand) -> str:
    return f"Pending command replaced by a newer request: {previous.preview_text}"


def render_confirmation_prompt(command: CandidateCommand, verdict: SafetyVerdict) -> str:
    """Render the yes/no prompt shown before a risky command runs."""
    lines = [
        "Confirmation Required",
        "",
        f"Command: `{command.preview_text}`",
        f"Safety Level: {verdict.safety_level.value.upper()}",
        "",
    ]
    if verdict.risks:
        lines.append("Potential Risks:")
        lines.extend(f"- {risk}" for risk in verdict.risks)
        lines.append("")
    if command.description:
        lines.append(f"What this will do: {command.description}")
        lines.append("")
    lines.append("Do you want to proceed? (yes/no)")
    return "\n".join(lines)


def clarification_response(parse_result: ParseResult) -> str:
    return parse_result.clarification_prompt or _CLARIFICATION_FALLBACK


def help_response(context: ConversationContext) -> str:
    sections = ["I can help you with cybersecurity operations. Here are some things you can ask me:", ""]
    if context.session.authentication_status != AuthenticationStatus.AUTHENTICATED:
        sections += [
            "Authentication:",
            "- 'check my authentication status'",
            "- 'log me in'",
            "",
        ]
    sections += [
        "Threat Detection:",
        "- 'scan my network for threats'",
        "- 'show me critical alerts'",
        "- 'monitor threats in real-time'",
        "",
        "System Monitoring:",
        "- 'check system status'",
        "- 'show system health'",
        "",
        "You can speak naturally. I understand context and will guide you through "
        "security operations.",
    ]
    return "\n".join(sections)


def _threat_scan_response(command: CandidateCommand) -> str:
    parts = ["I'll perform a security scan for you."]
    targets = [
        "the auto-detected local network" if t == AUTO_DETECT_NETWORK else t
        for t in command.targets()
    ]
    if targets:
        parts.append(f"Targeting: {', '.join(targets)}.")
    scan_type = command.parameters.get("scan-type")
    if scan_type:
        parts.append(f"Performing a {scan_type} scan.")
    response = " ".join(parts) + f"\n\nCommand to execute: `{command.preview_text}`"
    if command.requires_confirmation:
        response += (
            "\n\nThis scan will actively probe the specified targets. "
            "Please confirm you want to proceed."
        )
    return response


def generate_response(
    parse_result: ParseResult,
    command: CandidateCommand | None,
    context: ConversationContext,
) -> str:
    """Build the natural-language reply for a parsed turn."""
    intent = parse_result.intent
    if intent.confidence.is_low:
        return clarification_response(parse_result)

    if intent.type == IntentType.CONVERSATION_UNKNOWN:
        return _UNKNOWN_RESPONSE
    if intent.type == IntentType.HELP_GENERAL:
        return help_response(context)
    if intent.type == IntentType.CONVERSATION_CLARIFY:
        if context.recent_commands:
            return (
                f"My last suggestion was `{context.recent_commands[0]}`. "
                "Tell me what you'd like to change, or type 'help' for available commands."
            )
        return _CLARIFICATION_FALLBACK
    if intent.type == IntentType.CONVERSATION_CONTINUE:
        return "Sure. What would you like to do next?"

    if command is None:
        return (
            f"I understand you want to {intent.type.label}, but I need more information "
            "to help you with that."
        )
    if intent.type == IntentType.THREAT_SCAN:
        return _threat_scan_response(command)
    lead_in = _LEAD_INS.get(intent.type)
    if lead_in:
        return f"{lead_in}\n\nCommand: `{command.preview_text}`"
    return (
        f"I understand you want to {intent.type.label}. {command.description}\n\n"
        f"I'll execute: `{command.preview_text}`"
    )


def execution_response(result: ExecutionResult) -> str:
    if result.success:
        return f"Command executed successfully!\n\n{result.output}"
    return f"Command execution failed:\n\n{result.error or 'Unknown error'}"


def help_suggestion(reasoning: str = "Error recovery suggestion") -> Suggestion:
    return Suggestion(
        type=SuggestionType.HELP,
        content='Type "help" to see available commands',
        reasoning=reasoning,
        confidence=1.0,
    )


def _command(content: str, reasoning: str, confidence: float) -> Suggestion:
    return Suggestion(
        type=SuggestionType.COMMAND, content=content, reasoning=reasoning, confidence=confidence
    )


def _intent_suggestions(intent_type: IntentType, context: ConversationContext) -> list[Suggestion]:
    if intent_type == IntentType.HELP_GENERAL:
        return [
            Suggestion(
                type=SuggestionType.HELP,
                content='Ask "help threat" for details on a command family',
                reasoning="Command families have their own usage notes",
                confidence=0.9,
            )
        ]
    if intent_type == IntentType.THREAT_SCAN:
        return [
            _command(
                "monitor threats in real-time",
                "After scanning, users often want to monitor",
                0.8,
            ),
            Suggestion(
                type=SuggestionType.WORKFLOW,
                content="Would you like me to guide you through a complete security assessment?",
                reasoning="Threat scanning is often part of a larger workflow",
                confidence=0.7,
            ),
        ]
    if intent_type == IntentType.THREAT_LIST:
        return [_command("monitor threats in real-time", "Keep watching for new threats", 0.7)]
    if intent_type == IntentType.AUTH_STATUS:
        if context.session.authentication_status == AuthenticationStatus.UNAUTHENTICATED:
            return [
                _command(
                    "log in to access threat detection features",
                    "User needs authentication for full functionality",
                    0.9,
                )
            ]
        return []
    if intent_type in (IntentType.SYSTEM_STATUS, IntentType.SYSTEM_HEALTH):
        return [
            _command("check for active threats", "System status often leads to threat checking", 0.7),
            _command("show system metrics", "Metrics give a closer view of platform load", 0.6),
        ]
    if intent_type == IntentType.NETWORK_SCAN:
        return [_command("check network status", "Confirm segments are reachable after a scan", 0.7)]
    if intent_type == IntentType.BEHAVIOR_ANALYZE:
        return [_command("show behavior patterns", "Patterns summarize the analysis", 0.6)]
    return []


def _repeat_pattern_suggestion(context: ConversationContext) -> Suggestion | None:
    if not context.recent_commands:
        return None
    last_command = context.recent_commands[0]
    if "scan" in last_command and "watch" not in last_command:
        return _command("start real-time monitoring", "Follow up scan with monitoring", 0.6)
    return _command(f"run `{last_command}` again", "Repeat your most recent command", 0.5)


def generate_suggestions(
    parse_result: ParseResult,
    context: ConversationContext,
) -> list[Suggestion]:
    """Return at most three follow-up suggestions for a turn."""
    suggestions: list[Suggestion] = []
    if parse_result.intent.confidence.is_low:
        suggestions.append(help_suggestion("Low confidence in understanding user intent"))

    suggestions.extend(_intent_suggestions(parse_result.intent.type, context))

    repeat = _repeat_pattern_suggestion(context)
    if repeat is not None:
        suggestions = suggestions[: MAX_SUGGESTIONS - 1] + [repeat]

    if not context.session.preferences.suggest_commands:
        suggestions = [s for s in suggestions if s.type == SuggestionType.HELP]

    return suggestions[:MAX_SUGGESTIONS]
