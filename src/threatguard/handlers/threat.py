"""Handler for threat detection commands (scan, list, watch, details)."""

from ..models import ConversationContext, ParameterValue
from .base import HandlerOutput, as_list, unknown_action


class ThreatHandler:
    """Stubbed threat-detection backend.

    Detection itself is out of scope here; the handler reports what would be
    run so the conversation layer can be exercised end to end.
    """

    command_type = "threat"

    async def execute(
        self,
        sub_action: str,
        parameters: dict[str, ParameterValue],
        context: ConversationContext,
    ) -> HandlerOutput:
        if sub_action == "scan":
            return self._scan(parameters)
        if sub_action == "list":
            return self._list(parameters)
        if sub_action == "watch":
            return self._watch(parameters)
        if sub_action == "details":
            return self._details(parameters)
        return unknown_action(self.command_type, sub_action)

    def _scan(self, parameters: dict[str, ParameterValue]) -> HandlerOutput:
        targets = ", ".join(as_list(parameters.get("targets"))) or "local network"
        scan_type = parameters.get("scan-type", "quick")
        return HandlerOutput(
            output=(
                f"Threat scan ({scan_type}) initiated on {targets}\n"
                "Scan complete: no threats detected"
            ),
            suggestions=[
                'Use "threat watch" to monitor in real-time',
                'Use "threat list" to review detected threats',
            ],
        )

    def _list(self, parameters: dict[str, ParameterValue]) -> HandlerOutput:
        severity = "/".join(as_list(parameters.get("severity"))) or "all"
        since = parameters.get("since", "today")
        return HandlerOutput(output=f"No {severity} severity threats recorded since {since}")

    def _watch(self, parameters: dict[str, ParameterValue]) -> HandlerOutput:
        severity = "/".join(as_list(parameters.get("severity"))) or "all"
        return HandlerOutput(
            output=f"Monitoring for {severity} threat events",
            warnings=["Monitoring runs until stopped"],
        )

    def _details(self, parameters: dict[str, ParameterValue]) -> HandlerOutput:
        threat_id = parameters.get("threat-id")
        if not threat_id:
            return HandlerOutput(output="", error="A threat id is required for details")
        return HandlerOutput(output=f"Threat {threat_id}: no additional details available")
