"""Handlers for network, behavior and threat-intelligence commands."""

from ..models import ConversationContext, ParameterValue
from .base import HandlerOutput, as_list, unknown_action


class NetworkHandler:
    """Stubbed network monitoring backend."""

    command_type = "network"

    async def execute(
        self,
        sub_action: str,
        parameters: dict[str, ParameterValue],
        context: ConversationContext,
    ) -> HandlerOutput:
        targets = ", ".join(as_list(parameters.get("targets"))) or "local network"
        if sub_action == "scan":
            ports = parameters.get("ports")
            port_text = f" (ports {ports})" if ports else ""
            return HandlerOutput(output=f"Network scan of {targets}{port_text} completed")
        if sub_action == "monitor":
            return HandlerOutput(
                output=f"Monitoring network traffic on {targets}",
                warnings=["Monitoring runs until stopped"],
            )
        if sub_action == "status":
            return HandlerOutput(output="Network status: all monitored segments reachable")
        return unknown_action(self.command_type, sub_action)


class BehaviorHandler:
    """Stubbed behavioral analysis backend."""

    command_type = "behavior"

    async def execute(
        self,
        sub_action: str,
        parameters: dict[str, ParameterValue],
        context: ConversationContext,
    ) -> HandlerOutput:
        if sub_action not in ("analyze", "patterns", "baseline"):
            return unknown_action(self.command_type, sub_action)

        scope = f"user {parameters['user']}" if "user" in parameters else "all users"
        window = parameters.get("time-range", "the default window")
        return HandlerOutput(output=f"Behavior {sub_action} completed for {scope} over {window}")


class IntelHandler:
    """Stubbed threat-intelligence lookup backend."""

    command_type = "intel"

    async def execute(
        self,
        sub_action: str,
        parameters: dict[str, ParameterValue],
        context: ConversationContext,
    ) -> HandlerOutput:
        if sub_action == "feeds":
            return HandlerOutput(output="Threat intelligence feeds: all sources up to date")
        if sub_action not in ("query", "ioc-lookup"):
            return unknown_action(self.command_type, sub_action)

        indicator = parameters.get("indicator")
        if not indicator or str(indicator).startswith("<"):
            return HandlerOutput(output="", error="An indicator is required for intel lookups")
        return HandlerOutput(output=f"No reputation findings for {indicator}")
