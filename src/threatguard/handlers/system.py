"""Handlers for auth, config, help and status commands."""

from ..models import ConversationContext, ParameterValue
from .base import HandlerOutput, unknown_action

HELP_TEXT = """ThreatGuard CLI Help

Available Commands:
  auth [login|logout|status]          Authentication management
  threat [scan|list|watch|details]    Threat detection and monitoring
  network [scan|monitor|status]       Network security monitoring
  behavior [analyze|patterns|baseline] Behavioral analysis
  intel [query|feeds|ioc-lookup]      Threat intelligence
  config [get|set|list]               Configuration management
  status [system|health|metrics]      System status

You can also use natural language, for example:
  "scan 192.168.1.0/24 for threats"
  "show critical threats from today"
  "check system status"

High-risk commands require confirmation before they run."""

TOPIC_HELP = {
    "auth": "auth login | auth logout | auth status",
    "threat": "threat scan --targets <cidr> [--scan-type quick|deep|full] | threat list | threat watch",
    "network": "network scan --targets <cidr> [--ports <list>] | network monitor | network status",
    "behavior": "behavior analyze [--user <id>] [--time-range <range>]",
    "intel": "intel query --indicator <ip|domain|hash> | intel feeds",
    "config": "config get <key> | config set <key> <value> | config list",
    "status": "status system [--health-check] | status health | status metrics",
}


class AuthHandler:
    """Report and simulate authentication state. Token storage lives elsewhere."""

    command_type = "auth"

    async def execute(
        self,
        sub_action: str,
        parameters: dict[str, ParameterValue],
        context: ConversationContext,
    ) -> HandlerOutput:
        session = context.session
        if sub_action == "status":
            return HandlerOutput(
                output=(
                    f"Authentication Status: {session.authentication_status.value}\n"
                    f"User: {session.user_id or 'Not authenticated'}"
                ),
                suggestions=['Use "auth login" to authenticate', 'Use "auth logout" to sign out'],
            )
        if sub_action == "login":
            return HandlerOutput(
                output="Login initiated. Complete authentication in your browser."
            )
        if sub_action == "logout":
            return HandlerOutput(output="Successfully logged out.")
        return unknown_action(self.command_type, sub_action)


class ConfigHandler:
    """In-process configuration store for conversational config commands."""

    command_type = "config"

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})

    async def execute(
        self,
        sub_action: str,
        parameters: dict[str, ParameterValue],
        context: ConversationContext,
    ) -> HandlerOutput:
        if sub_action == "list":
            if not self._values:
                return HandlerOutput(output="No configuration values set")
            lines = [f"{key} = {value}" for key, value in sorted(self._values.items())]
            return HandlerOutput(output="\n".join(lines))

        key = parameters.get("key")
        if sub_action == "get":
            if not key:
                return HandlerOutput(output="", error="A configuration key is required")
            value = self._values.get(str(key))
            if value is None:
                return HandlerOutput(output="", error=f"Configuration key '{key}' is not set")
            return HandlerOutput(output=f"{key} = {value}")

        if sub_action == "set":
            value = parameters.get("value")
            if not key or not value or str(key).startswith("<") or str(value).startswith("<"):
                return HandlerOutput(output="", error="Both a key and a value are required")
            self._values[str(key)] = str(value)
            return HandlerOutput(output=f"Configuration updated: {key} = {value}")

        return unknown_action(self.command_type, sub_action)


class HelpHandler:
    command_type = "help"

    async def execute(
        self,
        sub_action: str,
        parameters: dict[str, ParameterValue],
        context: ConversationContext,
    ) -> HandlerOutput:
        topic = parameters.get("topic")
        if topic and str(topic) in TOPIC_HELP:
            return HandlerOutput(output=f"{topic}: {TOPIC_HELP[str(topic)]}")
        return HandlerOutput(output=HELP_TEXT)


class StatusHandler:
    """Summarize platform and session status."""

    command_type = "status"

    async def execute(
        self,
        sub_action: str,
        parameters: dict[str, ParameterValue],
        context: ConversationContext,
    ) -> HandlerOutput:
        session = context.session
        if sub_action == "system":
            recent = "\n".join(f"  {cmd}" for cmd in context.recent_commands[:3])
            return HandlerOutput(
                output=(
                    "ThreatGuard System Status\n"
                    f"Authentication: {session.authentication_status.value}\n"
                    f"User: {session.user_id or 'Not authenticated'}\n"
                    f"Session: {session.session_id[:8]}\n"
                    f"Conversation context: {len(context.recent_intents)} recent intents\n"
                    f"Recent activity:\n{recent or '  No recent commands'}"
                )
            )
        if sub_action == "health":
            return HandlerOutput(output="All services healthy")
        if sub_action == "metrics":
            return HandlerOutput(
                output=f"Session interactions: {context.total_interactions}"
            )
        return unknown_action(self.command_type, sub_action)
