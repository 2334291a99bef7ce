"""Domain handler contract shared by every command family."""

from dataclasses import dataclass, field
from typing import Protocol

from ..models import ConversationContext, ParameterValue


@dataclass(frozen=True)
class HandlerOutput:
    """What a handler reports back to the execution router.

    Handlers never raise for expected failures; they set ``error`` instead.
    """

    output: str
    error: str | None = None
    warnings: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)


class DomainHandler(Protocol):
    """One handler per command type (auth, threat, network, ...)."""

    async def execute(
        self,
        sub_action: str,
        parameters: dict[str, ParameterValue],
        context: ConversationContext,
    ) -> HandlerOutput: ...


def unknown_action(command_type: str, sub_action: str) -> HandlerOutput:
    return HandlerOutput(output="", error=f"Unknown {command_type} action: {sub_action}")


def as_list(value: ParameterValue | None) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)
