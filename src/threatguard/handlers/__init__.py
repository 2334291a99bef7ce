"""Domain handlers, one per command type."""

from .analysis import BehaviorHandler, IntelHandler, NetworkHandler
from .base import DomainHandler, HandlerOutput
from .system import AuthHandler, ConfigHandler, HelpHandler, StatusHandler
from .threat import ThreatHandler


def default_handlers() -> dict[str, DomainHandler]:
    """Build a fresh handler registry keyed by command type."""
    return {
        "auth": AuthHandler(),
        "threat": ThreatHandler(),
        "network": NetworkHandler(),
        "behavior": BehaviorHandler(),
        "intel": IntelHandler(),
        "config": ConfigHandler(),
        "help": HelpHandler(),
        "status": StatusHandler(),
    }


__all__ = [
    "AuthHandler",
    "BehaviorHandler",
    "ConfigHandler",
    "DomainHandler",
    "HandlerOutput",
    "HelpHandler",
    "IntelHandler",
    "NetworkHandler",
    "StatusHandler",
    "ThreatHandler",
    "default_handlers",
]
