"""Safety configuration loader.

Loads pipeline safety configuration from a YAML file with safe defaults.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .models import SafetyLevel

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_COMMANDS = (
    "auth",
    "threat",
    "network",
    "behavior",
    "intel",
    "config",
    "help",
    "status",
)

DEFAULT_RESTRICTED_COMMANDS = ("rm", "delete", "drop", "truncate", "format")

DEFAULT_SENSITIVE_INTENTS = ("threat_scan", "network_scan", "behavior_analyze")


@dataclass(frozen=True)
class SafetyConfig:
    """Pipeline configuration loaded once at startup and shared by reference."""

    confirmation_threshold: SafetyLevel = SafetyLevel.MEDIUM
    confirmation_timeout_seconds: float = 30.0
    collaborator_timeout_seconds: float = 10.0
    allowed_commands: frozenset[str] = field(
        default_factory=lambda: frozenset(DEFAULT_ALLOWED_COMMANDS)
    )
    restricted_commands: frozenset[str] = field(
        default_factory=lambda: frozenset(DEFAULT_RESTRICTED_COMMANDS)
    )
    sensitive_intents: frozenset[str] = field(
        default_factory=lambda: frozenset(DEFAULT_SENSITIVE_INTENTS)
    )
    broad_cidr_prefix: int = 24
    large_target_count: int = 10
    auto_execute: bool = True
    enable_contextual_mapping: bool = True
    enable_smart_defaults: bool = True
    # Share of verification modalities that must agree in the identity
    # services; carried as a tunable, nothing here derives it.
    multimodal_verify_ratio: float = 0.6


def _as_string_set(data: dict[str, Any], key: str, default: frozenset[str]) -> frozenset[str]:
    if key not in data:
        return default
    value = data[key]
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValueError(f"Field '{key}' must be a list of strings")
    return frozenset(value)


def _as_number(data: dict[str, Any], key: str, default: float, minimum: float = 0.0) -> float:
    if key not in data:
        return default
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ValueError(f"Field '{key}' must be a number")
    if value < minimum:
        raise ValueError(f"Field '{key}' must be >= {minimum}")
    return float(value)


def _as_bool(data: dict[str, Any], key: str, default: bool) -> bool:
    if key not in data:
        return default
    if not isinstance(data[key], bool):
        raise ValueError(f"Field '{key}' must be a boolean")
    return data[key]


def _parse_safety_config(data: dict[str, Any]) -> SafetyConfig:
    """Parse a configuration dictionary into a SafetyConfig object.

    Missing keys keep their defaults.

    Args:
        data: Dictionary containing safety configuration.

    Returns:
        SafetyConfig object with parsed values.

    Raises:
        ValueError: If a field has the wrong type or an out-of-range value.
    """
    defaults = SafetyConfig()

    threshold = defaults.confirmation_threshold
    if "confirmation_threshold" in data:
        try:
            threshold = SafetyLevel(data["confirmation_threshold"])
        except ValueError as e:
            raise ValueError(
                f"Field 'confirmation_threshold' must be one of "
                f"{[level.value for level in SafetyLevel]}"
            ) from e

    cidr_prefix = _as_number(data, "broad_cidr_prefix", defaults.broad_cidr_prefix)
    if cidr_prefix > 32:
        raise ValueError("Field 'broad_cidr_prefix' must be <= 32")

    ratio = _as_number(data, "multimodal_verify_ratio", defaults.multimodal_verify_ratio)
    if ratio > 1.0:
        raise ValueError("Field 'multimodal_verify_ratio' must be <= 1.0")

    return SafetyConfig(
        confirmation_threshold=threshold,
        confirmation_timeout_seconds=_as_number(
            data, "confirmation_timeout_seconds", defaults.confirmation_timeout_seconds
        ),
        collaborator_timeout_seconds=_as_number(
            data, "collaborator_timeout_seconds", defaults.collaborator_timeout_seconds
        ),
        allowed_commands=_as_string_set(data, "allowed_commands", defaults.allowed_commands),
        restricted_commands=_as_string_set(
            data, "restricted_commands", defaults.restricted_commands
        ),
        sensitive_intents=_as_string_set(data, "sensitive_intents", defaults.sensitive_intents),
        broad_cidr_prefix=int(cidr_prefix),
        large_target_count=int(
            _as_number(data, "large_target_count", defaults.large_target_count)
        ),
        auto_execute=_as_bool(data, "auto_execute", defaults.auto_execute),
        enable_contextual_mapping=_as_bool(
            data, "enable_contextual_mapping", defaults.enable_contextual_mapping
        ),
        enable_smart_defaults=_as_bool(
            data, "enable_smart_defaults", defaults.enable_smart_defaults
        ),
        multimodal_verify_ratio=ratio,
    )


def _get_default_config() -> SafetyConfig:
    """Get safe default configuration."""
    return SafetyConfig()


def load_safety_config(config_path: str | None = None) -> SafetyConfig:
    """Load safety configuration from YAML file.

    Args:
        config_path: Path to the configuration YAML file. If None, uses
                    THREATGUARD_SAFETY_CONFIG or config/safety.yaml.

    Returns:
        SafetyConfig. If the file is missing or invalid, returns safe defaults.
    """
    if config_path is None:
        config_path = os.getenv("THREATGUARD_SAFETY_CONFIG")
    if config_path is None:
        project_root = Path(__file__).parent.parent.parent
        config_path = os.path.join(project_root, "config", "safety.yaml")

    if not os.path.exists(config_path):
        return _get_default_config()

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f)

        if data is None:
            return _get_default_config()
        if not isinstance(data, dict):
            raise ValueError("Config file must contain a YAML dictionary")

        return _parse_safety_config(data)

    except (yaml.YAMLError, ValueError, OSError) as e:
        logger.warning("Failed to load safety config from %s: %s", config_path, e)
        logger.warning("Using safe default safety configuration")
        return _get_default_config()


_cached_config: SafetyConfig | None = None


def get_safety_config(config_path: str | None = None) -> SafetyConfig:
    """Get the safety configuration (cached)."""
    global _cached_config
    if _cached_config is None:
        _cached_config = load_safety_config(config_path)
    return _cached_config


def reload_safety_config(config_path: str | None = None) -> SafetyConfig:
    """Reload safety configuration from file."""
    global _cached_config
    _cached_config = load_safety_config(config_path)
    return _cached_config


def clear_safety_config_cache() -> None:
    """Clear the cached configuration.

    Used primarily for testing to ensure clean state between tests.
    """
    global _cached_config
    _cached_config = None
