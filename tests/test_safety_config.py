"""Tests for safety configuration loader."""

import tempfile
from pathlib import Path

import pytest

from threatguard.models import SafetyLevel
from threatguard.safety_config import (
    SafetyConfig,
    _get_default_config,
    _parse_safety_config,
    clear_safety_config_cache,
    get_safety_config,
    load_safety_config,
    reload_safety_config,
)


@pytest.fixture(autouse=True)
def reset_cache():
    clear_safety_config_cache()
    yield
    clear_safety_config_cache()


def test_get_default_config():
    """Test that default config has conservative settings."""
    config = _get_default_config()

    assert config.confirmation_threshold == SafetyLevel.MEDIUM
    assert config.confirmation_timeout_seconds == 30.0
    assert "threat" in config.allowed_commands
    assert "rm" in config.restricted_commands
    assert "threat_scan" in config.sensitive_intents
    assert config.broad_cidr_prefix == 24
    assert config.multimodal_verify_ratio == 0.6


def test_parse_partial_config_keeps_defaults():
    """Test that missing keys keep their defaults."""
    config = _parse_safety_config({"confirmation_threshold": "high", "auto_execute": False})

    assert config.confirmation_threshold == SafetyLevel.HIGH
    assert config.auto_execute is False
    assert config.collaborator_timeout_seconds == 10.0


def test_parse_string_sets():
    """Test list fields become frozensets."""
    config = _parse_safety_config({"allowed_commands": ["status", "help"]})
    assert config.allowed_commands == frozenset({"status", "help"})


@pytest.mark.parametrize(
    "data",
    [
        {"confirmation_threshold": "extreme"},
        {"confirmation_timeout_seconds": "soon"},
        {"confirmation_timeout_seconds": -1},
        {"allowed_commands": "threat"},
        {"auto_execute": "yes"},
        {"broad_cidr_prefix": 40},
        {"multimodal_verify_ratio": 1.5},
    ],
)
def test_parse_invalid_values(data):
    """Test that malformed fields are rejected."""
    with pytest.raises(ValueError):
        _parse_safety_config(data)


def test_load_from_file():
    """Test loading a YAML file."""
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "safety.yaml"
        path.write_text("confirmation_timeout_seconds: 5\nlarge_target_count: 3\n")

        config = load_safety_config(str(path))

    assert config.confirmation_timeout_seconds == 5.0
    assert config.large_target_count == 3


def test_load_missing_file_returns_defaults():
    """Test that a missing file gives the defaults."""
    assert load_safety_config("/nonexistent/safety.yaml") == SafetyConfig()


def test_load_invalid_file_returns_defaults():
    """Test that an invalid file falls back to the defaults."""
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "safety.yaml"
        path.write_text("- just\n- a list\n")

        assert load_safety_config(str(path)) == SafetyConfig()


def test_env_var_selects_file(monkeypatch):
    """Test THREATGUARD_SAFETY_CONFIG."""
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "custom.yaml"
        path.write_text("confirmation_threshold: critical\n")
        monkeypatch.setenv("THREATGUARD_SAFETY_CONFIG", str(path))

        assert load_safety_config().confirmation_threshold == SafetyLevel.CRITICAL


def test_shipped_config_matches_defaults(monkeypatch):
    """Test that config/safety.yaml restates the built-in defaults."""
    monkeypatch.delenv("THREATGUARD_SAFETY_CONFIG", raising=False)
    assert load_safety_config() == SafetyConfig()


def test_cached_and_reloaded():
    """Test caching and explicit reloads."""
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "safety.yaml"
        path.write_text("large_target_count: 7\n")

        first = get_safety_config(str(path))
        assert get_safety_config() is first

        path.write_text("large_target_count: 8\n")
        assert reload_safety_config(str(path)).large_target_count == 8
