"""Tests for the built-in domain handlers."""

import pytest

from threatguard.handlers import (
    AuthHandler,
    BehaviorHandler,
    ConfigHandler,
    HelpHandler,
    IntelHandler,
    NetworkHandler,
    StatusHandler,
    ThreatHandler,
    default_handlers,
)


def test_default_handlers_cover_allowed_commands(safety_config):
    """Test that every allowed command type has a handler."""
    assert set(default_handlers()) == set(safety_config.allowed_commands)


class TestThreatHandler:
    """Test threat commands."""

    @pytest.mark.asyncio
    async def test_scan(self, make_context):
        """Test a scan report."""
        output = await ThreatHandler().execute(
            "scan", {"targets": ["10.0.0.0/8"], "scan-type": "deep"}, make_context()
        )
        assert output.error is None
        assert output.output.startswith("Threat scan (deep) initiated on 10.0.0.0/8")

    @pytest.mark.asyncio
    async def test_details_requires_id(self, make_context):
        """Test that details without an id is an error, not an exception."""
        output = await ThreatHandler().execute("details", {}, make_context())
        assert output.error == "A threat id is required for details"

    @pytest.mark.asyncio
    async def test_unknown_action(self, make_context):
        """Test unknown sub-actions."""
        output = await ThreatHandler().execute("explode", {}, make_context())
        assert output.error == "Unknown threat action: explode"


class TestSystemHandlers:
    """Test auth, config, help and status commands."""

    @pytest.mark.asyncio
    async def test_auth_status(self, make_context):
        """Test the authentication report."""
        output = await AuthHandler().execute("status", {}, make_context(authenticated=True))
        assert "Authentication Status: authenticated" in output.output
        assert "User: analyst" in output.output

    @pytest.mark.asyncio
    async def test_config_round_trip(self, make_context):
        """Test set, get and list."""
        handler = ConfigHandler()
        context = make_context()

        await handler.execute("set", {"key": "scan.timeout", "value": "30"}, context)
        got = await handler.execute("get", {"key": "scan.timeout"}, context)
        listed = await handler.execute("list", {}, context)

        assert got.output == "scan.timeout = 30"
        assert listed.output == "scan.timeout = 30"

    @pytest.mark.asyncio
    async def test_config_rejects_placeholders(self, make_context):
        """Test that placeholder values are never stored."""
        output = await ConfigHandler().execute(
            "set", {"key": "<key>", "value": "<value>"}, make_context()
        )
        assert output.error == "Both a key and a value are required"

    @pytest.mark.asyncio
    async def test_help_topic(self, make_context):
        """Test topic help and the general fallback."""
        handler = HelpHandler()
        topic = await handler.execute("command", {"topic": "network"}, make_context())
        general = await handler.execute("command", {}, make_context())

        assert topic.output.startswith("network:")
        assert general.output.startswith("ThreatGuard CLI Help")

    @pytest.mark.asyncio
    async def test_status_system(self, make_context):
        """Test the status summary."""
        context = make_context(recent_commands=["threat scan --targets 10.0.0.0/8"])
        output = await StatusHandler().execute("system", {}, context)
        assert "threat scan --targets 10.0.0.0/8" in output.output


class TestAnalysisHandlers:
    """Test network, behavior and intel commands."""

    @pytest.mark.asyncio
    async def test_handlers_never_raise_on_unknown_actions(self, make_context):
        """Test that every analysis handler reports unknown actions as errors."""
        for handler in (NetworkHandler(), BehaviorHandler(), IntelHandler()):
            output = await handler.execute("bogus", {}, make_context())
            assert output.error is not None
            assert output.error.endswith("action: bogus")
