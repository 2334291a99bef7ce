"""pytest configuration for ThreatGuard tests."""

import os
import sys
import uuid
from pathlib import Path

import pytest

# Add src directory to path so tests can import threatguard
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Keep the audit log in memory and never reach for a real Redis server
os.environ["THREATGUARD_DB_PATH"] = ":memory:"
os.environ["REDIS_ENABLED"] = "false"

from threatguard.models import (  # noqa: E402
    AuthenticationStatus,
    CandidateCommand,
    ConversationContext,
    IntentType,
    SafetyLevel,
    SessionState,
)
from threatguard.safety_config import SafetyConfig  # noqa: E402


@pytest.fixture
def test_session_id():
    """Generate a consistent test session ID."""
    return str(uuid.UUID("12345678-1234-1234-1234-123456789012"))


@pytest.fixture
def safety_config() -> SafetyConfig:
    """Built-in defaults, independent of config/safety.yaml."""
    return SafetyConfig()


@pytest.fixture
def make_context():
    """Factory for conversation contexts."""

    def _make(
        session_id: str = "session-1",
        authenticated: bool = False,
        **fields,
    ) -> ConversationContext:
        session = SessionState(
            session_id=session_id,
            user_id="analyst" if authenticated else None,
            authentication_status=(
                AuthenticationStatus.AUTHENTICATED
                if authenticated
                else AuthenticationStatus.UNAUTHENTICATED
            ),
        )
        return ConversationContext(session=session, **fields)

    return _make


@pytest.fixture
def make_command():
    """Factory for hand-built candidate commands."""

    def _make(
        command_type: str = "status",
        sub_action: str = "system",
        preview_text: str | None = None,
        intent: IntentType = IntentType.SYSTEM_STATUS,
        base_safety_level: SafetyLevel = SafetyLevel.SAFE,
        **fields,
    ) -> CandidateCommand:
        return CandidateCommand(
            intent=intent,
            command_type=command_type,
            sub_action=sub_action,
            preview_text=preview_text or f"{command_type} {sub_action}",
            description=fields.pop("description", "Test command"),
            estimated_duration_ms=fields.pop("estimated_duration_ms", 1000),
            base_safety_level=base_safety_level,
            **fields,
        )

    return _make
