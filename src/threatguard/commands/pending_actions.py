"""Confirmation controller: at most one pending command per session.

States per session::

    NONE -> AWAITING_CONFIRMATION -> {CONFIRMED | CANCELLED | EXPIRED} -> NONE

Each slot owns its own asyncio timer. The timer callback and an explicit
take/cancel both pop the slot synchronously on the event loop, so exactly one
of them wins and the other finds nothing to do.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from ..logging_utils import log_info
from ..models import CandidateCommand, PendingConfirmation, SafetyVerdict

logger = logging.getLogger(__name__)

ExpireHook = Callable[[str, PendingConfirmation], Awaitable[None] | None]


class ConfirmationOutcome(str, Enum):
    """How a pending confirmation left the AWAITING_CONFIRMATION state."""

    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    REPLACED = "replaced"


@dataclass
class _Slot:
    pending: PendingConfirmation
    timer: asyncio.TimerHandle


class ConfirmationController:
    """Hold pending confirmations with per-session cancellable timeouts."""

    def __init__(
        self,
        timeout_seconds: float = 30.0,
        on_expire: ExpireHook | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            timeout_seconds: Time before a pending confirmation auto-expires
            on_expire: Optional hook called with (session_id, pending) after expiry.
                May be a coroutine function; it is then scheduled on the loop.
        """
        self.timeout_seconds = timeout_seconds
        self.on_expire = on_expire
        self._slots: dict[str, _Slot] = {}
        self._hook_tasks: set[asyncio.Task[None]] = set()

    def arm(
        self,
        session_id: str,
        command: CandidateCommand,
        verdict: SafetyVerdict,
    ) -> tuple[PendingConfirmation, PendingConfirmation | None]:
        """Enter AWAITING_CONFIRMATION, replacing any existing pending command.

        Must be called from a running event loop.

        Returns:
            Tuple of (new pending confirmation, replaced confirmation or None)
        """
        replaced = self._pop(session_id)
        if replaced is not None:
            self._log_transition(session_id, replaced, ConfirmationOutcome.REPLACED)

        pending = PendingConfirmation(
            command=command,
            verdict=verdict,
            created_at=datetime.now(UTC),
            timeout_ms=int(self.timeout_seconds * 1000),
        )
        loop = asyncio.get_running_loop()
        timer = loop.call_later(self.timeout_seconds, self._expire, session_id, pending)
        self._slots[session_id] = _Slot(pending=pending, timer=timer)

        log_info(
            logger,
            "Awaiting confirmation",
            session_id=session_id,
            command=command.preview_text,
            timeout_ms=pending.timeout_ms,
        )
        return pending, replaced

    def get(self, session_id: str) -> PendingConfirmation | None:
        """Return the pending confirmation for a session without consuming it."""
        slot = self._slots.get(session_id)
        return slot.pending if slot else None

    def has_pending(self, session_id: str) -> bool:
        return session_id in self._slots

    def take(self, session_id: str) -> PendingConfirmation | None:
        """Consume the pending confirmation for execution (CONFIRMED)."""
        pending = self._pop(session_id)
        if pending is not None:
            self._log_transition(session_id, pending, ConfirmationOutcome.CONFIRMED)
        return pending

    def cancel(self, session_id: str) -> PendingConfirmation | None:
        """Discard the pending confirmation (CANCELLED)."""
        pending = self._pop(session_id)
        if pending is not None:
            self._log_transition(session_id, pending, ConfirmationOutcome.CANCELLED)
        return pending

    def discard(self, session_id: str, pending: PendingConfirmation) -> bool:
        """Drop a specific pending confirmation if it still occupies the slot.

        Returns:
            True if it was dropped, False if the slot held something else or nothing.
        """
        slot = self._slots.get(session_id)
        if slot is None or slot.pending is not pending:
            return False
        self._pop(session_id)
        self._log_transition(session_id, pending, ConfirmationOutcome.CANCELLED)
        return True

    def close(self) -> None:
        """Cancel every timer and drop all pending confirmations."""
        for slot in self._slots.values():
            slot.timer.cancel()
        self._slots.clear()

    def _pop(self, session_id: str) -> PendingConfirmation | None:
        slot = self._slots.pop(session_id, None)
        if slot is None:
            return None
        slot.timer.cancel()
        return slot.pending

    def _expire(self, session_id: str, pending: PendingConfirmation) -> None:
        slot = self._slots.get(session_id)
        # A newer command may already occupy the slot.
        if slot is None or slot.pending is not pending:
            return
        del self._slots[session_id]
        self._log_transition(session_id, pending, ConfirmationOutcome.EXPIRED)

        if self.on_expire is None:
            return
        result = self.on_expire(session_id, pending)
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._hook_tasks.add(task)
            task.add_done_callback(self._hook_tasks.discard)

    def _log_transition(
        self,
        session_id: str,
        pending: PendingConfirmation,
        outcome: ConfirmationOutcome,
    ) -> None:
        log_info(
            logger,
            "Pending confirmation closed",
            session_id=session_id,
            command=pending.command.preview_text,
            outcome=outcome.value,
        )
