"""
Device session state machine.

Disconnected -> Connecting -> AwaitingAppSelection -> Ready
  -> AwaitingUserConfirmation -> Completed | Rejected | Error

Completed and Rejected hand the session back to Ready for the next call.
Error is only left through reset(), which drops the session to Disconnected.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from loguru import logger

from walletcore.errors import DeviceError


class LedgerState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_APP_SELECTION = "awaiting_app_selection"
    READY = "ready"
    AWAITING_USER_CONFIRMATION = "awaiting_user_confirmation"
    COMPLETED = "completed"
    REJECTED = "rejected"
    ERROR = "error"


_TRANSITIONS: dict[LedgerState, frozenset[LedgerState]] = {
    LedgerState.DISCONNECTED: frozenset({LedgerState.CONNECTING}),
    LedgerState.CONNECTING: frozenset(
        {LedgerState.AWAITING_APP_SELECTION, LedgerState.READY, LedgerState.ERROR}
    ),
    LedgerState.AWAITING_APP_SELECTION: frozenset({LedgerState.READY, LedgerState.ERROR}),
    LedgerState.READY: frozenset({LedgerState.AWAITING_USER_CONFIRMATION, LedgerState.ERROR}),
    LedgerState.AWAITING_USER_CONFIRMATION: frozenset(
        {LedgerState.COMPLETED, LedgerState.REJECTED, LedgerState.ERROR}
    ),
    LedgerState.COMPLETED: frozenset({LedgerState.READY, LedgerState.ERROR}),
    LedgerState.REJECTED: frozenset({LedgerState.READY, LedgerState.ERROR}),
    LedgerState.ERROR: frozenset(),
}

# States in which the device session is usable without reconnecting
LIVE_STATES = frozenset({LedgerState.READY, LedgerState.COMPLETED, LedgerState.REJECTED})


@dataclass(frozen=True)
class LedgerApp:
    """Application currently open on the device."""

    name: str
    version: str


@dataclass(frozen=True)
class LedgerStatus:
    """Snapshot of device connectivity. Refreshed on every status() call."""

    connected: bool
    locked: bool
    app: LedgerApp | None
    state: LedgerState
    busy: bool = False


class DeviceSession:
    """
    Explicit state machine for one device session.

    The clock is injectable so tests can drive timeouts deterministically.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.state = LedgerState.DISCONNECTED
        self.entered_at = clock()
        self.history: list[tuple[LedgerState, float]] = [(self.state, self.entered_at)]

    def can_transition(self, new_state: LedgerState) -> bool:
        return new_state in _TRANSITIONS[self.state]

    def transition(self, new_state: LedgerState) -> None:
        if not self.can_transition(new_state):
            raise DeviceError(f"Invalid device transition: {self.state.value} -> {new_state.value}")
        self._enter(new_state)

    def fail(self) -> None:
        """Abandon the current step; the session needs a reset before reuse."""
        if self.state != LedgerState.ERROR:
            self._enter(LedgerState.ERROR)

    def reset(self) -> None:
        self._enter(LedgerState.DISCONNECTED)

    def elapsed(self) -> float:
        """Seconds spent in the current state"""
        return self._clock() - self.entered_at

    @property
    def is_live(self) -> bool:
        return self.state in LIVE_STATES

    def _enter(self, new_state: LedgerState) -> None:
        now = self._clock()
        logger.debug(f"Device state {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.entered_at = now
        self.history.append((new_state, now))
        if len(self.history) > 100:
            del self.history[:-100]
