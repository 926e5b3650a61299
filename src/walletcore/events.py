"""
Wallet events emitted during reconciliation and address generation.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from enum import Enum

from loguru import logger
from pydantic import BaseModel, ConfigDict

from walletcore.address import Address
from walletcore.models import InclusionState


class WalletEventType(str, Enum):
    BALANCE_CHANGE = "balance_change"
    TRANSACTION_INCLUSION = "transaction_inclusion"
    CONSOLIDATION_REQUIRED = "consolidation_required"
    LEDGER_ADDRESS_GENERATION = "ledger_address_generation"


class WalletEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_type: WalletEventType


class BalanceChangeEvent(WalletEvent):
    event_type: WalletEventType = WalletEventType.BALANCE_CHANGE
    address: Address
    balance_change: int
    new_balance: int


class TransactionInclusionEvent(WalletEvent):
    event_type: WalletEventType = WalletEventType.TRANSACTION_INCLUSION
    transaction_id: str
    inclusion_state: InclusionState


class ConsolidationRequiredEvent(WalletEvent):
    event_type: WalletEventType = WalletEventType.CONSOLIDATION_REQUIRED
    address: Address
    output_count: int


class LedgerAddressGenerationEvent(WalletEvent):
    event_type: WalletEventType = WalletEventType.LEDGER_ADDRESS_GENERATION
    address: Address


EventCallback = Callable[[int, WalletEvent], None]


class EventEmitter:
    """
    Dispatches wallet events to registered callbacks.

    Callbacks receive (account_index, event). A failing callback is logged
    and does not affect other callbacks or the operation that emitted.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: dict[WalletEventType, list[EventCallback]] = {}

    def on(self, event_types: WalletEventType | list[WalletEventType], callback: EventCallback) -> None:
        """Register a callback; an empty list subscribes to every event type."""
        if isinstance(event_types, WalletEventType):
            event_types = [event_types]
        if not event_types:
            event_types = list(WalletEventType)
        with self._lock:
            for event_type in event_types:
                self._listeners.setdefault(event_type, []).append(callback)

    def off(self, event_types: WalletEventType | list[WalletEventType] | None = None) -> None:
        """Remove callbacks for the given event types, or all callbacks."""
        with self._lock:
            if event_types is None:
                self._listeners.clear()
                return
            if isinstance(event_types, WalletEventType):
                event_types = [event_types]
            for event_type in event_types:
                self._listeners.pop(event_type, None)

    def emit(self, account_index: int, event: WalletEvent) -> None:
        with self._lock:
            callbacks = list(self._listeners.get(event.event_type, []))

        for callback in callbacks:
            try:
                callback(account_index, event)
            except Exception as e:
                logger.error(f"Event callback failed for {event.event_type.value}: {e}")
