"""
Account reconciliation: fold ledger-reported outputs into balance and history.

Each sync pass merges the reported outputs into the known set (keyed by
OutputId), derives one Transaction per originating transaction and then
recomputes the balance from scratch. Inclusion states only move forward:
pending -> confirmed | conflicting. A delta that would move an output
backwards, or that contradicts what is already known about it, is recorded
as a conflict, logged and dropped.
"""

from __future__ import annotations

import asyncio
from collections.abc import Collection, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime

from loguru import logger

from walletcore.address import Address, Network
from walletcore.constants import DEFAULT_OUTPUT_CONSOLIDATION_THRESHOLD
from walletcore.errors import ReconciliationError
from walletcore.events import (
    BalanceChangeEvent,
    ConsolidationRequiredEvent,
    EventEmitter,
    TransactionInclusionEvent,
)
from walletcore.models import (
    AccountBalance,
    InclusionState,
    LedgerReport,
    OutputData,
    OutputId,
    OutputKind,
    ReportedTransaction,
    Transaction,
    TransactionDirection,
)

MAX_RECORDED_CONFLICTS = 100


@dataclass(frozen=True)
class ReconciliationConflict:
    """A dropped ledger delta."""

    reason: str
    output_id: OutputId | None = None
    transaction_id: str | None = None

    def error(self) -> ReconciliationError:
        return ReconciliationError(str(self))

    def __str__(self) -> str:
        subject = str(self.output_id) if self.output_id is not None else self.transaction_id
        return f"{subject}: {self.reason}"


@dataclass
class MergeResult:
    outputs: dict[OutputId, OutputData]
    conflicts: list[ReconciliationConflict] = field(default_factory=list)
    changed: list[OutputData] = field(default_factory=list)


def _as_mapping(
    outputs: Mapping[OutputId, OutputData] | Iterable[OutputData],
) -> dict[OutputId, OutputData]:
    if isinstance(outputs, Mapping):
        return dict(outputs)
    return {output.output_id: output for output in outputs}


def _record(conflicts: list[ReconciliationConflict], conflict: ReconciliationConflict) -> None:
    logger.warning(f"Dropping ledger delta for {conflict}")
    conflicts.append(conflict)


def _merge_one(known: OutputData, reported: OutputData) -> OutputData | str:
    """Return the merged output, or the reason the report is rejected."""
    if reported.amount != known.amount:
        return f"amount changed from {known.amount} to {reported.amount}"
    if reported.address != known.address:
        return f"address changed from {known.address} to {reported.address}"

    state = known.inclusion_state
    if reported.inclusion_state != state:
        if not state.can_advance_to(reported.inclusion_state):
            return (
                f"inclusion state regression {state.value} -> {reported.inclusion_state.value}"
            )
        state = reported.inclusion_state

    if known.is_spent and not reported.is_spent:
        return "spent output reported as unspent"

    return known.model_copy(
        update={
            "inclusion_state": state,
            "is_spent": known.is_spent or reported.is_spent,
            "message_id": known.message_id or reported.message_id,
            "network_id": known.network_id or reported.network_id,
            "timestamp": known.timestamp or reported.timestamp,
        }
    )


def merge_outputs(
    known: Mapping[OutputId, OutputData] | Iterable[OutputData],
    reported: Iterable[OutputData],
    network: Network | None = None,
) -> MergeResult:
    """
    Merge reported outputs into the known set.

    Args:
        known: Outputs from previous passes, keyed by id (or a plain iterable)
        reported: Outputs from this pass
        network: If set, outputs on another network are rejected

    Returns:
        MergeResult with the new output set, the dropped deltas and the
        outputs that were inserted or advanced
    """
    result = MergeResult(outputs=_as_mapping(known))

    for output in reported:
        output_id = output.output_id
        if network is not None and output.address.network != network:
            _record(
                result.conflicts,
                ReconciliationConflict(
                    f"address {output.address} is not on {network.value}", output_id=output_id
                ),
            )
            continue

        existing = result.outputs.get(output_id)
        if existing is None:
            result.outputs[output_id] = output
            result.changed.append(output)
            continue

        merged = _merge_one(existing, output)
        if isinstance(merged, str):
            _record(result.conflicts, ReconciliationConflict(merged, output_id=output_id))
            continue
        if merged != existing:
            result.outputs[output_id] = merged
            result.changed.append(merged)

    return result


def _output_state(outputs: list[OutputData]) -> InclusionState:
    states = {output.inclusion_state for output in outputs}
    if InclusionState.CONFLICTING in states:
        return InclusionState.CONFLICTING
    if InclusionState.CONFIRMED in states:
        return InclusionState.CONFIRMED
    return InclusionState.PENDING


def derive_transactions(
    outputs: Mapping[OutputId, OutputData] | Iterable[OutputData],
    reported_transactions: Iterable[ReportedTransaction] = (),
    account_addresses: Collection[Address] = (),
    existing: Mapping[str, Transaction] | None = None,
    local_outgoing: Collection[str] = (),
    conflicts: list[ReconciliationConflict] | None = None,
) -> dict[str, Transaction]:
    """
    Build the transaction arena from the current output set.

    One entry per originating transaction, keyed by transaction id. Entries
    from ``existing`` are kept (never deleted) and only replaced when their
    data changes; their inclusion state never moves backwards and their
    first-observed timestamp is preserved.

    An output belongs to the account when its address is in
    ``account_addresses``; with no addresses given every known output does.
    """
    outputs_by_id = _as_mapping(outputs)
    arena: dict[str, Transaction] = dict(existing or {})
    reported_by_id = {tx.transaction_id: tx for tx in reported_transactions}
    conflicts = conflicts if conflicts is not None else []

    def owned(output: OutputData) -> bool:
        return not account_addresses or output.address in account_addresses

    created: dict[str, list[OutputData]] = {}
    for output in outputs_by_id.values():
        created.setdefault(output.transaction_id, []).append(output)

    transaction_ids = list(created)
    transaction_ids.extend(tx_id for tx_id in reported_by_id if tx_id not in created)

    for tx_id in transaction_ids:
        tx_outputs = sorted(created.get(tx_id, []), key=lambda o: o.output_id.index)
        reported = reported_by_id.get(tx_id)
        previous = arena.get(tx_id)

        inputs = list(reported.inputs) if reported is not None else []
        if not inputs and previous is not None:
            inputs = list(previous.inputs)
        spent_owned = [
            outputs_by_id[input_id]
            for input_id in inputs
            if input_id in outputs_by_id and owned(outputs_by_id[input_id])
        ]
        received = sum(output.amount for output in tx_outputs if owned(output))

        if spent_owned or tx_id in local_outgoing or (
            previous is not None and previous.direction == TransactionDirection.OUTGOING
        ):
            direction = TransactionDirection.OUTGOING
            amount = max(sum(output.amount for output in spent_owned) - received, 0)
        else:
            direction = TransactionDirection.INCOMING
            amount = received

        state = reported.inclusion_state if reported is not None else _output_state(tx_outputs)
        if previous is not None and previous.inclusion_state != state:
            if not previous.inclusion_state.can_advance_to(state):
                _record(
                    conflicts,
                    ReconciliationConflict(
                        f"inclusion state regression {previous.inclusion_state.value} -> "
                        f"{state.value}",
                        transaction_id=tx_id,
                    ),
                )
                state = previous.inclusion_state

        if previous is not None:
            timestamp = previous.timestamp
        elif reported is not None and reported.timestamp is not None:
            timestamp = reported.timestamp
        else:
            stamps = [output.timestamp for output in tx_outputs if output.timestamp is not None]
            timestamp = min(stamps) if stamps else datetime.now(UTC)

        output_ids = (
            list(reported.outputs)
            if reported is not None and reported.outputs
            else [output.output_id for output in tx_outputs]
        )
        if previous is not None and not output_ids:
            output_ids = list(previous.outputs)

        message_id = reported.message_id if reported is not None else None
        message_id = message_id or next((o.message_id for o in tx_outputs if o.message_id), None)
        network_id = next((o.network_id for o in tx_outputs if o.network_id), None)

        transaction = Transaction(
            transaction_id=tx_id,
            direction=direction,
            inclusion_state=state,
            timestamp=timestamp,
            inputs=inputs,
            outputs=output_ids,
            amount=amount,
            message_id=message_id or (previous.message_id if previous else None),
            network_id=network_id or (previous.network_id if previous else None),
        )
        if transaction != previous:
            arena[tx_id] = transaction

    return arena


def compute_balance(
    outputs: Mapping[OutputId, OutputData] | Iterable[OutputData],
    reserved_output_ids: Collection[OutputId] = (),
) -> AccountBalance:
    """
    Pure fold over the output set.

    total counts unspent confirmed and pending outputs. available subtracts
    the reserved outputs that are themselves counted, once each, so it
    stays within [0, total].
    """
    reserved = set(reserved_output_ids)
    total = 0
    locked = 0
    for output in _as_mapping(outputs).values():
        if not output.is_counted():
            continue
        total += output.amount
        if output.output_id in reserved:
            locked += output.amount
    return AccountBalance(total=total, available=total - locked)


def reconcile(
    current_outputs: Mapping[OutputId, OutputData] | Iterable[OutputData],
    ledger_report: LedgerReport,
    account_addresses: Collection[Address] = (),
    transactions: Mapping[str, Transaction] | None = None,
    reserved_output_ids: Collection[OutputId] = (),
    local_outgoing: Collection[str] = (),
    network: Network | None = None,
) -> tuple[AccountBalance, list[Transaction]]:
    """
    Fold one ledger report into balance and transaction history.

    Never raises for bad ledger data: conflicting deltas are logged and
    dropped, everything else is applied.
    """
    merged = merge_outputs(current_outputs, ledger_report.outputs, network)
    arena = derive_transactions(
        merged.outputs,
        ledger_report.transactions,
        account_addresses,
        transactions,
        local_outgoing,
        merged.conflicts,
    )
    balance = compute_balance(merged.outputs, reserved_output_ids)
    return balance, list(arena.values())


class ReconciliationEngine:
    """
    Per-account reconciled state.

    Holds the output set, the transaction arena, output reservations and the
    account's addresses. Sync passes for one account are serialized; engines
    of different accounts share nothing and may run in parallel.
    """

    def __init__(
        self,
        account_index: int,
        network: Network,
        emitter: EventEmitter | None = None,
        consolidation_threshold: int = DEFAULT_OUTPUT_CONSOLIDATION_THRESHOLD,
    ):
        self.account_index = account_index
        self.network = network
        self.emitter = emitter or EventEmitter()
        self.consolidation_threshold = consolidation_threshold

        self._lock = asyncio.Lock()
        self._outputs: dict[OutputId, OutputData] = {}
        self._transactions: dict[str, Transaction] = {}
        self._reserved: set[OutputId] = set()
        self._local_outgoing: set[str] = set()
        self._addresses: set[Address] = set()
        self.conflicts: list[ReconciliationConflict] = []

    @property
    def addresses(self) -> frozenset[Address]:
        return frozenset(self._addresses)

    def add_addresses(self, addresses: Iterable[Address]) -> None:
        self._addresses.update(addresses)

    async def reconcile(self, report: LedgerReport) -> tuple[AccountBalance, list[Transaction]]:
        async with self._lock:
            before_by_address = self._address_balances()
            before_consolidation = self._consolidation_counts()

            merged = merge_outputs(self._outputs, report.outputs, self.network)
            arena = derive_transactions(
                merged.outputs,
                report.transactions,
                self._addresses,
                self._transactions,
                self._local_outgoing,
                merged.conflicts,
            )

            previous_transactions = self._transactions
            self._outputs = merged.outputs
            self._transactions = arena
            self._release_settled()
            self._keep_conflicts(merged.conflicts)

            balance = compute_balance(self._outputs, self._reserved)
            logger.debug(
                f"Account {self.account_index} synced: {len(merged.changed)} outputs changed, "
                f"{len(merged.conflicts)} dropped, balance {balance.total}/{balance.available}"
            )

            self._emit_transaction_events(previous_transactions, arena)
            self._emit_balance_events(before_by_address)
            self._emit_consolidation_events(before_consolidation)

            return balance, list(arena.values())

    def reserve_outputs(self, output_ids: Iterable[OutputId]) -> set[OutputId]:
        """
        Lock outputs for a locally initiated spend.

        Returns the ids that were not reserved before; only those should be
        released if the spend is abandoned.
        """
        newly_reserved = set(output_ids) - self._reserved
        self._reserved.update(newly_reserved)
        if newly_reserved:
            logger.debug(f"Account {self.account_index}: reserved {len(newly_reserved)} outputs")
        return newly_reserved

    def release_outputs(self, output_ids: Iterable[OutputId]) -> None:
        released = self._reserved.intersection(output_ids)
        self._reserved.difference_update(released)
        if released:
            logger.debug(f"Account {self.account_index}: released {len(released)} outputs")

    def register_outgoing(
        self, transaction_id: str, output_ids: Iterable[OutputId] = ()
    ) -> None:
        """Mark a transaction as initiated by this account and reserve what it spends."""
        self._local_outgoing.add(transaction_id)
        self.reserve_outputs(output_ids)

    @property
    def reserved_output_ids(self) -> frozenset[OutputId]:
        return frozenset(self._reserved)

    def balance(self) -> AccountBalance:
        return compute_balance(self._outputs, self._reserved)

    def list_outputs(self) -> list[OutputData]:
        return list(self._outputs.values())

    def list_unspent_outputs(self) -> list[OutputData]:
        return [output for output in self._outputs.values() if output.is_counted()]

    def get_output(self, output_id: OutputId) -> OutputData | None:
        return self._outputs.get(output_id)

    def list_transactions(self) -> list[Transaction]:
        return sorted(self._transactions.values(), key=lambda tx: tx.timestamp)

    def list_pending_transactions(self) -> list[Transaction]:
        return [
            tx for tx in self.list_transactions() if tx.inclusion_state == InclusionState.PENDING
        ]

    def get_transaction(self, transaction_id: str) -> Transaction | None:
        return self._transactions.get(transaction_id)

    def consolidation_candidates(self) -> dict[Address, list[OutputData]]:
        """Unspent, unreserved SignatureLockedSingle outputs on addresses at the threshold."""
        by_address: dict[Address, list[OutputData]] = {}
        for output in self._outputs.values():
            if (
                output.is_counted()
                and output.kind == OutputKind.SIGNATURE_LOCKED_SINGLE
                and output.output_id not in self._reserved
            ):
                by_address.setdefault(output.address, []).append(output)
        return {
            address: outputs
            for address, outputs in by_address.items()
            if len(outputs) >= self.consolidation_threshold
        }

    def _address_balances(self) -> dict[Address, int]:
        balances: dict[Address, int] = {}
        for output in self._outputs.values():
            if output.is_counted():
                balances[output.address] = balances.get(output.address, 0) + output.amount
        return balances

    def _consolidation_counts(self) -> dict[Address, int]:
        return {address: len(outputs) for address, outputs in self.consolidation_candidates().items()}

    def _release_settled(self) -> None:
        settled = {
            output_id
            for output_id in self._reserved
            if output_id in self._outputs and not self._outputs[output_id].is_counted()
        }
        self._reserved.difference_update(settled)

    def _keep_conflicts(self, conflicts: list[ReconciliationConflict]) -> None:
        self.conflicts.extend(conflicts)
        if len(self.conflicts) > MAX_RECORDED_CONFLICTS:
            del self.conflicts[:-MAX_RECORDED_CONFLICTS]

    def _emit_transaction_events(
        self, previous: Mapping[str, Transaction], current: Mapping[str, Transaction]
    ) -> None:
        for tx_id, transaction in current.items():
            before = previous.get(tx_id)
            if before is not None and before.inclusion_state == transaction.inclusion_state:
                continue
            self.emitter.emit(
                self.account_index,
                TransactionInclusionEvent(
                    transaction_id=tx_id, inclusion_state=transaction.inclusion_state
                ),
            )

    def _emit_balance_events(self, before: Mapping[Address, int]) -> None:
        after = self._address_balances()
        for address in sorted(set(before) | set(after), key=str):
            old = before.get(address, 0)
            new = after.get(address, 0)
            if old == new:
                continue
            self.emitter.emit(
                self.account_index,
                BalanceChangeEvent(address=address, balance_change=new - old, new_balance=new),
            )

    def _emit_consolidation_events(self, before: Mapping[Address, int]) -> None:
        for address, outputs in self.consolidation_candidates().items():
            if address in before:
                continue
            logger.debug(f"{address} has {len(outputs)} unspent outputs, consolidation required")
            self.emitter.emit(
                self.account_index,
                ConsolidationRequiredEvent(address=address, output_count=len(outputs)),
            )
