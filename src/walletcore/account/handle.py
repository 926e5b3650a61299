"""
Account handle: one account's addresses, signer and reconciled state.

Derivation path: m/44'/4218'/{account}'/{internal}'/{address}'
- account: account index
- internal: 0 (public/receive), 1 (internal/remainder)
- address: address index, tracked separately per kind
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass

from loguru import logger

from walletcore.account.reconciliation import ReconciliationEngine
from walletcore.address import Address, Network
from walletcore.constants import ACCOUNT_ID_PREFIX
from walletcore.errors import DeviceError, InvalidInputError
from walletcore.events import EventEmitter, LedgerAddressGenerationEvent
from walletcore.models import AccountBalance, LedgerReport, OutputData, Transaction
from walletcore.signing.base import (
    GenerateAddressMetadata,
    RemainderData,
    Signature,
    Signer,
    SignerInteraction,
    SignerType,
    SignMessageMetadata,
    TransactionInput,
)
from walletcore.signing.registry import SignerRegistry


@dataclass(frozen=True)
class AccountAddress:
    address: Address
    key_index: int
    internal: bool = False


class AccountHandle:
    """
    Entry point for everything done with one account.

    The signer is looked up in the registry on every call, so replacing the
    signer for this account's type takes effect on the next operation while
    calls already in flight finish with the instance they resolved.
    """

    def __init__(
        self,
        index: int,
        alias: str,
        signer_type: SignerType,
        registry: SignerRegistry,
        network: Network,
        engine: ReconciliationEngine | None = None,
        emitter: EventEmitter | None = None,
    ):
        self.index = index
        self.alias = alias
        self.signer_type = signer_type
        self.registry = registry
        self.network = network
        self.emitter = emitter or (engine.emitter if engine is not None else EventEmitter())
        self.engine = engine or ReconciliationEngine(index, network, self.emitter)

        self.public_addresses: list[AccountAddress] = []
        self.internal_addresses: list[AccountAddress] = []
        self._key_paths: dict[Address, AccountAddress] = {}
        self._address_lock = asyncio.Lock()

    @property
    def id(self) -> str:
        return f"{ACCOUNT_ID_PREFIX}{self.index}"

    def _signer(self) -> Signer:
        return self.registry.get_signer(self.signer_type)

    async def generate_addresses(
        self, amount: int, internal: bool = False, syncing: bool = False
    ) -> list[AccountAddress]:
        """
        Derive the next ``amount`` addresses of one kind.

        Hardware signers display each address on the device unless syncing;
        a LedgerAddressGenerationEvent carrying the address is emitted before
        the device shows it so the user can compare both.
        """
        if amount < 0:
            raise InvalidInputError(f"Invalid address amount: {amount}")
        logger.debug(f"Account {self.index}: generating {amount} addresses (internal={internal})")

        signer = self._signer()
        display = signer.interaction == SignerInteraction.DEVICE_CONFIRMATION and not syncing
        generated: list[AccountAddress] = []

        async with self._address_lock:
            existing = self.internal_addresses if internal else self.public_addresses
            start = len(existing)
            for key_index in range(start, start + amount):
                metadata = GenerateAddressMetadata(
                    account_index=self.index,
                    address_index=key_index,
                    network=self.network,
                    internal=internal,
                    syncing=True if display else syncing,
                )
                address = await signer.generate_address(metadata)

                if display:
                    self.emitter.emit(self.index, LedgerAddressGenerationEvent(address=address))
                    shown = await signer.generate_address(
                        GenerateAddressMetadata(
                            account_index=self.index,
                            address_index=key_index,
                            network=self.network,
                            internal=internal,
                            syncing=False,
                        )
                    )
                    if shown != address:
                        raise DeviceError(
                            f"Device displayed {shown}, expected {address} at index {key_index}"
                        )

                account_address = AccountAddress(address, key_index, internal)
                existing.append(account_address)
                self._key_paths[address] = account_address
                self.engine.add_addresses([address])
                generated.append(account_address)

        return generated

    def list_addresses(self) -> list[AccountAddress]:
        return self.public_addresses + self.internal_addresses

    def latest_address(self) -> AccountAddress | None:
        return self.public_addresses[-1] if self.public_addresses else None

    def input_for(self, output: OutputData) -> TransactionInput:
        """Build a signing input for an output held on one of this account's addresses."""
        account_address = self._key_paths.get(output.address)
        if account_address is None:
            raise InvalidInputError(f"{output.address} is not an address of account {self.index}")
        return TransactionInput(
            output=output,
            account_index=self.index,
            address_index=account_address.key_index,
            internal=account_address.internal,
        )

    async def sign_transaction(
        self,
        digest: bytes,
        inputs: list[TransactionInput],
        remainder: RemainderData | None = None,
        timeout: float | None = None,
    ) -> list[Signature]:
        """
        Sign a transaction essence digest for every input.

        The spent outputs are reserved before the signer is asked, so the
        available balance already excludes them, and released again if
        signing fails (rejected, timed out, cancelled).
        """
        signer = self._signer()
        metadata = SignMessageMetadata(
            account_index=self.index, digest=digest, network=self.network, remainder=remainder
        )

        reserved = self.engine.reserve_outputs(i.output.output_id for i in inputs)
        signed = False
        try:
            if signer.interaction == SignerInteraction.DEVICE_CONFIRMATION:
                signatures = await signer.sign_message(metadata, inputs, timeout=timeout)
            elif timeout is not None:
                signatures = await asyncio.wait_for(signer.sign_message(metadata, inputs), timeout)
            else:
                signatures = await signer.sign_message(metadata, inputs)
            signed = True
        finally:
            if not signed:
                self.engine.release_outputs(reserved)

        logger.debug(f"Account {self.index}: signed {len(inputs)} inputs with {signer!r}")
        return signatures

    def register_outgoing(self, transaction_id: str, inputs: Iterable[TransactionInput]) -> None:
        self.engine.register_outgoing(transaction_id, (i.output.output_id for i in inputs))

    async def sync(self, report: LedgerReport) -> tuple[AccountBalance, list[Transaction]]:
        return await self.engine.reconcile(report)

    def balance(self) -> AccountBalance:
        return self.engine.balance()

    def list_transactions(self) -> list[Transaction]:
        return self.engine.list_transactions()

    def __repr__(self) -> str:
        return f"AccountHandle(index={self.index}, alias={self.alias!r}, signer={self.signer_type.value})"
