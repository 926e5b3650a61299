"""
Account manager: creates accounts and finds them by any identifier.
"""

from __future__ import annotations

import threading

from loguru import logger

from walletcore.account.handle import AccountHandle
from walletcore.account.reconciliation import ReconciliationEngine
from walletcore.address import Address
from walletcore.config import Settings, get_settings
from walletcore.errors import AccountNotFoundError, ConfigurationError
from walletcore.events import EventEmitter
from walletcore.models import AccountIdentifier, AccountIdentifierKind
from walletcore.signing.base import SignerType
from walletcore.signing.registry import SignerRegistry, get_registry

_HARDWARE_SIGNERS = frozenset({SignerType.LEDGER_NANO, SignerType.LEDGER_NANO_SIMULATOR})


class AccountManager:
    """
    Owns the wallet's accounts.

    Every account gets its own ReconciliationEngine; all of them share the
    registry and the event emitter.
    """

    def __init__(
        self,
        registry: SignerRegistry | None = None,
        settings: Settings | None = None,
        emitter: EventEmitter | None = None,
        default_signer_type: SignerType = SignerType.MNEMONIC,
    ):
        self.registry = registry or get_registry()
        self.settings = settings or get_settings()
        self.emitter = emitter or EventEmitter()
        self.default_signer_type = default_signer_type
        self._lock = threading.Lock()
        self._accounts: list[AccountHandle] = []

    def _consolidation_threshold(self, signer_type: SignerType) -> int:
        if signer_type in _HARDWARE_SIGNERS:
            return self.settings.ledger_output_consolidation_threshold
        return self.settings.output_consolidation_threshold

    def create_account(
        self, alias: str | None = None, signer_type: SignerType | None = None
    ) -> AccountHandle:
        """
        Create the next account.

        The alias defaults to "Account {index}" and must be unique. The signer
        type only has to be installed in the registry when the account is used.
        """
        signer_type = SignerType(signer_type or self.default_signer_type)

        with self._lock:
            index = len(self._accounts)
            alias = alias if alias is not None else f"Account {index}"
            if not alias.strip():
                raise ConfigurationError("Account alias cannot be empty")
            if any(account.alias == alias for account in self._accounts):
                raise ConfigurationError(f"Account alias already exists: {alias}")

            engine = ReconciliationEngine(
                index,
                self.settings.network,
                self.emitter,
                consolidation_threshold=self._consolidation_threshold(signer_type),
            )
            account = AccountHandle(
                index=index,
                alias=alias,
                signer_type=signer_type,
                registry=self.registry,
                network=self.settings.network,
                engine=engine,
                emitter=self.emitter,
            )
            self._accounts.append(account)

        logger.info(f"Created account {index} ({alias}) with {signer_type.value} signer")
        return account

    def get_account(self, identifier: int | str | Address | AccountIdentifier) -> AccountHandle:
        identifier = AccountIdentifier.parse(identifier)
        accounts = self.accounts()

        if identifier.kind == AccountIdentifierKind.INDEX:
            found = [a for a in accounts if a.index == identifier.value]
        elif identifier.kind == AccountIdentifierKind.ALIAS:
            found = [a for a in accounts if a.alias == identifier.value]
        elif identifier.kind == AccountIdentifierKind.ID:
            found = [a for a in accounts if a.id == identifier.value]
        else:
            found = [
                a
                for a in accounts
                if any(addr.address == identifier.value for addr in a.list_addresses())
            ]

        if not found:
            raise AccountNotFoundError(f"No account matches {identifier}")
        return found[0]

    def accounts(self) -> list[AccountHandle]:
        with self._lock:
            return list(self._accounts)
