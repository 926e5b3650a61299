"""
walletcore - Signing and account-state core for an IOTA-style wallet

Provides pluggable signer backends (mnemonic, Ledger) and the reconciliation
of ledger-reported outputs into balances and transaction history.
"""

__version__ = "0.1.0"

from walletcore.account import AccountHandle, AccountManager, ReconciliationEngine, reconcile
from walletcore.address import Address, Network, parse_address
from walletcore.config import Settings, get_settings
from walletcore.errors import (
    ConfigurationError,
    DeviceBusyError,
    DeviceError,
    NoSignerRegisteredError,
    UserRejectedError,
    WalletError,
)
from walletcore.events import EventEmitter, WalletEventType
from walletcore.models import (
    AccountBalance,
    AccountIdentifier,
    InclusionState,
    LedgerReport,
    OutputData,
    OutputId,
    OutputKind,
    Transaction,
    TransactionDirection,
)
from walletcore.signing import (
    MnemonicSigner,
    Signer,
    SignerRegistry,
    SignerType,
    default_signers,
    get_signer,
    set_signer,
)

__all__ = [
    "AccountBalance",
    "AccountHandle",
    "AccountIdentifier",
    "AccountManager",
    "Address",
    "ConfigurationError",
    "DeviceBusyError",
    "DeviceError",
    "EventEmitter",
    "InclusionState",
    "LedgerReport",
    "MnemonicSigner",
    "Network",
    "NoSignerRegisteredError",
    "OutputData",
    "OutputId",
    "OutputKind",
    "ReconciliationEngine",
    "Settings",
    "Signer",
    "SignerRegistry",
    "SignerType",
    "Transaction",
    "TransactionDirection",
    "UserRejectedError",
    "WalletError",
    "WalletEventType",
    "default_signers",
    "get_settings",
    "get_signer",
    "parse_address",
    "reconcile",
    "set_signer",
]
