"""
Account layer: address bookkeeping, signing and ledger reconciliation per account.
"""

from walletcore.account.handle import AccountAddress, AccountHandle
from walletcore.account.manager import AccountManager
from walletcore.account.reconciliation import (
    MergeResult,
    ReconciliationConflict,
    ReconciliationEngine,
    compute_balance,
    derive_transactions,
    merge_outputs,
    reconcile,
)

__all__ = [
    "AccountAddress",
    "AccountHandle",
    "AccountManager",
    "MergeResult",
    "ReconciliationConflict",
    "ReconciliationEngine",
    "compute_balance",
    "derive_transactions",
    "merge_outputs",
    "reconcile",
]
