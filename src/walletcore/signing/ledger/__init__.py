"""
Hardware (Ledger) signer.

Available transports:
- SpeculosTransport: Speculos device simulator over TCP
- Any HardwareTransport implementation for USB/BLE devices
"""

from walletcore.signing.ledger.signer import LedgerSigner
from walletcore.signing.ledger.state import (
    DeviceSession,
    LedgerApp,
    LedgerState,
    LedgerStatus,
)
from walletcore.signing.ledger.transport import HardwareTransport, SpeculosTransport

__all__ = [
    "DeviceSession",
    "HardwareTransport",
    "LedgerApp",
    "LedgerSigner",
    "LedgerState",
    "LedgerStatus",
    "SpeculosTransport",
]
