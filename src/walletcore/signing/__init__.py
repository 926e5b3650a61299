"""
Signer backends.

Available signers:
- MnemonicSigner: local, seed-derived, answers immediately
- LedgerSigner: hardware device, every signature confirmed on the device
"""

from walletcore.signing.base import (
    GenerateAddressMetadata,
    RemainderData,
    Signature,
    Signer,
    SignerInteraction,
    SignerStatus,
    SignerType,
    SignMessageMetadata,
    TransactionInput,
)
from walletcore.signing.mnemonic import MnemonicSigner, SeedSource, StaticSeedSource
from walletcore.signing.registry import (
    SignerRegistry,
    default_signers,
    get_registry,
    get_signer,
    init_registry,
    reset_registry,
    set_signer,
)

__all__ = [
    "GenerateAddressMetadata",
    "MnemonicSigner",
    "RemainderData",
    "SeedSource",
    "Signature",
    "SignMessageMetadata",
    "Signer",
    "SignerInteraction",
    "SignerRegistry",
    "SignerStatus",
    "SignerType",
    "StaticSeedSource",
    "TransactionInput",
    "default_signers",
    "get_registry",
    "get_signer",
    "init_registry",
    "reset_registry",
    "set_signer",
]
