"""
Local seed-derived signer.

Deterministic and non-blocking: addresses and signatures are pure functions
of (seed, path, digest). The seed itself comes from an injected SeedSource;
this module never persists it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from loguru import logger

from walletcore.address import Address
from walletcore.errors import InvalidInputError
from walletcore.signing.base import (
    GenerateAddressMetadata,
    Signature,
    Signer,
    SignerInteraction,
    SignerStatus,
    SignerType,
    SignMessageMetadata,
    TransactionInput,
    reference_slots,
    validate_signing_request,
)
from walletcore.signing.slip10 import Ed25519Key, derivation_path, mnemonic_to_seed


class SeedSource(ABC):
    """Secure storage collaborator that hands out seed bytes."""

    @abstractmethod
    def load_seed(self) -> bytes:
        """Return the 64-byte BIP39 seed"""


class StaticSeedSource(SeedSource):
    """Seed held in memory, e.g. derived from a mnemonic at startup."""

    def __init__(self, seed: bytes):
        self._seed = bytes(seed)

    @classmethod
    def from_mnemonic(cls, mnemonic: str, passphrase: str = "") -> StaticSeedSource:
        return cls(mnemonic_to_seed(mnemonic, passphrase))

    def load_seed(self) -> bytes:
        return self._seed


class MnemonicSigner(Signer):
    """
    Signer backed by a BIP39 seed.

    Derivation path: m/44'/4218'/{account}'/{internal}'/{address}'
    """

    interaction = SignerInteraction.IMMEDIATE

    def __init__(self, seed_source: SeedSource, signer_type: SignerType = SignerType.MNEMONIC):
        super().__init__(signer_type)
        self._master_key = Ed25519Key.from_seed(seed_source.load_seed())

    @classmethod
    def from_mnemonic(cls, mnemonic: str, passphrase: str = "") -> MnemonicSigner:
        return cls(StaticSeedSource.from_mnemonic(mnemonic, passphrase))

    def _derive(self, account_index: int, internal: bool, address_index: int) -> Ed25519Key:
        return self._master_key.derive(derivation_path(account_index, internal, address_index))

    async def generate_address(self, metadata: GenerateAddressMetadata) -> Address:
        key = self._derive(metadata.account_index, metadata.internal, metadata.address_index)
        return key.get_address(metadata.network)

    async def sign_message(
        self, metadata: SignMessageMetadata, inputs: list[TransactionInput]
    ) -> list[Signature]:
        validate_signing_request(metadata, inputs)

        signatures: list[Signature] = []
        for tx_input, reference in zip(inputs, reference_slots(inputs), strict=True):
            if reference is not None:
                signatures.append(Signature.reference_to(reference))
                continue

            key = self._derive(tx_input.account_index, tx_input.internal, tx_input.address_index)
            if key.get_address(tx_input.output.address.network) != tx_input.output.address:
                raise InvalidInputError(
                    f"Key path {derivation_path(*tx_input.key_path)} does not unlock "
                    f"address {tx_input.output.address}"
                )
            signatures.append(
                Signature.ed25519(key.get_public_key_bytes(), key.sign(metadata.digest))
            )

        logger.debug(f"Signed {len(inputs)} inputs for account {metadata.account_index}")
        return signatures

    async def status(self) -> SignerStatus:
        return SignerStatus(ready=True)
