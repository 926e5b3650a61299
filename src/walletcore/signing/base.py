"""
Base signer interface.

Signing flow:
1. The account layer resolves the account's signer type through the registry
2. The signer derives addresses or signs the essence digest once per input
3. The signer returns signatures only, never private key material

Backends differ in how they interact: a local signer answers immediately,
a hardware signer suspends until a human confirms on the device. Both expose
the same async contract; ``interaction`` tells callers which one they hold.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

import libnacl

from walletcore.address import Address, Network
from walletcore.constants import (
    ED25519_PUBLIC_KEY_LENGTH,
    ED25519_SIGNATURE_LENGTH,
    MAX_AMOUNT,
    SIGNING_DIGEST_LENGTH,
)
from walletcore.errors import InvalidInputError
from walletcore.models import OutputData


class SignerType(str, Enum):
    """Type of signing backend, used as the registry key."""

    MNEMONIC = "mnemonic"
    LEDGER_NANO = "ledger_nano"
    LEDGER_NANO_SIMULATOR = "ledger_nano_simulator"
    CUSTOM = "custom"


class SignerInteraction(str, Enum):
    IMMEDIATE = "immediate"  # Local, returns without suspending on I/O
    DEVICE_CONFIRMATION = "device_confirmation"  # Waits for a human on the device


@dataclass(frozen=True)
class GenerateAddressMetadata:
    """
    Attributes:
        account_index: Hardened account level of the derivation path
        address_index: Hardened address level of the derivation path
        network: Network the address is encoded for
        internal: True for change (remainder) addresses
        syncing: True while scanning; hardware signers then skip displaying the address
    """

    account_index: int
    address_index: int
    network: Network
    internal: bool = False
    syncing: bool = False


@dataclass(frozen=True)
class RemainderData:
    """Change output shown to the user on hardware devices before signing."""

    address: Address
    amount: int
    address_index: int
    internal: bool = True


@dataclass(frozen=True)
class SignMessageMetadata:
    """
    Attributes:
        account_index: Account whose keys sign the inputs
        digest: 32-byte essence hash signed for every input
        network: Network of the transaction
        remainder: Optional change output, displayed by hardware signers
    """

    account_index: int
    digest: bytes
    network: Network
    remainder: RemainderData | None = None


@dataclass(frozen=True)
class TransactionInput:
    """An output being spent plus the key path needed to unlock it."""

    output: OutputData
    account_index: int
    address_index: int
    internal: bool = False

    @property
    def key_path(self) -> tuple[int, bool, int]:
        return (self.account_index, self.internal, self.address_index)


@dataclass(frozen=True)
class Signature:
    """
    Unlock data for one input.

    Either an Ed25519 signature with its public key, or a reference to an
    earlier input that is unlocked by the same key.
    """

    public_key: bytes | None = None
    signature: bytes | None = None
    reference: int | None = None

    @classmethod
    def ed25519(cls, public_key: bytes, signature: bytes) -> Signature:
        if len(public_key) != ED25519_PUBLIC_KEY_LENGTH:
            raise InvalidInputError(f"Invalid public key length: {len(public_key)}")
        if len(signature) != ED25519_SIGNATURE_LENGTH:
            raise InvalidInputError(f"Invalid signature length: {len(signature)}")
        return cls(public_key=public_key, signature=signature)

    @classmethod
    def reference_to(cls, index: int) -> Signature:
        return cls(reference=index)

    @property
    def is_reference(self) -> bool:
        return self.reference is not None

    def verify(self, digest: bytes) -> bool:
        """Verify an Ed25519 signature against the signed digest."""
        if self.is_reference or self.public_key is None or self.signature is None:
            return False
        try:
            libnacl.crypto_sign_verify_detached(self.signature, digest, self.public_key)
        except ValueError:
            return False
        return True


@dataclass(frozen=True)
class SignerStatus:
    """Health of a local signer."""

    ready: bool = True


def validate_signing_request(metadata: SignMessageMetadata, inputs: list[TransactionInput]) -> None:
    if not inputs:
        raise InvalidInputError("No inputs to sign")
    if len(metadata.digest) != SIGNING_DIGEST_LENGTH:
        raise InvalidInputError(
            f"Invalid digest length: {len(metadata.digest)}, expected {SIGNING_DIGEST_LENGTH}"
        )
    for i, tx_input in enumerate(inputs):
        if tx_input.account_index != metadata.account_index:
            raise InvalidInputError(
                f"Input {i} belongs to account {tx_input.account_index}, "
                f"signing for account {metadata.account_index}"
            )
        if tx_input.output.is_spent:
            raise InvalidInputError(f"Input {i} spends an already spent output")
    remainder = metadata.remainder
    if remainder is not None and not 0 <= remainder.amount <= MAX_AMOUNT:
        raise InvalidInputError(f"Invalid remainder amount: {remainder.amount}")


def reference_slots(inputs: list[TransactionInput]) -> list[int | None]:
    """
    For each input, the index of an earlier input with the same key path.

    Inputs sharing a key are unlocked once; later ones reference the first.
    """
    first_seen: dict[tuple[int, bool, int], int] = {}
    slots: list[int | None] = []
    for i, tx_input in enumerate(inputs):
        if tx_input.key_path in first_seen:
            slots.append(first_seen[tx_input.key_path])
        else:
            first_seen[tx_input.key_path] = i
            slots.append(None)
    return slots


class Signer(ABC):
    """
    Abstract signer backend.

    Implementations never expose raw private keys; all signing operations
    return signatures only.
    """

    interaction: SignerInteraction = SignerInteraction.IMMEDIATE

    def __init__(self, signer_type: SignerType):
        self.signer_type = signer_type

    @abstractmethod
    async def generate_address(self, metadata: GenerateAddressMetadata) -> Address:
        """Derive the address for the metadata's account/address path."""

    @abstractmethod
    async def sign_message(
        self, metadata: SignMessageMetadata, inputs: list[TransactionInput]
    ) -> list[Signature]:
        """
        Sign the digest for every input. One result per input, order preserved.

        Signers with DEVICE_CONFIRMATION interaction also accept a ``timeout``
        keyword bounding the wait for the user.
        """

    @abstractmethod
    async def status(self) -> Any:
        """Backend-specific health snapshot."""

    async def generate_addresses(
        self,
        account_index: int,
        start: int,
        count: int,
        network: Network,
        internal: bool = False,
        syncing: bool = False,
    ) -> list[Address]:
        """Generate ``count`` consecutive addresses starting at ``start``."""
        addresses = []
        for address_index in range(start, start + count):
            metadata = GenerateAddressMetadata(
                account_index=account_index,
                address_index=address_index,
                network=network,
                internal=internal,
                syncing=syncing,
            )
            addresses.append(await self.generate_address(metadata))
        return addresses

    async def close(self) -> None:
        """Release backend resources"""
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(type={self.signer_type.value})"
