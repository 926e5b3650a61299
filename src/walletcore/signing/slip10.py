"""
SLIP-10 Ed25519 key derivation.
Implements the all-hardened path m/44'/4218'/{account}'/{internal}'/{address}'.
"""

from __future__ import annotations

import hashlib
import hmac
import unicodedata

import libnacl

from walletcore.address import Address, Network
from walletcore.constants import (
    BIP39_PBKDF2_ROUNDS,
    BIP39_WORD_COUNTS,
    BIP44_PURPOSE,
    COIN_TYPE,
    HARDENED_OFFSET,
    MAX_DERIVATION_INDEX,
)
from walletcore.errors import DerivationError, InvalidMnemonicError

ED25519_SEED_KEY = b"ed25519 seed"


class Ed25519Key:
    """
    Hierarchical deterministic Ed25519 key.
    Ed25519 under SLIP-10 only supports hardened derivation.
    """

    def __init__(self, secret: bytes, chain_code: bytes, depth: int = 0):
        self._secret = secret
        self.chain_code = chain_code
        self.depth = depth
        self._public_key, self._signing_key = libnacl.crypto_sign_seed_keypair(secret)

    @classmethod
    def from_seed(cls, seed: bytes) -> Ed25519Key:
        """Create master key from seed"""
        if len(seed) < 16:
            raise DerivationError(f"Seed too short: {len(seed)} bytes")
        hmac_result = hmac.new(ED25519_SEED_KEY, seed, hashlib.sha512).digest()
        return cls(hmac_result[:32], hmac_result[32:], depth=0)

    def derive(self, path: str) -> Ed25519Key:
        """
        Derive child key from path notation (e.g., "m/44'/4218'/0'/0'/0'")
        Every level must be hardened.
        """
        if not path.startswith("m"):
            raise DerivationError("Path must start with 'm'")

        key = self
        for part in path.split("/")[1:]:
            if not part:
                continue
            if not (part.endswith("'") or part.endswith("h")):
                raise DerivationError(f"Ed25519 only supports hardened derivation: {part}")
            try:
                index = int(part.rstrip("'h"))
            except ValueError as e:
                raise DerivationError(f"Invalid path component: {part}") from e
            key = key.derive_child(validate_index(index))

        return key

    def derive_child(self, index: int) -> Ed25519Key:
        """Derive the hardened child at ``index`` (offset applied here)"""
        data = b"\x00" + self._secret + (index + HARDENED_OFFSET).to_bytes(4, "big")
        hmac_result = hmac.new(self.chain_code, data, hashlib.sha512).digest()
        return Ed25519Key(hmac_result[:32], hmac_result[32:], depth=self.depth + 1)

    def get_public_key_bytes(self) -> bytes:
        return self._public_key

    def get_address(self, network: Network) -> Address:
        return Address.from_public_key(self._public_key, network)

    def sign(self, message: bytes) -> bytes:
        """Sign a message with this key (Ed25519 detached signature)."""
        return libnacl.crypto_sign_detached(message, self._signing_key)


def validate_index(index: int) -> int:
    if isinstance(index, bool) or not isinstance(index, int):
        raise DerivationError(f"Derivation index must be an integer, got {index!r}")
    if index < 0 or index > MAX_DERIVATION_INDEX:
        raise DerivationError(f"Derivation index out of range: {index}")
    return index


def derivation_path(account_index: int, internal: bool, address_index: int) -> str:
    validate_index(account_index)
    validate_index(address_index)
    return f"m/{BIP44_PURPOSE}'/{COIN_TYPE}'/{account_index}'/{int(internal)}'/{address_index}'"


def normalize_mnemonic(mnemonic: str) -> str:
    words = unicodedata.normalize("NFKD", mnemonic).split()
    if len(words) not in BIP39_WORD_COUNTS:
        raise InvalidMnemonicError(
            f"Invalid mnemonic word count: {len(words)}, expected one of {BIP39_WORD_COUNTS}"
        )
    for word in words:
        if not word.isalpha() or not word.islower():
            raise InvalidMnemonicError(f"Invalid mnemonic word: {word!r}")
    return " ".join(words)


def mnemonic_to_seed(mnemonic: str, passphrase: str = "") -> bytes:
    """Convert BIP39 mnemonic to a 64-byte seed."""
    normalized = normalize_mnemonic(mnemonic)
    salt = unicodedata.normalize("NFKD", "mnemonic" + passphrase).encode("utf-8")
    return hashlib.pbkdf2_hmac(
        "sha512", normalized.encode("utf-8"), salt, BIP39_PBKDF2_ROUNDS, dklen=64
    )
