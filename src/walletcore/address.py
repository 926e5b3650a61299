"""
Ed25519 address model and bech32 encoding.

An address is the Blake2b-256 hash of an Ed25519 public key tagged with the
network it belongs to. The same payload encodes to a different string per
network, so a payload is never handed around without its network.
"""

from __future__ import annotations

import hashlib
from enum import Enum
from typing import Any

from walletcore.constants import (
    ADDRESS_PAYLOAD_LENGTH,
    ED25519_ADDRESS_TYPE,
    ED25519_PUBLIC_KEY_LENGTH,
    HRP_DEVNET,
    HRP_MAINNET,
    HRP_PRIVATE,
)
from walletcore.errors import AddressError, InvalidAddressFormatError, InvalidPayloadError

BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
BECH32_MAX_LENGTH = 90
BECH32_CHECKSUM_LENGTH = 6


class Network(str, Enum):
    MAINNET = "mainnet"
    DEVNET = "devnet"
    PRIVATE = "private"

    @property
    def hrp(self) -> str:
        return _NETWORK_HRP[self]

    @classmethod
    def from_hrp(cls, hrp: str) -> Network:
        for network, network_hrp in _NETWORK_HRP.items():
            if network_hrp == hrp:
                return network
        raise InvalidAddressFormatError(f"Unknown address prefix: {hrp!r}")


_NETWORK_HRP = {
    Network.MAINNET: HRP_MAINNET,
    Network.DEVNET: HRP_DEVNET,
    Network.PRIVATE: HRP_PRIVATE,
}


def blake2b256(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=32).digest()


def bech32_polymod(values: list[int]) -> int:
    """Bech32 checksum polymod"""
    gen = [0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3]
    chk = 1
    for v in values:
        b = chk >> 25
        chk = (chk & 0x1FFFFFF) << 5 ^ v
        for i in range(5):
            chk ^= gen[i] if ((b >> i) & 1) else 0
    return chk


def bech32_hrp_expand(hrp: str) -> list[int]:
    """Expand HRP for bech32"""
    return [ord(x) >> 5 for x in hrp] + [0] + [ord(x) & 31 for x in hrp]


def bech32_create_checksum(hrp: str, data: list[int]) -> list[int]:
    """Create bech32 checksum"""
    values = bech32_hrp_expand(hrp) + data
    polymod = bech32_polymod(values + [0, 0, 0, 0, 0, 0]) ^ 1
    return [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]


def bech32_verify_checksum(hrp: str, data: list[int]) -> bool:
    return bech32_polymod(bech32_hrp_expand(hrp) + data) == 1


def bech32_encode(hrp: str, data: list[int]) -> str:
    """Encode bech32 string"""
    combined = data + bech32_create_checksum(hrp, data)
    return hrp + "1" + "".join([BECH32_CHARSET[d] for d in combined])


def bech32_decode(bech: str) -> tuple[str, list[int]]:
    """
    Decode a bech32 string into (hrp, data) with the checksum stripped.

    Only the canonical lowercase form is accepted so that decoding and
    re-encoding always gives back the input string.
    """
    if not bech or len(bech) > BECH32_MAX_LENGTH:
        raise InvalidAddressFormatError("Invalid address length")
    if any(ord(x) < 33 or ord(x) > 126 for x in bech):
        raise InvalidAddressFormatError("Address contains invalid characters")
    if bech.lower() != bech:
        raise InvalidAddressFormatError("Address must be lowercase")

    pos = bech.rfind("1")
    if pos < 1 or pos + BECH32_CHECKSUM_LENGTH + 1 > len(bech):
        raise InvalidAddressFormatError("Missing or misplaced separator")

    hrp = bech[:pos]
    try:
        data = [BECH32_CHARSET.index(x) for x in bech[pos + 1 :]]
    except ValueError as e:
        raise InvalidAddressFormatError("Address contains invalid characters") from e

    if not bech32_verify_checksum(hrp, data):
        raise InvalidAddressFormatError("Invalid checksum")

    return hrp, data[:-BECH32_CHECKSUM_LENGTH]


def convertbits(data: bytes | list[int], frombits: int, tobits: int, pad: bool = True) -> list[int]:
    """Convert between bit groups"""
    acc = 0
    bits = 0
    ret = []
    maxv = (1 << tobits) - 1
    max_acc = (1 << (frombits + tobits - 1)) - 1

    for value in data:
        acc = ((acc << frombits) | value) & max_acc
        bits += frombits
        while bits >= tobits:
            bits -= tobits
            ret.append((acc >> bits) & maxv)

    if pad:
        if bits:
            ret.append((acc << (tobits - bits)) & maxv)
    elif bits >= frombits or ((acc << (tobits - bits)) & maxv):
        raise ValueError("Invalid bits")

    return ret


class Address:
    """
    Ed25519 address tagged with its network.

    Two addresses are equal iff both payload and network match.
    """

    __slots__ = ("_payload", "_network")

    def __init__(self, payload: bytes, network: Network | str):
        if not isinstance(payload, (bytes, bytearray)):
            raise InvalidPayloadError(f"Payload must be bytes, got {type(payload).__name__}")
        if len(payload) != ADDRESS_PAYLOAD_LENGTH:
            raise InvalidPayloadError(
                f"Invalid payload length: {len(payload)}, expected {ADDRESS_PAYLOAD_LENGTH}"
            )
        try:
            network = Network(network)
        except ValueError as e:
            raise InvalidPayloadError(f"Unknown network: {network!r}") from e

        object.__setattr__(self, "_payload", bytes(payload))
        object.__setattr__(self, "_network", network)

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("Address is immutable")

    @property
    def payload(self) -> bytes:
        return self._payload

    @property
    def network(self) -> Network:
        return self._network

    @classmethod
    def from_public_key(cls, public_key: bytes, network: Network | str) -> Address:
        if len(public_key) != ED25519_PUBLIC_KEY_LENGTH:
            raise InvalidPayloadError(f"Invalid Ed25519 public key length: {len(public_key)}")
        return cls(blake2b256(public_key), network)

    @classmethod
    def from_bech32(cls, text: str) -> Address:
        if not isinstance(text, str):
            raise InvalidAddressFormatError("Address must be a string")

        hrp, data = bech32_decode(text)
        network = Network.from_hrp(hrp)

        try:
            decoded = bytes(convertbits(data, 5, 8, pad=False))
        except ValueError as e:
            raise InvalidAddressFormatError("Invalid address padding") from e

        if len(decoded) != ADDRESS_PAYLOAD_LENGTH + 1:
            raise InvalidAddressFormatError(f"Invalid address payload length: {len(decoded) - 1}")
        if decoded[0] != ED25519_ADDRESS_TYPE:
            raise InvalidAddressFormatError(f"Unsupported address type: {decoded[0]}")

        return cls(decoded[1:], network)

    def to_bech32(self) -> str:
        data = convertbits(bytes([ED25519_ADDRESS_TYPE]) + self._payload, 8, 5)
        return bech32_encode(self._network.hrp, data)

    def __str__(self) -> str:
        return self.to_bech32()

    def __repr__(self) -> str:
        return f"Address({self.to_bech32()!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Address):
            return NotImplemented
        return self._payload == other._payload and self._network == other._network

    def __hash__(self) -> int:
        return hash((self._payload, self._network))

    def __reduce__(self) -> tuple[Any, ...]:
        return (Address, (self._payload, self._network))

    @classmethod
    def _validate(cls, value: Any) -> Address:
        if isinstance(value, Address):
            return value
        try:
            return cls.from_bech32(value)
        except AddressError as e:
            raise ValueError(str(e)) from e

    @classmethod
    def __get_pydantic_core_schema__(cls, source: Any, handler: Any) -> Any:
        from pydantic_core import core_schema

        return core_schema.no_info_plain_validator_function(
            cls._validate,
            serialization=core_schema.plain_serializer_function_ser_schema(
                lambda address: address.to_bech32()
            ),
        )


def parse_address(text: str) -> Address:
    """Parse a bech32 address string."""
    return Address.from_bech32(text)
