"""
APDU encoding for the hardware wallet application.

Commands follow ISO 7816-4 short APDUs: CLA INS P1 P2 Lc DATA.
Every response ends with a 2-byte status word.
"""

from __future__ import annotations

from dataclasses import dataclass

from walletcore.address import Network
from walletcore.constants import (
    ADDRESS_PAYLOAD_LENGTH,
    ED25519_ADDRESS_TYPE,
    ED25519_PUBLIC_KEY_LENGTH,
    ED25519_SIGNATURE_LENGTH,
    HARDENED_OFFSET,
)
from walletcore.errors import (
    DeviceError,
    DeviceLockedError,
    InvalidInputError,
    UserRejectedError,
    WrongAppError,
)
from walletcore.signing.ledger.state import LedgerApp

# Dashboard / OS commands, answered by whichever app is open
CLA_DASHBOARD = 0xB0
INS_GET_APP_AND_VERSION = 0x01

# Wallet application commands
CLA_WALLET = 0x7B
INS_GET_APP_CONFIG = 0x10
INS_SET_ACCOUNT = 0x11
INS_WRITE_DATA_BLOCK = 0x81
INS_CLEAR_DATA_BUFFER = 0x83
INS_GENERATE_ADDRESS = 0xA1
INS_USER_CONFIRM = 0xA4
INS_SIGN_SINGLE = 0xA5

P1_NO_DISPLAY = 0x00
P1_DISPLAY = 0x01

SW_OK = 0x9000
SW_WRONG_LENGTH = 0x6700
SW_DENIED = 0x6985
SW_INCORRECT_DATA = 0x6A80
SW_INS_NOT_SUPPORTED = 0x6D00
SW_CLA_NOT_SUPPORTED = 0x6E00
SW_APP_NOT_OPEN = 0x6E01
SW_APP_NOT_OPEN_DASHBOARD = 0x6511
SW_DEVICE_LOCKED = 0x5515

_WRONG_APP_STATUS_WORDS = frozenset(
    {SW_INS_NOT_SUPPORTED, SW_CLA_NOT_SUPPORTED, SW_APP_NOT_OPEN, SW_APP_NOT_OPEN_DASHBOARD}
)

MAX_APDU_DATA = 255
DATA_BLOCK_SIZE = 250

SIGNATURE_TYPE_ED25519 = 0x00

_NETWORK_MODE = {
    Network.MAINNET: 0x00,
    Network.DEVNET: 0x01,
    Network.PRIVATE: 0x02,
}


@dataclass(frozen=True)
class Apdu:
    cla: int
    ins: int
    p1: int = 0
    p2: int = 0
    data: bytes = b""

    def encode(self) -> bytes:
        if len(self.data) > MAX_APDU_DATA:
            raise InvalidInputError(f"APDU data too long: {len(self.data)} > {MAX_APDU_DATA}")
        return bytes([self.cla, self.ins, self.p1, self.p2, len(self.data)]) + self.data


def parse_response(raw: bytes) -> tuple[bytes, int]:
    """Split a raw response into (data, status_word)."""
    if len(raw) < 2:
        raise DeviceError(f"Response too short: {raw.hex()}")
    return raw[:-2], int.from_bytes(raw[-2:], "big")


def check_status(status_word: int, command: str) -> None:
    """Map a status word to the wallet error taxonomy."""
    if status_word == SW_OK:
        return
    if status_word == SW_DENIED:
        raise UserRejectedError(f"{command}: denied on device")
    if status_word in _WRONG_APP_STATUS_WORDS:
        raise WrongAppError(
            f"{command}: wallet app is not open (0x{status_word:04x})", status_word=status_word
        )
    if status_word == SW_DEVICE_LOCKED:
        raise DeviceLockedError(f"{command}: device is locked", status_word=status_word)
    raise DeviceError(f"{command}: device returned 0x{status_word:04x}", status_word=status_word)


def get_app_and_version() -> Apdu:
    return Apdu(CLA_DASHBOARD, INS_GET_APP_AND_VERSION)


def parse_app_and_version(data: bytes) -> LedgerApp:
    """
    Response layout: format(1) name_len(1) name version_len(1) version [flags...]
    """
    try:
        name_len = data[1]
        name = data[2 : 2 + name_len]
        version_len = data[2 + name_len]
        version = data[3 + name_len : 3 + name_len + version_len]
    except IndexError as e:
        raise DeviceError(f"Malformed app info: {data.hex()}") from e
    if len(name) != name_len or len(version) != version_len:
        raise DeviceError(f"Truncated app info: {data.hex()}")
    try:
        return LedgerApp(name=name.decode("ascii"), version=version.decode("ascii"))
    except UnicodeDecodeError as e:
        raise DeviceError(f"Malformed app info: {data.hex()}") from e


def set_account(account_index: int, network: Network) -> Apdu:
    return Apdu(
        CLA_WALLET,
        INS_SET_ACCOUNT,
        p1=_NETWORK_MODE[network],
        data=(account_index + HARDENED_OFFSET).to_bytes(4, "little"),
    )


def generate_address(address_index: int, internal: bool, display: bool) -> Apdu:
    data = (
        (address_index + HARDENED_OFFSET).to_bytes(4, "little")
        + bytes([int(internal)])
        + (1).to_bytes(4, "little")
    )
    return Apdu(
        CLA_WALLET,
        INS_GENERATE_ADDRESS,
        p1=P1_DISPLAY if display else P1_NO_DISPLAY,
        data=data,
    )


def parse_address_payload(data: bytes) -> bytes:
    if len(data) != ADDRESS_PAYLOAD_LENGTH + 1 or data[0] != ED25519_ADDRESS_TYPE:
        raise DeviceError(f"Malformed address response: {data.hex()}")
    return data[1:]


def encode_signing_data(
    digest: bytes,
    key_paths: list[tuple[bool, int]],
    remainder: tuple[bool, int, int] | None = None,
) -> bytes:
    """
    Serialize what the device shows and signs.

    Layout: digest(32) input_count(2 LE) [internal(1) address_index(4 LE)]*
    has_remainder(1) [internal(1) address_index(4 LE) amount(8 LE)]
    """
    data = digest + len(key_paths).to_bytes(2, "little")
    for internal, address_index in key_paths:
        data += bytes([int(internal)]) + (address_index + HARDENED_OFFSET).to_bytes(4, "little")
    if remainder is None:
        data += b"\x00"
    else:
        internal, address_index, amount = remainder
        data += (
            b"\x01"
            + bytes([int(internal)])
            + (address_index + HARDENED_OFFSET).to_bytes(4, "little")
            + amount.to_bytes(8, "little")
        )
    return data


def clear_data_buffer() -> Apdu:
    return Apdu(CLA_WALLET, INS_CLEAR_DATA_BUFFER)


def write_data_blocks(data: bytes) -> list[Apdu]:
    blocks = [data[i : i + DATA_BLOCK_SIZE] for i in range(0, len(data), DATA_BLOCK_SIZE)]
    if len(blocks) > 0xFF:
        raise InvalidInputError("Signing data does not fit the device buffer")
    return [Apdu(CLA_WALLET, INS_WRITE_DATA_BLOCK, p1=i, data=block) for i, block in enumerate(blocks)]


def user_confirm() -> Apdu:
    return Apdu(CLA_WALLET, INS_USER_CONFIRM)


def sign_single(input_index: int) -> Apdu:
    return Apdu(CLA_WALLET, INS_SIGN_SINGLE, p1=input_index & 0xFF, p2=input_index >> 8)


def parse_signature(data: bytes) -> tuple[bytes, bytes]:
    """Response layout: type(1) public_key(32) signature(64)"""
    expected = 1 + ED25519_PUBLIC_KEY_LENGTH + ED25519_SIGNATURE_LENGTH
    if len(data) != expected or data[0] != SIGNATURE_TYPE_ED25519:
        raise DeviceError(f"Malformed signature response: {data.hex()}")
    return data[1 : 1 + ED25519_PUBLIC_KEY_LENGTH], data[1 + ED25519_PUBLIC_KEY_LENGTH :]
