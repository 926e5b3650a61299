"""
Pytest configuration and fixtures for wallet core tests.
"""

from __future__ import annotations

import asyncio

import pytest

from walletcore.address import Address, Network
from walletcore.config import Settings
from walletcore.constants import HARDENED_OFFSET
from walletcore.errors import DeviceDisconnectedError
from walletcore.models import InclusionState, OutputData, OutputId
from walletcore.signing.ledger import apdu
from walletcore.signing.ledger.transport import HardwareTransport
from walletcore.signing.mnemonic import MnemonicSigner, StaticSeedSource
from walletcore.signing.registry import SignerRegistry, reset_registry
from walletcore.signing.slip10 import Ed25519Key, derivation_path, mnemonic_to_seed

TEST_MNEMONIC = (
    "abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon about"
)


class FakeClock:
    """Manually advanced monotonic clock; sleep() advances it instantly."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class FakeTransport(HardwareTransport):
    """
    Scripted hardware device.

    Derives keys from a seed like the real wallet app so addresses and
    signatures can be checked against the mnemonic signer.

    Attributes:
        app_sequence: App names reported by successive GET_APP_AND_VERSION
            calls; the last one sticks
        confirm_script: Per USER_CONFIRM call, a status word to answer with
            or an asyncio.Event to wait for before approving
    """

    def __init__(self, seed: bytes, app_name: str = "IOTA"):
        self.master = Ed25519Key.from_seed(seed)
        self.app_sequence: list[str] = [app_name]
        self.app_version = "0.7.0"
        self.locked = False
        self.unreachable = False
        self.confirm_script: list[int | asyncio.Event] = []
        self.disconnect_on: set[int] = set()

        self.connected = False
        self.connect_count = 0
        self.disconnect_count = 0
        self.sent: list[bytes] = []
        self.displayed: list[int] = []

        self._account = 0
        self._data = b""

    @property
    def app_name(self) -> str:
        return self.app_sequence[0]

    def instructions(self) -> list[int]:
        return [raw[1] for raw in self.sent]

    async def connect(self) -> None:
        if self.unreachable:
            raise DeviceDisconnectedError("No device found")
        self.connected = True
        self.connect_count += 1

    async def disconnect(self) -> None:
        self.connected = False
        self.disconnect_count += 1

    def is_connected(self) -> bool:
        return self.connected

    async def exchange(self, raw: bytes) -> bytes:
        if not self.connected:
            raise DeviceDisconnectedError("Not connected")
        self.sent.append(raw)
        cla, ins, p1, p2, lc = raw[:5]
        data = raw[5 : 5 + lc]

        if ins in self.disconnect_on:
            self.disconnect_on.discard(ins)
            self.connected = False
            raise DeviceDisconnectedError("Device unplugged")

        if self.locked:
            return self._sw(apdu.SW_DEVICE_LOCKED)

        if cla == apdu.CLA_DASHBOARD and ins == apdu.INS_GET_APP_AND_VERSION:
            name = self.app_name.encode()
            version = self.app_version.encode()
            if len(self.app_sequence) > 1:
                self.app_sequence.pop(0)
            return bytes([1, len(name)]) + name + bytes([len(version)]) + version + b"\x01\x00" + self._sw()

        if self.app_name != "IOTA":
            return self._sw(apdu.SW_CLA_NOT_SUPPORTED)

        if ins == apdu.INS_SET_ACCOUNT:
            self._account = int.from_bytes(data, "little") - HARDENED_OFFSET
            return self._sw()

        if ins == apdu.INS_GENERATE_ADDRESS:
            address_index = int.from_bytes(data[:4], "little") - HARDENED_OFFSET
            key = self._key(bool(data[4]), address_index)
            if p1 == apdu.P1_DISPLAY:
                self.displayed.append(address_index)
            return bytes([0]) + key.get_address(Network.MAINNET).payload + self._sw()

        if ins == apdu.INS_CLEAR_DATA_BUFFER:
            self._data = b""
            return self._sw()

        if ins == apdu.INS_WRITE_DATA_BLOCK:
            self._data += data
            return self._sw()

        if ins == apdu.INS_USER_CONFIRM:
            step = self.confirm_script.pop(0) if self.confirm_script else apdu.SW_OK
            if isinstance(step, asyncio.Event):
                await step.wait()
                return self._sw()
            return self._sw(step)

        if ins == apdu.INS_SIGN_SINGLE:
            input_index = p1 | (p2 << 8)
            digest = self._data[:32]
            offset = 34 + 5 * input_index
            internal = bool(self._data[offset])
            address_index = (
                int.from_bytes(self._data[offset + 1 : offset + 5], "little") - HARDENED_OFFSET
            )
            key = self._key(internal, address_index)
            return bytes([0]) + key.get_public_key_bytes() + key.sign(digest) + self._sw()

        return self._sw(apdu.SW_INS_NOT_SUPPORTED)

    def _key(self, internal: bool, address_index: int) -> Ed25519Key:
        return self.master.derive(derivation_path(self._account, internal, address_index))

    @staticmethod
    def _sw(status_word: int = apdu.SW_OK) -> bytes:
        return status_word.to_bytes(2, "big")


@pytest.fixture(autouse=True)
def clean_registry():
    """Each test starts without a process-wide registry."""
    reset_registry()
    yield
    reset_registry()


@pytest.fixture
def test_mnemonic() -> str:
    """Test mnemonic (BIP39 test vector)"""
    return TEST_MNEMONIC


@pytest.fixture
def test_seed(test_mnemonic: str) -> bytes:
    return mnemonic_to_seed(test_mnemonic)


@pytest.fixture
def seed_source(test_seed: bytes) -> StaticSeedSource:
    return StaticSeedSource(test_seed)


@pytest.fixture
def mnemonic_signer(seed_source: StaticSeedSource) -> MnemonicSigner:
    return MnemonicSigner(seed_source)


@pytest.fixture
def registry(mnemonic_signer: MnemonicSigner) -> SignerRegistry:
    return SignerRegistry({mnemonic_signer.signer_type: mnemonic_signer})


@pytest.fixture
def settings() -> Settings:
    return Settings(
        network=Network.MAINNET,
        ledger_confirm_timeout=5.0,
        ledger_app_timeout=2.0,
        ledger_poll_interval=0.5,
        output_consolidation_threshold=3,
        ledger_output_consolidation_threshold=2,
    )


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_transport(test_seed: bytes) -> FakeTransport:
    return FakeTransport(test_seed)


@pytest.fixture
def address() -> Address:
    return Address(bytes(range(32)), Network.MAINNET)


@pytest.fixture
def other_address() -> Address:
    return Address(bytes(range(32, 64)), Network.MAINNET)


@pytest.fixture
def make_output(address: Address):
    """Factory for OutputData with a deterministic id per (tx byte, index)."""

    def _make(
        tx: int,
        amount: int,
        state: InclusionState = InclusionState.CONFIRMED,
        index: int = 0,
        is_spent: bool = False,
        output_address: Address | None = None,
    ) -> OutputData:
        return OutputData(
            output_id=OutputId(transaction_id=f"{tx:02x}" * 32, index=index),
            amount=amount,
            address=output_address or address,
            is_spent=is_spent,
            inclusion_state=state,
        )

    return _make
