"""
Tests for the hardware signer and its session state machine.

The device is a scripted FakeTransport deriving keys from the test seed, so
everything the device returns can be checked against the mnemonic signer.
"""

from __future__ import annotations

import asyncio
import hashlib

import pytest
from conftest import FakeClock, FakeTransport

from walletcore.address import Network
from walletcore.errors import (
    DerivationError,
    DeviceBusyError,
    DeviceDisconnectedError,
    DeviceError,
    DeviceLockedError,
    DeviceTimeoutError,
    InvalidInputError,
    UserRejectedError,
    WrongAppError,
)
from walletcore.models import OutputData, OutputId
from walletcore.signing.base import (
    GenerateAddressMetadata,
    RemainderData,
    SignerInteraction,
    SignerType,
    SignMessageMetadata,
    TransactionInput,
)
from walletcore.signing.ledger import apdu
from walletcore.signing.ledger.signer import LedgerSigner
from walletcore.signing.ledger.state import DeviceSession, LedgerState

DIGEST = hashlib.blake2b(b"ledger essence", digest_size=32).digest()


@pytest.fixture
def ledger(fake_transport: FakeTransport, settings, fake_clock: FakeClock) -> LedgerSigner:
    return LedgerSigner(fake_transport, settings=settings, clock=fake_clock, sleep=fake_clock.sleep)


async def _inputs(mnemonic_signer, *address_indices: int) -> list[TransactionInput]:
    inputs = []
    for i, address_index in enumerate(address_indices):
        address = await mnemonic_signer.generate_address(
            GenerateAddressMetadata(0, address_index, Network.MAINNET)
        )
        output = OutputData(
            output_id=OutputId(transaction_id=f"{i + 1:02x}" * 32, index=0),
            amount=100,
            address=address,
        )
        inputs.append(TransactionInput(output=output, account_index=0, address_index=address_index))
    return inputs


async def _wait_for_state(signer: LedgerSigner, state: LedgerState) -> None:
    for _ in range(100):
        if signer.session.state == state:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"Device never reached {state.value}")


class TestDeviceSession:
    def test_happy_path(self, fake_clock):
        session = DeviceSession(fake_clock)
        for state in (
            LedgerState.CONNECTING,
            LedgerState.AWAITING_APP_SELECTION,
            LedgerState.READY,
            LedgerState.AWAITING_USER_CONFIRMATION,
            LedgerState.COMPLETED,
            LedgerState.READY,
        ):
            session.transition(state)
        assert session.is_live

    def test_illegal_transition(self, fake_clock):
        session = DeviceSession(fake_clock)
        with pytest.raises(DeviceError):
            session.transition(LedgerState.READY)
        assert session.state == LedgerState.DISCONNECTED

    def test_error_only_left_by_reset(self, fake_clock):
        session = DeviceSession(fake_clock)
        session.transition(LedgerState.CONNECTING)
        session.fail()
        assert not session.can_transition(LedgerState.READY)
        assert not session.can_transition(LedgerState.CONNECTING)
        session.reset()
        assert session.state == LedgerState.DISCONNECTED

    def test_elapsed_uses_clock(self, fake_clock):
        session = DeviceSession(fake_clock)
        fake_clock.now += 7.5
        assert session.elapsed() == 7.5

    def test_history_is_capped(self, fake_clock):
        session = DeviceSession(fake_clock)
        for _ in range(120):
            session.transition(LedgerState.CONNECTING)
            session.reset()
        assert len(session.history) == 100


class TestAddressGeneration:
    @pytest.mark.asyncio
    async def test_matches_mnemonic_signer(self, ledger, mnemonic_signer, fake_transport):
        for internal in (False, True):
            metadata = GenerateAddressMetadata(0, 3, Network.MAINNET, internal=internal, syncing=True)
            assert await ledger.generate_address(metadata) == await mnemonic_signer.generate_address(
                metadata
            )
        assert ledger.session.state == LedgerState.READY
        assert fake_transport.connect_count == 1

    @pytest.mark.asyncio
    async def test_display_unless_syncing(self, ledger, fake_transport):
        await ledger.generate_address(GenerateAddressMetadata(0, 1, Network.MAINNET))
        await ledger.generate_address(GenerateAddressMetadata(0, 2, Network.MAINNET, syncing=True))
        assert fake_transport.displayed == [1]

    @pytest.mark.asyncio
    async def test_network_applied_to_payload(self, ledger, mnemonic_signer):
        metadata = GenerateAddressMetadata(0, 0, Network.DEVNET, syncing=True)
        address = await ledger.generate_address(metadata)
        assert address.network == Network.DEVNET
        assert address == await mnemonic_signer.generate_address(metadata)

    def test_interaction(self, ledger):
        assert ledger.interaction == SignerInteraction.DEVICE_CONFIRMATION
        assert ledger.signer_type == SignerType.LEDGER_NANO

    def test_simulator_type(self, settings):
        signer = LedgerSigner.simulator(settings=settings)
        assert signer.signer_type == SignerType.LEDGER_NANO_SIMULATOR
        assert signer.transport.port == settings.speculos_port


class TestAppSelection:
    @pytest.mark.asyncio
    async def test_waits_for_app(self, ledger, fake_transport, fake_clock):
        fake_transport.app_sequence = ["BOLOS", "BOLOS", "IOTA"]
        await ledger.generate_address(GenerateAddressMetadata(0, 0, Network.MAINNET, syncing=True))

        states = [state for state, _ in ledger.session.history]
        assert LedgerState.AWAITING_APP_SELECTION in states
        assert ledger.session.state == LedgerState.READY
        assert fake_clock.sleeps == [0.5, 0.5]

    @pytest.mark.asyncio
    async def test_wrong_app_after_deadline(self, ledger, fake_transport, fake_clock):
        fake_transport.app_sequence = ["BOLOS"]
        with pytest.raises(WrongAppError) as exc_info:
            await ledger.generate_address(GenerateAddressMetadata(0, 0, Network.MAINNET))

        assert exc_info.value.app_name == "BOLOS"
        assert exc_info.value.retryable
        assert ledger.session.state == LedgerState.ERROR
        assert sum(fake_clock.sleeps) >= 2.0

    @pytest.mark.asyncio
    async def test_recovers_after_app_opened(self, ledger, fake_transport):
        fake_transport.app_sequence = ["BOLOS"]
        with pytest.raises(WrongAppError):
            await ledger.generate_address(GenerateAddressMetadata(0, 0, Network.MAINNET))

        fake_transport.app_sequence = ["IOTA"]
        await ledger.generate_address(GenerateAddressMetadata(0, 0, Network.MAINNET))
        assert ledger.session.state == LedgerState.READY
        assert fake_transport.connect_count == 2

    @pytest.mark.asyncio
    async def test_locked_device(self, ledger, fake_transport):
        fake_transport.locked = True
        with pytest.raises(DeviceLockedError):
            await ledger.generate_address(GenerateAddressMetadata(0, 0, Network.MAINNET))
        assert ledger.session.state == LedgerState.ERROR

    @pytest.mark.asyncio
    async def test_unreachable_device(self, ledger, fake_transport):
        fake_transport.unreachable = True
        with pytest.raises(DeviceDisconnectedError):
            await ledger.generate_address(GenerateAddressMetadata(0, 0, Network.MAINNET))
        assert ledger.session.state == LedgerState.ERROR


class TestSigning:
    @pytest.mark.asyncio
    async def test_signatures_verify(self, ledger, mnemonic_signer, fake_transport):
        inputs = await _inputs(mnemonic_signer, 0, 1, 0)
        metadata = SignMessageMetadata(0, DIGEST, Network.MAINNET)

        signatures = await ledger.sign_message(metadata, inputs)

        assert signatures == await mnemonic_signer.sign_message(metadata, inputs)
        assert signatures[0].verify(DIGEST)
        assert signatures[2].reference == 0
        assert ledger.session.state == LedgerState.COMPLETED
        assert fake_transport.instructions().count(apdu.INS_SIGN_SINGLE) == 2

    @pytest.mark.asyncio
    async def test_remainder_sent_to_device(self, ledger, mnemonic_signer, fake_transport):
        inputs = await _inputs(mnemonic_signer, 0)
        remainder_address = await mnemonic_signer.generate_address(
            GenerateAddressMetadata(0, 0, Network.MAINNET, internal=True)
        )
        metadata = SignMessageMetadata(
            0, DIGEST, Network.MAINNET, remainder=RemainderData(remainder_address, 40, 0)
        )
        await ledger.sign_message(metadata, inputs)
        written = b"".join(
            raw[5:] for raw in fake_transport.sent if raw[1] == apdu.INS_WRITE_DATA_BLOCK
        )
        assert written == apdu.encode_signing_data(DIGEST, [(False, 0)], (True, 0, 40))

    @pytest.mark.asyncio
    async def test_every_call_requires_confirmation(self, ledger, mnemonic_signer, fake_transport):
        inputs = await _inputs(mnemonic_signer, 0)
        metadata = SignMessageMetadata(0, DIGEST, Network.MAINNET)
        await ledger.sign_message(metadata, inputs)
        await ledger.sign_message(metadata, inputs)
        assert fake_transport.instructions().count(apdu.INS_USER_CONFIRM) == 2

    @pytest.mark.asyncio
    async def test_rejection_then_fresh_confirmation(self, ledger, mnemonic_signer, fake_transport):
        inputs = await _inputs(mnemonic_signer, 0)
        metadata = SignMessageMetadata(0, DIGEST, Network.MAINNET)
        fake_transport.confirm_script = [apdu.SW_DENIED]

        with pytest.raises(UserRejectedError) as exc_info:
            await ledger.sign_message(metadata, inputs)
        assert not exc_info.value.retryable
        assert ledger.session.state == LedgerState.REJECTED
        assert apdu.INS_SIGN_SINGLE not in fake_transport.instructions()

        signatures = await ledger.sign_message(metadata, inputs)

        assert signatures[0].verify(DIGEST)
        assert fake_transport.instructions().count(apdu.INS_USER_CONFIRM) == 2
        assert fake_transport.connect_count == 1
        states = [state for state, _ in ledger.session.history]
        assert states[-4:] == [
            LedgerState.REJECTED,
            LedgerState.READY,
            LedgerState.AWAITING_USER_CONFIRMATION,
            LedgerState.COMPLETED,
        ]

    @pytest.mark.asyncio
    async def test_timeout_goes_to_error_then_reconnects(
        self, ledger, mnemonic_signer, fake_transport
    ):
        inputs = await _inputs(mnemonic_signer, 0)
        metadata = SignMessageMetadata(0, DIGEST, Network.MAINNET)
        fake_transport.confirm_script = [asyncio.Event()]

        with pytest.raises(DeviceTimeoutError):
            await ledger.sign_message(metadata, inputs, timeout=0.01)
        assert ledger.session.state == LedgerState.ERROR

        signatures = await ledger.sign_message(metadata, inputs)
        assert signatures[0].verify(DIGEST)
        assert fake_transport.connect_count == 2
        assert fake_transport.disconnect_count == 1

    @pytest.mark.asyncio
    async def test_cancellation_goes_to_error(self, ledger, mnemonic_signer, fake_transport):
        inputs = await _inputs(mnemonic_signer, 0)
        fake_transport.confirm_script = [asyncio.Event()]
        task = asyncio.create_task(
            ledger.sign_message(SignMessageMetadata(0, DIGEST, Network.MAINNET), inputs)
        )
        await _wait_for_state(ledger, LedgerState.AWAITING_USER_CONFIRMATION)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert ledger.session.state == LedgerState.ERROR

    @pytest.mark.asyncio
    async def test_disconnect_during_signing(self, ledger, mnemonic_signer, fake_transport):
        inputs = await _inputs(mnemonic_signer, 0)
        fake_transport.disconnect_on = {apdu.INS_SIGN_SINGLE}
        with pytest.raises(DeviceDisconnectedError):
            await ledger.sign_message(SignMessageMetadata(0, DIGEST, Network.MAINNET), inputs)
        assert ledger.session.state == LedgerState.ERROR

    @pytest.mark.asyncio
    async def test_concurrent_call_is_busy(self, ledger, mnemonic_signer, fake_transport):
        inputs = await _inputs(mnemonic_signer, 0)
        metadata = SignMessageMetadata(0, DIGEST, Network.MAINNET)
        approve = asyncio.Event()
        fake_transport.confirm_script = [approve]

        task = asyncio.create_task(ledger.sign_message(metadata, inputs))
        await _wait_for_state(ledger, LedgerState.AWAITING_USER_CONFIRMATION)

        with pytest.raises(DeviceBusyError):
            await ledger.sign_message(metadata, inputs)
        with pytest.raises(DeviceBusyError):
            await ledger.generate_address(GenerateAddressMetadata(0, 0, Network.MAINNET))

        status = await ledger.status()
        assert status.busy
        assert status.state == LedgerState.AWAITING_USER_CONFIRMATION

        approve.set()
        signatures = await task
        assert signatures[0].verify(DIGEST)
        assert fake_transport.instructions().count(apdu.INS_USER_CONFIRM) == 1

    @pytest.mark.asyncio
    async def test_invalid_request_never_reaches_device(self, ledger, fake_transport):
        with pytest.raises(InvalidInputError):
            await ledger.sign_message(SignMessageMetadata(0, DIGEST, Network.MAINNET), [])
        assert fake_transport.sent == []

    @pytest.mark.asyncio
    async def test_account_index_out_of_range(self, ledger, mnemonic_signer, fake_transport):
        inputs = [
            TransactionInput(output=i.output, account_index=2**31, address_index=i.address_index)
            for i in await _inputs(mnemonic_signer, 0)
        ]
        with pytest.raises(DerivationError):
            await ledger.sign_message(SignMessageMetadata(2**31, DIGEST, Network.MAINNET), inputs)
        assert fake_transport.sent == []

    @pytest.mark.asyncio
    async def test_remainder_index_out_of_range(self, ledger, mnemonic_signer, fake_transport):
        inputs = await _inputs(mnemonic_signer, 0)
        remainder = RemainderData(inputs[0].output.address, 40, 2**31)
        with pytest.raises(DerivationError):
            await ledger.sign_message(
                SignMessageMetadata(0, DIGEST, Network.MAINNET, remainder=remainder), inputs
            )
        assert fake_transport.sent == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [-5, 2**64])
    async def test_remainder_amount_out_of_range(
        self, ledger, mnemonic_signer, fake_transport, amount
    ):
        inputs = await _inputs(mnemonic_signer, 0)
        remainder = RemainderData(inputs[0].output.address, amount, 0)
        with pytest.raises(InvalidInputError):
            await ledger.sign_message(
                SignMessageMetadata(0, DIGEST, Network.MAINNET, remainder=remainder), inputs
            )
        assert fake_transport.sent == []


class TestStatus:
    @pytest.mark.asyncio
    async def test_disconnected_without_connect(self, ledger, fake_transport):
        status = await ledger.status()
        assert not status.connected
        assert fake_transport.connect_count == 0

    @pytest.mark.asyncio
    async def test_connect_on_request(self, ledger, fake_transport):
        status = await ledger.status(connect=True)
        assert status.connected
        assert status.app.name == "IOTA"
        assert not status.busy

    @pytest.mark.asyncio
    async def test_locked(self, ledger, fake_transport):
        fake_transport.locked = True
        status = await ledger.status(connect=True)
        assert status.connected
        assert status.locked

    @pytest.mark.asyncio
    async def test_unreachable(self, ledger, fake_transport):
        fake_transport.unreachable = True
        status = await ledger.status(connect=True)
        assert not status.connected

    @pytest.mark.asyncio
    async def test_unplugged_after_use(self, ledger, fake_transport):
        await ledger.generate_address(GenerateAddressMetadata(0, 0, Network.MAINNET))
        fake_transport.disconnect_on = {apdu.INS_GET_APP_AND_VERSION}
        status = await ledger.status()
        assert not status.connected
        assert ledger.session.state == LedgerState.ERROR

    @pytest.mark.asyncio
    async def test_close_resets_session(self, ledger, fake_transport):
        await ledger.generate_address(GenerateAddressMetadata(0, 0, Network.MAINNET))
        await ledger.close()
        assert ledger.session.state == LedgerState.DISCONNECTED
        assert not fake_transport.is_connected()
