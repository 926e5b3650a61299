"""
Hardware wallet signer.

Every call runs through the device session state machine. Address
generation never asks for confirmation (display only, no funds at risk);
every sign_message call forces a fresh on-device confirmation, even for a
digest that was approved a moment ago.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from loguru import logger

from walletcore.address import Address
from walletcore.config import Settings, get_settings
from walletcore.errors import (
    DeviceBusyError,
    DeviceDisconnectedError,
    DeviceError,
    DeviceLockedError,
    DeviceTimeoutError,
    UserRejectedError,
    WrongAppError,
)
from walletcore.signing.base import (
    GenerateAddressMetadata,
    Signature,
    Signer,
    SignerInteraction,
    SignerType,
    SignMessageMetadata,
    TransactionInput,
    reference_slots,
    validate_signing_request,
)
from walletcore.signing.ledger import apdu
from walletcore.signing.ledger.state import DeviceSession, LedgerApp, LedgerState, LedgerStatus
from walletcore.signing.ledger.transport import HardwareTransport, SpeculosTransport
from walletcore.signing.slip10 import validate_index


class LedgerSigner(Signer):
    """
    Signer backed by a Ledger device (or the Speculos simulator).

    One interactive session per instance: a call made while another is in
    progress fails fast with DeviceBusyError instead of queueing a second
    confirmation prompt.
    """

    interaction = SignerInteraction.DEVICE_CONFIRMATION

    def __init__(
        self,
        transport: HardwareTransport,
        signer_type: SignerType = SignerType.LEDGER_NANO,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        super().__init__(signer_type)
        settings = settings or get_settings()
        self.transport = transport
        self.app_name = settings.ledger_app_name
        self.confirm_timeout = settings.ledger_confirm_timeout
        self.app_timeout = settings.ledger_app_timeout
        self.poll_interval = settings.ledger_poll_interval
        self.session = DeviceSession(clock)
        self._clock = clock
        self._sleep = sleep
        self._session_lock = asyncio.Lock()
        self._exchange_lock = asyncio.Lock()
        self._session_app: LedgerApp | None = None

    @classmethod
    def simulator(cls, settings: Settings | None = None, **kwargs) -> LedgerSigner:
        settings = settings or get_settings()
        transport = SpeculosTransport(settings.speculos_host, settings.speculos_port)
        return cls(transport, SignerType.LEDGER_NANO_SIMULATOR, settings=settings, **kwargs)

    @asynccontextmanager
    async def _exclusive(self) -> AsyncIterator[None]:
        if self._session_lock.locked():
            raise DeviceBusyError("Device is busy with another session")
        async with self._session_lock:
            yield

    async def _exchange(self, command: apdu.Apdu, name: str) -> bytes:
        async with self._exchange_lock:
            raw = await self.transport.exchange(command.encode())
        data, status_word = apdu.parse_response(raw)
        apdu.check_status(status_word, name)
        return data

    async def _get_app(self) -> LedgerApp:
        data = await self._exchange(apdu.get_app_and_version(), "get_app_and_version")
        return apdu.parse_app_and_version(data)

    async def _ensure_ready(self) -> None:
        if self.session.state in (LedgerState.COMPLETED, LedgerState.REJECTED):
            self.session.transition(LedgerState.READY)
            return
        if self.session.state == LedgerState.READY:
            return
        if self.session.state != LedgerState.DISCONNECTED:
            logger.debug(f"Resetting device session from {self.session.state.value}")
            await self._reset_transport()

        self.session.transition(LedgerState.CONNECTING)
        try:
            await self.transport.connect()
            await self._await_app()
        except (DeviceError, asyncio.CancelledError):
            self.session.fail()
            raise

    async def _await_app(self) -> None:
        deadline = self._clock() + self.app_timeout
        while True:
            app = await self._get_app()
            if app.name == self.app_name:
                self._session_app = app
                self.session.transition(LedgerState.READY)
                logger.debug(f"Device ready with {app.name} {app.version}")
                return

            if self.session.state == LedgerState.CONNECTING:
                self.session.transition(LedgerState.AWAITING_APP_SELECTION)
                logger.info(f"Open the {self.app_name} app on the device (current: {app.name})")

            if self._clock() >= deadline:
                raise WrongAppError(
                    f"Expected app {self.app_name!r}, device is running {app.name!r}",
                    app_name=app.name,
                )
            await self._sleep(self.poll_interval)

    async def _reset_transport(self) -> None:
        self._session_app = None
        try:
            await self.transport.disconnect()
        except DeviceError as e:
            logger.debug(f"Error disconnecting device: {e}")
        self.session.reset()

    async def reset(self) -> None:
        """Abandon any session; the next call reconnects from scratch."""
        async with self._exclusive():
            await self._reset_transport()

    async def generate_address(self, metadata: GenerateAddressMetadata) -> Address:
        validate_index(metadata.account_index)
        validate_index(metadata.address_index)

        async with self._exclusive():
            await self._ensure_ready()
            try:
                await self._exchange(
                    apdu.set_account(metadata.account_index, metadata.network), "set_account"
                )
                data = await self._exchange(
                    apdu.generate_address(
                        metadata.address_index, metadata.internal, display=not metadata.syncing
                    ),
                    "generate_address",
                )
                payload = apdu.parse_address_payload(data)
            except (DeviceError, asyncio.CancelledError):
                self.session.fail()
                raise

        return Address(payload, metadata.network)

    async def sign_message(
        self,
        metadata: SignMessageMetadata,
        inputs: list[TransactionInput],
        timeout: float | None = None,
    ) -> list[Signature]:
        """
        Sign the digest for every input after explicit user confirmation.

        Raises UserRejectedError if the user declines, DeviceTimeoutError if
        nobody confirms within ``timeout`` seconds (default from settings).
        After a timeout or transport fault the session is reset on next use.
        """
        validate_signing_request(metadata, inputs)
        validate_index(metadata.account_index)
        for tx_input in inputs:
            validate_index(tx_input.address_index)
        if metadata.remainder is not None:
            validate_index(metadata.remainder.address_index)

        remainder = None
        if metadata.remainder is not None:
            remainder = (
                metadata.remainder.internal,
                metadata.remainder.address_index,
                metadata.remainder.amount,
            )
        signing_data = apdu.encode_signing_data(
            metadata.digest,
            [(tx_input.internal, tx_input.address_index) for tx_input in inputs],
            remainder,
        )

        async with self._exclusive():
            await self._ensure_ready()
            try:
                await self._exchange(
                    apdu.set_account(metadata.account_index, metadata.network), "set_account"
                )
                await self._exchange(apdu.clear_data_buffer(), "clear_data_buffer")
                for block in apdu.write_data_blocks(signing_data):
                    await self._exchange(block, "write_data_block")
            except (DeviceError, asyncio.CancelledError):
                self.session.fail()
                raise

            await self._confirm(timeout if timeout is not None else self.confirm_timeout)

            try:
                signatures = await self._collect_signatures(inputs)
            except (DeviceError, asyncio.CancelledError):
                self.session.fail()
                raise
            self.session.transition(LedgerState.COMPLETED)

        logger.debug(f"Device signed {len(inputs)} inputs for account {metadata.account_index}")
        return signatures

    async def _confirm(self, timeout: float) -> None:
        self.session.transition(LedgerState.AWAITING_USER_CONFIRMATION)
        logger.info("Confirm the transaction on the device")
        try:
            await asyncio.wait_for(self._exchange(apdu.user_confirm(), "user_confirm"), timeout)
        except UserRejectedError:
            self.session.transition(LedgerState.REJECTED)
            logger.info("Transaction rejected on device")
            raise
        except TimeoutError as e:
            self.session.fail()
            raise DeviceTimeoutError(f"No confirmation on device within {timeout:.0f}s") from e
        except asyncio.CancelledError:
            self.session.fail()
            raise
        except DeviceError:
            self.session.fail()
            raise

    async def _collect_signatures(self, inputs: list[TransactionInput]) -> list[Signature]:
        signatures: list[Signature] = []
        for i, reference in enumerate(reference_slots(inputs)):
            if reference is not None:
                signatures.append(Signature.reference_to(reference))
                continue
            data = await self._exchange(apdu.sign_single(i), "sign_single")
            public_key, signature = apdu.parse_signature(data)
            signatures.append(Signature.ed25519(public_key, signature))
        return signatures

    async def status(self, connect: bool = False) -> LedgerStatus:
        """
        Poll the device without forcing a full reconnect.

        While a session is in progress the live session state is reported
        with busy=True and the device is not touched.
        """
        if self._session_lock.locked():
            return LedgerStatus(
                connected=True,
                locked=False,
                app=self._session_app,
                state=self.session.state,
                busy=True,
            )

        if not self.transport.is_connected():
            if not connect:
                return LedgerStatus(
                    connected=False, locked=False, app=None, state=self.session.state
                )
            try:
                await self.transport.connect()
            except DeviceDisconnectedError as e:
                logger.debug(f"Device not reachable: {e}")
                return LedgerStatus(
                    connected=False, locked=False, app=None, state=self.session.state
                )

        try:
            app = await self._get_app()
        except DeviceLockedError:
            return LedgerStatus(connected=True, locked=True, app=None, state=self.session.state)
        except DeviceDisconnectedError as e:
            logger.debug(f"Device disconnected during status poll: {e}")
            if self.session.state != LedgerState.DISCONNECTED:
                self.session.fail()
            return LedgerStatus(connected=False, locked=False, app=None, state=self.session.state)

        return LedgerStatus(connected=True, locked=False, app=app, state=self.session.state)

    async def close(self) -> None:
        await self._reset_transport()
