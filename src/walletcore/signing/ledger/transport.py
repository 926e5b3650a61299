"""
Hardware transport interface.

The byte-level channel to the device (USB HID, BLE) is an external
collaborator. The signer only needs connect/exchange/disconnect.
SpeculosTransport talks to the Speculos device simulator over TCP.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

from loguru import logger

from walletcore.errors import DeviceDisconnectedError

# Speculos APDU framing: 4-byte big-endian length, then payload.
# Responses carry the data length (status word excluded), data, then 2 bytes of SW.
FRAME_LENGTH_BYTES = 4
STATUS_WORD_BYTES = 2
MAX_RESPONSE_SIZE = 0x10000


class HardwareTransport(ABC):
    """
    Abstract transport to a hardware signing device.
    One exchange sends a full APDU and returns the raw response including
    the trailing 2-byte status word.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the channel to the device"""

    @abstractmethod
    async def exchange(self, apdu: bytes) -> bytes:
        """Send an APDU, return response data followed by the status word"""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the channel"""

    @abstractmethod
    def is_connected(self) -> bool:
        pass


class SpeculosTransport(HardwareTransport):
    def __init__(self, host: str = "127.0.0.1", port: int = 9999, connect_timeout: float = 5.0):
        self.host = host
        self.port = port
        self.connect_timeout = connect_timeout
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None

    async def connect(self) -> None:
        if self.is_connected():
            return
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port), timeout=self.connect_timeout
            )
        except (OSError, TimeoutError) as e:
            raise DeviceDisconnectedError(
                f"Could not connect to simulator at {self.host}:{self.port}: {e}"
            ) from e
        logger.debug(f"Connected to simulator at {self.host}:{self.port}")

    async def exchange(self, apdu: bytes) -> bytes:
        if self._reader is None or self._writer is None:
            raise DeviceDisconnectedError("Simulator transport is not connected")

        try:
            self._writer.write(len(apdu).to_bytes(FRAME_LENGTH_BYTES, "big") + apdu)
            await self._writer.drain()

            header = await self._reader.readexactly(FRAME_LENGTH_BYTES)
            length = int.from_bytes(header, "big")
            if length > MAX_RESPONSE_SIZE:
                raise DeviceDisconnectedError(f"Response too large: {length} bytes")
            response = await self._reader.readexactly(length + STATUS_WORD_BYTES)
        except asyncio.IncompleteReadError as e:
            await self._drop()
            raise DeviceDisconnectedError("Simulator closed the connection") from e
        except OSError as e:
            await self._drop()
            raise DeviceDisconnectedError(f"Simulator transport failed: {e}") from e

        logger.trace(f"APDU {apdu.hex()} -> {response.hex()}")
        return response

    async def disconnect(self) -> None:
        await self._drop()

    async def _drop(self) -> None:
        writer = self._writer
        self._reader = None
        self._writer = None
        if writer is None:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as e:
            logger.debug(f"Error closing simulator connection: {e}")

    def is_connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()
