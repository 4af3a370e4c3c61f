"""
Transport Session - lifetime of one serial connection.

A session owns the connection and the reader/writer pair derived from it.
The reader and writer exist exactly while the session is open. The session
also remembers when data last arrived so a silent device can be detected.
"""

import asyncio
import time

import serial
import serial_asyncio

from actuator_panel.core.logging import get_logger, log_serial_sent
from actuator_panel.core.utils import (
    SerialOpenError,
    SerialReadError,
    SerialWriteError,
    is_device_lost_error,
)

logger = get_logger()

DEFAULT_BAUD_RATE = 115200
DEFAULT_STALE_AFTER = 10000  # ms
DEFAULT_READ_CHUNK_SIZE = 4096  # bytes


class TransportSession:
    """
    Base class for transport sessions.

    Subclasses implement open(), close(), write() and read_chunk() for a
    concrete transport (serial port, dry-run simulation). Liveness tracking
    is shared: every successful read refreshes last_data_received_at.
    """

    def __init__(self, port: str, stale_after: float = DEFAULT_STALE_AFTER):
        """
        Initialize the session.

        Args:
            port: Name of the port this session talks to.
            stale_after: Time in ms without data after which the session is stale.
        """
        self.port = port
        self.stale_after = stale_after / 1000
        self.last_data_received_at: float = 0.0

    @property
    def is_open(self) -> bool:
        return False

    def touch(self) -> None:
        """Record that data (or a fresh connection) was just seen."""
        self.last_data_received_at = time.monotonic()

    def is_stale(self, now: float | None = None) -> bool:
        """Check whether no data has arrived for longer than stale_after."""
        if now is None:
            now = time.monotonic()
        return now - self.last_data_received_at > self.stale_after

    async def open(self) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError

    async def write(self, data: bytes) -> None:
        raise NotImplementedError

    async def read_chunk(self) -> bytes:
        """
        Wait for the next chunk of data.

        Returns:
            The bytes read, or b"" once the stream has ended.

        Raises:
            SerialReadError: If the read fails.
        """
        raise NotImplementedError

    async def __aenter__(self) -> "TransportSession":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class SerialTransportSession(TransportSession):
    """Session over a serial port using pyserial-asyncio streams."""

    def __init__(
        self,
        port: str,
        baud_rate: int = DEFAULT_BAUD_RATE,
        stale_after: float = DEFAULT_STALE_AFTER,
        read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE,
    ):
        super().__init__(port, stale_after=stale_after)
        self.baud_rate = baud_rate
        self.read_chunk_size = read_chunk_size
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None

    @property
    def is_open(self) -> bool:
        return self._reader is not None and self._writer is not None

    async def open(self) -> None:
        """
        Open the serial port.

        Raises:
            SerialOpenError: If the port is busy, missing or rejects the settings.
        """
        if self.is_open:
            logger.warning(f"Serial port {self.port} already open")
            return

        try:
            self._reader, self._writer = await serial_asyncio.open_serial_connection(
                url=self.port,
                baudrate=self.baud_rate,
            )
        except (serial.SerialException, OSError, ValueError) as e:
            self._reader = None
            self._writer = None
            raise SerialOpenError(f"Failed to open {self.port}: {e}") from e

        # Opening counts as a sign of life
        self.touch()
        logger.info(f"Opened {self.port} at {self.baud_rate} baud")

    async def close(self) -> None:
        """
        Release the reader and writer and close the port.

        Never raises; failures of individual steps are logged and the
        remaining steps still run.
        """
        reader, writer = self._reader, self._writer
        self._reader = None
        self._writer = None

        if reader is not None:
            try:
                # Wakes up a read that is still pending
                reader.feed_eof()
            except Exception as e:
                logger.warning(f"Error releasing serial reader: {e}")

        if writer is not None:
            try:
                writer.close()
                await writer.wait_closed()
            except Exception as e:
                logger.warning(f"Error closing serial connection: {e}")

        if reader is not None or writer is not None:
            logger.debug(f"Serial port {self.port} closed")

    async def write(self, data: bytes) -> None:
        """
        Write bytes and wait until they are handed to the port.

        Raises:
            SerialWriteError: If the session is not open or the write fails.
        """
        if self._writer is None:
            raise SerialWriteError("Cannot write - serial port is not open")

        try:
            self._writer.write(data)
            await self._writer.drain()
        except (serial.SerialException, OSError) as e:
            raise SerialWriteError(f"Failed to write to {self.port}: {e}") from e

        log_serial_sent(data.decode("ascii", errors="replace").strip())
        logger.verbose(f"Raw serial data sent: {data!r}")

    async def read_chunk(self) -> bytes:
        if self._reader is None:
            raise SerialReadError("Cannot read - serial port is closed", fatal=True)

        try:
            data = await self._reader.read(self.read_chunk_size)
        except (serial.SerialException, OSError) as e:
            raise SerialReadError(
                f"Failed to read from {self.port}: {e}", fatal=is_device_lost_error(e)
            ) from e

        if data:
            self.touch()
            logger.verbose(f"Raw serial data received: {data!r}")

        return data
