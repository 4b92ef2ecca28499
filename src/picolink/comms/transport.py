"""
Byte Stream Transport
=====================

Abstract byte-stream transport used by the raw REPL driver. A transport
carries raw bytes in both directions and hands out at most one reader
and at most one writer at a time:

- acquire_reader() / release_reader() guard the receive side
- acquire_writer() / release_writer() guard the transmit side
- read() and write() refuse to run unless the caller holds the handle

Concrete transports implement the four underscore hooks. The serial
implementation lives in picolink.comms.serial; tests use an in-memory
fake device.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from picolink.errors import TransportError

# Configure module logger
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReadResult:
    """
    One chunk from the transport.

    Attributes:
        value: Bytes received (may be empty when nothing arrived yet)
        done: True once the stream has ended; no more reads will succeed
    """

    value: bytes = b""
    done: bool = False


class Transport(ABC):
    """
    Base class for byte-stream transports.

    Subclasses implement _open(), _close(), _read_chunk() and
    _write_bytes(). Handle bookkeeping is shared.
    """

    def __init__(self) -> None:
        self._reader_held = False
        self._writer_held = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True while the underlying stream is open."""

    async def open(self, baud_rate: int) -> None:
        """
        Open the stream.

        Opening a stream that is already open is not an error; the
        existing stream is reused.
        """
        if self.is_open:
            logger.info("Transport already open, reusing it")
            return
        await self._open(baud_rate)

    async def close(self) -> None:
        """Close the stream and drop both handles."""
        self._reader_held = False
        self._writer_held = False
        await self._close()

    # =========================================================================
    # Handles
    # =========================================================================

    @property
    def reader_locked(self) -> bool:
        return self._reader_held

    @property
    def writer_locked(self) -> bool:
        return self._writer_held

    def acquire_reader(self) -> None:
        if self._reader_held:
            raise TransportError("Reader is already acquired")
        self._reader_held = True

    def release_reader(self) -> None:
        self._reader_held = False

    def acquire_writer(self) -> None:
        if self._writer_held:
            raise TransportError("Writer is already acquired")
        self._writer_held = True

    def release_writer(self) -> None:
        self._writer_held = False

    # =========================================================================
    # I/O
    # =========================================================================

    async def read(self) -> ReadResult:
        """
        Read the next available chunk.

        Raises:
            TransportError: If the reader is not held or the stream failed.
        """
        if not self._reader_held:
            raise TransportError("Read attempted without holding the reader")
        return await self._read_chunk()

    async def write(self, data: bytes) -> None:
        """
        Write bytes to the stream.

        Raises:
            TransportError: If the writer is not held or the stream failed.
        """
        if not self._writer_held:
            raise TransportError("Write attempted without holding the writer")
        await self._write_bytes(data)

    # =========================================================================
    # Subclass hooks
    # =========================================================================

    @abstractmethod
    async def _open(self, baud_rate: int) -> None:
        ...

    @abstractmethod
    async def _close(self) -> None:
        ...

    @abstractmethod
    async def _read_chunk(self) -> ReadResult:
        ...

    @abstractmethod
    async def _write_bytes(self, data: bytes) -> None:
        ...
