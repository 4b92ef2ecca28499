"""
File Transfer Engine
====================

Moves file contents between the host and the board over the raw REPL.

Upload Protocol
---------------
The board runs a small receiver script (see scripts.upload_receiver_script)
that reads framed data from stdin:

    ┌──────────────┬───────────┬───────────┬─────┬──────────────────────┐
    │ Length (7 B) │ Block 255 │ Block 255 │ ... │ Last block, 0xFF pad │
    │ "0000600"    │           │           │     │ up to 255 bytes      │
    └──────────────┴───────────┴───────────┴─────┴──────────────────────┘

- The header is the payload length as 7 zero-padded ASCII digits
- Every block is exactly 255 bytes; only a short final block is padded
- The receiver keeps exactly ``length`` bytes, dropping the padding
- Payloads of 2,000,000 bytes or more are refused before anything is sent

Download Protocol
-----------------
The board streams the file in 256-byte chunks to stdout, followed by the
literal terminator "###DONE READING FILE###". The reply therefore looks
like:

    OK <file bytes> ###DONE READING FILE### Ctrl-D Ctrl-D >

The driver trims the leading "OK" and everything from the terminator on.
Text downloads use the decoded lines; binary downloads use the raw byte
capture, since decoding is lossy for bytes that are not valid UTF-8.
"""

import logging
from dataclasses import dataclass
from typing import Final, Optional, Union

from picolink.comms.executor import CommandExecutor, split_blocks
from picolink.comms.mode import NORMAL_GREETING_OMIT, ModeController
from picolink.comms.scripts import (
    DOWNLOAD_TERMINATOR,
    LENGTH_HEADER_DIGITS,
    UPLOAD_READY,
    clean_output_lines,
    download_script,
    make_dirs_script,
    parent_directory,
    upload_receiver_script,
)
from picolink.comms.session import DeviceObserver
from picolink.comms.sync import (
    LINE_SEPARATOR,
    OK_TOKEN,
    RAW_PROMPT,
    StreamSynchronizer,
    WriteFunc,
)
from picolink.config import LinkConfig
from picolink.errors import SizeLimitError, TransferError

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Size of every upload block
SEND_BLOCK_SIZE: Final[int] = 255

# Fills the unused tail of the last upload block
PAD_BYTE: Final[int] = 0xFF

# Uploads of this size or larger are refused
MAX_UPLOAD_SIZE: Final[int] = 2_000_000

# Progress milestones, in percent
PROGRESS_DIRECTORIES: Final[int] = 1
PROGRESS_RECEIVER: Final[int] = 2
PROGRESS_HEADER: Final[int] = 3
PROGRESS_LAST_BLOCK: Final[int] = 98
PROGRESS_DONE: Final[int] = 100


# =============================================================================
# Upload Framing
# =============================================================================

@dataclass(frozen=True)
class UploadFrame:
    """
    A payload framed for the upload receiver.

    Attributes:
        header: Payload length as 7 ASCII digits
        blocks: Payload blocks, each exactly block_size bytes
        declared_length: Payload length before padding
    """

    header: bytes
    blocks: tuple[bytes, ...]
    declared_length: int

    @property
    def padding(self) -> int:
        """Number of pad bytes in the final block."""
        return sum(len(block) for block in self.blocks) - self.declared_length

    def to_bytes(self) -> bytes:
        """The whole frame as sent on the wire."""
        return self.header + b"".join(self.blocks)


def build_upload_frame(payload: bytes, block_size: int = SEND_BLOCK_SIZE) -> UploadFrame:
    """
    Frame a payload for upload.

    Args:
        payload: File contents.
        block_size: Block size expected by the receiver.

    Returns:
        UploadFrame with header and padded blocks.

    Raises:
        SizeLimitError: If the length does not fit the 7-digit header.

    Example:
        >>> frame = build_upload_frame(bytes(600))
        >>> frame.header, [len(b) for b in frame.blocks], frame.padding
        (b'0000600', [255, 255, 255], 165)
    """
    length = len(payload)
    if length >= 10 ** LENGTH_HEADER_DIGITS:
        raise SizeLimitError(length, 10 ** LENGTH_HEADER_DIGITS)

    header = f"{length:0{LENGTH_HEADER_DIGITS}d}".encode("ascii")
    blocks = split_blocks(payload, block_size)
    if blocks and len(blocks[-1]) < block_size:
        blocks[-1] = blocks[-1] + bytes([PAD_BYTE]) * (block_size - len(blocks[-1]))

    return UploadFrame(header=header, blocks=tuple(blocks), declared_length=length)


def normalize_text(text: str) -> bytes:
    """
    Encode text for upload with every line ending rewritten to LF.

    Example:
        >>> normalize_text("a\\r\\nb\\rc\\n")
        b'a\\nb\\nc\\n'
    """
    return text.replace("\r\n", "\n").replace("\r", "\n").encode("utf-8")


def board_error(lines: list[str]) -> Optional[str]:
    """Last non-blank line of a reply, which is where a traceback names the error."""
    detail = [line.strip() for line in clean_output_lines(lines) if line.strip()]
    return detail[-1] if detail else None


def extract_text_payload(lines: list[str]) -> Optional[str]:
    """Recover downloaded text from collected lines, None without terminator."""
    joined = LINE_SEPARATOR.join(lines)
    end = joined.rfind(DOWNLOAD_TERMINATOR)
    if end < 0:
        return None
    start = joined.find(OK_TOKEN) + len(OK_TOKEN)
    return joined[start:end]


def extract_binary_payload(captured: bytes) -> Optional[bytes]:
    """Recover downloaded bytes from the raw capture, None without terminator."""
    end = captured.rfind(DOWNLOAD_TERMINATOR.encode("ascii"))
    if end < 0:
        return None
    start = captured.find(OK_TOKEN.encode("ascii")) + len(OK_TOKEN)
    return captured[start:end]


# =============================================================================
# File Transfer
# =============================================================================

class FileTransfer:
    """
    Upload and download files through the raw REPL.

    These are the unguarded building blocks; ReplDriver wraps them with
    the session guard and the filesystem refresh.

    Example:
        >>> transfer = FileTransfer(executor, mode, sync, write, config, observer)
        >>> await transfer.upload("/lib/util.py", b"def f(): pass\\n")
        True
    """

    def __init__(
        self,
        executor: CommandExecutor,
        mode: ModeController,
        sync: StreamSynchronizer,
        write: WriteFunc,
        config: LinkConfig,
        observer: DeviceObserver,
    ):
        self.executor = executor
        self.mode = mode
        self.sync = sync
        self.config = config
        self.observer = observer
        self._write = write

    def check_size(self, payload: bytes) -> None:
        """
        Raises:
            SizeLimitError: If payload is at or above the upload cap.
        """
        if len(payload) >= self.config.max_upload_size:
            raise SizeLimitError(len(payload), self.config.max_upload_size)

    async def build_path(self, directory: str) -> bool:
        """
        Create directory and all of its parents on the board.

        Existing directories are left alone, so calling this twice is fine.

        Returns:
            True on completion, False if the session disconnected.
        """
        logger.debug("Building path %r", directory)
        lines = await self.executor.run_raw(
            make_dirs_script(directory), wait_for_completion=True, omit_lines=1
        )
        if lines is None:
            return False
        return await self.mode.enter_normal(NORMAL_GREETING_OMIT)

    async def upload(
        self,
        path: str,
        payload: bytes,
        label: Optional[str] = None,
        progress: bool = True,
    ) -> bool:
        """
        Write payload to path on the board.

        Args:
            path: Destination path on the board.
            payload: File contents.
            label: Progress label, defaults to "Uploading <path>".
            progress: Report progress to the observer.

        Returns:
            True once the board is back in normal mode, False if the
            session disconnected part way.

        Raises:
            SizeLimitError: If payload is at or above the upload cap. Raised
                before anything is sent to the board.
            TransferError: If the board reported an error while writing.
        """
        self.check_size(payload)
        frame = build_upload_frame(payload, self.config.send_block_size)
        label = label or f"Uploading {path}"

        directory = parent_directory(path)
        if directory:
            if not await self.build_path(directory):
                return False
        self._progress(progress, PROGRESS_DIRECTORIES, label)

        logger.info("Uploading %s (%d bytes, %d blocks)", path, len(payload), len(frame.blocks))
        lines = await self.executor.run_raw(
            upload_receiver_script(path, self.config.send_block_size),
            wait_for_completion=True,
            omit_lines=1,
            terminator=UPLOAD_READY,
        )
        if lines is None:
            return False
        if not any(UPLOAD_READY in line for line in lines):
            # The receiver failed before reading anything, so the board is idle
            if not await self.mode.enter_normal(NORMAL_GREETING_OMIT):
                return False
            reason = board_error(lines) or "receiver did not start"
            raise TransferError(f"Cannot write {path}: {reason}")
        self._progress(progress, PROGRESS_RECEIVER)

        # The receiver prints nothing more until it has closed the file
        self.sync.start_wait_for(RAW_PROMPT)
        await self._write(frame.header)
        self._progress(progress, PROGRESS_HEADER)

        span = PROGRESS_LAST_BLOCK - PROGRESS_HEADER
        for index, block in enumerate(frame.blocks, start=1):
            await self._write(block)
            logger.debug("Sent block %d/%d", index, len(frame.blocks))
            self._progress(progress, PROGRESS_HEADER + span * index // len(frame.blocks))

        errors = await self.sync.halt_until_read()
        if errors is None:
            return False

        if not await self.mode.enter_normal(NORMAL_GREETING_OMIT):
            return False

        reason = board_error(errors)
        if reason:
            raise TransferError(f"Cannot write {path}: {reason}")
        self._progress(progress, PROGRESS_DONE)
        return True

    def _progress(self, enabled: bool, percent: int, label: Optional[str] = None) -> None:
        if enabled:
            self.observer.on_progress(percent, label)

    async def download(self, path: str, binary: bool = False) -> Union[str, bytes, None]:
        """
        Read path from the board.

        Args:
            path: File to read.
            binary: Return bytes from the raw capture instead of decoded text.

        Returns:
            File contents, or None if the session disconnected.

        Raises:
            TransferError: If the board could not read the file.
        """
        logger.info("Downloading %s (%s)", path, "binary" if binary else "text")
        try:
            lines = await self.executor.run_raw(
                download_script(path),
                wait_for_completion=True,
                omit_lines=2,
                terminator=DOWNLOAD_TERMINATOR,
                raw_capture=binary,
            )
        finally:
            captured = self.sync.end_raw_capture()

        if lines is None:
            return None

        if binary:
            contents = extract_binary_payload(captured)
        else:
            contents = extract_text_payload(lines)

        if not await self.mode.enter_normal(NORMAL_GREETING_OMIT):
            return None

        if contents is None:
            raise TransferError(f"Cannot read {path}: {board_error(lines) or 'no data'}")

        logger.debug("Downloaded %s: %d %s", path, len(contents), "bytes" if binary else "characters")
        return contents

